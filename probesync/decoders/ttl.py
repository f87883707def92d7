import logging

import numpy as np

from ..streams import TtlEvents

logger = logging.getLogger(__name__)

PULSE_DTYPE = np.dtype([
    ("line", np.int64),
    ("latency", np.int64),
    ("timestamp", np.float64),
    ("duration_ms", np.float64),
])


def auto_threshold(signal):
    """Threshold separating the low and high levels of a sync channel
    (Otsu's method on a 256-bin histogram).

    A few overshoot samples do not move it.
    """
    n_bins = 256
    hist, bin_edges = np.histogram(signal, bins=n_bins)
    bin_centers = (bin_edges[:-1] + bin_edges[1:]) / 2

    total = hist.sum()
    if total == 0:
        return float(bin_centers[n_bins // 2])

    cum_weight = np.cumsum(hist)
    cum_mean = np.cumsum(hist * bin_centers)
    total_mean = cum_mean[-1]

    weight_high = total - cum_weight
    valid = (cum_weight > 0) & (weight_high > 0)

    # Divide only where both classes are non-empty
    safe_low = np.where(valid, cum_weight, 1)
    safe_high = np.where(valid, weight_high, 1)
    mean_low = np.where(valid, cum_mean / safe_low, 0.0)
    mean_high = np.where(valid, (total_mean - cum_mean) / safe_high, 0.0)

    between_var = np.where(
        valid,
        cum_weight * weight_high * (mean_low - mean_high) ** 2,
        0.0,
    )

    # Two clean levels give a plateau of equal variance; take its middle
    max_var = between_var.max()
    if max_var == 0:
        return float(bin_centers[n_bins // 2])
    candidates = np.flatnonzero(between_var >= max_var * (1 - 1e-9))
    return float(bin_centers[candidates[len(candidates) // 2]])


def detect_edges(signal, threshold):
    """Threshold *signal* and return (rising_edges, falling_edges) as sample
    index arrays.

    A rising edge index is the first sample >= *threshold* after a run of
    samples below.  A falling edge index is the first sample < *threshold*
    after a run of samples at-or-above.
    """
    binary = (np.asarray(signal) >= threshold).astype(np.int8)
    diff = np.diff(binary)
    rising_edges = np.where(diff == 1)[0] + 1
    falling_edges = np.where(diff == -1)[0] + 1
    return rising_edges, falling_edges


def events_from_signal(signal, sample_numbers, line, sample_rate, bit=None,
                       threshold=None, processor_id=None, stream_name=None):
    """Build :class:`TtlEvents` from a sync channel stored as samples.

    If *bit* is given, *signal* is treated as a digital word and the
    requested bit is extracted first.  Otherwise *threshold* defaults to
    :func:`auto_threshold`.  A signal that starts high yields a leading
    falling edge only, which barcode decoding trims.
    """
    signal = np.asarray(signal)
    sample_numbers = np.asarray(sample_numbers, dtype=np.int64)
    if len(signal) != len(sample_numbers):
        raise ValueError("signal and sample_numbers must have the same length")

    if bit is not None:
        signal = (signal.astype(np.int64) >> bit) & 1
        threshold = 0.5
    elif threshold is None:
        threshold = auto_threshold(signal)

    rising, falling = detect_edges(signal, threshold)
    idx = np.concatenate([rising, falling])
    state = np.concatenate([
        np.ones(len(rising), dtype=bool),
        np.zeros(len(falling), dtype=bool),
    ])
    order = np.argsort(idx, kind="stable")
    idx = idx[order]
    samples = sample_numbers[idx]

    return TtlEvents(
        line=np.full(len(idx), line, dtype=np.int64),
        state=state[order],
        sample_number=samples,
        timestamp=samples / float(sample_rate),
        processor_id=processor_id,
        stream_name=stream_name,
    )


def trim_to_pulses(events: TtlEvents) -> TtlEvents:
    """Drop leading falling and trailing rising events.

    The result starts on a rising edge and ends on a falling edge, or is
    empty when no such window exists.
    """
    state = events.state
    rising = np.flatnonzero(state)
    falling = np.flatnonzero(~state)
    if len(rising) == 0 or len(falling) == 0:
        return events._subset(np.zeros(len(events), dtype=bool))
    first, last = rising[0], falling[-1]
    mask = np.zeros(len(events), dtype=bool)
    if last > first:
        mask[first:last + 1] = True
    return events._subset(mask)


def pair_edges(events: TtlEvents):
    """Walk *events* and pair each rising edge with the falling edge right
    after it.

    Returns ``(rising_samples, falling_samples)`` as int64 arrays.  A rising
    edge followed by another rising edge has lost its falling edge; it is
    skipped with a warning and the walk resumes at the next event.  Stray
    falling edges are ignored.
    """
    state = events.state
    samples = events.sample_number
    n = len(events)
    onsets = []
    offsets = []

    i = 0
    while i < n:
        if not state[i]:
            i += 1
            continue
        if i + 1 < n and not state[i + 1]:
            onsets.append(samples[i])
            offsets.append(samples[i + 1])
            i += 2
        else:
            logger.warning(
                "Missing an off event for the pulse at sample %d on line %d; "
                "skipping it", samples[i], events.line[i])
            i += 1

    return (
        np.array(onsets, dtype=np.int64),
        np.array(offsets, dtype=np.int64),
    )


def events_to_pulses(events: TtlEvents) -> np.ndarray:
    """Summarise every line's rising events as pulses with a duration.

    Each rising event is paired with the next falling event on the same
    line.  The duration (ms) comes from the event timestamps; a pulse still
    high at the end of the recording gets ``NaN``.  Rows are grouped by line
    in ascending line order.
    """
    rows = []
    for line in events.lines:
        on_line = events.for_line(int(line))
        state = on_line.state
        for i in np.flatnonzero(state):
            after = np.flatnonzero(~state[i + 1:])
            if len(after):
                j = i + 1 + after[0]
                duration = (on_line.timestamp[j] - on_line.timestamp[i]) * 1000
            else:
                duration = np.nan
            rows.append((int(line), on_line.sample_number[i],
                         on_line.timestamp[i], duration))
    return np.array(rows, dtype=PULSE_DTYPE)
