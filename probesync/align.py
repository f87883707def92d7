"""Global timestamp computation.

Two strategies map every continuous stream onto the main clock:

* **barcodes** -- decoded barcode values shared by all processors are used
  as fiducials and each stream is linearly interpolated between them;
* **sync lines** -- the span between the first and last sync pulse on each
  processor gives a single linear scaling per stream.

Both write ``ContinuousStream.global_timestamps`` in seconds, with zero at
the main reference (first main barcode, or first main sync pulse).
"""

import logging
from typing import List, Sequence

import numpy as np

from .clock_table import ClockTable
from .decoders.barcode import BarcodeChannel
from .outcome import DataIntegrityError, InsufficientDataError, StreamLookupError
from .streams import ContinuousStream, Registry, find_events, find_stream
from .sync_lines import SyncLineRegistry

logger = logging.getLogger(__name__)

# Steps agreeing to this many significant digits count as the same step
_STEP_DIGITS = 9


def select_main_channel(channels: Sequence[BarcodeChannel]) -> BarcodeChannel:
    """First channel flagged main, else the first channel."""
    for channel in channels:
        if channel.is_main:
            return channel
    logger.info("No main barcode channel designated, assuming the first "
                "channel (%r) is main", channels[0].stream_name)
    return channels[0]


def mode_step(values) -> float:
    """Most frequent difference between consecutive defined values.

    Ties resolve to the smallest step.  Returns NaN when fewer than two
    values are defined.
    """
    values = np.asarray(values, dtype=np.float64)
    steps = np.diff(values[~np.isnan(values)])
    if len(steps) == 0:
        return np.nan
    scale = float(np.max(np.abs(steps))) or 1.0
    keys = np.round(steps / scale, _STEP_DIGITS)
    _, inverse, counts = np.unique(keys, return_inverse=True, return_counts=True)
    best = int(np.argmax(counts))
    return float(np.mean(steps[inverse.ravel() == best]))


def extrapolate_edges(timestamps, step=None) -> np.ndarray:
    """Fill the NaN head and tail of *timestamps* at a constant *step*.

    The head steps backwards from the first defined value, the tail steps
    forwards from the last one.  *step* defaults to :func:`mode_step`.
    """
    ts = np.array(timestamps, dtype=np.float64)
    defined = np.flatnonzero(~np.isnan(ts))
    if len(defined) == 0:
        raise DataIntegrityError("No sample falls between the first and last barcode")
    if step is None:
        step = mode_step(ts)
    if np.isnan(step):
        raise DataIntegrityError("Cannot estimate a sample step to extrapolate from")

    first, last = defined[0], defined[-1]
    if first > 0:
        ts[:first] = ts[first] - step * np.arange(first, 0, -1)
    n_tail = len(ts) - last - 1
    if n_tail > 0:
        ts[last + 1:] = ts[last] + step * np.arange(1, n_tail + 1)
    return ts


def _require_stream(continuous: Registry, stream_name) -> ContinuousStream:
    stream = find_stream(continuous, stream_name)
    if stream is None:
        raise StreamLookupError(f"No continuous stream named {stream_name!r}")
    return stream


def barcode_clock_table(channel: BarcodeChannel, main: BarcodeChannel) -> ClockTable:
    """Map *channel*'s barcode onsets onto *main*'s.

    Raises :class:`DataIntegrityError` unless both channels decoded the same
    barcode values in the same order.
    """
    if len(channel) != len(main) or not np.array_equal(channel.values, main.values):
        raise DataIntegrityError(
            f"Barcode values of {channel.stream_name!r} don't match the main "
            f"channel {main.stream_name!r} ({len(channel)} vs {len(main)} barcodes)")
    try:
        return ClockTable(
            source=channel.start_latencies,
            reference=main.start_latencies,
            source_name=channel.stream_name,
            reference_name=main.stream_name,
        )
    except ValueError as e:
        raise DataIntegrityError(
            f"Cannot map {channel.stream_name!r} onto {main.stream_name!r}: {e}") from e


def align_barcodes(continuous: Registry, channels: Sequence[BarcodeChannel]) -> List[str]:
    """Compute global timestamps from decoded barcodes.

    Channels are processed in registration order.  A value mismatch stops
    the pass; streams written by earlier channels keep their new
    timestamps.  Returns the names of the streams that were written.
    """
    if len(channels) < 2:
        raise InsufficientDataError(
            f"Barcode alignment needs at least 2 barcode channels, got {len(channels)}")
    main = select_main_channel(channels)
    if len(main) == 0:
        raise InsufficientDataError(
            f"Main barcode channel {main.stream_name!r} has no barcodes")
    zero = float(main.barcodes[0].start_latency)

    aligned = []
    for channel in channels:
        stream = _require_stream(continuous, channel.stream_name)
        if channel is main:
            stream.set_global_timestamps(
                (stream.sample_numbers - zero) / main.sample_rate)
        else:
            table = barcode_clock_table(channel, main)
            interpolated = table.source_to_reference(stream.sample_numbers)
            timestamps = (interpolated - zero) / channel.sample_rate
            stream.set_global_timestamps(extrapolate_edges(timestamps))
            logger.info("Aligned %r to %r through %d barcodes (scaling %.9f)",
                        channel.stream_name, main.stream_name, len(table),
                        table.scaling)
        aligned.append(stream.stream_name)
    return aligned


def _pulse_span(ttl_events: Registry, sync):
    events = find_events(ttl_events, sync.stream_name, sync.processor_id)
    if events is None:
        raise StreamLookupError(f"No event source for sync stream {sync.stream_name!r}")
    pulses = events.for_line(sync.line).rising()
    if len(pulses) == 0:
        raise StreamLookupError(
            f"No sync pulses on line {sync.line} of {sync.stream_name!r}")
    return int(pulses[0]), int(pulses[-1])


def align_sync_lines(continuous: Registry, ttl_events: Registry,
                     sync_lines: SyncLineRegistry,
                     sample_numbers_are_seconds=False) -> List[str]:
    """Compute global timestamps from sync-line pulse spans.

    The main line's first pulse is time zero.  Every other line is scaled
    by ``main_span / aux_span``.  Sample numbers are divided by the main
    sample rate unless *sample_numbers_are_seconds* is set.  All parameters
    are computed before any stream is written.
    """
    if len(sync_lines) < 2:
        raise InsufficientDataError(
            "Computing global timestamps requires at least two sync lines")
    main = sync_lines.main(fallback=False)
    if main is None:
        main = sync_lines.main()
        logger.info("No main sync line designated, assuming the first line "
                    "(%r) is main", main.stream_name)
    logger.info("Found main stream: %r", main.stream_name)

    main_start, main_end = _pulse_span(ttl_events, main)
    main_total = main_end - main_start
    if main_total <= 0:
        raise DataIntegrityError(
            f"Main sync line {main.stream_name!r} needs at least two pulses")
    if main.sample_rate is None and not sample_numbers_are_seconds:
        raise StreamLookupError(
            f"Main sync line {main.stream_name!r} has no sample rate")

    params = {}
    for sync in sync_lines:
        if sync is main:
            params[sync.key] = (main_start, 1.0, main.sample_rate)
            continue
        aux_start, aux_end = _pulse_span(ttl_events, sync)
        aux_total = aux_end - aux_start
        if aux_total <= 0:
            raise DataIntegrityError(
                f"Sync line {sync.line} on {sync.stream_name!r} needs at least two pulses")
        params[sync.key] = (aux_start, main_total / aux_total, main.sample_rate)

    aligned = []
    for sync in sync_lines:
        sync.start, sync.scaling, sync.sample_rate = params[sync.key]
        sync.offset = main_start
        for stream in continuous.values():
            if stream.stream_name != sync.stream_name:
                continue
            timestamps = (stream.sample_numbers - sync.start) * sync.scaling
            if not sample_numbers_are_seconds:
                timestamps = timestamps / sync.sample_rate
            stream.set_global_timestamps(timestamps)
            aligned.append(stream.stream_name)
        logger.info("Sync line %d on %r: start=%d scaling=%.9f",
                    sync.line, sync.stream_name, sync.start, sync.scaling)
    return aligned


def align_to_clock_pulses(stream: ContinuousStream, clock_samples, period) -> np.ndarray:
    """Time a stream by a clock of known *period* (s) recorded on it.

    Samples from the first to the last clock pulse get evenly spaced times
    starting at 0; samples outside that window are NaN.
    """
    clock_samples = np.asarray(clock_samples, dtype=np.int64)
    if len(clock_samples) < 2:
        raise InsufficientDataError("Clock alignment needs at least 2 clock pulses")
    sample_numbers = stream.sample_numbers
    first = int(np.searchsorted(sample_numbers, clock_samples[0]))
    last = int(np.searchsorted(sample_numbers, clock_samples[-1]))
    if (last >= len(sample_numbers)
            or sample_numbers[first] != clock_samples[0]
            or sample_numbers[last] != clock_samples[-1]):
        raise StreamLookupError(
            f"Clock pulses fall outside the samples of {stream.stream_name!r}")

    timestamps = np.full(len(sample_numbers), np.nan)
    end_time = (len(clock_samples) - 1) * period
    timestamps[first:last + 1] = np.linspace(0.0, end_time, last - first + 1)
    stream.set_global_timestamps(timestamps)
    return timestamps
