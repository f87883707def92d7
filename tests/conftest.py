"""Test data generator for probesync.

Builds barcode pulse trains the way the barcode generator sends them: two
short wrapper pulses, a gap of one wrapper length, then the bits of the
value LSB first, with runs of ones merged into single long pulses.  The
trains are recorded by two simulated processors with different start
offsets and slightly different clock rates.
"""

import numpy as np
import pytest

from probesync import ContinuousStream, Recording, TtlEvents

SAMPLE_RATE = 30_000.0
INIT_MS = 10
BIT_MS = 30
N_BITS = 16
INTERVAL_MS = 1000
FIRST_BARCODE_MS = 500
BARCODE_VALUES = [0x1A2B, 0x0F0F, 0x8001, 0x5555]
BARCODE_LINE = 1
SYNC_LINE = 2
SYNC_PERIOD_MS = 1000
DURATION_MS = 5500

# (processor_id, stream_name, first sample number, clock rate scale)
PROBE_A = (100, "ProbeA-AP", 2_000, 1.0)
PROBE_B = (101, "ProbeB-AP", 7_000, 1.0001)


# -- Pulse train builders ------------------------------------------------------

def encode_barcode(value, n_bits=N_BITS, init_ms=INIT_MS, bit_ms=BIT_MS,
                   start_ms=0.0):
    """(on_ms, off_ms) pulses for one frame carrying *value*."""
    pulses = [
        (start_ms, start_ms + init_ms),
        (start_ms + 2 * init_ms, start_ms + 3 * init_ms),
    ]
    bits_start = start_ms + 4 * init_ms
    i = 0
    while i < n_bits:
        if (value >> i) & 1:
            j = i
            while j < n_bits and (value >> j) & 1:
                j += 1
            pulses.append((bits_start + i * bit_ms, bits_start + j * bit_ms))
            i = j
        else:
            i += 1
    return pulses


def barcode_train(values, interval_ms=INTERVAL_MS, start_ms=FIRST_BARCODE_MS,
                  **kwargs):
    pulses = []
    for k, value in enumerate(values):
        pulses.extend(encode_barcode(value, start_ms=start_ms + k * interval_ms,
                                     **kwargs))
    return pulses


def sync_train(period_ms=SYNC_PERIOD_MS, start_ms=250, duration_ms=DURATION_MS,
               width_ms=10):
    starts = np.arange(start_ms, duration_ms - width_ms, period_ms)
    return [(float(s), float(s) + width_ms) for s in starts]


def ms_to_samples(ms, offset=0, rate_scale=1.0, sample_rate=SAMPLE_RATE):
    return offset + int(round(ms * sample_rate / 1000.0 * rate_scale))


def pulses_to_events(pulses, line, offset=0, rate_scale=1.0,
                     sample_rate=SAMPLE_RATE, processor_id=None,
                     stream_name=None):
    """Rising/falling TtlEvents for (on_ms, off_ms) *pulses*."""
    lines, states, samples = [], [], []
    for on, off in pulses:
        for ms, state in ((on, True), (off, False)):
            lines.append(line)
            states.append(state)
            samples.append(ms_to_samples(ms, offset, rate_scale, sample_rate))
    samples = np.array(samples, dtype=np.int64)
    return TtlEvents(
        line=lines,
        state=states,
        sample_number=samples,
        timestamp=samples / sample_rate,
        processor_id=processor_id,
        stream_name=stream_name,
    )


def merge_events(*sources):
    """Combine event sources of one processor, ordered by sample number."""
    sample_number = np.concatenate([s.sample_number for s in sources])
    order = np.argsort(sample_number, kind="stable")
    return TtlEvents(
        line=np.concatenate([s.line for s in sources])[order],
        state=np.concatenate([s.state for s in sources])[order],
        sample_number=sample_number[order],
        timestamp=np.concatenate([s.timestamp for s in sources])[order],
        processor_id=sources[0].processor_id,
        stream_name=sources[0].stream_name,
    )


def make_probe(probe, values=BARCODE_VALUES):
    """(ContinuousStream, TtlEvents) for one simulated processor."""
    processor_id, name, offset, scale = probe
    n_samples = ms_to_samples(DURATION_MS, rate_scale=scale)
    stream = ContinuousStream(
        stream_name=name,
        sample_rate=SAMPLE_RATE,
        sample_numbers=offset + np.arange(n_samples, dtype=np.int64),
        processor_id=processor_id,
    )
    events = merge_events(
        pulses_to_events(barcode_train(values), BARCODE_LINE, offset, scale,
                         processor_id=processor_id, stream_name=name),
        pulses_to_events(sync_train(), SYNC_LINE, offset, scale,
                         processor_id=processor_id, stream_name=name),
    )
    return stream, events


def make_recording(values_a=BARCODE_VALUES, values_b=BARCODE_VALUES, **kwargs):
    rec = Recording(**kwargs)
    for probe, values in ((PROBE_A, values_a), (PROBE_B, values_b)):
        stream, events = make_probe(probe, values)
        rec.add_continuous(stream)
        rec.add_events(events)
    return rec


# -- Fixtures ------------------------------------------------------------------

@pytest.fixture
def recording():
    """Two processors recording the same barcodes and sync pulses."""
    return make_recording()


@pytest.fixture
def barcode_events():
    """Barcode-line events of probe A alone."""
    processor_id, name, offset, _ = PROBE_A
    return pulses_to_events(barcode_train(BARCODE_VALUES), BARCODE_LINE, offset,
                            processor_id=processor_id, stream_name=name)
