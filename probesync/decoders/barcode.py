"""Barcode decoding from TTL events.

A barcode generator sends the same pulse train to every processor of a
recording.  Each frame is bracketed by short *wrapper* pulses; between them
the bits of an integer are sent LSB first as high/low periods of
``pulse_duration`` ms.  Decoding the frames recorded by two processors
yields matching values at different local sample numbers, which is what the
aligner uses as shared fiducials.

All durations here are in milliseconds.  Sample numbers are converted using
the sample rate of the stream that recorded the events.
"""

import logging
from dataclasses import dataclass, field, fields
from typing import Any, List, Optional

import numpy as np

from ..outcome import ConfigurationError, InsufficientDataError
from ..streams import TtlEvents
from .ttl import pair_edges, trim_to_pulses

logger = logging.getLogger(__name__)

# -- Pulse types ---------------------------------------------------------------

PULSE_WRAPPER = "wrapper"
PULSE_BARCODE = "barcode"
PULSE_UNKNOWN = "unknown"

# Two wrapper pulses close a frame
WRAPPERS_PER_FRAME = 2

MAX_BITS = 64


@dataclass
class BarcodeOptions:
    """Timing parameters of the barcode generator.

    ``interval`` (time between barcodes) is informational only; the decoder
    finds frames from the wrapper pulses.
    """

    is_main: bool = False
    n_bits: int = 32
    interval: float = 10000
    init_duration: float = 10
    pulse_duration: float = 30
    tolerance: float = 0.1

    def __post_init__(self):
        values = {}
        for name in ("n_bits", "interval", "init_duration", "pulse_duration",
                     "tolerance"):
            raw = getattr(self, name)
            try:
                values[name] = float(raw)
            except (TypeError, ValueError) as e:
                raise ConfigurationError(
                    f"{name} must be a number, got {raw!r}") from e

        n_bits = values.pop("n_bits")
        if not n_bits.is_integer():
            raise ConfigurationError(
                f"n_bits must be a whole number, got {self.n_bits!r}")
        if not 0 < n_bits <= MAX_BITS:
            raise ConfigurationError(
                f"n_bits must be between 1 and {MAX_BITS}, got {self.n_bits!r}")
        # NaN fails every comparison below
        for name in ("interval", "init_duration", "pulse_duration"):
            if not values[name] > 0:
                raise ConfigurationError(
                    f"{name} must be positive, got {getattr(self, name)!r}")
        if not 0 <= values["tolerance"] < 0.5:
            raise ConfigurationError(
                f"tolerance must be in [0, 0.5), got {self.tolerance!r}")

        self.n_bits = int(n_bits)
        for name, value in values.items():
            setattr(self, name, value)
        self.is_main = bool(self.is_main)

    @classmethod
    def from_kwargs(cls, **kwargs) -> "BarcodeOptions":
        """Build options from keyword arguments, rejecting unknown names."""
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(kwargs) - known)
        if unknown:
            raise ConfigurationError(
                f"Unknown barcode option(s): {', '.join(unknown)}")
        return cls(**kwargs)


# -- Records -------------------------------------------------------------------

@dataclass
class BarcodePulse:
    latency: int
    time: float
    duration_ms: float
    off_time_ms: float
    type: str = PULSE_UNKNOWN
    barcode_num: int = 0


@dataclass
class Barcode:
    start_time: float
    start_latency: int
    barcode_value: int
    barcode_num: int


@dataclass
class BarcodeChannel:
    """Barcodes decoded from one line of one processor."""

    line: int
    processor_id: Any
    stream_name: str
    is_main: bool
    sample_rate: float
    barcodes: List[Barcode] = field(default_factory=list)

    @property
    def key(self):
        return (self.processor_id, self.stream_name)

    @property
    def start_latencies(self) -> np.ndarray:
        return np.array([b.start_latency for b in self.barcodes], dtype=np.int64)

    @property
    def values(self) -> np.ndarray:
        return np.array([b.barcode_value for b in self.barcodes], dtype=np.uint64)

    def __len__(self):
        return len(self.barcodes)

    def __repr__(self):
        main = ", main" if self.is_main else ""
        return (
            f"BarcodeChannel(line={self.line}, stream={self.stream_name!r}"
            f"{main}, {len(self.barcodes)} barcodes @ {self.sample_rate:.1f} Hz)"
        )


# -- Pulse measurement ---------------------------------------------------------

def measure_pulses(rising, falling, sample_rate) -> List[BarcodePulse]:
    """Timing of each paired pulse, in ms.

    ``off_time_ms`` is how long the line was low before the pulse, rounded
    to whole milliseconds (0 for the first pulse).
    """
    ms_div = sample_rate / 1000.0
    pulses = []
    for on, off in zip(rising, falling):
        time = on / sample_rate
        duration = (off - on) / ms_div
        if pulses:
            prev = pulses[-1]
            off_time = float(round((time - prev.time) * 1000 - prev.duration_ms))
        else:
            off_time = 0.0
        pulses.append(BarcodePulse(
            latency=int(on), time=time, duration_ms=duration,
            off_time_ms=off_time,
        ))
    return pulses


def classify_pulse(duration_ms, options: BarcodeOptions) -> str:
    """Wrapper, barcode (a whole number of bit periods) or unknown."""
    init = options.init_duration
    if abs(duration_ms - init) <= init * options.tolerance:
        return PULSE_WRAPPER

    bit = options.pulse_duration
    bit_tolerance = bit * options.tolerance
    remainder = duration_ms % bit
    near_multiple = remainder <= bit_tolerance or bit - remainder <= bit_tolerance
    if near_multiple and round(duration_ms / bit) >= 1:
        return PULSE_BARCODE
    return PULSE_UNKNOWN


def number_frames(pulses: List[BarcodePulse]) -> None:
    """Assign ``barcode_num`` in place.

    Pulses get the current frame number; once two wrappers have been seen
    the counter moves on for the pulses that follow.
    """
    barcode_num = 0
    wrappers = 0
    for pulse in pulses:
        pulse.barcode_num = barcode_num
        if pulse.type == PULSE_WRAPPER:
            wrappers += 1
            if wrappers >= WRAPPERS_PER_FRAME:
                barcode_num += 1
                wrappers = 0


def extract_pulses(events: TtlEvents, sample_rate,
                   options: BarcodeOptions) -> List[BarcodePulse]:
    """Trim, pair, measure, classify and frame-number the pulses of
    *events* (already restricted to the barcode line)."""
    trimmed = trim_to_pulses(events)
    if len(trimmed) == 0:
        raise InsufficientDataError(
            "No complete pulses on the barcode line after trimming")

    rising, falling = pair_edges(trimmed)
    pulses = measure_pulses(rising, falling, sample_rate)
    for pulse in pulses:
        pulse.type = classify_pulse(pulse.duration_ms, options)
    number_frames(pulses)

    n_unknown = sum(p.type == PULSE_UNKNOWN for p in pulses)
    if n_unknown:
        logger.info("%d of %d pulses did not match the barcode timing",
                    n_unknown, len(pulses))
    return pulses


# -- Bit reconstruction --------------------------------------------------------

def frame_bits(pulses: List[BarcodePulse], options: BarcodeOptions) -> np.ndarray:
    """Rebuild the bit vector of one frame from its barcode pulses.

    Bit 0 is the earliest bit in time.  Bits past ``n_bits`` are dropped.
    """
    bit = options.pulse_duration
    bits = np.zeros(options.n_bits, dtype=np.uint8)
    cursor = 0
    for i, pulse in enumerate(pulses):
        if i == 0:
            # Low time after the wrapper, minus the wrapper gap, is leading zeros
            cursor = max(0, int(round((pulse.off_time_ms - options.init_duration) / bit)))
        else:
            cursor += int(round(pulse.off_time_ms / bit))
        high = int(round(pulse.duration_ms / bit))
        bits[cursor:cursor + high] = 1
        cursor += high
    return bits


def bits_to_value(bits) -> int:
    """``sum(bit[i] * 2**i)`` as a Python int (fits in uint64)."""
    return sum(1 << i for i, b in enumerate(bits) if b)


def decode_barcodes(events: TtlEvents, sample_rate,
                    options: Optional[BarcodeOptions] = None) -> List[Barcode]:
    """Decode every complete frame in *events*.

    Unknown pulses are ignored.  A frame holding only wrapper pulses
    produces no barcode.
    """
    options = options or BarcodeOptions()
    pulses = extract_pulses(events, sample_rate, options)

    barcodes = []
    frame_numbers = sorted({p.barcode_num for p in pulses})
    for num in frame_numbers:
        data = [p for p in pulses
                if p.barcode_num == num and p.type == PULSE_BARCODE]
        if not data:
            continue
        value = bits_to_value(frame_bits(data, options))
        barcodes.append(Barcode(
            start_time=data[0].time,
            start_latency=data[0].latency,
            barcode_value=value,
            barcode_num=num,
        ))

    logger.info("Decoded %d barcodes from %d pulses", len(barcodes), len(pulses))
    return barcodes


def decode_barcode_channel(events: TtlEvents, line, sample_rate,
                           options: Optional[BarcodeOptions] = None,
                           stream_name=None) -> BarcodeChannel:
    """Decode the barcodes on *line* of an event source into a channel."""
    options = options or BarcodeOptions()
    on_line = events.for_line(line)
    if len(on_line) == 0:
        raise InsufficientDataError(
            f"No events on barcode line {line} of {events.stream_name!r}")

    barcodes = decode_barcodes(on_line, sample_rate, options)
    if not barcodes:
        logger.warning("No barcodes decoded on line %d of %r", line, events.stream_name)
    return BarcodeChannel(
        line=line,
        processor_id=events.processor_id,
        stream_name=stream_name or events.stream_name,
        is_main=options.is_main,
        sample_rate=float(sample_rate),
        barcodes=barcodes,
    )
