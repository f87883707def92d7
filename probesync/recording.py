"""The Recording aggregate: one physical recording session.

A Recording owns the continuous streams and TTL event sources filled in by
a format loader, plus the sync lines and barcode channels registered on
top of them.  Its three public operations never raise on bad input or bad
data; they return an :class:`~probesync.outcome.Outcome` and log what went
wrong.

Typical use::

    rec = Recording.from_loader(loader, directory)
    for name in ("ProbeA-AP", "ProbeB-AP"):
        rec.extract_barcodes(barcode_line=1, stream_name=name,
                             is_main=name == "ProbeA-AP")
    outcome = rec.compute_global_timestamps()
"""

import enum
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Union

from .align import align_barcodes, align_sync_lines, select_main_channel
from .decoders.barcode import BarcodeChannel, BarcodeOptions, decode_barcode_channel
from .outcome import (
    ConfigurationError,
    InsufficientDataError,
    Outcome,
    StreamLookupError,
    capture,
)
from .streams import ContinuousStream, Registry, TtlEvents, find_events, find_stream
from .sync_lines import SyncLineRegistry

logger = logging.getLogger(__name__)


class RecordingFormat(enum.Enum):
    """On-disk format a recording was loaded from."""

    BINARY = "binary"
    OPEN_EPHYS = "open_ephys"
    NWB = "nwb"

    @property
    def sample_numbers_are_seconds(self) -> bool:
        """True when the format's sample numbers are already absolute time,
        so sync-line alignment must not divide by the sample rate."""
        return self is RecordingFormat.NWB


class RecordingLoader(Protocol):
    """What a format loader provides to build a :class:`Recording`."""

    format: RecordingFormat

    def load_continuous(self, directory) -> Dict[str, ContinuousStream]:
        ...

    def load_events(self, directory) -> Dict[str, TtlEvents]:
        ...

    def load_spikes(self, directory) -> Dict[str, Any]:
        ...

    def load_messages(self, directory) -> Dict[str, Any]:
        ...

    def detect_format(self, directory) -> bool:
        ...

    def detect_recordings(self, directory) -> List[Any]:
        ...


class Recording:
    """Streams, events and sync registries of one recording."""

    def __init__(self, directory: Union[str, Path, None] = None,
                 experiment_index: int = 0, recording_index: int = 0,
                 format: RecordingFormat = RecordingFormat.BINARY):
        self.directory = Path(directory) if directory is not None else None
        self.experiment_index = experiment_index
        self.recording_index = recording_index
        self.format = format

        self.continuous = Registry()
        self.ttl_events = Registry()
        self.spikes = Registry()
        self.messages = Registry()

        self.barcodes = Registry()
        self.sync_lines = SyncLineRegistry()

    # -- Loading ---------------------------------------------------------------

    @classmethod
    def from_loader(cls, loader: RecordingLoader, directory,
                    experiment_index=0, recording_index=0) -> "Recording":
        """Create a Recording and fill it through *loader*."""
        if not loader.detect_format(directory):
            raise ValueError(
                f"{type(loader).__name__} does not recognise {directory}")
        rec = cls(directory, experiment_index, recording_index,
                  format=loader.format)
        for name, stream in loader.load_continuous(directory).items():
            rec.continuous.set(name, stream)
        for name, events in loader.load_events(directory).items():
            rec.ttl_events.set(name, events)
        for name, spikes in loader.load_spikes(directory).items():
            rec.spikes.set(name, spikes)
        for name, messages in loader.load_messages(directory).items():
            rec.messages.set(name, messages)
        logger.info("Loaded %d continuous streams and %d event sources from %s",
                    len(rec.continuous), len(rec.ttl_events), directory)
        return rec

    def add_continuous(self, stream: ContinuousStream, key=None) -> None:
        self.continuous.set(key or stream.stream_name, stream)

    def add_events(self, events: TtlEvents, key=None) -> None:
        self.ttl_events.set(key or events.stream_name, events)

    # -- Sync registration -----------------------------------------------------

    def add_sync_line(self, line, processor_id, stream_name, is_main=False,
                      is_barcode=False) -> Outcome:
        """Register the event line carrying the shared sync signal for one
        processor.  ``outcome.value`` is the :class:`SyncLine`."""
        outcome = Outcome()
        with capture(outcome):
            if line is None or stream_name is None:
                raise ConfigurationError(
                    "A sync line needs both a line number and a stream name")
            outcome.value = self.sync_lines.register(
                line, processor_id, stream_name, is_main=is_main,
                is_barcode=is_barcode, continuous=self.continuous)
        return outcome

    def extract_barcodes(self, barcode_line=None, stream_name=None,
                         **options) -> Outcome:
        """Decode the barcodes recorded on *barcode_line* of *stream_name*.

        Keyword options are those of :class:`BarcodeOptions`.  On success the
        :class:`BarcodeChannel` is stored in :attr:`barcodes` (replacing an
        earlier decode of the same processor and stream) and returned as
        ``outcome.value``.
        """
        outcome = Outcome()
        with capture(outcome):
            if barcode_line is None:
                raise ConfigurationError(
                    "Need to specify at least one event line as the barcode line")
            if stream_name is None:
                raise ConfigurationError("Need to specify the stream to decode")
            opts = BarcodeOptions.from_kwargs(**options)

            stream = find_stream(self.continuous, stream_name)
            if stream is None:
                raise StreamLookupError(
                    f"No continuous stream named {stream_name!r} to take the "
                    f"sample rate from")
            events = find_events(self.ttl_events, stream_name)
            if events is None:
                raise StreamLookupError(f"No event source for {stream_name!r}")

            channel = decode_barcode_channel(
                events, barcode_line, stream.sample_rate, opts,
                stream_name=stream.stream_name)
            if channel.processor_id is None:
                channel.processor_id = stream.processor_id
            self.barcodes.set(channel.key, channel)
            outcome.value = channel
        return outcome

    # -- Alignment -------------------------------------------------------------

    def main_reference(self) -> Optional[Union[BarcodeChannel, Any]]:
        """The barcode channel or sync line the next pass will treat as
        main, or None when alignment cannot run."""
        channels = self.barcodes.values()
        if len(channels) >= 2:
            return select_main_channel(channels)
        if len(self.sync_lines) >= 2:
            return self.sync_lines.main()
        return None

    def compute_global_timestamps(self) -> Outcome:
        """Write ``global_timestamps`` on every stream reachable from the
        registered barcode channels (preferred) or sync lines.

        ``outcome.value`` lists the aligned stream names.
        """
        outcome = Outcome()
        with capture(outcome):
            channels = self.barcodes.values()
            if len(channels) >= 2:
                outcome.value = align_barcodes(self.continuous, channels)
            elif len(self.sync_lines) > 0:
                outcome.value = align_sync_lines(
                    self.continuous, self.ttl_events, self.sync_lines,
                    sample_numbers_are_seconds=self.format.sample_numbers_are_seconds)
            else:
                raise InsufficientDataError(
                    "Need to specify at least 2 barcode channels or sync lines")
        return outcome

    def __repr__(self):
        where = f" at {self.directory}" if self.directory else ""
        lines = [
            f"Recording{where} (experiment {self.experiment_index}, "
            f"recording {self.recording_index}, {self.format.value})",
            f"  continuous: {', '.join(map(str, self.continuous.keys())) or '-'}",
            f"  events: {', '.join(map(str, self.ttl_events.keys())) or '-'}",
            f"  barcode channels: {len(self.barcodes)}, "
            f"sync lines: {len(self.sync_lines)}",
        ]
        return "\n".join(lines)
