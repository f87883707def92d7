"""probesync: align multi-processor electrophysiology streams to one clock."""

__version__ = "0.1.0"

from .align import align_to_clock_pulses, extrapolate_edges, mode_step
from .clock_table import ClockTable
from .decoders.barcode import (
    Barcode,
    BarcodeChannel,
    BarcodeOptions,
    BarcodePulse,
    decode_barcodes,
    extract_pulses,
)
from .decoders.ttl import auto_threshold, events_from_signal, events_to_pulses
from .outcome import (
    ConfigurationError,
    DataIntegrityError,
    ErrorKind,
    InsufficientDataError,
    Outcome,
    ProbeSyncError,
    StreamLookupError,
)
from .recording import Recording, RecordingFormat, RecordingLoader
from .streams import ContinuousStream, Registry, TtlEvents
from .sync_lines import SyncLine, SyncLineRegistry
