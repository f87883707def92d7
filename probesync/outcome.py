"""Error taxonomy and the structured result returned by Recording operations.

Internal functions raise the exceptions defined here.  The public
:class:`~probesync.recording.Recording` methods catch them and report an
:class:`Outcome` instead, so a failed operation never propagates out of the
synchronization core and the Recording stays usable.
"""

import enum
import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, List, Optional

logger = logging.getLogger(__name__)


class ProbeSyncError(Exception):
    """Base class for all synchronization failures."""

    kind = None


class ConfigurationError(ProbeSyncError, ValueError):
    """Missing or invalid caller-supplied parameter."""


class DataIntegrityError(ProbeSyncError, ValueError):
    """Recorded data is inconsistent (e.g. barcode values differ)."""


class InsufficientDataError(ProbeSyncError, ValueError):
    """Not enough barcode channels, sync lines or events to proceed."""


class StreamLookupError(ProbeSyncError, LookupError):
    """A referenced stream or event source is not registered."""


class ErrorKind(enum.Enum):
    CONFIGURATION = "configuration"
    DATA_INTEGRITY = "data_integrity"
    INSUFFICIENT_DATA = "insufficient_data"
    LOOKUP = "lookup"


ConfigurationError.kind = ErrorKind.CONFIGURATION
DataIntegrityError.kind = ErrorKind.DATA_INTEGRITY
InsufficientDataError.kind = ErrorKind.INSUFFICIENT_DATA
StreamLookupError.kind = ErrorKind.LOOKUP


@dataclass
class Outcome:
    """Result of one Recording operation.

    ``value`` carries the produced object (e.g. a BarcodeChannel) when the
    operation has one.  ``warnings`` holds every warning the library logged
    while the operation ran, including the ones that did not abort it.
    """

    ok: bool = True
    warnings: List[str] = field(default_factory=list)
    error: Optional[ErrorKind] = None
    message: Optional[str] = None
    value: Any = None

    def __bool__(self):
        return self.ok

    def fail(self, exc: ProbeSyncError) -> "Outcome":
        self.ok = False
        self.error = exc.kind
        self.message = str(exc)
        return self


class _WarningCollector(logging.Handler):
    def __init__(self, sink: List[str]):
        super().__init__(level=logging.WARNING)
        self._sink = sink

    def emit(self, record):
        if record.levelno < logging.ERROR:
            self._sink.append(record.getMessage())


@contextmanager
def capture(outcome: Outcome):
    """Collect warnings logged under ``probesync`` into *outcome*.

    A :class:`ProbeSyncError` raised inside the block is logged at error
    level and recorded on the outcome rather than re-raised.
    """
    pkg_logger = logging.getLogger("probesync")
    handler = _WarningCollector(outcome.warnings)
    pkg_logger.addHandler(handler)
    try:
        yield outcome
    except ProbeSyncError as exc:
        logger.error("%s", exc)
        outcome.fail(exc)
    finally:
        pkg_logger.removeHandler(handler)
