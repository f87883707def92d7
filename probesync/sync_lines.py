"""Registry of digital sync lines shared between processors.

Each processor taking part in a recording receives the same physical sync
input on one of its event lines.  A :class:`SyncLine` records which line
that is and, once alignment has run, the linear mapping from the
processor's sample counter onto the main clock.
"""

import logging
from dataclasses import dataclass
from typing import Any, List, Optional

from .streams import Registry, find_stream

logger = logging.getLogger(__name__)


@dataclass
class SyncLine:
    line: int
    processor_id: Any
    stream_name: str
    is_main: bool = False
    is_barcode: bool = False
    sample_rate: Optional[float] = None
    start: Optional[int] = None
    scaling: Optional[float] = None
    offset: Optional[int] = None

    @property
    def key(self):
        return (self.processor_id, self.stream_name)


class SyncLineRegistry:
    """Sync lines keyed by ``(processor_id, stream_name)``.

    Re-registering a key replaces the earlier entry in place; new keys are
    appended in registration order.
    """

    def __init__(self):
        self._lines = Registry()

    def register(self, line, processor_id, stream_name, is_main=False,
                 is_barcode=False, continuous: Optional[Registry] = None) -> SyncLine:
        """Add or replace the sync line for ``(processor_id, stream_name)``.

        The sample rate is copied from the continuous stream of the same
        name.  When no such stream is registered the rate stays ``None``
        and a warning is logged.
        """
        sync = SyncLine(
            line=line,
            processor_id=processor_id,
            stream_name=stream_name,
            is_main=bool(is_main),
            is_barcode=bool(is_barcode),
        )

        stream = find_stream(continuous, stream_name) if continuous is not None else None
        if stream is None:
            logger.warning(
                "No continuous stream named %r; sync line %d has no sample rate",
                stream_name, line)
        else:
            sync.sample_rate = stream.sample_rate
            logger.info("Setting sync line %d to %s @ %.1f Hz",
                        line, stream_name, stream.sample_rate)

        if sync.is_main:
            previous = self.main(fallback=False)
            if previous is not None and previous.key != sync.key:
                logger.warning(
                    "Sync line %d on %r is flagged main but %r is already "
                    "main; the first registered main line is used",
                    line, stream_name, previous.stream_name)

        if sync.key in self._lines:
            logger.info("Found existing sync line for %r, overwriting", stream_name)
        self._lines.set(sync.key, sync)
        return sync

    def main(self, fallback=True) -> Optional[SyncLine]:
        """First line flagged ``is_main``; else the first registered line."""
        for sync in self._lines.values():
            if sync.is_main:
                return sync
        if fallback and len(self._lines):
            return self._lines.values()[0]
        return None

    def lines(self) -> List[SyncLine]:
        return self._lines.values()

    def get(self, processor_id, stream_name) -> Optional[SyncLine]:
        return self._lines.get((processor_id, stream_name))

    def __iter__(self):
        return iter(self._lines.values())

    def __len__(self):
        return len(self._lines)
