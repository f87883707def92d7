"""In-memory data model populated by format loaders.

Loaders fill a :class:`Registry` of :class:`ContinuousStream` objects and a
:class:`Registry` of :class:`TtlEvents` sources.  The synchronization core
only reads these, except for ``ContinuousStream.global_timestamps`` which
the aligner overwrites.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Tuple

import numpy as np


@dataclass
class TtlEvents:
    """Digital transitions recorded by one processor, ordered by sample.

    Column arrays share one length.  ``state`` is True for a rising edge
    (line goes high) and False for a falling edge.
    """

    line: np.ndarray
    state: np.ndarray
    sample_number: np.ndarray
    timestamp: np.ndarray
    processor_id: Any = None
    stream_name: Optional[str] = None

    def __post_init__(self):
        self.line = np.asarray(self.line, dtype=np.int64)
        self.state = np.asarray(self.state, dtype=bool)
        self.sample_number = np.asarray(self.sample_number, dtype=np.int64)
        self.timestamp = np.asarray(self.timestamp, dtype=np.float64)
        n = len(self.sample_number)
        if not (len(self.line) == len(self.state) == len(self.timestamp) == n):
            raise ValueError("TtlEvents columns must have the same length")
        if n > 1 and np.any(np.diff(self.sample_number) < 0):
            raise ValueError("TtlEvents must be ordered by sample_number")

    def __len__(self):
        return len(self.sample_number)

    def _subset(self, mask) -> "TtlEvents":
        return TtlEvents(
            line=self.line[mask],
            state=self.state[mask],
            sample_number=self.sample_number[mask],
            timestamp=self.timestamp[mask],
            processor_id=self.processor_id,
            stream_name=self.stream_name,
        )

    def for_line(self, line: int) -> "TtlEvents":
        """Events recorded on a single digital *line*."""
        return self._subset(self.line == line)

    def rising(self) -> np.ndarray:
        """Sample numbers of the rising (``state=True``) events."""
        return self.sample_number[self.state]

    @property
    def lines(self) -> np.ndarray:
        return np.unique(self.line)


@dataclass
class ContinuousStream:
    """One continuous data stream and its (lazily computed) global clock."""

    stream_name: str
    sample_rate: float
    sample_numbers: np.ndarray
    samples: Any = None
    processor_id: Any = None
    global_timestamps: Optional[np.ndarray] = field(default=None, repr=False)

    def __post_init__(self):
        self.sample_numbers = np.asarray(self.sample_numbers, dtype=np.int64)
        self.sample_rate = float(self.sample_rate)
        if self.sample_rate <= 0:
            raise ValueError(
                f"sample_rate must be positive, got {self.sample_rate}")

    def __len__(self):
        return len(self.sample_numbers)

    def set_global_timestamps(self, values) -> None:
        values = np.asarray(values, dtype=np.float64)
        if values.shape != self.sample_numbers.shape:
            raise ValueError(
                f"global timestamps for {self.stream_name!r} have shape "
                f"{values.shape}, expected {self.sample_numbers.shape}")
        self.global_timestamps = values


class Registry:
    """Ordered name -> object map.

    Iteration follows registration order.  Setting an existing key replaces
    the value in its original position.
    """

    def __init__(self, items=None):
        self._keys: List[Any] = []
        self._values: Dict[Any, Any] = {}
        for key, value in (items or ()):
            self.set(key, value)

    def get(self, key, default=None):
        return self._values.get(key, default)

    def set(self, key, value) -> None:
        if key not in self._values:
            self._keys.append(key)
        self._values[key] = value

    def remove(self, key) -> None:
        del self._values[key]
        self._keys.remove(key)

    def keys(self) -> List[Any]:
        return list(self._keys)

    def values(self) -> List[Any]:
        return [self._values[k] for k in self._keys]

    def items(self) -> List[Tuple[Any, Any]]:
        return [(k, self._values[k]) for k in self._keys]

    def __getitem__(self, key):
        return self._values[key]

    def __setitem__(self, key, value):
        self.set(key, value)

    def __contains__(self, key):
        return key in self._values

    def __iter__(self) -> Iterator[Any]:
        return iter(list(self._keys))

    def __len__(self):
        return len(self._keys)

    def __repr__(self):
        return f"Registry({self._keys!r})"


def find_stream(continuous: Registry, stream_name: str) -> Optional[ContinuousStream]:
    """First continuous stream whose ``stream_name`` matches, or None.

    Registry keys and stream names usually coincide, but loaders are free
    to key streams differently, so the lookup goes through ``stream_name``.
    """
    for stream in continuous.values():
        if stream.stream_name == stream_name:
            return stream
    return None


def find_events(ttl_events: Registry, stream_name: str,
                processor_id=None) -> Optional[TtlEvents]:
    """Event source recorded alongside *stream_name*.

    A source registered under the stream's name wins; otherwise the first
    source whose ``stream_name`` (and ``processor_id``, when given) match.
    """
    events = ttl_events.get(stream_name)
    if events is not None:
        return events
    for events in ttl_events.values():
        if events.stream_name != stream_name:
            continue
        if processor_id is None or events.processor_id == processor_id:
            return events
    return None
