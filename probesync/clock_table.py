from dataclasses import dataclass
from typing import Optional

import numpy as np


@dataclass
class ClockTable:
    """Sparse mapping between an auxiliary clock (sample numbers of one
    processor) and the main clock (sample numbers of the main processor).

    Both arrays must be float64, monotonically increasing, and the same length
    (minimum 2 entries).  Interpolation is done via ``np.interp``; values
    outside the table map to NaN.
    """

    source: np.ndarray
    reference: np.ndarray
    source_name: Optional[str] = None
    reference_name: Optional[str] = None

    def __post_init__(self):
        self.source = np.asarray(self.source, dtype=np.float64)
        self.reference = np.asarray(self.reference, dtype=np.float64)
        if len(self.source) < 2:
            raise ValueError("ClockTable requires at least 2 entries")
        if len(self.source) != len(self.reference):
            raise ValueError("source and reference must have the same length")
        if not np.all(np.diff(self.source) > 0):
            raise ValueError("source must be monotonically increasing")
        if not np.all(np.diff(self.reference) > 0):
            raise ValueError("reference must be monotonically increasing")

    def __len__(self):
        return len(self.source)

    @property
    def scaling(self) -> float:
        """Average main-clock samples per auxiliary sample."""
        return float((self.reference[-1] - self.reference[0])
                     / (self.source[-1] - self.source[0]))

    def source_to_reference(self, values) -> np.ndarray:
        """Convert auxiliary sample positions to main-clock sample positions.

        Positions before the first or after the last entry give NaN.
        """
        values_arr = np.asarray(values, dtype=np.float64)
        scalar = values_arr.ndim == 0
        result = np.interp(np.atleast_1d(values_arr), self.source, self.reference,
                           left=np.nan, right=np.nan)
        return result[0] if scalar else result

    def reference_to_source(self, values) -> np.ndarray:
        """Inverse of :meth:`source_to_reference`."""
        values_arr = np.asarray(values, dtype=np.float64)
        scalar = values_arr.ndim == 0
        result = np.interp(np.atleast_1d(values_arr), self.reference, self.source,
                           left=np.nan, right=np.nan)
        return result[0] if scalar else result

    def __repr__(self):
        names = ""
        if self.source_name or self.reference_name:
            names = f" ({self.source_name} -> {self.reference_name})"
        return (
            f"ClockTable: {len(self.source)} entries{names}, "
            f"scaling={self.scaling:.9f}\n"
            f"  source=[{self.source[0]:.1f}..{self.source[-1]:.1f}], "
            f"reference=[{self.reference[0]:.1f}..{self.reference[-1]:.1f}]"
        )
