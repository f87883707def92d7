import numpy as np
import pytest

from probesync.clock_table import ClockTable


class TestConstruction:
    def test_basic(self):
        ct = ClockTable(
            source=np.array([0.0, 30000.0, 60000.0]),
            reference=np.array([1000.0, 31003.0, 61006.0]),
        )
        assert len(ct) == 3
        assert ct.source.dtype == np.float64
        assert ct.source_name is None

    def test_scaling(self):
        ct = ClockTable(source=[0, 1000], reference=[500, 2500])
        assert ct.scaling == 2.0

    def test_repr(self):
        ct = ClockTable(
            source=np.array([0.0, 30000.0]),
            reference=np.array([1000.0, 31000.0]),
            source_name="ProbeB-AP",
            reference_name="ProbeA-AP",
        )
        r = repr(ct)
        assert "2 entries" in r
        assert "ProbeB-AP -> ProbeA-AP" in r
        assert "source=" in r
        assert "reference=" in r


class TestValidation:
    def test_too_few_entries(self):
        with pytest.raises(ValueError, match="at least 2"):
            ClockTable(source=np.array([0.0]), reference=np.array([1000.0]))

    def test_length_mismatch(self):
        with pytest.raises(ValueError, match="same length"):
            ClockTable(
                source=np.array([0.0, 1.0, 2.0]),
                reference=np.array([100.0, 101.0]),
            )

    def test_source_not_monotonic(self):
        with pytest.raises(ValueError, match="source.*monotonically"):
            ClockTable(
                source=np.array([0.0, 2.0, 1.0]),
                reference=np.array([100.0, 101.0, 102.0]),
            )

    def test_reference_not_monotonic(self):
        with pytest.raises(ValueError, match="reference.*monotonically"):
            ClockTable(
                source=np.array([0.0, 1.0, 2.0]),
                reference=np.array([100.0, 102.0, 101.0]),
            )


class TestInterpolation:
    @pytest.fixture
    def ct(self):
        return ClockTable(
            source=np.array([0.0, 30000.0, 60000.0]),
            reference=np.array([1000.0, 31000.0, 61003.0]),
        )

    def test_source_to_reference_exact(self, ct):
        result = ct.source_to_reference(np.array([0.0, 30000.0, 60000.0]))
        np.testing.assert_allclose(result, [1000.0, 31000.0, 61003.0])

    def test_source_to_reference_interpolated(self, ct):
        result = ct.source_to_reference(np.array([15000.0, 45000.0]))
        np.testing.assert_allclose(result, [16000.0, 46001.5])

    def test_reference_to_source(self, ct):
        result = ct.reference_to_source(np.array([16000.0, 61003.0]))
        np.testing.assert_allclose(result, [15000.0, 60000.0])

    def test_outside_is_nan(self, ct):
        result = ct.source_to_reference(np.array([-1.0, 0.0, 60000.0, 60001.0]))
        assert np.isnan(result[0])
        assert np.isnan(result[-1])
        np.testing.assert_allclose(result[1:3], [1000.0, 61003.0])

    def test_scalar_input(self, ct):
        result = ct.source_to_reference(15000.0)
        assert isinstance(result, (float, np.floating))
        np.testing.assert_allclose(result, 16000.0)

    def test_integer_input(self, ct):
        result = ct.source_to_reference(np.array([30000], dtype=np.int64))
        np.testing.assert_allclose(result, [31000.0])
