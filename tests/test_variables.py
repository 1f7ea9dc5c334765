import pytest

from hepfit.models import ParameterSnapshot, RealVar
from hepfit.models.variables import as_var, unique_vars


class TestRealVar:
    def test_value_is_clipped(self):
        var = RealVar("a", 5.0, 0.0, 1.0)
        assert var.value == 1.0
        var.value = -3.0
        assert var.value == 0.0

    def test_without_limits_is_constant(self):
        var = RealVar("a", 5.0)
        assert var.constant
        assert not var.has_range
        assert var.value == 5.0

    def test_floating_by_default_with_limits(self):
        assert not RealVar("a", 0.5, 0.0, 1.0).constant

    @pytest.mark.parametrize("lo,hi", [(0.0, None), (None, 1.0), (1.0, 1.0), (2.0, 1.0)])
    def test_invalid_limits(self, lo, hi):
        with pytest.raises(ValueError):
            RealVar("a", 0.0, lo, hi)

    def test_set_range_clips(self):
        var = RealVar("a", 0.9, 0.0, 1.0)
        var.set_range(0.0, 0.5)
        assert var.range == (0.0, 0.5)
        assert var.value == 0.5

    def test_at_limit(self):
        var = RealVar("a", 0.0, 0.0, 1.0)
        assert var.at_limit()
        var.value = 0.5
        assert not var.at_limit()

    def test_label(self):
        assert RealVar("m", 1.0, 0.0, 2.0, unit="GeV", title="mass").label == "mass [GeV]"
        assert RealVar("m", 1.0, 0.0, 2.0).label == "m"


def test_as_var_wraps_numbers():
    var = as_var(2.5, "c")
    assert var.name == "c"
    assert var.constant
    existing = RealVar("d", 1.0, 0.0, 2.0)
    assert as_var(existing, "ignored") is existing


def test_unique_vars_by_identity():
    a = RealVar("a", 1.0, 0.0, 2.0)
    b = RealVar("a", 1.0, 0.0, 2.0)
    assert unique_vars([a, b, a]) == [a, b]


def test_snapshot_restores_values_and_errors():
    a = RealVar("a", 1.0, 0.0, 2.0)
    a.error = 0.1
    snapshot = ParameterSnapshot([a])
    a.value, a.error = 1.7, 0.3
    a.set_constant()
    snapshot.restore()
    assert (a.value, a.error, a.constant) == (1.0, 0.1, False)
