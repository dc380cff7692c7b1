"""
Tests for Bound Variable Naming
"""

import pytest
from mccormick_codegen.errors import NamingCollisionError
from mccormick_codegen.naming import CALL_ORDER, SUFFIXES, Namer, check_name, derive_bounds


class TestDeriveBounds:
    """Companion names of a base symbol."""

    def test_names(self):
        bset = derive_bounds("x")
        assert bset.base == "x"
        assert bset.names() == ("x_lo", "x_hi", "x_cv", "x_cc")
        assert list(bset) == list(bset.names())

    def test_call_order(self):
        assert CALL_ORDER == ("cc", "cv", "hi", "lo")
        assert derive_bounds("y").call_order() == ("y_cc", "y_cv", "y_hi", "y_lo")

    @pytest.mark.parametrize("suffix", SUFFIXES)
    def test_reserved_suffix(self, suffix):
        with pytest.raises(NamingCollisionError) as info:
            derive_bounds("x" + suffix)
        assert info.value.name == "x" + suffix
        assert info.value.suffix == suffix

    def test_suffix_inside_name_allowed(self):
        check_name("x_lower")
        check_name("lo")
        assert derive_bounds("x_lower").lo == "x_lower_lo"

    def test_frozen(self):
        bset = derive_bounds("x")
        with pytest.raises(AttributeError):
            bset.lo = "z"


class TestNamer:
    """Fresh auxiliary bases."""

    def test_sequence(self):
        namer = Namer()
        assert [namer.fresh().base for _ in range(3)] == ["aux1", "aux2", "aux3"]
        assert namer.aux_count == 3

    def test_skips_reserved(self):
        namer = Namer(reserved=["aux1", "aux3"])
        assert [namer.fresh().base for _ in range(2)] == ["aux2", "aux4"]
        assert namer.aux_count == 2

    def test_symbol_reserves(self):
        namer = Namer()
        assert namer.symbol("aux1").cv == "aux1_cv"
        assert namer.fresh().base == "aux2"

    def test_prefix(self):
        namer = Namer(aux_prefix="w")
        assert namer.fresh().names() == ("w1_lo", "w1_hi", "w1_cv", "w1_cc")

    def test_symbol_checks_suffix(self):
        with pytest.raises(NamingCollisionError):
            Namer().symbol("z_cc")


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
