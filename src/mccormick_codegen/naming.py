"""
Bound Variable Naming

Each scalar symbol `s` is tracked through four companion names:
    s_lo  natural interval lower bound
    s_hi  natural interval upper bound
    s_cv  convex underestimator
    s_cc  concave overestimator
"""

from dataclasses import dataclass
from typing import Iterable, Iterator, Set, Tuple

from .errors import NamingCollisionError


SUFFIXES: Tuple[str, ...] = ("_lo", "_hi", "_cv", "_cc")

# Positional calling convention of generated evaluators
CALL_ORDER: Tuple[str, ...] = ("cc", "cv", "hi", "lo")


@dataclass(frozen=True)
class BoundedSymbolSet:
    """The four companion names derived from one base symbol."""
    base: str
    lo: str
    hi: str
    cv: str
    cc: str

    def names(self) -> Tuple[str, str, str, str]:
        """Names in (lo, hi, cv, cc) order."""
        return (self.lo, self.hi, self.cv, self.cc)

    def call_order(self) -> Tuple[str, str, str, str]:
        """Names in evaluator argument order (cc, cv, hi, lo)."""
        return tuple(getattr(self, field) for field in CALL_ORDER)

    def __iter__(self) -> Iterator[str]:
        return iter(self.names())


def check_name(name: str) -> None:
    """Raise NamingCollisionError if `name` ends with a reserved suffix."""
    for suffix in SUFFIXES:
        if name.endswith(suffix):
            raise NamingCollisionError(name, suffix)


def derive_bounds(name: str) -> BoundedSymbolSet:
    """
    Derive the companion names of a base symbol.

    Args:
        name: Base symbol name

    Returns:
        BoundedSymbolSet with `<name>_lo`, `<name>_hi`, `<name>_cv`, `<name>_cc`

    Raises:
        NamingCollisionError: if `name` itself ends with one of the suffixes
    """
    check_name(name)
    return BoundedSymbolSet(
        base=name,
        lo=name + "_lo",
        hi=name + "_hi",
        cv=name + "_cv",
        cc=name + "_cc",
    )


class Namer:
    """
    Allocates bound sets for user symbols and fresh auxiliary bases.

    Auxiliary bases are `<prefix>1`, `<prefix>2`, ... skipping any base
    reserved by a user symbol, so the two name spaces never collide.
    """

    def __init__(self, reserved: Iterable[str] = (), aux_prefix: str = "aux"):
        self.aux_prefix = aux_prefix
        self._reserved: Set[str] = set(reserved)
        self._aux_count = 0
        self._allocated = 0

    def symbol(self, name: str) -> BoundedSymbolSet:
        bset = derive_bounds(name)
        self._reserved.add(name)
        return bset

    def fresh(self) -> BoundedSymbolSet:
        while True:
            self._aux_count += 1
            base = f"{self.aux_prefix}{self._aux_count}"
            if base not in self._reserved:
                break
        self._reserved.add(base)
        self._allocated += 1
        return derive_bounds(base)

    @property
    def aux_count(self) -> int:
        """Number of auxiliary bases handed out so far."""
        return self._allocated
