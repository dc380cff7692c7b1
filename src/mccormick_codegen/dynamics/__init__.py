"""
Dynamics Module: McCormick relaxations of ODE right-hand sides.
"""

from .system import (
    ODESystem,
    ExpandedSystem,
    expand,
)

__all__ = [
    'ODESystem',
    'ExpandedSystem',
    'expand',
]
