'''DCF calculation engine with pure math functions.'''

from fairvalue.engine.dcf import (
    compute_intrinsic_value,
    compute_pv_explicit,
    compute_terminal_value,
    growth_path,
    terminal_ratio,
)

__all__ = [
    'compute_intrinsic_value',
    'compute_pv_explicit',
    'compute_terminal_value',
    'growth_path',
    'terminal_ratio',
]
