"""
Pure DCF math engine.

Pure functions for a two-stage free-cash-flow DCF. No pandas, no I/O, just
numeric computations. All inputs must be prepared before calling these.
Invalid inputs yield nan instead of raising.

Key functions:
  growth_path: High-growth years followed by a linear decay
  compute_intrinsic_value: Main entry point, computes value per share
  compute_pv_explicit: PV of the explicit forecast period
  compute_terminal_value: Gordon growth terminal value
  terminal_ratio: Share of the terminal value in total PV (percent)
"""

from collections.abc import Sequence
from math import isfinite

NAN_RESULT = (float('nan'), float('nan'), float('nan'))


def growth_path(
    g0: float,
    g_mature: float,
    high_growth_years: int,
    decay_years: int,
) -> list[float]:
  """
  Yearly growth rates: g0 for the high-growth years, then a linear decay
  reaching g_mature in the last decay year.

  Args:
    g0: Initial growth rate
    g_mature: Growth rate at the end of the decay phase
    high_growth_years: Years held at g0
    decay_years: Years fading from g0 to g_mature

  Returns:
    List of high_growth_years + decay_years growth rates
  """
  path = [g0] * max(0, high_growth_years)
  for step in range(1, max(0, decay_years) + 1):
    path.append(g0 - (g0 - g_mature) * step / decay_years)
  return path


def compute_pv_explicit(
    fcf0: float,
    path: Sequence[float],
    discount_rate: float,
) -> tuple[float, float]:
  """
  Present value of the explicit forecast period.

  Args:
    fcf0: Base-year free cash flow (absolute)
    path: Yearly growth rates [g1, g2, ..., gN]
    discount_rate: Required return (r)

  Returns:
    Tuple of (pv_total, final_fcf)
  """
  pv = 0.0
  fcf = fcf0
  for t, g in enumerate(path, start=1):
    fcf *= (1.0 + g)
    pv += fcf / ((1.0 + discount_rate)**t)
  return pv, fcf


def compute_terminal_value(
    final_fcf: float,
    g_terminal: float,
    discount_rate: float,
    final_year: int,
) -> float:
  """
  Discounted terminal value using the Gordon growth model.

  Returns:
    Present value of the terminal value, nan if discount_rate <= g_terminal
  """
  if discount_rate <= g_terminal:
    return float('nan')

  tv = (final_fcf * (1.0 + g_terminal)) / (discount_rate - g_terminal)
  return tv / ((1.0 + discount_rate)**final_year)


def compute_intrinsic_value(
    fcf0: float,
    shares: float,
    path: Sequence[float],
    g_terminal: float,
    discount_rate: float,
) -> tuple[float, float, float]:
  """
  Value per share of a two-stage DCF.

  Args:
    fcf0: Base-year free cash flow (operating cash flow - capex)
    shares: Shares outstanding
    path: Yearly growth rates of the explicit period
    g_terminal: Perpetual terminal growth rate
    discount_rate: Required return (r)

  Returns:
    Tuple of (value_per_share, pv_explicit, pv_terminal), the last two as
    absolute amounts; all nan for invalid inputs
  """
  if not all(isfinite(x) for x in (fcf0, shares, g_terminal, discount_rate)):
    return NAN_RESULT
  if not path or not all(isfinite(g) for g in path):
    return NAN_RESULT
  if discount_rate <= g_terminal or shares <= 0:
    return NAN_RESULT

  pv_explicit, final_fcf = compute_pv_explicit(fcf0, path, discount_rate)
  pv_terminal = compute_terminal_value(final_fcf, g_terminal, discount_rate,
                                       len(path))
  if not isfinite(pv_terminal):
    return NAN_RESULT

  return (pv_explicit + pv_terminal) / shares, pv_explicit, pv_terminal


def terminal_ratio(pv_explicit: float, pv_terminal: float) -> float:
  """pv_terminal / (pv_explicit + pv_terminal) * 100, 0 when total <= 0."""
  total = pv_explicit + pv_terminal
  if not isfinite(total) or total <= 0:
    return 0.0
  return pv_terminal / total * 100
