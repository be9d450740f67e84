'''
Historical band models.

A multiple's history is summarized as mean ± one sample standard
deviation. The current multiple's position in that band is the model's
signal, and mean multiple × current per-share basis is its fair value.

  PER: basis = trailing-twelve-month EPS
  PBR: basis = book value per share (price / current PBR)
  Dividend: fair value = latest full-year cash dividend / 5-year mean yield
'''

from collections.abc import Callable
from dataclasses import dataclass
import logging
import math
from typing import Any, Optional

import pandas as pd

from fairvalue.data.finmind import MarketDataBundle
from fairvalue.domain.errors import InsufficientData
from fairvalue.domain.types import ModelKey
from fairvalue.domain.types import ModelResult
from fairvalue.domain.types import Signal
from fairvalue.models.base import band_position
from fairvalue.models.base import CHEAP
from fairvalue.models.base import EXPENSIVE
from fairvalue.models.base import FAIR
from fairvalue.models.base import signal_for
from fairvalue.models.base import ValuationModel
from fairvalue.models.statements import annual_dividends
from fairvalue.models.statements import annual_from_quarters
from fairvalue.models.statements import average_price_by_year
from fairvalue.models.statements import ttm_eps

logger = logging.getLogger(__name__)

MIN_BAND_SAMPLES = 60

# (basis, diag) for the per-share basis of a multiple.
BasisFn = Callable[[MarketDataBundle, float], tuple[float, dict[str, Any]]]
# Diagnostics that do not depend on the multiple's history.
ContextFn = Callable[[MarketDataBundle], dict[str, Any]]


def positive_history(multiples: pd.DataFrame, column: str) -> pd.Series:
  '''Positive observations of one multiple, oldest first.'''
  if multiples.empty or column not in multiples.columns:
    return pd.Series(dtype=float)
  series = pd.to_numeric(multiples[column], errors='coerce')
  return series[(series > 0) & series.notna()]


def _ttm_eps_basis(bundle: MarketDataBundle,
                   current: float) -> tuple[float, dict[str, Any]]:
  eps = ttm_eps(bundle.financials)
  if eps is None:
    raise InsufficientData('近四季 EPS 數據不足，PER 模型不適用')
  return eps, {'ttm_eps': round(eps, 2)}


def _ttm_eps_context(bundle: MarketDataBundle) -> dict[str, Any]:
  eps = ttm_eps(bundle.financials)
  return {} if eps is None else {'ttm_eps': round(eps, 2)}


def _book_value_basis(bundle: MarketDataBundle,
                      current: float) -> tuple[float, dict[str, Any]]:
  if current <= 0:
    raise InsufficientData('目前股價淨值比無效，PBR 模型不適用')
  bvps = bundle.latest_price / current
  return bvps, {'book_value_per_share': round(bvps, 2)}


@dataclass
class BandMultipleModel(ValuationModel):
  '''
  Mean-reversion model over a daily multiple series.

  Attributes:
    key: Model key
    column: Column of the multiples frame holding the multiple
    basis: Per-share basis the mean multiple is applied to
    context: Diagnostics kept on the result even when the history is too
      short (a loss-making company has no positive PER history but still
      reports its EPS)
    min_samples: Minimum number of positive observations
  '''
  key: ModelKey
  column: str
  basis: BasisFn
  context: Optional[ContextFn] = None
  min_samples: int = MIN_BAND_SAMPLES

  def _unavailable(self, bundle: MarketDataBundle,
                   reason: str) -> ModelResult:
    context = self.context(bundle) if self.context else {}
    if not context:
      raise InsufficientData(reason)
    return ModelResult(key=self.key,
                       available=False,
                       diag={
                           'reason': reason,
                           **context
                       })

  def evaluate(self, bundle: MarketDataBundle) -> ModelResult:
    multiples = bundle.multiples
    if multiples.empty or self.column not in multiples.columns:
      return self._unavailable(bundle, f'缺少歷史 {self.column} 數據')

    series = pd.to_numeric(multiples[self.column], errors='coerce')
    history = positive_history(multiples, self.column)
    if len(history) < self.min_samples:
      return self._unavailable(
          bundle, f'歷史 {self.column} 數據不足（{len(history)} 筆，'
          f'需至少 {self.min_samples} 筆）')

    latest = series.iloc[-1]
    current = float(latest) if pd.notna(latest) and latest > 0 else float(
        history.iloc[-1])
    basis, diag = self.basis(bundle, current)
    if basis <= 0:
      return ModelResult(
          key=self.key,
          available=False,
          diag={
              'reason': f'{self.column} 基準值為負，模型不適用',
              **diag
          },
      )

    mean = float(history.mean())
    std = float(history.std(ddof=1)) if len(history) > 1 else 0.0
    position = band_position(current, mean, std)
    return ModelResult(
        key=self.key,
        available=True,
        fair_value=round(mean * basis, 2),
        signal=signal_for(position),
        diag={
            'position': position,
            'current': round(current, 2),
            'mean': round(mean, 2),
            'std': round(std, 2),
            'cheap_below': round(mean - std, 2),
            'expensive_above': round(mean + std, 2),
            **diag,
        },
    )


def per_model() -> BandMultipleModel:
  return BandMultipleModel(ModelKey.PER, 'PER', _ttm_eps_basis,
                           context=_ttm_eps_context)


def pbr_model() -> BandMultipleModel:
  return BandMultipleModel(ModelKey.PBR, 'PBR', _book_value_basis)


@dataclass
class DividendYieldModel(ValuationModel):
  '''
  Dividend yield band with payout safety and consistency.

  Attributes:
    min_years: Minimum years of dividend history
    payout_safe: Payout ratio at or below which the grade is SAFE
    payout_moderate: Payout ratio at or below which the grade is MODERATE
    aristocrat_years: Consecutive paying years required for aristocrat
    incomplete_ratio: A latest year below this share of the previous year
      is treated as not yet fully paid
  '''
  key = ModelKey.DIVIDEND
  min_years: int = 3
  payout_safe: float = 0.70
  payout_moderate: float = 0.90
  aristocrat_years: int = 10
  incomplete_ratio: float = 0.7

  def _latest_dividend(self, cash: pd.Series) -> float:
    if cash.empty:
      return 0.0
    latest = float(cash.iloc[-1])
    if len(cash) >= 2:
      previous = float(cash.iloc[-2])
      if previous > 0 and latest < previous * self.incomplete_ratio:
        return previous
    return latest

  def _payout(self, cash: pd.Series,
              financials: pd.DataFrame) -> tuple[Optional[float], str]:
    eps = annual_from_quarters(financials, 'EPS')
    eps_by_year = dict(zip(eps['year'], eps['value']))
    latest: tuple[Optional[float], str] = (None, 'N/A')
    for year, dividend in cash.items():
      # Dividends distribute the previous year's earnings.
      year_eps = eps_by_year.get(year - 1) or eps_by_year.get(year)
      if not year_eps or year_eps <= 0:
        continue
      ratio = dividend / year_eps
      if ratio <= self.payout_safe:
        grade = 'SAFE'
      elif ratio <= self.payout_moderate:
        grade = 'MODERATE'
      else:
        grade = 'WARNING'
      latest = (round(ratio * 100, 2), grade)
    return latest

  def _consistency(self, cash: pd.Series) -> tuple[int, bool]:
    paying = [int(year) for year, value in cash.items() if value > 0]
    consecutive = 0
    for i in range(len(paying) - 1, -1, -1):
      consecutive += 1
      if i > 0 and paying[i] - paying[i - 1] > 1:
        break

    paid = cash[cash > 0]
    growth = paid.pct_change().dropna().tail(5)
    is_growing = (len(growth) >= 3 and
                  (growth >= 0).sum() >= math.ceil(len(growth) * 0.8))
    return consecutive, bool(consecutive >= self.aristocrat_years and
                             is_growing)

  def evaluate(self, bundle: MarketDataBundle) -> ModelResult:
    annual = annual_dividends(bundle.dividends)
    if len(annual) < self.min_years:
      raise InsufficientData(
          f'股利數據不足（僅 {len(annual)} 年，需至少 {self.min_years} 年）')

    cash = annual['cash']
    avg_price = average_price_by_year(bundle.prices)
    yields = []
    for year, dividend in cash.items():
      if dividend <= 0:
        continue
      price = avg_price.get(year, avg_price.get(year - 1))
      if price is None or pd.isna(price) or price <= 0:
        continue
      yields.append(dividend / price)

    recent = pd.Series(yields[-5:], dtype=float)
    mean_yield = float(recent.mean()) if len(recent) else 0.0
    std_yield = float(recent.std(ddof=1)) if len(recent) > 1 else 0.0

    latest_dividend = self._latest_dividend(cash)
    price = bundle.latest_price
    current_yield = latest_dividend / price if price > 0 else 0.0

    if mean_yield == 0:
      position = 'N/A'
    elif current_yield > mean_yield + std_yield:
      position = CHEAP
    elif current_yield < mean_yield - std_yield:
      position = EXPENSIVE
    else:
      position = FAIR

    payout_ratio, payout_grade = self._payout(cash, bundle.financials)
    consecutive, is_aristocrat = self._consistency(cash)

    if position == CHEAP and payout_grade != 'WARNING':
      signal = Signal.UNDERVALUED
    elif position == EXPENSIVE or payout_grade == 'WARNING':
      signal = Signal.OVERVALUED
    else:
      signal = Signal.FAIR

    fair_value = (round(latest_dividend / mean_yield, 2)
                  if mean_yield > 0 else None)
    return ModelResult(
        key=self.key,
        available=fair_value is not None,
        fair_value=fair_value,
        signal=signal if fair_value is not None else Signal.NA,
        diag={
            'position': position,
            'current_yield': round(current_yield * 100, 2),
            'avg_yield_5y': round(mean_yield * 100, 2),
            'std_yield_5y': round(std_yield * 100, 2),
            'latest_dividend': round(latest_dividend, 2),
            'payout_ratio': payout_ratio,
            'payout_grade': payout_grade,
            'consecutive_years': consecutive,
            'is_aristocrat': is_aristocrat,
            **({} if fair_value is not None else {
                'reason': '無法計算歷史殖利率'
            }),
        },
    )
