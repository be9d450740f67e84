'''
CapEx-forward earnings model.

Capital expenditure today is capacity tomorrow and revenue after that.
Smoothed CapEx growth is passed through to revenue (transmission ratio)
and to earnings (operating leverage); forward EPS times the historical
mean PER is the fair value.

  transmission = revenue CAGR / CapEx CAGR          clipped to [0.2, 1.5]
  revenue g    = recent CapEx growth × transmission  clipped to [0, 0.4]
  leverage     = operating income CAGR / revenue CAGR clipped to [0.5, 2.5]
  fair value   = TTM EPS × (1 + revenue g × leverage) × mean PER
'''

from collections.abc import Sequence
from dataclasses import dataclass
import logging
from typing import Any, Optional

import pandas as pd

from fairvalue.data.finmind import MarketDataBundle
from fairvalue.domain.errors import InsufficientData
from fairvalue.domain.types import ModelKey
from fairvalue.domain.types import ModelResult
from fairvalue.domain.types import Signal
from fairvalue.models.bands import MIN_BAND_SAMPLES
from fairvalue.models.bands import positive_history
from fairvalue.models.base import ValuationModel
from fairvalue.models.statements import annual_from_quarters
from fairvalue.models.statements import annual_from_ytd
from fairvalue.models.statements import cagr
from fairvalue.models.statements import ttm_eps

logger = logging.getLogger(__name__)

CAPEX = 'PropertyAndPlantAndEquipment'
MAX_CAGR_YEARS = 4


def _clip(value: float, low: float, high: float) -> float:
  return max(low, min(high, value))


def _recent_cagr(values: Sequence[float]) -> Optional[float]:
  '''CAGR over at most MAX_CAGR_YEARS of newest-first values.'''
  if len(values) < 2:
    return None
  years = min(len(values) - 1, MAX_CAGR_YEARS)
  return cagr(list(values[:years + 1]), years)


def _full_years(financials: pd.DataFrame, type_name: str) -> pd.DataFrame:
  annual = annual_from_quarters(financials, type_name)
  return annual[annual['quarters'] == 4].reset_index(drop=True)


@dataclass
class CapExModel(ValuationModel):
  '''
  Forward-PER valuation driven by capital expenditure growth.

  Attributes:
    min_years: Minimum complete years of CapEx
    default_pe: PER used when the PER history is too short
    high_intensity: CapEx / revenue above which confidence is HIGH
    low_intensity: CapEx / revenue below which confidence is LOW
  '''
  key = ModelKey.CAPEX
  min_years: int = 4
  default_pe: float = 12.0
  high_intensity: float = 0.15
  low_intensity: float = 0.05

  def _mean_pe(self, bundle: MarketDataBundle) -> tuple[float, str]:
    history = positive_history(bundle.multiples, 'PER')
    if len(history) >= MIN_BAND_SAMPLES:
      mean = float(history.mean())
      return mean, f'歷史平均 PER（{round(mean, 2)}x）'
    return self.default_pe, f'預設 PER（{self.default_pe:g}x，PER 歷史不足）'

  def _confidence(self, intensity: float) -> str:
    if intensity > self.high_intensity:
      return 'HIGH'
    if intensity >= self.low_intensity:
      return 'MEDIUM'
    return 'LOW'

  def evaluate(self, bundle: MarketDataBundle) -> ModelResult:
    capex = annual_from_ytd(bundle.cash_flows, CAPEX)
    capex = capex[capex['complete']].reset_index(drop=True)
    spend = [abs(float(v)) for v in capex['value']]
    if len(spend) < self.min_years:
      raise InsufficientData(f'CapEx 年度數據不足（僅 {len(spend)} 年，'
                             f'需至少 {self.min_years} 年）')

    # Two-year rolling mean, newest first.
    smoothed = [(spend[i] + spend[i + 1]) / 2 for i in range(len(spend) - 1)]
    capex_cagr = _recent_cagr(smoothed)
    if capex_cagr is None:
      raise InsufficientData('CapEx CAGR 無法計算（數值異常）')
    capex_cagr = _clip(capex_cagr, -0.20, 0.50)
    if smoothed[1] == 0:
      raise InsufficientData('CapEx 基期為零，無法計算成長率')
    recent_growth = smoothed[0] / smoothed[1] - 1

    revenue = _full_years(bundle.financials, 'Revenue')
    revenue_cagr = _recent_cagr(list(revenue['value']))
    if revenue_cagr is not None and abs(capex_cagr) > 0.01:
      transmission = _clip(revenue_cagr / capex_cagr, 0.2, 1.5)
    else:
      transmission = 0.5
    revenue_growth = _clip(recent_growth * transmission, 0.0, 0.40)

    op_income = _full_years(bundle.financials, 'OperatingIncome')
    op_cagr = _recent_cagr(list(op_income['value']))
    if (op_cagr is not None and revenue_cagr is not None and
        revenue_cagr > 0.01):
      leverage = _clip(op_cagr / revenue_cagr, 0.5, 2.5)
    else:
      leverage = 1.0
    earnings_growth = revenue_growth * leverage

    revenue_by_year = dict(zip(revenue['year'], revenue['value']))
    ratios = [
        amount / revenue_by_year[year]
        for year, amount in zip(capex['year'], spend)
        if revenue_by_year.get(year, 0) > 0
    ]
    intensity = sum(ratios) / len(ratios) if ratios else 0.0

    diag: dict[str, Any] = {
        'capex_cagr': round(capex_cagr * 100, 2),
        'recent_capex_growth': round(recent_growth * 100, 2),
        'capex_intensity': round(intensity * 100, 2),
        'sector_confidence': self._confidence(intensity),
        'transmission_ratio': round(transmission, 2),
        'operating_leverage': round(leverage, 2),
        'forward_revenue_growth': round(revenue_growth * 100, 2),
        'forward_earnings_growth': round(earnings_growth * 100, 2),
    }

    eps = ttm_eps(bundle.financials)
    if eps is not None:
      diag['ttm_eps'] = round(eps, 2)
    if eps is None or eps <= 0:
      return ModelResult(key=self.key,
                         available=False,
                         diag={
                             'reason': 'EPS 為負或數據不足，CapEx 模型不適用',
                             **diag
                         })

    forward_eps = eps * (1 + earnings_growth)
    pe, pe_source = self._mean_pe(bundle)
    fair_value = round(forward_eps * pe, 2)
    price = bundle.latest_price
    upside = (fair_value - price) / price * 100 if price > 0 else 0.0
    if upside > 20:
      signal = Signal.UNDERVALUED
    elif upside < -10:
      signal = Signal.OVERVALUED
    else:
      signal = Signal.FAIR

    logger.debug('%s: CapEx forward EPS %.2f × PER %.2f', bundle.ticker,
                 forward_eps, pe)
    return ModelResult(
        key=self.key,
        available=True,
        fair_value=fair_value,
        signal=signal,
        diag={
            **diag,
            'forward_eps': round(forward_eps, 2),
            'avg_pe': round(pe, 2),
            'pe_source': pe_source,
        },
    )
