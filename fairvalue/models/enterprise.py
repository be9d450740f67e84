'''
Statement-based multiple bands: EV/EBITDA and price/sales.

Neither multiple has a daily series from the provider, so the band is
built from the last five full years of statements at the current market
value. Statement amounts are scaled to NTD with the same unit the share
count was inferred in.

  EV/EBITDA: fair value = (mean EV/EBITDA × EBITDA - debt + cash) / shares
  PSR:       fair value = mean PSR × revenue per share
'''

from dataclasses import dataclass
from math import isfinite
from typing import Optional

import pandas as pd

from fairvalue.data.finmind import MarketDataBundle
from fairvalue.domain.errors import InsufficientData
from fairvalue.domain.types import ModelKey
from fairvalue.domain.types import ModelResult
from fairvalue.models.base import band_position
from fairvalue.models.base import signal_for
from fairvalue.models.base import ValuationModel
from fairvalue.models.statements import annual_from_quarters
from fairvalue.models.statements import annual_from_ytd
from fairvalue.models.statements import by_type
from fairvalue.models.statements import estimate_shares

LIABILITY_TYPES = ('TotalLiabilities', 'Liabilities',
                   'TotalNonCurrentLiabilities', 'NonCurrentLiabilities')
CASH_TYPES = ('CashAndCashEquivalents', 'Cash',
              'CashCashEquivalentsAndShortTermInvestments')
DEPRECIATION_TYPES = ('Depreciation', 'DepreciationExpense',
                      'DepreciationAndAmortization',
                      'DepreciationAmortisation')

HISTORY_YEARS = 5
MIN_RATIOS = 3


def _shares(bundle: MarketDataBundle, label: str) -> tuple[float, int]:
  '''Shares outstanding and the NTD multiplier of statement amounts.'''
  estimate = estimate_shares(bundle.financials)
  if estimate is None:
    raise InsufficientData(f'無法估算流通股數，{label} 模型不適用')
  shares, method = estimate
  return shares, 1000 if 'thousands' in method else 1


def _band(ratios: list[float]) -> tuple[float, float]:
  series = pd.Series(ratios, dtype=float)
  std = float(series.std(ddof=1)) if len(series) > 1 else 0.0
  return float(series.mean()), std


def balance_value(balance_sheet: pd.DataFrame,
                  types: tuple[str, ...],
                  year: Optional[int] = None) -> Optional[float]:
  '''
  Latest balance-sheet value of the first type present.

  Args:
    balance_sheet: Long-format balance sheet
    types: Candidate type names in order of preference
    year: Restrict to rows of this calendar year

  Returns:
    Value, or None when no candidate has a row
  '''
  for type_name in types:
    rows = by_type(balance_sheet, type_name)
    if not rows.empty and year is not None:
      rows = rows[rows['date'].dt.year == year]
    if not rows.empty:
      return float(rows['value'].iloc[0])
  return None


@dataclass
class EVEBITDAModel(ValuationModel):
  '''
  EV/EBITDA band over recent full years.

  Attributes:
    ebitda_proxy: EBITDA / operating income when depreciation is missing
    max_ratio: Ratios at or above this are discarded as outliers
  '''
  key = ModelKey.EV_EBITDA
  ebitda_proxy: float = 1.35
  max_ratio: float = 200.0

  def _ebitda(self, bundle: MarketDataBundle,
              unit: int) -> list[tuple[int, float]]:
    '''Positive full-year EBITDA in NTD, newest first.'''
    op_income = annual_from_quarters(bundle.financials, 'OperatingIncome')
    if op_income.empty:
      raise InsufficientData('無營業利益數據，EV/EBITDA 模型不適用')

    dep_by_year = {}
    for type_name in DEPRECIATION_TYPES:
      depreciation = annual_from_ytd(bundle.cash_flows, type_name)
      if not depreciation.empty:
        dep_by_year = dict(
            zip(depreciation['year'], depreciation['value'].abs()))
        break

    ebitda = []
    for year, value, quarters in op_income.itertuples(index=False):
      if quarters < 4:
        continue
      if year in dep_by_year:
        amount = value + dep_by_year[year]
      else:
        amount = value * self.ebitda_proxy
      if amount > 0:
        ebitda.append((int(year), float(amount) * unit))
    return ebitda

  def _usable(self, ratio: float) -> bool:
    return isfinite(ratio) and 0 < ratio < self.max_ratio

  def evaluate(self, bundle: MarketDataBundle) -> ModelResult:
    shares, unit = _shares(bundle, 'EV/EBITDA')
    ebitda = self._ebitda(bundle, unit)
    if not ebitda:
      raise InsufficientData('EBITDA 為負或數據不足')

    debt = balance_value(bundle.balance_sheet, LIABILITY_TYPES)
    if debt is None:
      raise InsufficientData('無法取得負債數據')
    debt *= unit
    cash = (balance_value(bundle.balance_sheet, CASH_TYPES) or 0.0) * unit

    market_cap = bundle.latest_price * shares
    ev = market_cap + debt - cash
    current_ebitda = ebitda[0][1]
    current = ev / current_ebitda

    # Past years use the current market value.
    ratios = []
    for year, amount in ebitda[:HISTORY_YEARS]:
      year_debt = balance_value(bundle.balance_sheet, LIABILITY_TYPES, year)
      if year_debt is None:
        continue
      year_cash = balance_value(bundle.balance_sheet, CASH_TYPES, year) or 0.0
      ratio = (market_cap + (year_debt - year_cash) * unit) / amount
      if self._usable(ratio):
        ratios.append(ratio)
    if self._usable(current):
      ratios.append(current)
    if len(ratios) < MIN_RATIOS:
      raise InsufficientData(f'歷史 EV/EBITDA 數據不足（{len(ratios)} 筆，'
                             f'需至少 {MIN_RATIOS} 筆）')

    mean, std = _band(ratios)
    position = band_position(current, mean, std)
    fair_value = (mean * current_ebitda - debt + cash) / shares
    diag = {
        'position': position,
        'current': round(current, 2),
        'mean': round(mean, 2),
        'std': round(std, 2),
        'ebitda': round(current_ebitda, 2),
        'ev': round(ev, 2),
        'total_debt': round(debt, 2),
        'cash': round(cash, 2),
    }
    if fair_value <= 0:
      return ModelResult(key=self.key,
                         available=False,
                         diag={
                             'reason': '淨負債高於合理企業價值，模型不適用',
                             **diag
                         })
    return ModelResult(key=self.key,
                       available=True,
                       fair_value=round(fair_value, 2),
                       signal=signal_for(position),
                       diag=diag)


@dataclass
class PSRModel(ValuationModel):
  '''
  Price/sales band; applies to companies without positive earnings.

  Attributes:
    min_years: Minimum complete years of revenue
  '''
  key = ModelKey.PSR
  min_years: int = MIN_RATIOS

  def evaluate(self, bundle: MarketDataBundle) -> ModelResult:
    shares, unit = _shares(bundle, 'PSR')
    revenue = annual_from_quarters(bundle.financials, 'Revenue')
    revenue = revenue[revenue['quarters'] == 4]
    if len(revenue) < self.min_years:
      raise InsufficientData(f'完整年度營收數據不足（{len(revenue)} 年，'
                             f'需至少 {self.min_years} 年）')

    per_share = [float(v) * unit / shares for v in revenue['value']]
    rps = per_share[0]
    if not isfinite(rps) or rps <= 0:
      raise InsufficientData('每股營收 (RPS) 計算異常，PSR 模型不適用')

    price = bundle.latest_price
    ratios = [
        price / value
        for value in per_share[:HISTORY_YEARS]
        if value > 0 and isfinite(price / value)
    ]
    if len(ratios) < self.min_years:
      raise InsufficientData(f'有效 PSR 數據不足（{len(ratios)} 年，'
                             f'需至少 {self.min_years} 年）')

    mean, std = _band(ratios)
    current = price / rps
    position = band_position(current, mean, std)
    return ModelResult(
        key=self.key,
        available=True,
        fair_value=round(mean * rps, 2),
        signal=signal_for(position),
        diag={
            'position': position,
            'current': round(current, 2),
            'mean': round(mean, 2),
            'std': round(std, 2),
            'rps': round(rps, 2),
            'revenue': round(float(revenue['value'].iloc[0]) * unit, 2),
        },
    )
