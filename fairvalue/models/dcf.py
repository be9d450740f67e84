'''
Two-stage free-cash-flow DCF model.

  FCF base:  operating cash flow - capex of the latest full year
             (NOPAT - capex when there is no cash-flow statement;
             5-year average for cyclical sectors)
  Growth:    70% revenue CAGR + 30% EPS CAGR, clipped per sector
  Path:      high-growth years at g0, then linear decay to mature growth
  Terminal:  Gordon growth at terminal_growth
'''

from dataclasses import dataclass
from dataclasses import field
import logging
from math import isfinite
from typing import Optional

from fairvalue.config import SectorConfig
from fairvalue.data.finmind import MarketDataBundle
from fairvalue.domain.errors import InsufficientData
from fairvalue.domain.types import ModelKey
from fairvalue.domain.types import ModelResult
from fairvalue.domain.types import SectorTag
from fairvalue.domain.types import Signal
from fairvalue.engine.dcf import compute_intrinsic_value
from fairvalue.engine.dcf import growth_path
from fairvalue.engine.dcf import terminal_ratio
from fairvalue.models.base import ValuationModel
from fairvalue.models.statements import annual_from_quarters
from fairvalue.models.statements import annual_from_ytd
from fairvalue.models.statements import cagr
from fairvalue.models.statements import estimate_shares

logger = logging.getLogger(__name__)

OPERATING_CF = 'CashFlowsFromOperatingActivities'
CAPEX = 'PropertyAndPlantAndEquipment'
DEFAULT_SHARES = 1e9


@dataclass
class DCFParams:
  '''
  DCF assumptions.

  Attributes:
    terminal_growth: Perpetual growth rate
    high_growth_years: Years held at the initial growth rate
    decay_years: Years fading to mature_growth
    mature_growth: Growth at the end of the decay phase
    min_growth: Lower clip of the initial growth rate
    max_growth: Upper clip by sector tag
    tax_rate: Tax rate of the NOPAT fallback
    default_growth: Growth used when no CAGR can be computed
  '''
  terminal_growth: float = 0.02
  high_growth_years: int = 3
  decay_years: int = 2
  mature_growth: float = 0.03
  min_growth: float = 0.0
  max_growth: dict[SectorTag, float] = field(default_factory=lambda: {
      SectorTag.CYCLICAL: 0.10,
      SectorTag.FINANCIAL: 0.15,
      SectorTag.GENERAL: 0.30,
  })
  tax_rate: float = 0.20
  default_growth: float = 0.05


class DCFModel(ValuationModel):
  key = ModelKey.DCF

  def __init__(self,
               sectors: Optional[SectorConfig] = None,
               params: Optional[DCFParams] = None):
    self.sectors = sectors or SectorConfig()
    self.params = params or DCFParams()

  def _fcf_base(self, bundle: MarketDataBundle,
                tag: SectorTag) -> tuple[float, str]:
    op_cf = annual_from_ytd(bundle.cash_flows, OPERATING_CF)
    capex = annual_from_ytd(bundle.cash_flows, CAPEX)
    capex_by_year = dict(zip(capex['year'], capex['value'].abs()))

    if tag == SectorTag.CYCLICAL and len(op_cf) >= 3:
      recent = op_cf.head(5)
      fcfs = [
          value - capex_by_year.get(year, 0.0)
          for year, value in zip(recent['year'], recent['value'])
      ]
      return sum(fcfs) / len(fcfs), f'{len(fcfs)}-year average FCF'

    if not op_cf.empty:
      complete = op_cf[op_cf['complete']]
      row = complete.iloc[0] if not complete.empty else op_cf.iloc[0]
      year = row['year']
      method = (f'operating CF - capex ({year})'
                if row['complete'] else 'annualized operating CF - capex')
      return float(row['value']) - capex_by_year.get(year, 0.0), method

    op_income = annual_from_quarters(bundle.financials, 'OperatingIncome')
    if op_income.empty:
      raise InsufficientData('無現金流量表與營業利益數據，DCF 無法估算')
    latest_capex = float(capex['value'].abs().iloc[0]) if not capex.empty else 0
    nopat = float(op_income['value'].iloc[0]) * (1 - self.params.tax_rate)
    return nopat - latest_capex, 'NOPAT - capex'

  def _growth(self, bundle: MarketDataBundle, tag: SectorTag) -> float:
    estimates = []
    for type_name in ('Revenue', 'EPS'):
      annual = annual_from_quarters(bundle.financials, type_name)
      values = annual[annual['quarters'] == 4]['value'].tolist()
      span = min(len(values) - 1, 4)
      estimates.append(cagr(values[:span + 1], span) if span > 0 else None)

    revenue_cagr, eps_cagr = estimates
    if revenue_cagr is not None and eps_cagr is not None:
      growth = revenue_cagr * 0.7 + eps_cagr * 0.3
    elif revenue_cagr is not None:
      growth = revenue_cagr
    elif eps_cagr is not None:
      growth = eps_cagr
    else:
      growth = self.params.default_growth
    cap = self.params.max_growth.get(tag, 0.30)
    return max(self.params.min_growth, min(cap, growth))

  def evaluate(self, bundle: MarketDataBundle) -> ModelResult:
    if bundle.cash_flows.empty and bundle.financials.empty:
      raise InsufficientData('缺少財報與現金流量表數據')

    sector = self.sectors.sector_of(bundle.ticker, bundle.industry)
    tag = self.sectors.tag_of(sector)
    wacc = self.sectors.wacc_of(sector)

    fcf_base, fcf_method = self._fcf_base(bundle, tag)
    growth = self._growth(bundle, tag)

    shares_estimate = estimate_shares(bundle.financials)
    if shares_estimate is None:
      shares, shares_method = DEFAULT_SHARES, 'default (1e9 shares)'
    else:
      shares, shares_method = shares_estimate

    path = growth_path(growth, self.params.mature_growth,
                       self.params.high_growth_years, self.params.decay_years)
    value, pv_explicit, pv_terminal = compute_intrinsic_value(
        fcf_base, shares, path, self.params.terminal_growth, wacc)
    if not isfinite(value):
      raise InsufficientData('DCF 參數無效（折現率不高於永續成長率）')

    price = bundle.latest_price
    upside = (value - price) / price * 100 if price > 0 else 0.0
    if upside > 20:
      signal = Signal.UNDERVALUED
    elif upside < -10:
      signal = Signal.OVERVALUED
    else:
      signal = Signal.FAIR

    return ModelResult(
        key=self.key,
        available=True,
        fair_value=round(value, 2),
        signal=signal,
        diag={
            'sector': sector,
            'fcf_base': round(fcf_base, 2),
            'fcf_method': fcf_method,
            'growth_rate': round(growth * 100, 2),
            'wacc': round(wacc * 100, 2),
            'terminal_growth_rate': round(self.params.terminal_growth * 100, 2),
            'terminal_ratio':
                round(terminal_ratio(pv_explicit, pv_terminal), 2),
            'shares_outstanding': round(shares),
            'shares_method': shares_method,
        },
    )
