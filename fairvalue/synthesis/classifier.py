'''
Security classification.

A fixed, ordered decision list maps the classifier signals to one of seven
archetypes. Rules are evaluated top to bottom and the first match wins, so
the order of RULES is part of the contract.
'''

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Optional

from fairvalue.domain.types import Archetype
from fairvalue.domain.types import Classification
from fairvalue.domain.types import ClassificationSignals
from fairvalue.domain.types import ModelKey
from fairvalue.domain.types import ModelResult
from fairvalue.domain.types import SectorTag
from fairvalue.domain.types import Weights

DCF = ModelKey.DCF
PER = ModelKey.PER
PBR = ModelKey.PBR
DIV = ModelKey.DIVIDEND
CAPEX = ModelKey.CAPEX
EV = ModelKey.EV_EBITDA
PSR = ModelKey.PSR

CAPEX_HEAVY_INTENSITY = 15.0

# Hand-tuned archetype priors. Each row sums to 1.0.
BASE_WEIGHTS: dict[str, Weights] = {
    'financial': {DCF: 0.00, PER: 0.25, PBR: 0.40, DIV: 0.35,
                  CAPEX: 0.00, EV: 0.00, PSR: 0.00},
    'cyclical': {DCF: 0.10, PER: 0.15, PBR: 0.30, DIV: 0.10,
                 CAPEX: 0.05, EV: 0.30, PSR: 0.00},
    'loss_making_growth': {DCF: 0.15, PER: 0.00, PBR: 0.15, DIV: 0.00,
                           CAPEX: 0.20, EV: 0.10, PSR: 0.40},
    'growth': {DCF: 0.45, PER: 0.25, PBR: 0.05, DIV: 0.05,
               CAPEX: 0.10, EV: 0.05, PSR: 0.05},
    'growth_capex_heavy': {DCF: 0.35, PER: 0.20, PBR: 0.05, DIV: 0.05,
                           CAPEX: 0.25, EV: 0.05, PSR: 0.05},
    'income': {DCF: 0.15, PER: 0.15, PBR: 0.10, DIV: 0.50,
               CAPEX: 0.00, EV: 0.10, PSR: 0.00},
    'value_growth': {DCF: 0.30, PER: 0.20, PBR: 0.10, DIV: 0.25,
                     CAPEX: 0.05, EV: 0.10, PSR: 0.00},
    'mixed': {DCF: 0.30, PER: 0.20, PBR: 0.15, DIV: 0.15,
              CAPEX: 0.05, EV: 0.10, PSR: 0.05},
}

DESCRIPTIONS: dict[Archetype, str] = {
    Archetype.FINANCIAL: '金融保險業現金流含存放款，以 PBR 與股利模型為主',
    Archetype.CYCLICAL: '景氣循環產業，獲利波動大，以 PBR 與 EV/EBITDA 為主',
    Archetype.LOSS_MAKING_GROWTH: '尚未獲利但營收成長，以 PSR 與 CapEx 模型為主',
    Archetype.GROWTH: '高成長、低配息，DCF 模型更具參考價值',
    Archetype.INCOME: '穩定配息、殖利率佳，股利模型更具參考價值',
    Archetype.VALUE_GROWTH: '兼具成長與配息，多模型並重',
    Archetype.MIXED: '特徵不明顯，建議多模型並行參考',
}


@dataclass(frozen=True)
class Rule:
  '''One entry of the decision list.'''
  name: str
  predicate: Callable[[ClassificationSignals], bool]
  build: Callable[[ClassificationSignals], Classification]


def _make(archetype: Archetype, table: str,
          variant: str = '') -> Classification:
  return Classification(
      archetype=archetype,
      description=DESCRIPTIONS[archetype],
      base_weights=dict(BASE_WEIGHTS[table]),
      variant=variant,
  )


def _growth(signals: ClassificationSignals) -> Classification:
  if signals.capex_intensity > CAPEX_HEAVY_INTENSITY:
    return _make(Archetype.GROWTH, 'growth_capex_heavy', 'capex_heavy')
  return _make(Archetype.GROWTH, 'growth')


def _is_loss_making_growth(s: ClassificationSignals) -> bool:
  return s.eps is not None and s.eps < 0 and s.growth_rate > 5


def _is_income(s: ClassificationSignals) -> bool:
  return (s.dividend_yield >= 4 and s.consecutive_dividend_years >= 5 and
          s.payout_grade != 'WARNING')


RULES: tuple[Rule, ...] = (
    Rule('financial_sector', lambda s: s.sector_tag == SectorTag.FINANCIAL,
         lambda s: _make(Archetype.FINANCIAL, 'financial')),
    Rule('cyclical_sector', lambda s: s.sector_tag == SectorTag.CYCLICAL,
         lambda s: _make(Archetype.CYCLICAL, 'cyclical')),
    Rule('loss_making_growth', _is_loss_making_growth,
         lambda s: _make(Archetype.LOSS_MAKING_GROWTH, 'loss_making_growth')),
    Rule('growth', lambda s: s.growth_rate > 10 and s.dividend_yield < 2,
         _growth),
    Rule('income', _is_income, lambda s: _make(Archetype.INCOME, 'income')),
    Rule('value_growth',
         lambda s: s.dividend_yield >= 3 and s.growth_rate >= 5,
         lambda s: _make(Archetype.VALUE_GROWTH, 'value_growth')),
    Rule('mixed', lambda s: True, lambda s: _make(Archetype.MIXED, 'mixed')),
)


def classify(signals: ClassificationSignals) -> Classification:
  '''
  Classify a security. Pure and deterministic.

  Args:
    signals: Scalar classifier inputs

  Returns:
    Classification from the first matching rule
  '''
  for rule in RULES:
    if rule.predicate(signals):
      return rule.build(signals)
  raise AssertionError('decision list has no catch-all rule')


def _number(diag: Mapping[str, object], name: str,
            default: float = 0.0) -> float:
  value = diag.get(name)
  if isinstance(value, (int, float)) and not isinstance(value, bool):
    return float(value)
  return default


def signals_from_results(
    results: Mapping[ModelKey, ModelResult],
    sector_tag: SectorTag,
) -> ClassificationSignals:
  '''
  Extract classifier signals from model diagnostics.

  Missing models contribute neutral defaults, which steer towards the
  later, more general rules of the decision list.

  Args:
    results: Model results by key
    sector_tag: Sector grouping of the security

  Returns:
    ClassificationSignals
  '''
  dcf = results.get(DCF)
  div = results.get(DIV)
  capex = results.get(CAPEX)
  per = results.get(PER)

  growth_rate = _number(dcf.diag, 'growth_rate') if dcf else 0.0

  dividend_yield = 0.0
  payout_grade = 'N/A'
  consecutive_years = 0
  if div is not None and div.available:
    dividend_yield = _number(div.diag, 'current_yield')
    payout_grade = str(div.diag.get('payout_grade', 'N/A'))
    consecutive_years = int(_number(div.diag, 'consecutive_years'))

  capex_intensity = 0.0
  if capex is not None and capex.available:
    capex_intensity = _number(capex.diag, 'capex_intensity')

  eps: Optional[float] = None
  for result in (per, capex):
    if result is not None and 'ttm_eps' in result.diag:
      eps = _number(result.diag, 'ttm_eps')
      break

  return ClassificationSignals(
      growth_rate=growth_rate,
      dividend_yield=dividend_yield,
      payout_grade=payout_grade,
      consecutive_dividend_years=consecutive_years,
      sector_tag=sector_tag,
      capex_intensity=capex_intensity,
      eps=eps,
  )
