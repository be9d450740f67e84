'''
Domain types for the valuation synthesis engine.

These dataclasses provide typed interfaces between components. Model
identifiers are a closed enumeration; JSON encoding of the per-model maps
happens only at the storage boundary (see fairvalue.store).
'''

from dataclasses import dataclass, field, replace
from datetime import date, datetime
from enum import Enum
from math import isfinite
from typing import Any, Dict, List, Optional, Tuple


class ModelKey(str, Enum):
  '''Identifiers of the valuation models, in their fixed report order.'''
  DCF = 'dcf'
  PER = 'per'
  PBR = 'pbr'
  DIVIDEND = 'dividend'
  CAPEX = 'capex'
  EV_EBITDA = 'ev_ebitda'
  PSR = 'psr'


MODEL_KEYS: Tuple[ModelKey, ...] = tuple(ModelKey)

MODEL_LABELS: Dict[ModelKey, str] = {
    ModelKey.DCF: 'DCF',
    ModelKey.PER: 'PER',
    ModelKey.PBR: 'PBR',
    ModelKey.DIVIDEND: '股利',
    ModelKey.CAPEX: 'CapEx',
    ModelKey.EV_EBITDA: 'EV/EBITDA',
    ModelKey.PSR: 'PSR',
}

# Realized-price checkpoints, in days after the analysis date.
HORIZONS: Tuple[int, ...] = (30, 90, 180)

Weights = Dict[ModelKey, float]


class Signal(str, Enum):
  '''A model's own local verdict.'''
  UNDERVALUED = 'UNDERVALUED'
  FAIR = 'FAIR'
  OVERVALUED = 'OVERVALUED'
  NA = 'N/A'


class Archetype(str, Enum):
  '''The seven security archetypes driving default model weights.'''
  FINANCIAL = '金融業'
  CYCLICAL = '週期性'
  LOSS_MAKING_GROWTH = '虧損成長股'
  GROWTH = '成長股'
  INCOME = '存股'
  VALUE_GROWTH = '價值成長股'
  MIXED = '混合型'


class SectorTag(str, Enum):
  '''Coarse sector grouping consumed by the classifier.'''
  FINANCIAL = 'financial'
  CYCLICAL = 'cyclical'
  GENERAL = 'general'


class Action(str, Enum):
  BUY = 'BUY'
  HOLD = 'HOLD'
  SELL = 'SELL'


class Confidence(str, Enum):
  '''Recommendation strength (強烈 / 一般 / 中性).'''
  HIGH = '強烈'
  MEDIUM = '一般'
  LOW = '中性'


class Source(str, Enum):
  '''Provenance of the headline valuation of a synthesis result.'''
  DETERMINISTIC = 'deterministic'
  FEEDBACK = 'feedback'
  EXTERNAL = 'external'


def encode_weights(weights: Weights) -> Dict[str, float]:
  '''Convert a ModelKey-keyed map to plain string keys.'''
  return {key.value: float(value) for key, value in weights.items()}


def decode_weights(raw: Dict[str, Any]) -> Weights:
  '''Inverse of encode_weights; unknown keys are ignored.'''
  known = {key.value: key for key in MODEL_KEYS}
  return {known[k]: float(v) for k, v in raw.items() if k in known}


def _decode_optional_map(
    raw: Dict[str, Any]) -> Dict[ModelKey, Optional[float]]:
  known = {key.value: key for key in MODEL_KEYS}
  return {
      known[k]: (None if v is None else float(v))
      for k, v in raw.items()
      if k in known
  }


@dataclass(frozen=True)
class ModelResult:
  '''
  Output of one valuation model for one security as of one date.

  Attributes:
    key: Which model produced the result
    available: False when the model could not produce a value
    fair_value: Model-implied price per share (None when unavailable)
    signal: The model's own verdict
    diag: Model-specific diagnostics (terminal ratio, band position, ...)
  '''
  key: ModelKey
  available: bool
  fair_value: Optional[float] = None
  signal: Signal = Signal.NA
  diag: Dict[str, Any] = field(default_factory=dict)

  @classmethod
  def unavailable(cls, key: ModelKey, reason: str) -> 'ModelResult':
    '''Result for a model that could not be evaluated.'''
    return cls(key=key, available=False, diag={'reason': reason})

  @property
  def usable(self) -> bool:
    '''True when the result may carry weight in a blend.'''
    return (self.available and self.fair_value is not None and
            isfinite(self.fair_value) and self.fair_value > 0)

  @property
  def reason(self) -> Optional[str]:
    return self.diag.get('reason')

  def to_dict(self) -> Dict[str, Any]:
    return {
        'key': self.key.value,
        'available': self.available,
        'fair_value': self.fair_value,
        'signal': self.signal.value,
        'diag': dict(self.diag),
    }


@dataclass(frozen=True)
class ModelOutcome:
  '''
  Result-or-error of evaluating one model.

  Exactly one of result and error is set.
  '''
  key: ModelKey
  result: Optional[ModelResult] = None
  error: Optional[Exception] = None

  @property
  def ok(self) -> bool:
    return self.error is None and self.result is not None


@dataclass(frozen=True)
class ClassificationSignals:
  '''
  Scalar inputs to the classifier besides the model results.

  Attributes:
    growth_rate: Trailing growth rate in percent (e.g. 12.5)
    dividend_yield: Current dividend yield in percent
    payout_grade: Payout-safety grade ('SAFE', 'MODERATE', 'WARNING', 'N/A')
    consecutive_dividend_years: Consecutive years with a cash dividend
    sector_tag: Coarse sector grouping
    capex_intensity: CapEx / revenue in percent
    eps: Trailing EPS (only the sign is used)
  '''
  growth_rate: float = 0.0
  dividend_yield: float = 0.0
  payout_grade: str = 'N/A'
  consecutive_dividend_years: int = 0
  sector_tag: SectorTag = SectorTag.GENERAL
  capex_intensity: float = 0.0
  eps: Optional[float] = None


@dataclass(frozen=True)
class Classification:
  '''
  Archetype assignment with its base weight vector.

  Attributes:
    archetype: One of the seven archetypes
    description: Human-readable explanation of the archetype
    base_weights: Prior weight per model, summing to 1.0
    variant: Name of the weight variant ('' for the archetype default)
  '''
  archetype: Archetype
  description: str
  base_weights: Weights
  variant: str = ''

  def to_dict(self) -> Dict[str, Any]:
    return {
        'type': self.archetype.value,
        'description': self.description,
        'base_weights': encode_weights(self.base_weights),
        'variant': self.variant,
    }

  @classmethod
  def from_dict(cls, data: Dict[str, Any]) -> 'Classification':
    return cls(
        archetype=Archetype(data['type']),
        description=data.get('description', ''),
        base_weights=decode_weights(data.get('base_weights', {})),
        variant=data.get('variant', ''),
    )


@dataclass(frozen=True)
class WeightedValuation:
  '''
  Blended fair value.

  Attributes:
    fair_value: Weighted fair value per share
    method: Human-readable description of the blend
    weights: Final weight per model (sums to 1.0 over usable models)
    per_model_fair_value: Each model's fair value (None when unusable)
    fallback: True when no model was usable and the DCF raw value was used
  '''
  fair_value: float
  method: str
  weights: Weights
  per_model_fair_value: Dict[ModelKey, Optional[float]]
  fallback: bool = False

  @property
  def available_models(self) -> Dict[ModelKey, bool]:
    return {
        key: self.per_model_fair_value.get(key) is not None
        for key in MODEL_KEYS
    }

  def to_dict(self) -> Dict[str, Any]:
    return {
        'fair_value': self.fair_value,
        'method': self.method,
        'weights': encode_weights(self.weights),
        'per_model_fair_value': {
            key.value: value
            for key, value in self.per_model_fair_value.items()
        },
        'fallback': self.fallback,
    }

  @classmethod
  def from_dict(cls, data: Dict[str, Any]) -> 'WeightedValuation':
    return cls(
        fair_value=float(data['fair_value']),
        method=data.get('method', ''),
        weights=decode_weights(data.get('weights', {})),
        per_model_fair_value=_decode_optional_map(
            data.get('per_model_fair_value', {})),
        fallback=bool(data.get('fallback', False)),
    )


@dataclass(frozen=True)
class Recommendation:
  '''
  Directional recommendation with its justification.

  Attributes:
    action: BUY / HOLD / SELL
    confidence: Strength of the recommendation
    upside_pct: (fair value - price) / price * 100
    fair_value: The fair value the recommendation was derived from
    reasons: Ordered explanation sentences
  '''
  action: Action
  confidence: Confidence
  upside_pct: float
  fair_value: float
  reasons: List[str] = field(default_factory=list)

  def to_dict(self) -> Dict[str, Any]:
    return {
        'action': self.action.value,
        'confidence': self.confidence.value,
        'upside_pct': self.upside_pct,
        'fair_value': self.fair_value,
        'reasons': list(self.reasons),
    }

  @classmethod
  def from_dict(cls, data: Dict[str, Any]) -> 'Recommendation':
    return cls(
        action=Action(data['action']),
        confidence=Confidence(data['confidence']),
        upside_pct=float(data['upside_pct']),
        fair_value=float(data['fair_value']),
        reasons=list(data.get('reasons', [])),
    )


@dataclass(frozen=True)
class DeterministicBaseline:
  '''The non-externally-influenced result kept next to an enhanced one.'''
  classification: Classification
  valuation: WeightedValuation
  recommendation: Recommendation

  def to_dict(self) -> Dict[str, Any]:
    return {
        'classification': self.classification.to_dict(),
        'valuation': self.valuation.to_dict(),
        'recommendation': self.recommendation.to_dict(),
    }

  @classmethod
  def from_dict(cls, data: Dict[str, Any]) -> 'DeterministicBaseline':
    return cls(
        classification=Classification.from_dict(data['classification']),
        valuation=WeightedValuation.from_dict(data['valuation']),
        recommendation=Recommendation.from_dict(data['recommendation']),
    )


@dataclass(frozen=True)
class AnalysisRecord:
  '''
  One synthesis of one ticker. Immutable once persisted.

  id is None until the store assigns one. Resynthesis produces a new
  record instead of mutating an existing one.
  '''
  ticker: str
  created_at: datetime
  current_price: float
  classification: Classification
  valuation: WeightedValuation
  recommendation: Recommendation
  risks: List[str]
  model_summaries: Dict[ModelKey, Dict[str, Any]]
  source: Source = Source.DETERMINISTIC
  deterministic: Optional[DeterministicBaseline] = None
  provenance: Dict[str, Any] = field(default_factory=dict)
  id: Optional[int] = None

  @property
  def analysis_date(self) -> date:
    return self.created_at.date()

  def with_id(self, record_id: int) -> 'AnalysisRecord':
    return replace(self, id=record_id)

  def to_dict(self) -> Dict[str, Any]:
    return {
        'id': self.id,
        'ticker': self.ticker,
        'created_at': self.created_at.isoformat(),
        'current_price': self.current_price,
        'classification': self.classification.to_dict(),
        'valuation': self.valuation.to_dict(),
        'recommendation': self.recommendation.to_dict(),
        'risks': list(self.risks),
        'model_summaries': {
            key.value: summary
            for key, summary in self.model_summaries.items()
        },
        'source': self.source.value,
        'deterministic':
            self.deterministic.to_dict() if self.deterministic else None,
        'provenance': dict(self.provenance),
    }

  @classmethod
  def from_dict(cls, data: Dict[str, Any]) -> 'AnalysisRecord':
    known = {key.value: key for key in MODEL_KEYS}
    deterministic = data.get('deterministic')
    return cls(
        id=data.get('id'),
        ticker=data['ticker'],
        created_at=datetime.fromisoformat(data['created_at']),
        current_price=float(data['current_price']),
        classification=Classification.from_dict(data['classification']),
        valuation=WeightedValuation.from_dict(data['valuation']),
        recommendation=Recommendation.from_dict(data['recommendation']),
        risks=list(data.get('risks', [])),
        model_summaries={
            known[k]: v
            for k, v in data.get('model_summaries', {}).items()
            if k in known
        },
        source=Source(data.get('source', Source.DETERMINISTIC.value)),
        deterministic=(DeterministicBaseline.from_dict(deterministic)
                       if deterministic else None),
        provenance=dict(data.get('provenance') or {}),
    )


@dataclass
class AccuracyCheck:
  '''
  Realized-price check of one analysis.

  Created once by the backtest scan, then backfilled as more horizons
  elapse. Every horizon-keyed map has an entry for each of HORIZONS;
  None means "not yet known".

  Attributes:
    analysis_id: Id of the checked AnalysisRecord
    ticker: Ticker symbol
    analysis_date: Date of the analysis
    predicted_fair_value: Blended fair value of the analysis
    predicted_action: Recommended action of the analysis
    price_at_analysis: Price on the analysis date
    classification_type: Archetype of the analysis (for feedback grouping)
    actual_prices: Realized close per horizon
    direction_correct: 1 / 0 / None per horizon
    model_fair_values: Each model's fair value at analysis time
    model_errors: Absolute percentage error per model per horizon
    id: Store-assigned id
  '''
  analysis_id: int
  ticker: str
  analysis_date: date
  predicted_fair_value: float
  predicted_action: Action
  price_at_analysis: float
  classification_type: Optional[str] = None
  actual_prices: Dict[int, Optional[float]] = field(
      default_factory=lambda: {h: None for h in HORIZONS})
  direction_correct: Dict[int, Optional[int]] = field(
      default_factory=lambda: {h: None for h in HORIZONS})
  model_fair_values: Dict[ModelKey, Optional[float]] = field(
      default_factory=dict)
  model_errors: Dict[ModelKey, Dict[int, Optional[float]]] = field(
      default_factory=dict)
  id: Optional[int] = None

  def missing_horizons(self, as_of: date) -> List[int]:
    '''Horizons that have elapsed by as_of but have no realized price.'''
    elapsed = (as_of - self.analysis_date).days
    return [
        h for h in HORIZONS
        if self.actual_prices.get(h) is None and elapsed >= h
    ]

  @property
  def is_complete(self) -> bool:
    return all(self.actual_prices.get(h) is not None for h in HORIZONS)
