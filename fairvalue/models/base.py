'''
Valuation model interface and the central failure conversion.

Models may raise on malformed or missing input. evaluate_models captures
each model's result-or-error as a ModelOutcome; collect_results is the one
place where errors become unavailable results.
'''

from abc import ABC, abstractmethod
from collections.abc import Iterable, Sequence
import logging

from fairvalue.data.finmind import MarketDataBundle
from fairvalue.domain.errors import InsufficientData
from fairvalue.domain.types import MODEL_KEYS
from fairvalue.domain.types import ModelKey
from fairvalue.domain.types import ModelOutcome
from fairvalue.domain.types import ModelResult
from fairvalue.domain.types import Signal

logger = logging.getLogger(__name__)

CHEAP = '便宜'
FAIR = '合理'
EXPENSIVE = '昂貴'

NOT_EVALUATED = '模型未執行'


class ValuationModel(ABC):
  '''
  Base class for valuation models.

  Subclasses set key and implement evaluate(). Raising InsufficientData
  with a reason is the expected way to report missing history.
  '''
  key: ModelKey

  @abstractmethod
  def evaluate(self, bundle: MarketDataBundle) -> ModelResult:
    '''
    Value one security.

    Args:
      bundle: Market data of the security

    Returns:
      ModelResult for self.key
    '''


def signal_for(position: str) -> Signal:
  return {
      CHEAP: Signal.UNDERVALUED,
      EXPENSIVE: Signal.OVERVALUED,
  }.get(position, Signal.FAIR)


def band_position(current: float, mean: float, std: float) -> str:
  '''Position of a value in its mean ± std band (low values are cheap).'''
  if current < mean - std:
    return CHEAP
  if current > mean + std:
    return EXPENSIVE
  return FAIR


def evaluate_models(models: Sequence[ValuationModel],
                    bundle: MarketDataBundle) -> list[ModelOutcome]:
  '''Evaluate every model, capturing errors instead of raising.'''
  outcomes = []
  for model in models:
    try:
      outcomes.append(ModelOutcome(key=model.key,
                                   result=model.evaluate(bundle)))
    except Exception as e:  # pylint: disable=broad-except
      outcomes.append(ModelOutcome(key=model.key, error=e))
  return outcomes


def _reason(error: Exception) -> str:
  if isinstance(error, InsufficientData):
    return error.reason
  return f'{type(error).__name__}: {error}'


def collect_results(
    outcomes: Iterable[ModelOutcome]) -> dict[ModelKey, ModelResult]:
  '''
  Results for every model key.

  Failed outcomes become unavailable results carrying the error as reason;
  keys without an outcome become unavailable as not evaluated.
  '''
  results: dict[ModelKey, ModelResult] = {}
  for outcome in outcomes:
    if outcome.ok:
      results[outcome.key] = outcome.result
      continue
    reason = _reason(outcome.error) if outcome.error else NOT_EVALUATED
    if isinstance(outcome.error, InsufficientData):
      logger.info('%s unavailable: %s', outcome.key.value, reason)
    else:
      logger.warning('%s failed: %s', outcome.key.value, reason)
    results[outcome.key] = ModelResult.unavailable(outcome.key, reason)

  for key in MODEL_KEYS:
    if key not in results:
      results[key] = ModelResult.unavailable(key, NOT_EVALUATED)
  return results
