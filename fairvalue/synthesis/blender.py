'''
Valuation blender.

Turns a base weight vector and the model results into one weighted fair
value:

1. Zero the weight of every unusable model (unavailable or fair value <= 0)
2. Apply confidence discounts from model diagnostics
3. Renormalize over the surviving set
4. Weighted sum of the per-model fair values

A missing model is an expected state, never an error. When no model
survives step 3 the DCF raw value is used and the result is flagged with
fallback=True.
'''

from collections.abc import Mapping
import logging
from typing import Optional

from fairvalue.domain.types import MODEL_KEYS
from fairvalue.domain.types import MODEL_LABELS
from fairvalue.domain.types import ModelKey
from fairvalue.domain.types import ModelResult
from fairvalue.domain.types import WeightedValuation
from fairvalue.domain.types import Weights

logger = logging.getLogger(__name__)

TERMINAL_RATIO_HIGH = 85.0
TERMINAL_RATIO_ELEVATED = 75.0
TERMINAL_HIGH_FACTOR = 0.6
TERMINAL_ELEVATED_FACTOR = 0.8
NEGATIVE_FCF_FACTOR = 0.3
CAPEX_LOW_CONFIDENCE_FACTOR = 0.5
CAPEX_HIGH_CONFIDENCE_FACTOR = 1.2

FALLBACK_METHOD = '僅 DCF 原始值（無可用模型）'


def round2(value: float) -> float:
  return round(value, 2)


def pct(value: float) -> str:
  return f'{round(value * 100)}%'


def describe_weights(weights: Mapping[ModelKey, float]) -> str:
  '''Method string such as "DCF 64% + PER 36%".'''
  parts = [
      f'{MODEL_LABELS[key]} {pct(weights[key])}'
      for key in MODEL_KEYS
      if weights.get(key, 0.0) > 0
  ]
  return ' + '.join(parts)


def per_model_fair_values(
    results: Mapping[ModelKey, ModelResult]) -> dict[ModelKey, Optional[float]]:
  '''Fair value of every usable model, None for the rest.'''
  values: dict[ModelKey, Optional[float]] = {}
  for key in MODEL_KEYS:
    result = results.get(key)
    values[key] = (round2(result.fair_value)
                   if result is not None and result.usable else None)
  return values


def confidence_factor(result: ModelResult) -> float:
  '''
  Multiplicative discount derived from a model's own diagnostics.

  DCF: terminal-value share of total PV above 85% -> 0.6, above 75% -> 0.8;
  negative base free cash flow -> 0.3 (applied on top).
  CapEx: LOW sector confidence -> 0.5, HIGH -> 1.2.
  '''
  factor = 1.0
  if result.key == ModelKey.DCF:
    terminal_ratio = result.diag.get('terminal_ratio')
    if isinstance(terminal_ratio, (int, float)):
      if terminal_ratio > TERMINAL_RATIO_HIGH:
        factor *= TERMINAL_HIGH_FACTOR
      elif terminal_ratio > TERMINAL_RATIO_ELEVATED:
        factor *= TERMINAL_ELEVATED_FACTOR
    fcf_base = result.diag.get('fcf_base')
    if isinstance(fcf_base, (int, float)) and fcf_base < 0:
      factor *= NEGATIVE_FCF_FACTOR
  elif result.key == ModelKey.CAPEX:
    confidence = result.diag.get('sector_confidence')
    if confidence == 'LOW':
      factor *= CAPEX_LOW_CONFIDENCE_FACTOR
    elif confidence == 'HIGH':
      factor *= CAPEX_HIGH_CONFIDENCE_FACTOR
  return factor


def normalize(weights: Mapping[ModelKey, float]) -> Optional[Weights]:
  '''Scale weights to sum to 1.0; None when the sum is not positive.'''
  total = sum(weights.values())
  if total <= 0:
    return None
  return {key: weights.get(key, 0.0) / total for key in MODEL_KEYS}


def weighted_sum(weights: Mapping[ModelKey, float],
                 fair_values: Mapping[ModelKey, Optional[float]]) -> float:
  total = 0.0
  for key, weight in weights.items():
    value = fair_values.get(key)
    if value is not None and weight > 0:
      total += value * weight
  return total


def fallback_valuation(
    results: Mapping[ModelKey, ModelResult]) -> WeightedValuation:
  '''DCF-only valuation used when no model is usable.'''
  dcf = results.get(ModelKey.DCF)
  raw = dcf.fair_value if dcf is not None and dcf.fair_value else 0.0
  weights = {key: 0.0 for key in MODEL_KEYS}
  weights[ModelKey.DCF] = 1.0
  logger.warning('No usable valuation model, falling back to DCF raw value')
  return WeightedValuation(
      fair_value=round2(raw),
      method=FALLBACK_METHOD,
      weights=weights,
      per_model_fair_value=per_model_fair_values(results),
      fallback=True,
  )


def blend(
    results: Mapping[ModelKey, ModelResult],
    base_weights: Mapping[ModelKey, float],
    apply_discounts: bool = True,
    method_suffix: str = '',
) -> WeightedValuation:
  '''
  Blend model results into one fair value.

  Args:
    results: Model results by key (missing keys count as unavailable)
    base_weights: Weight vector to start from
    apply_discounts: Apply the diagnostic confidence discounts (step 2)
    method_suffix: Appended to the method string, e.g. ' (LLM)'

  Returns:
    WeightedValuation; fallback=True when no model was usable
  '''
  fair_values = per_model_fair_values(results)

  adjusted: Weights = {}
  for key in MODEL_KEYS:
    result = results.get(key)
    weight = float(base_weights.get(key, 0.0))
    if result is None or not result.usable or weight <= 0:
      adjusted[key] = 0.0
      continue
    if apply_discounts:
      weight *= confidence_factor(result)
    adjusted[key] = weight

  weights = normalize(adjusted)
  if weights is None:
    return fallback_valuation(results)

  return WeightedValuation(
      fair_value=round2(weighted_sum(weights, fair_values)),
      method=describe_weights(weights) + method_suffix,
      weights=weights,
      per_model_fair_value=fair_values,
  )


def reblend(
    fair_values: Mapping[ModelKey, Optional[float]],
    weights: Mapping[ModelKey, float],
    method_suffix: str = '',
) -> Optional[WeightedValuation]:
  '''
  Recompute a blend from stored per-model fair values (steps 3 and 4).

  Used by resynthesis, where only the persisted fair values are known.

  Returns:
    WeightedValuation, or None when no weighted model has a fair value
  '''
  effective = {
      key: (float(weights.get(key, 0.0))
            if fair_values.get(key) is not None else 0.0)
      for key in MODEL_KEYS
  }
  normalized = normalize(effective)
  if normalized is None:
    return None
  return WeightedValuation(
      fair_value=round2(weighted_sum(normalized, fair_values)),
      method=describe_weights(normalized) + method_suffix,
      weights=normalized,
      per_model_fair_value=dict(fair_values),
  )
