'''
Adaptive model weights from historical accuracy.

Per archetype and model, the horizon MAEs of past accuracy checks are
combined into one blended MAE. Blended MAEs become weights by inverse-error
weighting, and those are mixed with the classifier's base weights:

  feedback_i ∝ 1 / (MAE_i + ε)         -> cap, renormalize
  final_i = (1 - r)·base_i + r·feedback_i -> cap, renormalize
'''

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
import logging
from typing import Optional

import pandas as pd

from fairvalue.analysis.backtest.metrics import checks_to_error_frame
from fairvalue.config import FeedbackConfig
from fairvalue.domain.types import AccuracyCheck
from fairvalue.domain.types import MODEL_KEYS
from fairvalue.domain.types import ModelKey
from fairvalue.domain.types import Weights

logger = logging.getLogger(__name__)

UNCLASSIFIED = '未分類'
PRIMARY_HORIZON = 30


@dataclass(frozen=True)
class FeedbackEntry:
  '''
  Feedback weights for one archetype.

  Attributes:
    weights: Inverse-error weights, capped and summing to 1.0
    sample_counts: Number of 30-day samples per model
    blended_maes: Blended MAE per model (None when not eligible)
    total_checks: Accuracy checks of the archetype
  '''
  weights: Weights
  sample_counts: dict[ModelKey, int]
  blended_maes: dict[ModelKey, Optional[float]]
  total_checks: int


@dataclass(frozen=True)
class BlendedWeights:
  weights: Weights
  blend_ratio: float
  base_weights: Weights
  feedback_weights: Weights


def compute_blended_mae(
    horizon_errors: Mapping[int, list[float]],
    config: Optional[FeedbackConfig] = None,
) -> Optional[float]:
  '''
  Horizon-weighted average of the per-horizon mean errors.

  Horizons without samples are left out and the remaining horizon weights
  renormalized.

  Args:
    horizon_errors: Error samples per horizon (in days)
    config: Feedback configuration

  Returns:
    Blended MAE, or None when the 30-day sample count is below
    config.min_samples
  '''
  config = config or FeedbackConfig()
  primary = horizon_errors.get(PRIMARY_HORIZON) or []
  if not primary or len(primary) < config.min_samples:
    return None

  blended = 0.0
  total_weight = 0.0
  for horizon, weight in config.horizon_weights.items():
    samples = horizon_errors.get(horizon) or []
    if not samples:
      continue
    blended += (sum(samples) / len(samples)) * weight
    total_weight += weight

  if total_weight <= 0:
    return None
  return blended / total_weight


def cap_and_normalize(weights: Mapping[ModelKey, float],
                      max_weight: float) -> Optional[Weights]:
  '''
  Normalize, cap each share at max_weight, and renormalize.

  Mass removed by the cap is redistributed proportionally over the
  uncapped models until no share exceeds the cap. When fewer models carry
  weight than the cap allows (n * max_weight < 1) the cap cannot hold and
  the capped vector is simply renormalized.

  Returns:
    Weights over all model keys summing to 1.0, or None for an all-zero
    input
  '''
  total = sum(max(0.0, w) for w in weights.values())
  if total <= 0:
    return None
  result = {key: max(0.0, weights.get(key, 0.0)) / total for key in MODEL_KEYS}

  capped: set[ModelKey] = set()
  while True:
    over = [k for k in MODEL_KEYS if k not in capped and result[k] > max_weight]
    if not over:
      return result
    capped.update(over)
    free = [k for k in MODEL_KEYS if k not in capped and result[k] > 0]
    free_total = sum(result[k] for k in free)
    remaining = 1.0 - max_weight * len(capped)
    if not free or free_total <= 0 or remaining <= 0:
      clipped = {k: min(v, max_weight) for k, v in result.items()}
      clipped_total = sum(clipped.values())
      return {k: v / clipped_total for k, v in clipped.items()}
    for key in capped:
      result[key] = max_weight
    for key in free:
      result[key] = result[key] * remaining / free_total


def mae_to_weights(
    maes: Mapping[ModelKey, Optional[float]],
    config: Optional[FeedbackConfig] = None,
) -> Optional[Weights]:
  '''
  Inverse-error weights from blended MAEs.

  Models with a None MAE get weight 0.

  Returns:
    Capped weights summing to 1.0, or None when no model is eligible
  '''
  config = config or FeedbackConfig()
  inverse = {
      key: (1.0 / (maes[key] + config.epsilon)
            if maes.get(key) is not None else 0.0)
      for key in MODEL_KEYS
  }
  return cap_and_normalize(inverse, config.max_weight)


def mix_weights(base: Mapping[ModelKey, float],
                feedback: Mapping[ModelKey, float], ratio: float) -> Weights:
  '''(1 - ratio)·base + ratio·feedback, before any cap.'''
  return {
      key: (1 - ratio) * base.get(key, 0.0) + ratio * feedback.get(key, 0.0)
      for key in MODEL_KEYS
  }


def blend_weights(
    base_weights: Mapping[ModelKey, float],
    entry: FeedbackEntry,
    config: Optional[FeedbackConfig] = None,
) -> Optional[BlendedWeights]:
  '''
  Mix base weights with feedback weights, then cap and renormalize.

  Returns:
    BlendedWeights, or None when the mix is all zero
  '''
  config = config or FeedbackConfig()
  mixed = mix_weights(base_weights, entry.weights, config.blend_ratio)
  final = cap_and_normalize(mixed, config.max_weight)
  if final is None:
    return None
  return BlendedWeights(
      weights=final,
      blend_ratio=config.blend_ratio,
      base_weights=dict(base_weights),
      feedback_weights=dict(entry.weights),
  )


def _horizon_samples(errors: pd.DataFrame) -> dict[int, list[float]]:
  return {
      int(horizon): group['error'].tolist()
      for horizon, group in errors.groupby('horizon')
  }


def compute_feedback_by_type(
    checks: Iterable[AccuracyCheck],
    config: Optional[FeedbackConfig] = None,
) -> dict[str, FeedbackEntry]:
  '''
  Feedback weights per archetype.

  Archetypes where no model reaches the minimum sample count are omitted.

  Args:
    checks: All accuracy checks
    config: Feedback configuration

  Returns:
    Mapping archetype value -> FeedbackEntry
  '''
  config = config or FeedbackConfig()
  checks = list(checks)
  errors = checks_to_error_frame(checks)
  totals: dict[str, int] = {}
  for check in checks:
    key = check.classification_type or UNCLASSIFIED
    totals[key] = totals.get(key, 0) + 1

  result: dict[str, FeedbackEntry] = {}
  if errors.empty:
    return result

  errors['classification_type'] = errors['classification_type'].fillna(
      UNCLASSIFIED)

  for archetype, type_errors in errors.groupby('classification_type'):
    blended: dict[ModelKey, Optional[float]] = {}
    counts: dict[ModelKey, int] = {}
    for key in MODEL_KEYS:
      model_errors = type_errors[type_errors['model'] == key.value]
      samples = _horizon_samples(model_errors)
      counts[key] = len(samples.get(PRIMARY_HORIZON, []))
      blended[key] = compute_blended_mae(samples, config)

    weights = mae_to_weights(blended, config)
    if weights is None:
      logger.debug('No eligible model for %s feedback', archetype)
      continue
    result[str(archetype)] = FeedbackEntry(
        weights=weights,
        sample_counts=counts,
        blended_maes=blended,
        total_checks=totals.get(str(archetype), 0),
    )

  return result
