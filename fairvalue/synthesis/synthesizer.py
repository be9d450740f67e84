'''
Deterministic synthesis of one analysis.

Runs the fixed dependency chain on already-evaluated model results:

  results -> classify -> blend -> recommend + risks -> AnalysisRecord

When a fresh feedback entry exists for the chosen archetype, the blend is
repeated with the feedback-adjusted weights. The feedback result becomes
the headline and the deterministic one is kept as the baseline.

Usage:
  results = collect_results(evaluate_models(models, bundle))
  record = synthesize('2330', 580.0, results, SectorTag.GENERAL,
                      feedback=cache)
'''

from collections.abc import Mapping
import logging
from typing import Any, Optional

from fairvalue.clock import Clock
from fairvalue.clock import utc_now
from fairvalue.domain.types import AnalysisRecord
from fairvalue.domain.types import DeterministicBaseline
from fairvalue.domain.types import encode_weights
from fairvalue.domain.types import MODEL_KEYS
from fairvalue.domain.types import ModelKey
from fairvalue.domain.types import ModelResult
from fairvalue.domain.types import SectorTag
from fairvalue.domain.types import Source
from fairvalue.feedback.adaptive import blend_weights
from fairvalue.feedback.cache import FeedbackCache
from fairvalue.synthesis.blender import blend
from fairvalue.synthesis.classifier import classify
from fairvalue.synthesis.classifier import signals_from_results
from fairvalue.synthesis.recommendation import generate_recommendation
from fairvalue.synthesis.risks import identify_risks

logger = logging.getLogger(__name__)

FEEDBACK_METHOD_SUFFIX = '（回饋調整）'


def model_summaries(
    results: Mapping[ModelKey, ModelResult]) -> dict[ModelKey, dict[str, Any]]:
  '''Compact per-model view persisted with the analysis.'''
  summaries: dict[ModelKey, dict[str, Any]] = {}
  for key in MODEL_KEYS:
    result = results.get(key) or ModelResult.unavailable(key, 'not evaluated')
    summary: dict[str, Any] = {
        'available': result.available,
        'fair_value': result.fair_value,
        'signal': result.signal.value,
    }
    if not result.available:
      summary['reason'] = result.reason
    summaries[key] = summary
  return summaries


def synthesize(
    ticker: str,
    price: float,
    results: Mapping[ModelKey, ModelResult],
    sector_tag: SectorTag,
    feedback: Optional[FeedbackCache] = None,
    clock: Clock = utc_now,
) -> AnalysisRecord:
  '''
  Classify, blend and explain one security.

  Args:
    ticker: Ticker symbol
    price: Current price
    results: Model results by key; every model must already be evaluated
    sector_tag: Coarse sector grouping
    feedback: Feedback cache; None or a missing/stale entry means base
      weights
    clock: Source of created_at

  Returns:
    Unsaved AnalysisRecord (id is None)
  '''
  classification = classify(signals_from_results(results, sector_tag))
  valuation = blend(results, classification.base_weights)
  recommendation = generate_recommendation(valuation.fair_value, price,
                                           classification, results)
  baseline = DeterministicBaseline(classification, valuation, recommendation)

  source = Source.DETERMINISTIC
  provenance: dict[str, Any] = {}

  entry = feedback.get(classification.archetype) if feedback else None
  if entry is not None:
    blended = blend_weights(classification.base_weights, entry,
                            feedback.config)
    adjusted = (blend(results, blended.weights,
                      method_suffix=FEEDBACK_METHOD_SUFFIX)
                if blended is not None else None)
    if adjusted is not None and not adjusted.fallback:
      valuation = adjusted
      recommendation = generate_recommendation(valuation.fair_value, price,
                                               classification, results)
      source = Source.FEEDBACK
      provenance['feedback'] = {
          'blend_ratio': blended.blend_ratio,
          'base_weights': encode_weights(blended.base_weights),
          'feedback_weights': encode_weights(blended.feedback_weights),
          'total_checks': entry.total_checks,
      }
      logger.info('%s: feedback weights applied for %s', ticker,
                  classification.archetype.value)

  return AnalysisRecord(
      ticker=ticker,
      created_at=clock(),
      current_price=price,
      classification=classification,
      valuation=valuation,
      recommendation=recommendation,
      risks=identify_risks(results, valuation),
      model_summaries=model_summaries(results),
      source=source,
      deterministic=baseline if source != Source.DETERMINISTIC else None,
      provenance=provenance,
  )
