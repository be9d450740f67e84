'''
Resynthesis of a stored analysis under a validated external proposal.

Only the persisted per-model fair values are needed: the proposal's
weights replace the classifier's and the blend is recomputed exactly as
the blender's renormalize-and-sum steps do. The result is a new record;
the input record is never modified.
'''

from dataclasses import replace
import logging

from fairvalue.clock import Clock
from fairvalue.clock import utc_now
from fairvalue.domain.errors import GuardrailViolation
from fairvalue.domain.types import AnalysisRecord
from fairvalue.domain.types import Classification
from fairvalue.domain.types import DeterministicBaseline
from fairvalue.domain.types import encode_weights
from fairvalue.domain.types import Recommendation
from fairvalue.domain.types import Source
from fairvalue.synthesis.blender import reblend
from fairvalue.synthesis.classifier import DESCRIPTIONS
from fairvalue.synthesis.guardrails import Proposal
from fairvalue.synthesis.recommendation import action_for
from fairvalue.synthesis.recommendation import headline
from fairvalue.synthesis.recommendation import upside_pct

logger = logging.getLogger(__name__)

EXTERNAL_METHOD_SUFFIX = '（LLM）'
EXTERNAL_VARIANT = 'external'


def baseline_of(record: AnalysisRecord) -> DeterministicBaseline:
  '''The deterministic result of a record, whatever its source.'''
  if record.deterministic is not None:
    return record.deterministic
  return DeterministicBaseline(record.classification, record.valuation,
                               record.recommendation)


def deterministic_view(record: AnalysisRecord) -> AnalysisRecord:
  '''
  The record without any external influence.

  Records not produced from an external proposal are returned as they
  are. An externally enhanced record is rebuilt from its retained
  baseline as an unsaved deterministic record.
  '''
  if record.source != Source.EXTERNAL:
    return record
  baseline = baseline_of(record)
  provenance = {k: v for k, v in record.provenance.items() if k != 'external'}
  return replace(record,
                 id=None,
                 classification=baseline.classification,
                 valuation=baseline.valuation,
                 recommendation=baseline.recommendation,
                 source=Source.DETERMINISTIC,
                 deterministic=None,
                 provenance=provenance)


def resynthesize(record: AnalysisRecord,
                 proposal: Proposal,
                 clock: Clock = utc_now) -> AnalysisRecord:
  '''
  Apply a sanitized proposal to a stored analysis.

  Args:
    record: Analysis to enhance
    proposal: Proposal that passed validate_proposal
    clock: Source of created_at

  Returns:
    New unsaved AnalysisRecord with source EXTERNAL and the deterministic
    baseline retained

  Raises:
    GuardrailViolation: No model with a fair value carries weight
  '''
  baseline = baseline_of(record)
  fair_values = baseline.valuation.per_model_fair_value

  valuation = reblend(fair_values, proposal.weights,
                      method_suffix=EXTERNAL_METHOD_SUFFIX)
  if valuation is None:
    raise GuardrailViolation(
        ['no model with a fair value carries weight in the proposal'])

  upside = upside_pct(valuation.fair_value, record.current_price)
  action, confidence = action_for(upside)
  description = proposal.description or DESCRIPTIONS[proposal.archetype]

  reasons = [
      headline(valuation.fair_value, upside, prefix='LLM 加權'),
      f'AI 分類：{proposal.archetype.value}，{description}',
  ]
  if proposal.narrative:
    reasons.append(proposal.narrative)
  # Per-model sentences do not depend on weights; reuse them.
  reasons.extend(baseline.recommendation.reasons[2:])

  logger.info('%s: external proposal applied (%s, fair value %.2f)',
              record.ticker, proposal.archetype.value, valuation.fair_value)

  return replace(
      record,
      id=None,
      created_at=clock(),
      classification=Classification(
          archetype=proposal.archetype,
          description=description,
          base_weights=dict(proposal.weights),
          variant=EXTERNAL_VARIANT,
      ),
      valuation=valuation,
      recommendation=Recommendation(
          action=action,
          confidence=confidence,
          upside_pct=round(upside, 2),
          fair_value=valuation.fair_value,
          reasons=reasons,
      ),
      source=Source.EXTERNAL,
      deterministic=baseline,
      provenance={
          **record.provenance,
          'external': {
              'based_on_analysis_id': record.id,
              'confidence': proposal.confidence,
              'weights': encode_weights(proposal.weights),
          },
      },
  )
