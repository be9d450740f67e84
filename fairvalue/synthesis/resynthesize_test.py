import pytest

from fairvalue.domain.errors import GuardrailViolation
from fairvalue.domain.types import Action
from fairvalue.domain.types import Archetype
from fairvalue.domain.types import MODEL_KEYS
from fairvalue.domain.types import ModelKey
from fairvalue.domain.types import Source
from fairvalue.synthesis.classifier import DESCRIPTIONS
from fairvalue.synthesis.guardrails import Proposal
from fairvalue.synthesis.guardrails import validate_proposal
from fairvalue.synthesis.resynthesize import baseline_of
from fairvalue.synthesis.resynthesize import deterministic_view
from fairvalue.synthesis.resynthesize import resynthesize


def _sanitized(record, archetype='存股', narrative='', **weights):
  full = {key.value: 0.0 for key in MODEL_KEYS}
  full.update(weights)
  result = validate_proposal(
      {
          'type': archetype,
          'weights': full,
          'narrative': narrative
      }, record.valuation.available_models)
  return result.raise_for_errors()


@pytest.fixture
def record(make_record, results_factory):
  """Saved-looking record with DCF 120, PER 100 and PBR 90."""
  results = results_factory({
      ModelKey.DCF: 120.0,
      ModelKey.PER: 100.0,
      ModelKey.PBR: 90.0
  })
  return make_record(results=results).with_id(7)


class TestResynthesize:
  """Tests for applying an external proposal to a stored record."""

  def test_external_result(self, record):
    """DCF 0.3, PER 0.4, PBR 0.3 over 120, 100, 90 gives 103."""
    proposal = _sanitized(record, dcf=0.3, per=0.4, pbr=0.3)
    enhanced = resynthesize(record, proposal)

    assert enhanced.source == Source.EXTERNAL
    assert enhanced.id is None
    assert enhanced.valuation.fair_value == pytest.approx(103.0)
    assert enhanced.valuation.method.endswith('（LLM）')
    assert enhanced.classification.archetype == Archetype.INCOME
    assert enhanced.classification.variant == 'external'
    assert enhanced.recommendation.action == Action.HOLD
    assert enhanced.provenance['external']['based_on_analysis_id'] == 7

  def test_deterministic_baseline_retained(self, record):
    """The original classification, valuation and recommendation are kept."""
    proposal = _sanitized(record, dcf=0.3, per=0.4, pbr=0.3)
    enhanced = resynthesize(record, proposal)

    assert enhanced.deterministic.classification == record.classification
    assert enhanced.deterministic.valuation == record.valuation
    assert enhanced.deterministic.recommendation == record.recommendation
    assert record.source == Source.DETERMINISTIC

  def test_reasons(self, record):
    """LLM headline, AI classification, narrative, then model sentences."""
    proposal = _sanitized(record,
                          narrative='配息穩定',
                          dcf=0.3,
                          per=0.4,
                          pbr=0.3)
    enhanced = resynthesize(record, proposal)
    reasons = enhanced.recommendation.reasons
    assert reasons[0] == '目前股價接近LLM 加權合理價位（偏差 3.0%）'
    assert reasons[1] == f'AI 分類：存股，{DESCRIPTIONS[Archetype.INCOME]}'
    assert reasons[2] == '配息穩定'
    assert reasons[3:] == record.recommendation.reasons[2:]

  def test_no_weighted_value_raises(self, record):
    """A proposal weighting only models without a value is refused."""
    weights = {key: 0.0 for key in MODEL_KEYS}
    weights[ModelKey.PSR] = 1.0
    proposal = Proposal(Archetype.GROWTH, '', weights)
    with pytest.raises(GuardrailViolation):
      resynthesize(record, proposal)

  def test_baseline_of_enhanced_record(self, record):
    """Enhancing an enhanced record keeps the first baseline."""
    proposal = _sanitized(record, dcf=0.3, per=0.4, pbr=0.3)
    first = resynthesize(record, proposal)
    second = resynthesize(first.with_id(8),
                          _sanitized(record, dcf=0.5, per=0.5))
    assert baseline_of(second).valuation == record.valuation
    assert second.valuation.fair_value == pytest.approx(110.0)


class TestDeterministicView:
  """Tests for deterministic_view function."""

  def test_deterministic_record_unchanged(self, record):
    assert deterministic_view(record) is record

  def test_external_record_reverted(self, record):
    """An enhanced record falls back to its retained baseline."""
    proposal = _sanitized(record, dcf=0.3, per=0.4, pbr=0.3)
    view = deterministic_view(resynthesize(record, proposal).with_id(8))

    assert view.source == Source.DETERMINISTIC
    assert view.id is None
    assert view.deterministic is None
    assert 'external' not in view.provenance
    assert view.classification == record.classification
    assert view.valuation == record.valuation
    assert view.recommendation == record.recommendation
