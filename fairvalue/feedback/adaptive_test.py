from datetime import date

import pytest

from fairvalue.config import FeedbackConfig
from fairvalue.domain.types import AccuracyCheck
from fairvalue.domain.types import Action
from fairvalue.domain.types import MODEL_KEYS
from fairvalue.domain.types import ModelKey
from fairvalue.feedback.adaptive import blend_weights
from fairvalue.feedback.adaptive import cap_and_normalize
from fairvalue.feedback.adaptive import compute_blended_mae
from fairvalue.feedback.adaptive import compute_feedback_by_type
from fairvalue.feedback.adaptive import FeedbackEntry
from fairvalue.feedback.adaptive import mae_to_weights
from fairvalue.feedback.adaptive import mix_weights
from fairvalue.feedback.adaptive import UNCLASSIFIED
from fairvalue.synthesis.classifier import BASE_WEIGHTS


def _check(archetype, errors):
  return AccuracyCheck(
      analysis_id=1,
      ticker='2330',
      analysis_date=date(2024, 1, 1),
      predicted_fair_value=100.0,
      predicted_action=Action.HOLD,
      price_at_analysis=100.0,
      classification_type=archetype,
      model_errors=errors,
  )


class TestComputeBlendedMAE:
  """Tests for compute_blended_mae function."""

  def test_below_min_samples(self):
    """Four 30-day samples are not enough with min_samples=5."""
    assert compute_blended_mae({30: [1.0] * 4, 90: [1.0] * 10}) is None

  def test_missing_horizon_renormalized(self):
    """Without 180d samples: (10*0.5 + 20*0.3) / 0.8 = 13.75."""
    mae = compute_blended_mae({30: [10.0] * 5, 90: [20.0] * 5})
    assert mae == pytest.approx(13.75)

  def test_all_horizons(self):
    """10*0.5 + 20*0.3 + 30*0.2 = 17."""
    mae = compute_blended_mae({
        30: [5.0, 15.0] * 3,
        90: [20.0] * 2,
        180: [30.0]
    })
    assert mae == pytest.approx(17.0)

  def test_custom_min_samples(self):
    """min_samples is configuration."""
    config = FeedbackConfig(min_samples=1)
    assert compute_blended_mae({30: [8.0]}, config) == pytest.approx(8.0)


class TestCapAndNormalize:
  """Tests for cap_and_normalize function."""

  def test_excess_redistributed_proportionally(self):
    """0.6 / 0.3 / 0.1 -> 0.5 / 0.375 / 0.125."""
    result = cap_and_normalize(
        {
            ModelKey.DCF: 0.6,
            ModelKey.PER: 0.3,
            ModelKey.PBR: 0.1
        }, 0.5)
    assert result[ModelKey.DCF] == pytest.approx(0.5)
    assert result[ModelKey.PER] == pytest.approx(0.375)
    assert result[ModelKey.PBR] == pytest.approx(0.125)

  def test_cascading_cap(self):
    """Redistribution that pushes another model over the cap is re-capped."""
    result = cap_and_normalize(
        {
            ModelKey.DCF: 0.7,
            ModelKey.PER: 0.2,
            ModelKey.PBR: 0.1
        }, 0.4)
    assert result[ModelKey.DCF] == pytest.approx(0.4)
    assert result[ModelKey.PER] == pytest.approx(0.4)
    assert result[ModelKey.PBR] == pytest.approx(0.2)
    assert sum(result.values()) == pytest.approx(1.0)

  def test_infeasible_cap(self):
    """A single weighted model cannot be capped and keeps everything."""
    result = cap_and_normalize({ModelKey.DCF: 3.0}, 0.5)
    assert result[ModelKey.DCF] == pytest.approx(1.0)

  def test_all_zero(self):
    """An all-zero vector has no normalization."""
    assert cap_and_normalize({key: 0.0 for key in MODEL_KEYS}, 0.5) is None


class TestMaeToWeights:
  """Tests for mae_to_weights function."""

  def test_equal_errors_equal_weights(self):
    """Three equal MAEs give one third each."""
    maes = {key: None for key in MODEL_KEYS}
    maes.update({ModelKey.DCF: 10.0, ModelKey.PER: 10.0, ModelKey.PBR: 10.0})
    weights = mae_to_weights(maes)
    for key in (ModelKey.DCF, ModelKey.PER, ModelKey.PBR):
      assert weights[key] == pytest.approx(1 / 3)
    assert weights[ModelKey.PSR] == 0.0

  def test_lower_error_higher_weight(self):
    """Inverse-error weighting favors the accurate model."""
    maes = {ModelKey.DCF: 5.0, ModelKey.PER: 10.0, ModelKey.PBR: 20.0}
    weights = mae_to_weights(maes)
    assert weights[ModelKey.DCF] > weights[ModelKey.PER] > weights[ModelKey.PBR]
    assert max(weights.values()) <= 0.5 + 1e-12

  def test_no_eligible_model(self):
    """All-None MAEs give None."""
    assert mae_to_weights({key: None for key in MODEL_KEYS}) is None


class TestBlendWeights:
  """Tests for mixing base and feedback weights."""

  def test_mix_formula(self):
    """Base 0.5, feedback 0.1, ratio 0.3 -> 0.7*0.5 + 0.3*0.1 = 0.38."""
    mixed = mix_weights({ModelKey.DCF: 0.5}, {ModelKey.DCF: 0.1}, 0.3)
    assert mixed[ModelKey.DCF] == pytest.approx(0.38)

  def test_blend_capped_and_normalized(self):
    """Final weights sum to 1 with no share above the cap."""
    feedback = {key: 0.0 for key in MODEL_KEYS}
    feedback[ModelKey.DCF] = 0.5
    feedback[ModelKey.PER] = 0.5
    entry = FeedbackEntry(weights=feedback,
                          sample_counts={},
                          blended_maes={},
                          total_checks=5)
    blended = blend_weights(BASE_WEIGHTS['income'], entry)
    assert sum(blended.weights.values()) == pytest.approx(1.0)
    assert max(blended.weights.values()) <= 0.5 + 1e-12
    assert blended.blend_ratio == 0.3
    assert blended.feedback_weights == feedback
    # DIVIDEND: 0.7 * 0.5 = 0.35, nothing capped
    assert blended.weights[ModelKey.DIVIDEND] == pytest.approx(0.35)


class TestComputeFeedbackByType:
  """Tests for per-archetype feedback aggregation."""

  def test_groups_by_archetype(self):
    """Each archetype with enough samples gets an entry."""
    checks = [
        _check('成長股', {ModelKey.DCF: {30: 5.0}, ModelKey.PER: {30: 15.0}})
        for _ in range(5)
    ] + [_check('存股', {ModelKey.DIVIDEND: {30: 3.0}}) for _ in range(6)]

    result = compute_feedback_by_type(checks)

    assert set(result) == {'成長股', '存股'}
    growth = result['成長股']
    assert growth.total_checks == 5
    assert growth.sample_counts[ModelKey.DCF] == 5
    assert growth.blended_maes[ModelKey.DCF] == pytest.approx(5.0)
    assert growth.blended_maes[ModelKey.PBR] is None
    assert growth.weights[ModelKey.DCF] == pytest.approx(0.5)
    assert result['存股'].weights[ModelKey.DIVIDEND] == pytest.approx(1.0)

  def test_insufficient_samples_omitted(self):
    """Archetypes below min_samples produce no entry."""
    checks = [_check('成長股', {ModelKey.DCF: {30: 5.0}}) for _ in range(4)]
    assert compute_feedback_by_type(checks) == {}

  def test_unclassified_bucket(self):
    """Checks without an archetype are grouped as unclassified."""
    checks = [_check(None, {ModelKey.PER: {30: 5.0}}) for _ in range(5)]
    result = compute_feedback_by_type(checks)
    assert list(result) == [UNCLASSIFIED]
    assert result[UNCLASSIFIED].total_checks == 5

  def test_null_errors_ignored(self):
    """Unknown horizon errors are not samples."""
    errors = {ModelKey.DCF: {30: None, 90: 5.0}}
    checks = [_check('成長股', errors) for _ in range(10)]
    assert compute_feedback_by_type(checks) == {}
