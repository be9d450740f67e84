from datetime import date

import pytest

from fairvalue.analysis.backtest.metrics import checks_to_error_frame
from fairvalue.analysis.backtest.metrics import checks_to_frame
from fairvalue.analysis.backtest.metrics import compute_accuracy_summary
from fairvalue.analysis.backtest.metrics import compute_by_type
from fairvalue.analysis.backtest.metrics import compute_leaderboard
from fairvalue.analysis.backtest.metrics import compute_model_mae
from fairvalue.analysis.backtest.metrics import compute_overall
from fairvalue.analysis.backtest.metrics import format_summary
from fairvalue.domain.types import AccuracyCheck
from fairvalue.domain.types import Action
from fairvalue.domain.types import ModelKey


def _check(analysis_id, archetype, actual_30, correct_30, errors,
           actual_90=None, correct_90=None):
  return AccuracyCheck(
      analysis_id=analysis_id,
      ticker='2330',
      analysis_date=date(2024, 1, 1),
      predicted_fair_value=110.0,
      predicted_action=Action.BUY,
      price_at_analysis=100.0,
      classification_type=archetype,
      actual_prices={30: actual_30, 90: actual_90, 180: None},
      direction_correct={30: correct_30, 90: correct_90, 180: None},
      model_errors=errors,
  )


@pytest.fixture
def checks():
  return [
      _check(1, '成長股', 100.0, 0, {
          ModelKey.DCF: {30: 10.0, 90: 4.0},
          ModelKey.PER: {30: 20.0},
      }, actual_90=104.0, correct_90=1),
      _check(2, '成長股', 110.0, 1, {
          ModelKey.DCF: {30: 6.0},
          ModelKey.PER: {30: 30.0, 90: None},
      }),
      _check(3, '存股', 120.0, 1, {ModelKey.DIVIDEND: {30: 2.0}}),
      _check(4, None, None, None, {}),
  ]


class TestFrames:
  """Tests for checks_to_frame and checks_to_error_frame."""

  def test_wide_frame(self, checks):
    """One row per check with per-horizon columns."""
    frame = checks_to_frame(checks)
    assert len(frame) == 4
    assert frame.loc[0, 'predicted_action'] == 'BUY'
    assert frame.loc[0, 'fv_error_30d'] == pytest.approx(10.0)
    assert frame['actual_180d'].isna().all()

  def test_error_frame_drops_unknown(self, checks):
    """None errors are not samples."""
    errors = checks_to_error_frame(checks)
    assert len(errors) == 6
    assert set(errors['model']) == {'dcf', 'per', 'dividend'}

  def test_empty(self):
    """No checks, empty frames."""
    assert checks_to_frame([]).empty
    assert checks_to_error_frame([]).empty


class TestComputeOverall:
  """Tests for compute_overall function."""

  def test_hit_rates(self, checks):
    """Two of three known 30d directions were right."""
    overall = compute_overall(checks_to_frame(checks))
    assert overall['hit_rate_30d'] == pytest.approx(66.7)
    assert overall['checked_30d'] == 3
    assert overall['hit_rate_90d'] == pytest.approx(100.0)
    assert overall['hit_rate_180d'] is None
    assert overall['checked_180d'] == 0

  def test_fair_value_error(self, checks):
    """|110-100|/100, |110-110|/110, |110-120|/120 averaged."""
    overall = compute_overall(checks_to_frame(checks))
    expected = (10.0 + 0.0 + 10 / 120 * 100) / 3
    assert overall['avg_error_30d'] == pytest.approx(round(expected, 2))

  def test_empty(self):
    """No rows, no statistics."""
    assert compute_overall(checks_to_frame([])) == {}


class TestComputeByType:
  """Tests for compute_by_type function."""

  def test_groups(self, checks):
    """Each archetype gets a row; missing archetype is 未分類."""
    table = compute_by_type(checks_to_frame(checks)).set_index(
        'classification_type')
    assert table.loc['成長股', 'count'] == 2
    assert table.loc['成長股', 'hit_rate_30d'] == pytest.approx(50.0)
    assert table.loc['存股', 'hit_rate_30d'] == pytest.approx(100.0)
    assert table.loc['未分類', 'checked_30d'] == 0


class TestModelTables:
  """Tests for compute_model_mae and compute_leaderboard."""

  def test_model_mae(self, checks):
    """Mean error and sample count per model and horizon."""
    table = compute_model_mae(checks_to_error_frame(checks))
    assert table.loc['dcf', 'mae_30d'] == pytest.approx(8.0)
    assert table.loc['dcf', 'n_30d'] == 2
    assert table.loc['dcf', 'mae_90d'] == pytest.approx(4.0)
    assert table.loc['per', 'n_90d'] == 0
    assert table.loc['dividend', 'n_180d'] == 0

  def test_leaderboard_order(self, checks):
    """Lowest 30d MAE ranks first, with a display label."""
    board = compute_leaderboard(checks_to_error_frame(checks))
    assert list(board['model']) == ['dividend', 'dcf', 'per']
    assert list(board['rank']) == [1, 2, 3]
    assert board.loc[0, 'label'] == '股利'

  def test_empty(self):
    """No samples, empty tables."""
    errors = checks_to_error_frame([])
    assert compute_model_mae(errors).empty
    assert compute_leaderboard(errors).empty


class TestAccuracySummary:
  """Tests for compute_accuracy_summary and format_summary."""

  def test_summary(self, checks):
    """Counts pending checks and serializes to plain data."""
    summary = compute_accuracy_summary(checks)
    assert summary.total_checks == 4
    assert summary.pending == 4
    data = summary.to_dict()
    assert data['leaderboard'][0]['model'] == 'dividend'
    assert {row['model'] for row in data['by_model']} == {
        'dcf', 'per', 'dividend'
    }

  def test_format(self, checks):
    """Text report has a header, one line per horizon and the leaderboard."""
    lines = format_summary(compute_accuracy_summary(checks))
    assert lines[0] == 'Accuracy checks: 4 (pending: 4)'
    assert 'hit rate: 66.7%' in lines[1]
    assert 'hit rate: -' in lines[3]
    assert lines[4] == 'Model leaderboard (30d MAE):'
    assert lines[5].startswith('  1. 股利')

  def test_empty_summary(self):
    """An empty store still formats."""
    summary = compute_accuracy_summary([])
    assert summary.total_checks == 0
    assert format_summary(summary) == [
        'Accuracy checks: 0 (pending: 0)',
        '   30d  hit rate: -  fair value error: -',
        '   90d  hit rate: -  fair value error: -',
        '  180d  hit rate: -  fair value error: -',
    ]
