from datetime import date
from datetime import timedelta

import pytest

from fairvalue.config import FeedbackConfig
from fairvalue.domain.types import AccuracyCheck
from fairvalue.domain.types import Action
from fairvalue.domain.types import Archetype
from fairvalue.domain.types import ModelKey
from fairvalue.feedback.cache import FeedbackCache


class MutableClock:

  def __init__(self, moment):
    self.moment = moment

  def __call__(self):
    return self.moment

  def advance(self, **kwargs):
    self.moment += timedelta(**kwargs)


@pytest.fixture
def checks():
  return [
      AccuracyCheck(
          analysis_id=i,
          ticker='2330',
          analysis_date=date(2024, 1, 1),
          predicted_fair_value=100.0,
          predicted_action=Action.BUY,
          price_at_analysis=90.0,
          classification_type='成長股',
          model_errors={ModelKey.DCF: {
              30: 4.0
          }},
      ) for i in range(5)
  ]


class TestFeedbackCache:
  """Tests for FeedbackCache."""

  def test_empty_cache(self, now):
    """Before any refresh nothing is available."""
    cache = FeedbackCache(clock=MutableClock(now))
    assert cache.get(Archetype.GROWTH) is None
    assert not cache.is_stale
    assert cache.status() == {'initialized': False}

  def test_refresh_and_get(self, now, checks):
    """Entries are readable by enum or by value."""
    cache = FeedbackCache(clock=MutableClock(now))
    entries = cache.refresh(checks)
    assert set(entries) == {'成長股'}
    assert cache.get(Archetype.GROWTH) is entries['成長股']
    assert cache.get('成長股') is entries['成長股']
    assert cache.get(Archetype.INCOME) is None

  def test_staleness_boundary(self, now, checks):
    """Fresh just before 24h, stale at exactly 24h."""
    clock = MutableClock(now)
    cache = FeedbackCache(clock=clock)
    cache.refresh(checks)

    clock.advance(hours=23, minutes=59, seconds=59)
    assert cache.get(Archetype.GROWTH) is not None
    assert not cache.is_stale

    clock.advance(seconds=1)
    assert cache.get(Archetype.GROWTH) is None
    assert cache.is_stale

  def test_refresh_replaces_snapshot(self, now, checks):
    """A refresh after staleness makes entries available again."""
    clock = MutableClock(now)
    cache = FeedbackCache(clock=clock)
    cache.refresh(checks)
    clock.advance(hours=30)
    cache.refresh(checks[:2])
    # Two checks are below min_samples.
    assert cache.get(Archetype.GROWTH) is None
    assert not cache.is_stale
    assert cache.status()['total_checks'] == 2

  def test_configurable_window(self, now, checks):
    """stale_after_hours is configuration."""
    clock = MutableClock(now)
    cache = FeedbackCache(FeedbackConfig(stale_after_hours=1), clock)
    cache.refresh(checks)
    clock.advance(hours=1)
    assert cache.get(Archetype.GROWTH) is None

  def test_status(self, now, checks):
    """Status reports age, coverage and weights."""
    clock = MutableClock(now)
    cache = FeedbackCache(clock=clock)
    cache.refresh(checks)
    clock.advance(hours=2)
    status = cache.status()
    assert status['initialized']
    assert status['age_seconds'] == 7200
    assert status['covered_types'] == ['成長股']
    assert status['feedback_by_type']['成長股']['weights']['dcf'] == 1.0
    assert status['feedback_by_type']['成長股']['sample_counts']['dcf'] == 5

  def test_clear(self, now, checks):
    """clear drops the snapshot."""
    cache = FeedbackCache(clock=MutableClock(now))
    cache.refresh(checks)
    cache.clear()
    assert cache.get(Archetype.GROWTH) is None
    assert cache.status() == {'initialized': False}
