from datetime import timedelta

import pytest

from fairvalue.alerts import Alert
from fairvalue.alerts import AlertType
from fairvalue.alerts import check_alerts
from fairvalue.alerts import detect_classification_change
from fairvalue.domain.types import ModelKey


@pytest.fixture
def income_results(results_factory):
  """Dividend-heavy results that classify as 存股."""
  return results_factory(
      {
          ModelKey.DCF: 90.0,
          ModelKey.PER: 95.0,
          ModelKey.DIVIDEND: 100.0
      },
      diags={
          ModelKey.DCF: {
              'growth_rate': 3.0
          },
          ModelKey.PER: {
              'ttm_eps': 5.0
          },
          ModelKey.DIVIDEND: {
              'current_yield': 6.0,
              'payout_grade': 'SAFE',
              'consecutive_years': 12
          },
      },
  )


class TestAlert:
  """Tests for Alert construction."""

  def test_threshold_required(self):
    """Price and upside alerts need a threshold."""
    with pytest.raises(ValueError):
      Alert('2330', AlertType.PRICE_ABOVE)

  def test_classification_needs_none(self):
    """Classification alerts have no threshold."""
    assert Alert('2330', AlertType.CLASSIFICATION_CHANGE).threshold is None


class TestCheckAlerts:
  """Tests for check_alerts function."""

  def test_price_alerts(self, store, make_record):
    """Crossing thresholds fire; others do not."""
    store.save_analysis(make_record(price=100.0))
    alerts = [
        Alert('2330', AlertType.PRICE_ABOVE, 95.0),
        Alert('2330', AlertType.PRICE_BELOW, 95.0),
        Alert('2330', AlertType.PRICE_ABOVE, 120.0),
    ]
    fired = check_alerts(alerts, store)
    assert [t.alert for t in fired] == [alerts[0]]
    assert fired[0].message == '2330 股價 100.0 已突破 95.0'

  def test_explicit_prices(self, store, make_record):
    """Given prices override the stored analysis price."""
    store.save_analysis(make_record(price=100.0))
    alert = Alert('2330', AlertType.PRICE_BELOW, 95.0)
    fired = check_alerts([alert], store, prices={'2330': 90.0})
    assert fired[0].message == '2330 股價 90.0 已跌破 95.0'
    assert fired[0].details == {'price': 90.0}

  def test_upside(self, store, make_record):
    """Upside 12.86% is above a 10% threshold."""
    store.save_analysis(make_record())
    alert = Alert('2330', AlertType.UPSIDE_ABOVE, 10.0)
    fired = check_alerts([alert], store)
    assert fired[0].message == '2330 潛在上漲空間 12.9% 超過閾值 10.0%'
    assert fired[0].details['upside_pct'] == pytest.approx(12.86)

  def test_no_analysis(self, store):
    """Without an analysis only explicitly priced alerts can fire."""
    alerts = [
        Alert('2330', AlertType.UPSIDE_ABOVE, 10.0),
        Alert('2330', AlertType.PRICE_ABOVE, 50.0),
    ]
    assert check_alerts(alerts, store) == []
    assert len(check_alerts(alerts, store, prices={'2330': 60.0})) == 1

  def test_classification_change(self, store, make_record, income_results,
                                 now):
    """A different archetype in the latest analysis fires."""
    store.save_analysis(make_record(created_at=now - timedelta(days=1)))
    store.save_analysis(make_record(results=income_results))

    change = detect_classification_change(store, '2330')
    assert change == {'previous_type': '成長股', 'current_type': '存股'}

    fired = check_alerts([Alert('2330', AlertType.CLASSIFICATION_CHANGE)],
                         store)
    assert fired[0].message == '2330 分類從「成長股」變為「存股」'

  def test_same_classification(self, store, make_record, now):
    """Unchanged archetype, or a single analysis, does not fire."""
    assert detect_classification_change(store, '2330') is None
    store.save_analysis(make_record(created_at=now - timedelta(days=1)))
    assert detect_classification_change(store, '2330') is None
    store.save_analysis(make_record())
    assert detect_classification_change(store, '2330') is None
