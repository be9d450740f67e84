'''
Alert rules evaluated against the latest stored analyses.

  price_above / price_below: current price crosses a threshold
  upside_above: recommendation upside (%) at or above a threshold
  classification_change: the two latest analyses disagree on archetype
'''

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from dataclasses import field
import enum
import logging
from typing import Any, Optional

from fairvalue.domain.types import AnalysisRecord

logger = logging.getLogger(__name__)


class AlertType(str, enum.Enum):
  PRICE_ABOVE = 'price_above'
  PRICE_BELOW = 'price_below'
  UPSIDE_ABOVE = 'upside_above'
  CLASSIFICATION_CHANGE = 'classification_change'


@dataclass(frozen=True)
class Alert:
  ticker: str
  alert_type: AlertType
  threshold: Optional[float] = None

  def __post_init__(self):
    if (self.alert_type != AlertType.CLASSIFICATION_CHANGE and
        self.threshold is None):
      raise ValueError(f'{self.alert_type.value} alert needs a threshold')


@dataclass(frozen=True)
class TriggeredAlert:
  alert: Alert
  message: str
  details: dict[str, Any] = field(default_factory=dict)


def detect_classification_change(store,
                                 ticker: str) -> Optional[dict[str, str]]:
  '''
  Compare the archetypes of the two latest analyses of a ticker.

  Returns:
    {'previous_type', 'current_type'} when they differ, else None
  '''
  rows: list[AnalysisRecord] = store.get_latest_two(ticker)
  if len(rows) < 2:
    return None
  current = rows[0].classification.archetype.value
  previous = rows[1].classification.archetype.value
  if current == previous:
    return None
  return {'previous_type': previous, 'current_type': current}


def _check_one(alert: Alert, store, latest: Optional[AnalysisRecord],
               price: Optional[float]) -> Optional[TriggeredAlert]:
  ticker = alert.ticker
  threshold = alert.threshold
  if alert.alert_type == AlertType.PRICE_ABOVE:
    if price is not None and price >= threshold:
      return TriggeredAlert(alert, f'{ticker} 股價 {price} 已突破 {threshold}',
                            {'price': price})
  elif alert.alert_type == AlertType.PRICE_BELOW:
    if price is not None and price <= threshold:
      return TriggeredAlert(alert, f'{ticker} 股價 {price} 已跌破 {threshold}',
                            {'price': price})
  elif alert.alert_type == AlertType.UPSIDE_ABOVE:
    upside = latest.recommendation.upside_pct if latest else None
    if upside is not None and upside >= threshold:
      return TriggeredAlert(
          alert, f'{ticker} 潛在上漲空間 {upside:.1f}% 超過閾值 {threshold}%',
          {'upside_pct': upside})
  elif alert.alert_type == AlertType.CLASSIFICATION_CHANGE:
    change = detect_classification_change(store, ticker)
    if change:
      return TriggeredAlert(
          alert, f'{ticker} 分類從「{change["previous_type"]}」'
          f'變為「{change["current_type"]}」', change)
  return None


def check_alerts(
    alerts: Iterable[Alert],
    store,
    prices: Optional[Mapping[str, float]] = None,
) -> list[TriggeredAlert]:
  '''
  Evaluate alerts and return those that fire.

  Args:
    alerts: Active alerts
    store: Store with get_latest and get_latest_two
    prices: Current price by ticker; the latest analysis price is used
      for tickers not listed

  Returns:
    Triggered alerts in input order
  '''
  prices = prices or {}
  latest_cache: dict[str, Optional[AnalysisRecord]] = {}
  triggered = []
  for alert in alerts:
    if alert.ticker not in latest_cache:
      latest_cache[alert.ticker] = store.get_latest(alert.ticker)
    latest = latest_cache[alert.ticker]
    price = prices.get(alert.ticker)
    if price is None and latest is not None:
      price = latest.current_price
    hit = _check_one(alert, store, latest, price)
    if hit is not None:
      logger.info('Alert triggered: %s', hit.message)
      triggered.append(hit)
  return triggered
