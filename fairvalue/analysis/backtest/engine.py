'''
Backtest engine: realized-price checks of stored analyses.

Lifecycle of one analysis:

  Unchecked --(>= 30 days)--> Partial(30d) --(>= 90d)--> Partial(90d)
            --(>= 180d)--> Complete

A scan creates checks for analyses without one, filling every horizon that
has already elapsed, then backfills the elapsed-but-null horizons of
existing checks. Prices are fetched once per ticker, from the earliest
pending analysis date, on a bounded thread pool. A failed ticker is
reported and skipped for this pass only.

Usage:
  report = run_backtest(store, provider)
  print(report.to_dict())
'''

from collections import defaultdict
from concurrent.futures import as_completed
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from dataclasses import field
from dataclasses import replace
from datetime import date
from datetime import timedelta
import logging
from typing import Any, Dict, List, Optional, Protocol, Union

import pandas as pd

from fairvalue.clock import Clock
from fairvalue.clock import utc_now
from fairvalue.config import BacktestConfig
from fairvalue.domain.errors import InsufficientData
from fairvalue.domain.types import AccuracyCheck
from fairvalue.domain.types import Action
from fairvalue.domain.types import AnalysisRecord
from fairvalue.domain.types import HORIZONS
from fairvalue.domain.types import ModelKey

logger = logging.getLogger(__name__)


class PriceProvider(Protocol):

  def fetch_price_series(self, ticker: str, start_date: date) -> pd.DataFrame:
    ...


@dataclass
class BacktestReport:
  '''
  Outcome of one scan.

  Attributes:
    processed: New accuracy checks created
    skipped: Analyses not checked in this pass (retried next pass)
    backfilled: Existing checks that received at least one horizon
    errors: Per-ticker or per-analysis error entries
  '''
  processed: int = 0
  skipped: int = 0
  backfilled: int = 0
  errors: List[Dict[str, Any]] = field(default_factory=list)

  def to_dict(self) -> Dict[str, Any]:
    return {
        'processed': self.processed,
        'skipped': self.skipped,
        'backfilled': self.backfilled,
        'errors': list(self.errors),
    }


def is_direction_correct(action: Action, price_at_analysis: float,
                         actual: Optional[float],
                         hold_band: float = 0.05) -> Optional[int]:
  '''
  1 when the realized move agrees with the action, 0 when not.

  BUY needs a rise, SELL a fall, HOLD a move strictly inside ±hold_band.

  Returns:
    1, 0, or None when either price is unknown
  '''
  if not actual or not price_at_analysis:
    return None
  change = (actual - price_at_analysis) / price_at_analysis
  if action == Action.BUY:
    return int(change > 0)
  if action == Action.SELL:
    return int(change < 0)
  return int(abs(change) < hold_band)


def calc_mae(predicted: float, actual: Optional[float]) -> Optional[float]:
  '''Absolute percentage error |predicted - actual| / actual * 100.'''
  if not actual:
    return None
  return abs(predicted - actual) / actual * 100


def find_price_at_offset(prices: pd.DataFrame,
                         base_date: date,
                         offset_days: int,
                         tolerance_days: int = 3) -> Optional[float]:
  '''
  Close of the trading day nearest to base_date + offset_days.

  Only days within ±tolerance_days (calendar) qualify. Of two equally
  distant days the one appearing first in prices wins.

  Args:
    prices: Frame with 'date' and 'close' columns
    base_date: Analysis date
    offset_days: Horizon in days
    tolerance_days: Maximum distance from the target date

  Returns:
    Close price, or None when no day qualifies
  '''
  if prices is None or prices.empty:
    return None
  target = pd.Timestamp(base_date + timedelta(days=offset_days))
  distance = (pd.to_datetime(prices['date']) - target).abs().dt.days
  candidates = distance[distance <= tolerance_days]
  if candidates.empty:
    return None
  # idxmin returns the first index among equal minima.
  return float(prices.loc[candidates.idxmin(), 'close'])


def _model_errors_at(
    check: AccuracyCheck, horizon: int,
    actual: float) -> Dict[ModelKey, Dict[int, Optional[float]]]:
  errors = {
      key: dict(by_horizon) for key, by_horizon in check.model_errors.items()
  }
  for key, fair_value in check.model_fair_values.items():
    if fair_value is None:
      continue
    errors.setdefault(key, {h: None for h in HORIZONS})
    errors[key][horizon] = calc_mae(fair_value, actual)
  return errors


def build_check(record: AnalysisRecord,
                prices: pd.DataFrame,
                as_of: date,
                config: Optional[BacktestConfig] = None) -> AccuracyCheck:
  '''
  Create the accuracy check of a stored analysis.

  Every horizon elapsed by as_of is looked up; the rest stay None.

  Raises:
    InsufficientData: The analysis lacks fair value, action or price
  '''
  config = config or BacktestConfig()
  if record.id is None:
    raise InsufficientData('analysis has not been persisted')
  if not record.valuation.fair_value or not record.current_price:
    raise InsufficientData('analysis missing fair value or current price')

  check = AccuracyCheck(
      analysis_id=record.id,
      ticker=record.ticker,
      analysis_date=record.analysis_date,
      predicted_fair_value=record.valuation.fair_value,
      predicted_action=record.recommendation.action,
      price_at_analysis=record.current_price,
      classification_type=record.classification.archetype.value,
      model_fair_values=dict(record.valuation.per_model_fair_value),
      model_errors={
          key: {h: None for h in HORIZONS}
          for key, value in record.valuation.per_model_fair_value.items()
          if value is not None
      },
  )
  for horizon, updates in _lookup(check, prices, as_of, config).items():
    check.actual_prices[horizon] = updates['actual']
    check.direction_correct[horizon] = updates['correct']
    check.model_errors = updates['model_errors']
  return check


def _lookup(check: AccuracyCheck, prices: pd.DataFrame, as_of: date,
            config: BacktestConfig) -> Dict[int, Dict[str, Any]]:
  '''Realized values for each elapsed, still-null horizon, in order.'''
  found: Dict[int, Dict[str, Any]] = {}
  for horizon in check.missing_horizons(as_of):
    actual = find_price_at_offset(prices, check.analysis_date, horizon,
                                  config.tolerance_days)
    if actual is None:
      continue
    check_errors = _model_errors_at(check, horizon, actual)
    found[horizon] = {
        'actual': actual,
        'correct': is_direction_correct(check.predicted_action,
                                        check.price_at_analysis, actual,
                                        config.hold_band),
        'model_errors': check_errors,
    }
    # Later horizons build on the errors recorded so far.
    check = replace(check, model_errors=check_errors)
  return found


def backfill_check(check: AccuracyCheck,
                   prices: pd.DataFrame,
                   as_of: date,
                   config: Optional[BacktestConfig] = None) -> Dict[str, Any]:
  '''
  Column updates for the elapsed horizons that are still null.

  Already-populated horizons are never touched, so a second call on the
  same data returns an empty dict.

  Returns:
    Mapping of store column -> value (e.g. 'actual_price_90d'), plus
    'model_errors' when any horizon was found; empty when nothing changed
  '''
  config = config or BacktestConfig()
  found = _lookup(check, prices, as_of, config)
  updates: Dict[str, Any] = {}
  for horizon, values in found.items():
    updates[f'actual_price_{horizon}d'] = values['actual']
    updates[f'direction_correct_{horizon}d'] = values['correct']
    updates['model_errors'] = values['model_errors']
  return updates


def apply_updates(check: AccuracyCheck,
                  updates: Dict[str, Any]) -> AccuracyCheck:
  '''In-memory counterpart of Store.update_accuracy_check.'''
  actual_prices = dict(check.actual_prices)
  direction_correct = dict(check.direction_correct)
  for horizon in HORIZONS:
    if f'actual_price_{horizon}d' in updates:
      actual_prices[horizon] = updates[f'actual_price_{horizon}d']
    if f'direction_correct_{horizon}d' in updates:
      direction_correct[horizon] = updates[f'direction_correct_{horizon}d']
  return replace(
      check,
      actual_prices=actual_prices,
      direction_correct=direction_correct,
      model_errors=updates.get('model_errors', check.model_errors),
  )


def _group_by_ticker(items, date_of) -> Dict[str, list]:
  groups: Dict[str, list] = defaultdict(list)
  for item in items:
    groups[item.ticker].append(item)
  return dict(sorted(groups.items(), key=lambda kv: min(map(date_of, kv[1]))))


def fetch_prices(
    provider: PriceProvider,
    start_dates: Dict[str, date],
    concurrency: int = 4,
) -> Dict[str, Union[pd.DataFrame, Exception]]:
  '''
  Fetch one price series per ticker concurrently.

  Returns:
    Mapping ticker -> frame, or the exception raised for that ticker
  '''
  results: Dict[str, Union[pd.DataFrame, Exception]] = {}
  if not start_dates:
    return results
  with ThreadPoolExecutor(max_workers=max(1, concurrency)) as executor:
    futures = {
        executor.submit(provider.fetch_price_series, ticker, start): ticker
        for ticker, start in start_dates.items()
    }
    for future in as_completed(futures):
      ticker = futures[future]
      try:
        results[ticker] = future.result()
      except Exception as e:  # pylint: disable=broad-except
        logger.warning('Price fetch failed for %s: %s', ticker, e)
        results[ticker] = e
  return results


def run_backtest(store,
                 provider: PriceProvider,
                 config: Optional[BacktestConfig] = None,
                 clock: Clock = utc_now) -> BacktestReport:
  '''
  Run one scan: create new checks, then backfill existing ones.

  Args:
    store: Store with get_unchecked, get_partial, save_accuracy_check and
      update_accuracy_check
    provider: Price source
    config: Backtest configuration
    clock: Source of the scan time

  Returns:
    BacktestReport

  Raises:
    PersistenceFailure: A store read or write failed
  '''
  config = config or BacktestConfig()
  now = clock()
  today = now.date()
  report = BacktestReport()

  # New checks.
  unchecked: List[AnalysisRecord] = store.get_unchecked(
      config.min_days_ago, now)[:config.max_results]
  groups = _group_by_ticker(unchecked, lambda r: r.analysis_date)
  fetched = fetch_prices(
      provider,
      {t: min(r.analysis_date for r in rs) for t, rs in groups.items()},
      config.concurrency,
  )
  created: set = set()
  for ticker, records in groups.items():
    prices = fetched.get(ticker)
    if isinstance(prices, Exception) or prices is None or prices.empty:
      error = (str(prices) if isinstance(prices, Exception) else
               'No price data available')
      report.errors.append({'ticker': ticker, 'error': error})
      report.skipped += len(records)
      continue
    for record in records:
      try:
        check = build_check(record, prices, today, config)
      except InsufficientData as e:
        report.errors.append({
            'ticker': ticker,
            'analysis_id': record.id,
            'error': e.reason
        })
        report.skipped += 1
        continue
      created.add(store.save_accuracy_check(check))
      report.processed += 1

  # Backfill.
  partial = [
      c for c in store.get_partial(now)
      if c.id not in created and c.missing_horizons(today)
  ]
  groups = _group_by_ticker(partial, lambda c: c.analysis_date)
  fetched = fetch_prices(
      provider,
      {t: min(c.analysis_date for c in cs) for t, cs in groups.items()},
      config.concurrency,
  )
  for ticker, checks in groups.items():
    prices = fetched.get(ticker)
    if isinstance(prices, Exception):
      report.errors.append({'ticker': ticker, 'error': str(prices)})
      continue
    for check in checks:
      updates = backfill_check(check, prices, today, config)
      if updates:
        store.update_accuracy_check(check.id, updates)
        report.backfilled += 1

  logger.info('Backtest: %d processed, %d skipped, %d backfilled, %d errors',
              report.processed, report.skipped, report.backfilled,
              len(report.errors))
  return report
