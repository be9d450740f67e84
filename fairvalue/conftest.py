from datetime import date
from datetime import datetime
from datetime import timedelta
from datetime import timezone
from typing import Optional

import pandas as pd
import pytest

from fairvalue.clock import fixed_clock
from fairvalue.data.finmind import MarketDataBundle
from fairvalue.domain.types import MODEL_KEYS
from fairvalue.domain.types import ModelKey
from fairvalue.domain.types import ModelResult
from fairvalue.domain.types import SectorTag
from fairvalue.domain.types import Signal
from fairvalue.store import Store
from fairvalue.synthesis.synthesizer import synthesize

NOW = datetime(2025, 6, 30, 8, 0, tzinfo=timezone.utc)


def make_results(fair_values: dict[ModelKey, float],
                 diags: Optional[dict[ModelKey, dict]] = None
                ) -> dict[ModelKey, ModelResult]:
  """Available results for the given models, unavailable for the rest."""
  diags = diags or {}
  results = {}
  for key in MODEL_KEYS:
    if key in fair_values:
      results[key] = ModelResult(key=key,
                                 available=True,
                                 fair_value=fair_values[key],
                                 signal=Signal.FAIR,
                                 diag=diags.get(key, {}))
    else:
      results[key] = ModelResult.unavailable(key, 'no data')
  return results


def make_prices(start: date, days: int, close=100.0) -> pd.DataFrame:
  """Daily closes from start; close may be a number or a day -> price fn."""
  dates = [start + timedelta(days=i) for i in range(days)]
  closes = [close(i) if callable(close) else close for i in range(days)]
  return pd.DataFrame({'date': dates, 'close': closes})


def make_bundle(ticker: str = '2330',
                price: float = 100.0,
                prices: Optional[pd.DataFrame] = None,
                **series) -> MarketDataBundle:
  """Bundle with the given series; prices default to one day at price."""
  if prices is None:
    prices = make_prices(date(2024, 12, 31), 1, price)
  return MarketDataBundle(ticker=ticker,
                          latest_price=price,
                          prices=prices,
                          **series)


class FakePriceProvider:
  """Price provider serving canned frames; an Exception value is raised."""

  def __init__(self, series: dict):
    self.series = series
    self.calls: list[tuple[str, date]] = []

  def fetch_price_series(self, ticker: str, start_date: date) -> pd.DataFrame:
    self.calls.append((ticker, start_date))
    value = self.series.get(ticker)
    if isinstance(value, Exception):
      raise value
    if value is None:
      return pd.DataFrame(columns=['date', 'close'])
    return value


@pytest.fixture
def now() -> datetime:
  return NOW


@pytest.fixture
def clock():
  return fixed_clock(NOW)


@pytest.fixture
def store(tmp_path):
  """SQLite store in a temporary directory."""
  s = Store(tmp_path / 'fairvalue.db', clock=fixed_clock(NOW))
  yield s
  s.close()


@pytest.fixture
def growth_results() -> dict[ModelKey, ModelResult]:
  """DCF 120 and PER 100 available, growth signals, everything else not."""
  return make_results(
      {
          ModelKey.DCF: 120.0,
          ModelKey.PER: 100.0
      },
      diags={
          ModelKey.DCF: {
              'growth_rate': 15.0
          },
          ModelKey.PER: {
              'ttm_eps': 8.0
          },
      },
  )


@pytest.fixture
def make_record(growth_results):
  """Factory of synthesized, unsaved records."""

  def _make(ticker: str = '2330',
            price: float = 100.0,
            created_at: datetime = NOW,
            results: Optional[dict[ModelKey, ModelResult]] = None,
            sector_tag: SectorTag = SectorTag.GENERAL):
    return synthesize(ticker,
                      price,
                      results or growth_results,
                      sector_tag,
                      clock=fixed_clock(created_at))

  return _make


@pytest.fixture
def results_factory():
  return make_results


@pytest.fixture
def prices_factory():
  return make_prices


@pytest.fixture
def bundle_factory():
  return make_bundle


@pytest.fixture
def provider_factory():
  return FakePriceProvider
