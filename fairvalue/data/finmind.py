'''
FinMind market-data client.

Thin requests wrapper over the FinMind v4 dataset endpoint:

  GET {base_url}?dataset=...&data_id=...&start_date=...[&token=...]
  -> {"msg": "success", "status": 200, "data": [...]}

Each failure mode raises its own CollaboratorUnavailable subclass so that
callers can tell a timeout from an HTTP status from an API-level error
from a legitimately empty series (an empty DataFrame).

Usage:
  client = FinMindClient(ProviderConfig(api_token='...'))
  prices = client.fetch_price_series('2330', date(2024, 1, 1))
  bundle = client.fetch_bundle('2330')
'''

from concurrent.futures import as_completed
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from dataclasses import field
from datetime import date
import logging
import threading
import time
from typing import Any, Callable, Dict, Optional

import pandas as pd
import requests

from fairvalue.config import ProviderConfig
from fairvalue.domain.errors import CollaboratorUnavailable
from fairvalue.domain.errors import FetchTimeout
from fairvalue.domain.errors import HTTPStatusError
from fairvalue.domain.errors import ProviderAPIError

logger = logging.getLogger(__name__)

PRICE_DATASET = 'TaiwanStockPrice'
FINANCIALS_DATASET = 'TaiwanStockFinancialStatements'
CASH_FLOWS_DATASET = 'TaiwanStockCashFlowsStatement'
BALANCE_SHEET_DATASET = 'TaiwanStockBalanceSheet'
DIVIDENDS_DATASET = 'TaiwanStockDividend'
MULTIPLES_DATASET = 'TaiwanStockPER'
MONTH_REVENUE_DATASET = 'TaiwanStockMonthRevenue'
STOCK_INFO_DATASET = 'TaiwanStockInfo'

# Dividend bands need a longer history than the statements.
DIVIDEND_LOOKBACK_YEARS = 11


class RateLimiter:
  '''Min-interval rate limiter, safe to share between threads.'''

  def __init__(self, min_interval_sec: float) -> None:
    self._min_interval = float(min_interval_sec)
    self._last = 0.0
    self._lock = threading.Lock()

  def wait(self) -> None:
    with self._lock:
      now = time.monotonic()
      sleep_for = self._min_interval - (now - self._last)
      if sleep_for > 0:
        time.sleep(sleep_for)
      self._last = time.monotonic()


def years_ago(years: int, today: Optional[date] = None) -> date:
  today = today or date.today()
  return (pd.Timestamp(today) - pd.DateOffset(years=years)).date()


def _retryable(error: Exception) -> bool:
  if isinstance(error, HTTPStatusError):
    return error.status_code == 429 or error.status_code >= 500
  return not isinstance(error, ProviderAPIError)


@dataclass
class MarketDataBundle:
  '''
  Everything fetched for one ticker.

  A series that failed is an empty frame with its error message in
  errors, keyed by series name.
  '''
  ticker: str
  latest_price: float
  prices: pd.DataFrame
  financials: pd.DataFrame = field(default_factory=pd.DataFrame)
  cash_flows: pd.DataFrame = field(default_factory=pd.DataFrame)
  balance_sheet: pd.DataFrame = field(default_factory=pd.DataFrame)
  dividends: pd.DataFrame = field(default_factory=pd.DataFrame)
  multiples: pd.DataFrame = field(default_factory=pd.DataFrame)
  month_revenue: pd.DataFrame = field(default_factory=pd.DataFrame)
  stock_info: Optional[Dict[str, Any]] = None
  errors: Dict[str, str] = field(default_factory=dict)

  @property
  def industry(self) -> Optional[str]:
    if not self.stock_info:
      return None
    return self.stock_info.get('industry_category')


class FinMindClient:
  '''
  HTTP client for FinMind datasets.

  Attributes:
    config: Provider configuration
    session: Shared requests session
  '''

  def __init__(self,
               config: Optional[ProviderConfig] = None,
               session: Optional[requests.Session] = None,
               limiter: Optional[RateLimiter] = None):
    self.config = config or ProviderConfig()
    self.session = session or requests.Session()
    self.limiter = limiter or RateLimiter(self.config.min_interval_sec)

  def _get_once(self, params: Dict[str, str]) -> list:
    dataset = params['dataset']
    self.limiter.wait()
    try:
      resp = self.session.get(self.config.base_url,
                              params=params,
                              timeout=self.config.timeout_sec)
    except requests.Timeout as e:
      raise FetchTimeout(
          f'{dataset} timed out after {self.config.timeout_sec}s') from e
    except requests.RequestException as e:
      raise CollaboratorUnavailable(f'{dataset} request failed: {e}') from e

    if resp.status_code >= 400:
      raise HTTPStatusError(resp.status_code,
                            f'{dataset}: {resp.text[:200]}')
    try:
      payload = resp.json()
    except ValueError as e:
      raise ProviderAPIError(f'{dataset}: response is not JSON') from e
    if payload.get('msg') != 'success':
      raise ProviderAPIError(f'{dataset}: {payload.get("msg")}')
    return payload.get('data') or []

  def fetch_dataset(self, dataset: str, ticker: str,
                    start_date: date) -> pd.DataFrame:
    '''
    Fetch one dataset as a DataFrame of raw records.

    Retries timeouts, connection errors, 429 and 5xx with exponential
    backoff; other failures raise immediately.

    Raises:
      FetchTimeout, HTTPStatusError, ProviderAPIError,
      CollaboratorUnavailable
    '''
    params = {
        'dataset': dataset,
        'data_id': ticker,
        'start_date': start_date.isoformat(),
    }
    if self.config.api_token:
      params['token'] = self.config.api_token

    attempts = max(1, self.config.retries)
    for attempt in range(attempts):
      try:
        return pd.DataFrame(self._get_once(params))
      except CollaboratorUnavailable as e:
        if not _retryable(e) or attempt == attempts - 1:
          raise
        logger.debug('%s %s attempt %d failed: %s', dataset, ticker,
                     attempt + 1, e)
        time.sleep(self.config.backoff_sec * (2**attempt))
    raise AssertionError('unreachable')

  def _start(self, start_date: Optional[date], years: int) -> date:
    return start_date or years_ago(years)

  def fetch_price_series(self,
                         ticker: str,
                         start_date: Optional[date] = None) -> pd.DataFrame:
    '''
    Daily closes from start_date on.

    Returns:
      DataFrame with 'date' (datetime.date) and 'close' (float), sorted by
      date; empty when the provider has no data
    '''
    raw = self.fetch_dataset(
        PRICE_DATASET, ticker,
        self._start(start_date, self.config.lookback_years))
    if raw.empty:
      return pd.DataFrame(columns=['date', 'close'])
    prices = pd.DataFrame({
        'date': pd.to_datetime(raw['date']).dt.date,
        'close': pd.to_numeric(raw['close'], errors='coerce'),
    })
    return prices.dropna().sort_values('date').reset_index(drop=True)

  def fetch_financial_statements(
      self, ticker: str, start_date: Optional[date] = None) -> pd.DataFrame:
    return self.fetch_dataset(
        FINANCIALS_DATASET, ticker,
        self._start(start_date, self.config.lookback_years))

  def fetch_cash_flows(self,
                       ticker: str,
                       start_date: Optional[date] = None) -> pd.DataFrame:
    return self.fetch_dataset(
        CASH_FLOWS_DATASET, ticker,
        self._start(start_date, self.config.lookback_years))

  def fetch_balance_sheet(self,
                          ticker: str,
                          start_date: Optional[date] = None) -> pd.DataFrame:
    return self.fetch_dataset(
        BALANCE_SHEET_DATASET, ticker,
        self._start(start_date, self.config.lookback_years))

  def fetch_dividends(self,
                      ticker: str,
                      start_date: Optional[date] = None) -> pd.DataFrame:
    return self.fetch_dataset(
        DIVIDENDS_DATASET, ticker,
        self._start(start_date, DIVIDEND_LOOKBACK_YEARS))

  def fetch_multiples(self,
                      ticker: str,
                      start_date: Optional[date] = None) -> pd.DataFrame:
    '''Daily PER, PBR and dividend yield history.'''
    return self.fetch_dataset(
        MULTIPLES_DATASET, ticker,
        self._start(start_date, self.config.lookback_years))

  def fetch_month_revenue(self,
                          ticker: str,
                          start_date: Optional[date] = None) -> pd.DataFrame:
    return self.fetch_dataset(MONTH_REVENUE_DATASET, ticker,
                              self._start(start_date, 3))

  def fetch_stock_info(self, ticker: str) -> Optional[Dict[str, Any]]:
    '''First stock-info record (industry category, name), or None.'''
    raw = self.fetch_dataset(STOCK_INFO_DATASET, ticker, years_ago(1))
    if raw.empty:
      return None
    return raw.iloc[0].to_dict()

  def fetch_bundle(self, ticker: str) -> MarketDataBundle:
    '''
    Fetch every series of a ticker concurrently.

    Series fail independently: a failed series is recorded in
    bundle.errors and left empty.

    Raises:
      CollaboratorUnavailable: The price series failed or is empty
    '''
    fetchers: Dict[str, Callable[[str], Any]] = {
        'prices': self.fetch_price_series,
        'financials': self.fetch_financial_statements,
        'cash_flows': self.fetch_cash_flows,
        'balance_sheet': self.fetch_balance_sheet,
        'dividends': self.fetch_dividends,
        'multiples': self.fetch_multiples,
        'month_revenue': self.fetch_month_revenue,
        'stock_info': self.fetch_stock_info,
    }
    series: Dict[str, Any] = {}
    errors: Dict[str, str] = {}
    with ThreadPoolExecutor(max_workers=self.config.concurrency) as executor:
      futures = {
          executor.submit(fetch, ticker): name
          for name, fetch in fetchers.items()
      }
      for future in as_completed(futures):
        name = futures[future]
        try:
          series[name] = future.result()
        except CollaboratorUnavailable as e:
          logger.warning('%s: %s unavailable: %s', ticker, name, e)
          errors[name] = str(e)

    prices = series.get('prices')
    if prices is None or prices.empty:
      reason = errors.get('prices', 'no price data')
      raise CollaboratorUnavailable(f'{ticker}: {reason}')

    return MarketDataBundle(
        ticker=ticker,
        latest_price=float(prices['close'].iloc[-1]),
        prices=prices,
        stock_info=series.get('stock_info'),
        errors=errors,
        **{
            name: series.get(name, pd.DataFrame())
            for name in ('financials', 'cash_flows', 'balance_sheet',
                         'dividends', 'multiples', 'month_revenue')
        },
    )
