'''
Helpers over FinMind long-format records.

Financial statements arrive as one row per (date, type, value). The income
statement is quarterly (sum quarters for a year); the cash-flow statement
is year-to-date cumulative (the December row is the full year).
'''

import re
from collections.abc import Sequence
from typing import Optional

import numpy as np
import pandas as pd

# Plausible share counts; outside this range the net income is in thousands.
MIN_SHARES = 1e7
MAX_SHARES = 3e11

_ROC_YEAR = re.compile(r'^(\d+)年')


def by_type(frame: pd.DataFrame, type_name: str) -> pd.DataFrame:
  '''Rows of one statement type as (date, value), newest first.'''
  if frame.empty or 'type' not in frame.columns:
    return pd.DataFrame(columns=['date', 'value'])
  rows = frame[frame['type'] == type_name]
  result = pd.DataFrame({
      'date': pd.to_datetime(rows['date']),
      'value': pd.to_numeric(rows['value'], errors='coerce'),
  }).dropna()
  return result.sort_values('date', ascending=False).reset_index(drop=True)


def annual_from_quarters(frame: pd.DataFrame, type_name: str) -> pd.DataFrame:
  '''
  Sum single-quarter values per calendar year.

  Returns:
    DataFrame with year, value, quarters; newest year first
  '''
  rows = by_type(frame, type_name)
  if rows.empty:
    return pd.DataFrame(columns=['year', 'value', 'quarters'])
  rows['year'] = rows['date'].dt.year
  annual = rows.groupby('year')['value'].agg(['sum', 'count']).reset_index()
  annual.columns = ['year', 'value', 'quarters']
  return annual.sort_values('year', ascending=False).reset_index(drop=True)


def annual_from_ytd(frame: pd.DataFrame, type_name: str) -> pd.DataFrame:
  '''
  Full-year values from year-to-date cumulative rows.

  A year whose latest row is not December is annualized and flagged
  incomplete.

  Returns:
    DataFrame with year, value, complete; newest year first
  '''
  rows = by_type(frame, type_name)
  if rows.empty:
    return pd.DataFrame(columns=['year', 'value', 'complete'])
  rows['year'] = rows['date'].dt.year
  latest = rows.groupby('year').head(1).copy()
  month = latest['date'].dt.month
  quarters = np.ceil(month / 3)
  latest['complete'] = month == 12
  latest['value'] = np.where(latest['complete'], latest['value'],
                             latest['value'] * 4 / quarters)
  return latest[['year', 'value', 'complete']].reset_index(drop=True)


def cagr(values: Sequence[float], years: int) -> Optional[float]:
  '''
  Compound annual growth from values ordered newest first.

  Returns:
    Growth rate as a fraction, None when undefined
  '''
  if len(values) < 2 or years <= 0:
    return None
  latest, oldest = values[0], values[-1]
  if oldest <= 0 or latest <= 0:
    return None
  return (latest / oldest)**(1 / years) - 1


def ttm_eps(financials: pd.DataFrame) -> Optional[float]:
  '''Sum of the four most recent quarterly EPS values.'''
  eps = by_type(financials, 'EPS')
  if len(eps) < 4:
    return None
  return float(eps['value'].head(4).sum())


def estimate_shares(financials: pd.DataFrame) -> Optional[tuple[float, str]]:
  '''
  Shares outstanding from net income / EPS of the latest quarter.

  Returns:
    (shares, method) or None when it cannot be inferred
  '''
  eps = by_type(financials, 'EPS')
  income = by_type(financials, 'IncomeAfterTaxes')
  if eps.empty or income.empty:
    return None
  latest_eps = float(eps['value'].iloc[0])
  latest_income = float(income['value'].iloc[0])
  if latest_eps == 0 or latest_income == 0:
    return None

  shares = abs(latest_income / latest_eps)
  if MIN_SHARES < shares < MAX_SHARES:
    return shares, 'net income / EPS'
  shares = abs(latest_income * 1000 / latest_eps)
  if MIN_SHARES < shares < MAX_SHARES:
    return shares, 'net income (thousands) / EPS'
  return None


def parse_roc_year(value: object) -> Optional[int]:
  '''"113年第2季" -> 2024.'''
  if not isinstance(value, str):
    return None
  match = _ROC_YEAR.match(value)
  if match:
    return int(match.group(1)) + 1911
  return int(value) if value.isdigit() else None


def annual_dividends(dividends: pd.DataFrame) -> pd.DataFrame:
  '''
  Cash and stock dividends per year.

  Returns:
    DataFrame indexed by year (int, ascending) with cash and stock columns
  '''
  if dividends.empty:
    return pd.DataFrame(columns=['cash', 'stock'])

  def column(name: str) -> pd.Series:
    if name not in dividends.columns:
      return pd.Series(0.0, index=dividends.index)
    return pd.to_numeric(dividends[name], errors='coerce').fillna(0.0)

  years = dividends['year'].map(parse_roc_year) if 'year' in dividends else None
  if years is None or years.isna().all():
    years = pd.to_datetime(dividends['date']).dt.year
  frame = pd.DataFrame({
      'year': years,
      'cash': column('CashEarningsDistribution') +
              column('CashStaticDistribution'),
      'stock': column('StockEarningsDistribution') +
               column('StockStaticDistribution'),
  }).dropna(subset=['year'])
  frame['year'] = frame['year'].astype(int)
  return frame.groupby('year')[['cash', 'stock']].sum().sort_index()


def average_price_by_year(prices: pd.DataFrame) -> pd.Series:
  '''Mean close per calendar year.'''
  if prices.empty:
    return pd.Series(dtype=float)
  years = pd.to_datetime(prices['date']).dt.year
  return prices['close'].groupby(years).mean()
