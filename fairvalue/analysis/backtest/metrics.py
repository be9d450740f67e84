'''
Accuracy metrics over stored accuracy checks.

Checks are flattened into DataFrames first: a wide frame with one row per
check, and a long error frame with one row per (check, model, horizon)
error sample. Every summary below is a groupby over one of those.
'''

from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import pandas as pd

from fairvalue.domain.types import AccuracyCheck
from fairvalue.domain.types import HORIZONS
from fairvalue.domain.types import MODEL_LABELS
from fairvalue.domain.types import ModelKey

ERROR_COLUMNS = [
    'analysis_id', 'ticker', 'classification_type', 'model', 'horizon',
    'error'
]


def checks_to_frame(checks: Iterable[AccuracyCheck]) -> pd.DataFrame:
  '''
  One row per check.

  Columns: id, analysis_id, ticker, analysis_date, classification_type,
  predicted_action, predicted_fair_value, price_at_analysis, and for each
  horizon h: actual_{h}d, correct_{h}d, fv_error_{h}d (absolute percentage
  error of the blended fair value against the realized price).
  '''
  rows = []
  for check in checks:
    row: Dict[str, Any] = {
        'id': check.id,
        'analysis_id': check.analysis_id,
        'ticker': check.ticker,
        'analysis_date': check.analysis_date,
        'classification_type': check.classification_type,
        'predicted_action': check.predicted_action.value,
        'predicted_fair_value': check.predicted_fair_value,
        'price_at_analysis': check.price_at_analysis,
    }
    for h in HORIZONS:
      actual = check.actual_prices.get(h)
      row[f'actual_{h}d'] = actual
      row[f'correct_{h}d'] = check.direction_correct.get(h)
      row[f'fv_error_{h}d'] = (
          abs(check.predicted_fair_value - actual) / actual * 100
          if actual else None)
    rows.append(row)

  frame = pd.DataFrame(rows)
  if frame.empty:
    return frame
  numeric = [c for c in frame.columns if c.startswith(('actual_', 'correct_',
                                                       'fv_error_'))]
  frame[numeric] = frame[numeric].apply(pd.to_numeric, errors='coerce')
  return frame


def checks_to_error_frame(checks: Iterable[AccuracyCheck]) -> pd.DataFrame:
  '''Long-form per-model error samples; unknown errors are dropped.'''
  rows = []
  for check in checks:
    for model, by_horizon in check.model_errors.items():
      for horizon, error in by_horizon.items():
        if error is None:
          continue
        rows.append({
            'analysis_id': check.analysis_id,
            'ticker': check.ticker,
            'classification_type': check.classification_type,
            'model': model.value,
            'horizon': int(horizon),
            'error': float(error),
        })
  return pd.DataFrame(rows, columns=ERROR_COLUMNS)


def _horizon_stats(frame: pd.DataFrame) -> Dict[str, Optional[float]]:
  stats: Dict[str, Optional[float]] = {}
  for h in HORIZONS:
    correct = frame[f'correct_{h}d'].dropna()
    errors = frame[f'fv_error_{h}d'].dropna()
    stats[f'hit_rate_{h}d'] = (round(float(correct.mean()) * 100, 1)
                               if len(correct) else None)
    stats[f'avg_error_{h}d'] = (round(float(errors.mean()), 2)
                                if len(errors) else None)
    stats[f'checked_{h}d'] = int(len(correct))
  return stats


def compute_overall(frame: pd.DataFrame) -> Dict[str, Optional[float]]:
  '''Hit rate (%) and blended fair-value error per horizon.'''
  if frame.empty:
    return {}
  return _horizon_stats(frame)


def compute_by_type(frame: pd.DataFrame) -> pd.DataFrame:
  '''compute_overall per archetype, with a count column.'''
  if frame.empty:
    return pd.DataFrame()
  rows = []
  grouped = frame.fillna({'classification_type': '未分類'})
  for archetype, group in grouped.groupby('classification_type'):
    rows.append({
        'classification_type': archetype,
        'count': len(group),
        **_horizon_stats(group),
    })
  return pd.DataFrame(rows)


def compute_model_mae(errors: pd.DataFrame) -> pd.DataFrame:
  '''
  Average MAE and sample count per model and horizon.

  Returns:
    DataFrame indexed by model key with mae_{h}d and n_{h}d columns
  '''
  if errors.empty:
    return pd.DataFrame()
  table = errors.groupby(['model', 'horizon'])['error'].agg(['mean', 'count'])
  table = table.unstack('horizon')
  result = pd.DataFrame(index=table.index)
  for h in HORIZONS:
    if ('mean', h) in table.columns:
      result[f'mae_{h}d'] = table[('mean', h)].round(2)
      result[f'n_{h}d'] = table[('count', h)].fillna(0).astype(int)
    else:
      result[f'mae_{h}d'] = float('nan')
      result[f'n_{h}d'] = 0
  return result


def compute_leaderboard(errors: pd.DataFrame) -> pd.DataFrame:
  '''Models ranked by 30-day MAE, most accurate first.'''
  table = compute_model_mae(errors)
  if table.empty:
    return table
  board = table[table['n_30d'] > 0].sort_values('mae_30d', kind='stable')
  board = board.reset_index()
  board.insert(0, 'rank', range(1, len(board) + 1))
  board.insert(2, 'label',
               [MODEL_LABELS[ModelKey(model)] for model in board['model']])
  return board


@dataclass
class AccuracySummary:
  '''
  Accuracy report over all checks.

  Attributes:
    total_checks: Number of accuracy checks
    pending: Checks still waiting for at least one horizon
    overall: Hit rates and fair-value errors per horizon
    by_type: Per-archetype statistics
    by_model: Per-model MAE table
    leaderboard: Models ranked by 30-day MAE
  '''
  total_checks: int
  pending: int
  overall: Dict[str, Optional[float]]
  by_type: pd.DataFrame
  by_model: pd.DataFrame
  leaderboard: pd.DataFrame

  def to_dict(self) -> Dict[str, Any]:
    return {
        'total_checks': self.total_checks,
        'pending': self.pending,
        'overall': dict(self.overall),
        'by_type': self.by_type.to_dict(orient='records'),
        'by_model': self.by_model.reset_index().to_dict(orient='records'),
        'leaderboard': self.leaderboard.to_dict(orient='records'),
    }


def compute_accuracy_summary(
    checks: Iterable[AccuracyCheck]) -> AccuracySummary:
  checks = list(checks)
  frame = checks_to_frame(checks)
  errors = checks_to_error_frame(checks)
  return AccuracySummary(
      total_checks=len(checks),
      pending=sum(1 for check in checks if not check.is_complete),
      overall=compute_overall(frame),
      by_type=compute_by_type(frame),
      by_model=compute_model_mae(errors),
      leaderboard=compute_leaderboard(errors),
  )


def format_summary(summary: AccuracySummary) -> List[str]:
  '''Plain-text lines for terminal output.'''
  lines = [f'Accuracy checks: {summary.total_checks} '
           f'(pending: {summary.pending})']
  for h in HORIZONS:
    rate = summary.overall.get(f'hit_rate_{h}d')
    error = summary.overall.get(f'avg_error_{h}d')
    lines.append(f'  {h:>3}d  hit rate: '
                 f'{"-" if rate is None else f"{rate:.1f}%"}'
                 f'  fair value error: '
                 f'{"-" if error is None else f"{error:.2f}%"}')
  if not summary.leaderboard.empty:
    lines.append('Model leaderboard (30d MAE):')
    for row in summary.leaderboard.itertuples(index=False):
      lines.append(f'  {row.rank}. {row.label:<10} {row.mae_30d:>7.2f}%  '
                   f'(n={row.n_30d})')
  return lines
