'''
SQLite persistence for analyses and accuracy checks.

Analyses are append-only: a row is written once and never updated.
Accuracy checks are created once and later updated one row at a time as
horizons are backfilled. Per-model maps are JSON columns; encoding and
decoding happens only here.

Usage:
  store = Store(Path('data/fairvalue.db'))
  record = store.save_analysis(record)
  latest = store.get_latest('2330')
'''

from datetime import date
from datetime import datetime
from datetime import timedelta
import json
import logging
from pathlib import Path
import sqlite3
import threading
from typing import Any, Dict, List, Optional, Union

from fairvalue.clock import Clock
from fairvalue.clock import utc_now
from fairvalue.domain.errors import PersistenceFailure
from fairvalue.domain.types import AccuracyCheck
from fairvalue.domain.types import Action
from fairvalue.domain.types import AnalysisRecord
from fairvalue.domain.types import HORIZONS
from fairvalue.domain.types import MODEL_KEYS
from fairvalue.domain.types import ModelKey
from fairvalue.domain.types import Source

logger = logging.getLogger(__name__)

SCHEMA = '''
CREATE TABLE IF NOT EXISTS analyses (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  ticker TEXT NOT NULL,
  created_at TEXT NOT NULL,
  analysis_date TEXT NOT NULL,
  source TEXT NOT NULL,
  result_json TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_analyses_ticker ON analyses(ticker, created_at);

CREATE TABLE IF NOT EXISTS accuracy_checks (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  analysis_id INTEGER NOT NULL UNIQUE REFERENCES analyses(id),
  ticker TEXT NOT NULL,
  analysis_date TEXT NOT NULL,
  predicted_fair_value REAL NOT NULL,
  predicted_action TEXT NOT NULL,
  price_at_analysis REAL NOT NULL,
  classification_type TEXT,
  actual_price_30d REAL,
  actual_price_90d REAL,
  actual_price_180d REAL,
  direction_correct_30d INTEGER,
  direction_correct_90d INTEGER,
  direction_correct_180d INTEGER,
  model_fair_values_json TEXT NOT NULL DEFAULT '{}',
  model_errors_json TEXT NOT NULL DEFAULT '{}',
  checked_at TEXT
);
CREATE INDEX IF NOT EXISTS idx_checks_ticker ON accuracy_checks(ticker);
'''

UPDATABLE_COLUMNS = frozenset(
    [f'actual_price_{h}d' for h in HORIZONS] +
    [f'direction_correct_{h}d' for h in HORIZONS] + ['model_errors'])


def _encode_model_errors(
    errors: Dict[ModelKey, Dict[int, Optional[float]]]) -> str:
  return json.dumps({
      key.value: {str(h): value for h, value in by_horizon.items()}
      for key, by_horizon in errors.items()
  })


def _decode_model_errors(
    raw: str) -> Dict[ModelKey, Dict[int, Optional[float]]]:
  known = {key.value: key for key in MODEL_KEYS}
  return {
      known[model]: {int(h): value for h, value in by_horizon.items()}
      for model, by_horizon in json.loads(raw or '{}').items()
      if model in known
  }


def _row_to_check(row: sqlite3.Row) -> AccuracyCheck:
  known = {key.value: key for key in MODEL_KEYS}
  fair_values = json.loads(row['model_fair_values_json'] or '{}')
  return AccuracyCheck(
      id=row['id'],
      analysis_id=row['analysis_id'],
      ticker=row['ticker'],
      analysis_date=date.fromisoformat(row['analysis_date']),
      predicted_fair_value=row['predicted_fair_value'],
      predicted_action=Action(row['predicted_action']),
      price_at_analysis=row['price_at_analysis'],
      classification_type=row['classification_type'],
      actual_prices={h: row[f'actual_price_{h}d'] for h in HORIZONS},
      direction_correct={h: row[f'direction_correct_{h}d'] for h in HORIZONS},
      model_fair_values={
          known[k]: v for k, v in fair_values.items() if k in known
      },
      model_errors=_decode_model_errors(row['model_errors_json']),
  )


def _row_to_record(row: sqlite3.Row) -> AnalysisRecord:
  data = json.loads(row['result_json'])
  data['id'] = row['id']
  return AnalysisRecord.from_dict(data)


class Store:
  '''
  Thread-safe SQLite store.

  One connection shared across threads, serialized by a lock. Every
  sqlite3.Error surfaces as PersistenceFailure. checked_at stamps come
  from clock.
  '''

  def __init__(self, db_path: Union[str, Path], clock: Clock = utc_now):
    self.db_path = str(db_path)
    self.clock = clock
    self._lock = threading.RLock()
    try:
      if self.db_path != ':memory:':
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
      self.conn = sqlite3.connect(self.db_path, check_same_thread=False)
      self.conn.row_factory = sqlite3.Row
      with self._lock:
        self.conn.executescript(SCHEMA)
        self.conn.commit()
    except (OSError, sqlite3.Error) as e:
      raise PersistenceFailure(f'cannot open store {self.db_path}: {e}') from e

  def _execute(self, sql: str, params: tuple = ()) -> sqlite3.Cursor:
    with self._lock:
      try:
        cur = self.conn.execute(sql, params)
        self.conn.commit()
        return cur
      except sqlite3.Error as e:
        self.conn.rollback()
        raise PersistenceFailure(str(e)) from e

  def _query(self, sql: str, params: tuple = ()) -> List[sqlite3.Row]:
    with self._lock:
      try:
        return self.conn.execute(sql, params).fetchall()
      except sqlite3.Error as e:
        raise PersistenceFailure(str(e)) from e

  def close(self) -> None:
    with self._lock:
      self.conn.close()

  # Analyses

  def save_analysis(self, record: AnalysisRecord) -> AnalysisRecord:
    '''Insert a new analysis row and return the record with its id.'''
    payload = record.to_dict()
    payload.pop('id', None)
    cur = self._execute(
        'INSERT INTO analyses (ticker, created_at, analysis_date, source, '
        'result_json) VALUES (?, ?, ?, ?, ?)',
        (record.ticker, record.created_at.isoformat(),
         record.analysis_date.isoformat(), record.source.value,
         json.dumps(payload, ensure_ascii=False)),
    )
    logger.debug('Saved analysis %d for %s', cur.lastrowid, record.ticker)
    return record.with_id(cur.lastrowid)

  def get_analysis(self, analysis_id: int) -> Optional[AnalysisRecord]:
    rows = self._query('SELECT * FROM analyses WHERE id = ?', (analysis_id,))
    return _row_to_record(rows[0]) if rows else None

  def get_latest(self, ticker: str) -> Optional[AnalysisRecord]:
    latest = self.get_latest_two(ticker)
    return latest[0] if latest else None

  def get_latest_two(self, ticker: str) -> List[AnalysisRecord]:
    '''Two most recent analyses of a ticker, newest first.'''
    return self.get_history(ticker, limit=2)

  def get_history(self, ticker: str, limit: int = 20) -> List[AnalysisRecord]:
    rows = self._query(
        'SELECT * FROM analyses WHERE ticker = ? '
        'ORDER BY created_at DESC, id DESC LIMIT ?', (ticker, limit))
    return [_row_to_record(row) for row in rows]

  def get_unchecked(self,
                    min_days_ago: int,
                    now: datetime,
                    include_external: bool = False) -> List[AnalysisRecord]:
    '''
    Analyses at least min_days_ago old without an accuracy check.

    Externally enhanced rows share their model fair values with the
    deterministic row they were derived from and are excluded unless
    include_external is set.

    Returns:
      Records ordered by creation time, oldest first
    '''
    cutoff = (now.date() - timedelta(days=min_days_ago)).isoformat()
    sql = ('SELECT a.* FROM analyses a '
           'LEFT JOIN accuracy_checks ac ON ac.analysis_id = a.id '
           'WHERE ac.id IS NULL AND a.analysis_date <= ?')
    params: tuple = (cutoff,)
    if not include_external:
      sql += ' AND a.source != ?'
      params += (Source.EXTERNAL.value,)
    rows = self._query(sql + ' ORDER BY a.created_at ASC, a.id ASC', params)
    return [_row_to_record(row) for row in rows]

  # Accuracy checks

  def save_accuracy_check(self, check: AccuracyCheck) -> int:
    '''Insert a check; returns its id.'''
    cur = self._execute(
        'INSERT INTO accuracy_checks (analysis_id, ticker, analysis_date, '
        'predicted_fair_value, predicted_action, price_at_analysis, '
        'classification_type, actual_price_30d, actual_price_90d, '
        'actual_price_180d, direction_correct_30d, direction_correct_90d, '
        'direction_correct_180d, model_fair_values_json, model_errors_json, '
        'checked_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)',
        (
            check.analysis_id,
            check.ticker,
            check.analysis_date.isoformat(),
            check.predicted_fair_value,
            check.predicted_action.value,
            check.price_at_analysis,
            check.classification_type,
            *(check.actual_prices.get(h) for h in HORIZONS),
            *(check.direction_correct.get(h) for h in HORIZONS),
            json.dumps(
                {k.value: v for k, v in check.model_fair_values.items()}),
            _encode_model_errors(check.model_errors),
            self.clock().isoformat(timespec='seconds'),
        ),
    )
    check.id = cur.lastrowid
    return cur.lastrowid

  def update_accuracy_check(self, check_id: int,
                            updates: Dict[str, Any]) -> None:
    '''
    Update whitelisted columns of one check.

    Args:
      check_id: Check to update
      updates: Column -> value; 'model_errors' takes the decoded map

    Raises:
      ValueError: A column outside the whitelist was given
    '''
    unknown = set(updates) - UPDATABLE_COLUMNS
    if unknown:
      raise ValueError(f'Cannot update columns: {sorted(unknown)}')
    if not updates:
      return

    columns = []
    values: List[Any] = []
    for column, value in updates.items():
      if column == 'model_errors':
        columns.append('model_errors_json = ?')
        values.append(_encode_model_errors(value))
      else:
        columns.append(f'{column} = ?')
        values.append(value)
    columns.append('checked_at = ?')
    values.append(self.clock().isoformat(timespec='seconds'))
    values.append(check_id)
    self._execute(
        f'UPDATE accuracy_checks SET {", ".join(columns)} WHERE id = ?',
        tuple(values))

  def get_partial(self, now: datetime) -> List[AccuracyCheck]:
    '''Checks with at least one elapsed horizon still null.'''
    today = now.date()
    clauses = []
    params: List[str] = []
    for h in HORIZONS:
      clauses.append(f'(actual_price_{h}d IS NULL AND analysis_date <= ?)')
      params.append((today - timedelta(days=h)).isoformat())
    rows = self._query(
        f'SELECT * FROM accuracy_checks WHERE {" OR ".join(clauses)} '
        'ORDER BY analysis_date ASC, id ASC', tuple(params))
    return [_row_to_check(row) for row in rows]

  def get_accuracy_check(self, check_id: int) -> Optional[AccuracyCheck]:
    rows = self._query('SELECT * FROM accuracy_checks WHERE id = ?',
                       (check_id,))
    return _row_to_check(rows[0]) if rows else None

  def get_all_accuracy_checks(self) -> List[AccuracyCheck]:
    rows = self._query('SELECT * FROM accuracy_checks ORDER BY id ASC')
    return [_row_to_check(row) for row in rows]

  def get_accuracy_by_ticker(self, ticker: str) -> List[AccuracyCheck]:
    rows = self._query(
        'SELECT * FROM accuracy_checks WHERE ticker = ? '
        'ORDER BY analysis_date DESC', (ticker,))
    return [_row_to_check(row) for row in rows]
