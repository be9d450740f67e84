"""
Engine configuration.

All configuration classes are plain dataclasses that serialize to and from
JSON, so a run can be reproduced from its recorded configuration. Numeric
defaults here are tunable; the code paths that consume them are not.
"""

from dataclasses import asdict
from dataclasses import dataclass
from dataclasses import field
from datetime import timedelta
import json
import os
from pathlib import Path
from typing import Any, Optional

from fairvalue.domain.types import SectorTag


def _int_keys(raw: dict[Any, float]) -> dict[int, float]:
  """JSON object keys are strings; horizon maps are keyed by day count."""
  return {int(k): float(v) for k, v in raw.items()}


@dataclass
class FeedbackConfig:
  """
  Adaptive feedback parameters.

  Attributes:
    min_samples: Minimum 30-day samples before a model gets feedback
    horizon_weights: Weight of each horizon's MAE in the blended MAE
    blend_ratio: Share of feedback weights in the final blend
    max_weight: Cap on any single model's share
    epsilon: Added to MAE before inversion (perfect fit guard)
    stale_after_hours: Age after which cached feedback is ignored
  """
  min_samples: int = 5
  horizon_weights: dict[int, float] = field(
      default_factory=lambda: {30: 0.5, 90: 0.3, 180: 0.2})
  blend_ratio: float = 0.3
  max_weight: float = 0.5
  epsilon: float = 0.01
  stale_after_hours: float = 24.0

  @property
  def stale_after(self) -> timedelta:
    return timedelta(hours=self.stale_after_hours)

  @classmethod
  def from_dict(cls, data: dict[str, Any]) -> 'FeedbackConfig':
    data = dict(data)
    if 'horizon_weights' in data:
      data['horizon_weights'] = _int_keys(data['horizon_weights'])
    return cls(**data)


@dataclass
class BacktestConfig:
  """
  Backtest scan parameters.

  Attributes:
    min_days_ago: Minimum analysis age before the first check
    max_results: Maximum unchecked analyses handled per scan
    tolerance_days: Max distance from the target date for a realized price
    hold_band: |change| below which a HOLD counts as correct
    concurrency: Parallel price fetches (one per ticker)
  """
  min_days_ago: int = 30
  max_results: int = 100
  tolerance_days: int = 3
  hold_band: float = 0.05
  concurrency: int = 4

  @classmethod
  def from_dict(cls, data: dict[str, Any]) -> 'BacktestConfig':
    return cls(**data)


@dataclass
class ProviderConfig:
  """
  Market-data provider parameters.

  Attributes:
    base_url: Dataset endpoint
    api_token: Optional API token (env FINMIND_API_TOKEN)
    timeout_sec: Per-request timeout
    retries: Attempts per request
    backoff_sec: Base of the exponential backoff between attempts
    min_interval_sec: Minimum spacing between requests
    lookback_years: Default history length
    concurrency: Parallel series fetched per ticker
  """
  base_url: str = 'https://api.finmindtrade.com/api/v4/data'
  api_token: Optional[str] = None
  timeout_sec: float = 30.0
  retries: int = 3
  backoff_sec: float = 1.0
  min_interval_sec: float = 0.2
  lookback_years: int = 6
  concurrency: int = 4

  @classmethod
  def from_dict(cls, data: dict[str, Any]) -> 'ProviderConfig':
    return cls(**data)


@dataclass
class SectorConfig:
  """
  Sector lookup tables.

  Attributes:
    ticker_sector: Known ticker -> sector name
    sector_wacc: Sector name -> discount rate ('default' is the fallback)
    financial_keywords: Sector name fragments tagged as financial
    cyclical_keywords: Sector name fragments tagged as cyclical
  """
  ticker_sector: dict[str, str] = field(default_factory=lambda: {
      '2330': '半導體', '2303': '半導體', '2454': '半導體', '3711': '半導體',
      '2317': '電子零組件', '2382': '電子零組件', '3231': '電子零組件',
      '2412': '電信', '3045': '電信',
      '2881': '金融保險', '2882': '金融保險', '2883': '金融保險',
      '2884': '金融保險', '2885': '金融保險', '2886': '金融保險',
      '2887': '金融保險', '2891': '金融保險', '2892': '金融保險',
      '5880': '金融保險',
      '1301': '塑膠', '1303': '塑膠', '1326': '塑膠', '2002': '鋼鐵',
      '2603': '航運', '2609': '航運', '2615': '航運',
      '1216': '食品', '1227': '食品', '2912': '貿易百貨',
  })
  sector_wacc: dict[str, float] = field(default_factory=lambda: {
      '半導體': 0.10,
      '電子零組件': 0.10,
      '資訊服務': 0.10,
      '通信網路': 0.09,
      '光電': 0.11,
      '金融保險': 0.07,
      '塑膠': 0.09,
      '鋼鐵': 0.09,
      '航運': 0.10,
      '食品': 0.08,
      '營建': 0.09,
      '電信': 0.07,
      'default': 0.10,
  })
  financial_keywords: tuple[str, ...] = ('金融', '保險', '銀行', '證券')
  cyclical_keywords: tuple[str, ...] = ('航運', '鋼鐵', '塑膠', '水泥', '營建',
                                        '化學', '造紙')

  def sector_of(self, ticker: str, fallback: Optional[str] = None) -> str:
    """Sector from the table, then the provider's category, then '未分類'."""
    return self.ticker_sector.get(ticker) or fallback or '未分類'

  def wacc_of(self, sector: str) -> float:
    for name, rate in self.sector_wacc.items():
      if name != 'default' and name in sector:
        return rate
    return self.sector_wacc.get('default', 0.10)

  def tag_of(self, sector: str) -> SectorTag:
    if any(k in sector for k in self.financial_keywords):
      return SectorTag.FINANCIAL
    if any(k in sector for k in self.cyclical_keywords):
      return SectorTag.CYCLICAL
    return SectorTag.GENERAL

  @classmethod
  def from_dict(cls, data: dict[str, Any]) -> 'SectorConfig':
    data = dict(data)
    for key in ('financial_keywords', 'cyclical_keywords'):
      if key in data:
        data[key] = tuple(data[key])
    return cls(**data)


@dataclass
class EngineConfig:
  """
  Top-level configuration of the valuation service.

  Attributes:
    name: Human-readable configuration name
    db_path: SQLite database path (env FAIRVALUE_DB_PATH)
    batch_concurrency: Parallel tickers in analyze_batch
    batch_spacing_sec: Minimum spacing between tickers in analyze_batch
  """
  name: str = 'default'
  db_path: Path = Path('data/fairvalue.db')
  batch_concurrency: int = 2
  batch_spacing_sec: float = 3.0
  feedback: FeedbackConfig = field(default_factory=FeedbackConfig)
  backtest: BacktestConfig = field(default_factory=BacktestConfig)
  provider: ProviderConfig = field(default_factory=ProviderConfig)
  sectors: SectorConfig = field(default_factory=SectorConfig)

  @classmethod
  def default(cls) -> 'EngineConfig':
    """Default configuration, no environment overrides."""
    return cls()

  @classmethod
  def from_env(cls, environ: Optional[dict[str, str]] = None) -> 'EngineConfig':
    """
    Default configuration with environment overrides.

    Recognized variables:
      FAIRVALUE_DB_PATH: SQLite database path
      FINMIND_API_TOKEN: Provider API token
      FAIRVALUE_BATCH_SPACING_SEC: Spacing between batch tickers
    """
    env = os.environ if environ is None else environ
    config = cls.default()
    if env.get('FAIRVALUE_DB_PATH'):
      config.db_path = Path(env['FAIRVALUE_DB_PATH'])
    if env.get('FINMIND_API_TOKEN'):
      config.provider.api_token = env['FINMIND_API_TOKEN']
    if env.get('FAIRVALUE_BATCH_SPACING_SEC'):
      config.batch_spacing_sec = float(env['FAIRVALUE_BATCH_SPACING_SEC'])
    return config

  def to_dict(self) -> dict[str, Any]:
    """Convert to dictionary. The API token is never serialized."""
    data = asdict(self)
    data['db_path'] = str(self.db_path)
    data['provider'].pop('api_token', None)
    return data

  def to_json(self) -> str:
    """Serialize to JSON string."""
    return json.dumps(self.to_dict(), indent=2, ensure_ascii=False)

  @classmethod
  def from_dict(cls, data: dict[str, Any]) -> 'EngineConfig':
    """Create from dictionary."""
    data = dict(data)
    if 'db_path' in data:
      data['db_path'] = Path(data['db_path'])
    if 'feedback' in data:
      data['feedback'] = FeedbackConfig.from_dict(data['feedback'])
    if 'backtest' in data:
      data['backtest'] = BacktestConfig.from_dict(data['backtest'])
    if 'provider' in data:
      data['provider'] = ProviderConfig.from_dict(data['provider'])
    if 'sectors' in data:
      data['sectors'] = SectorConfig.from_dict(data['sectors'])
    return cls(**data)

  @classmethod
  def from_json(cls, json_str: str) -> 'EngineConfig':
    """Create from JSON string."""
    return cls.from_dict(json.loads(json_str))
