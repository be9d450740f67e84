'''
Valuation service: the process-level context wiring collaborators.

The service owns the store, the market-data client, the model list and
the feedback cache. Nothing in the core reads global state; everything
flows from here.

Usage:
  config = EngineConfig.from_env()
  service = ValuationService(config)
  record = service.analyze('2330')
  outcome = service.enhance('2330', {'type': '成長股', 'weights': {...}})
'''

from concurrent.futures import as_completed
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from dataclasses import field
import logging
from typing import Any, Optional, Sequence

from fairvalue.alerts import Alert
from fairvalue.alerts import check_alerts
from fairvalue.alerts import TriggeredAlert
from fairvalue.analysis.backtest.engine import BacktestReport
from fairvalue.analysis.backtest.engine import run_backtest
from fairvalue.analysis.backtest.metrics import AccuracySummary
from fairvalue.analysis.backtest.metrics import compute_accuracy_summary
from fairvalue.clock import Clock
from fairvalue.clock import utc_now
from fairvalue.config import EngineConfig
from fairvalue.data.finmind import FinMindClient
from fairvalue.data.finmind import RateLimiter
from fairvalue.domain.errors import FairValueError
from fairvalue.domain.errors import GuardrailViolation
from fairvalue.domain.errors import InsufficientData
from fairvalue.domain.types import AnalysisRecord
from fairvalue.feedback.adaptive import FeedbackEntry
from fairvalue.feedback.cache import FeedbackCache
from fairvalue.models.base import collect_results
from fairvalue.models.base import evaluate_models
from fairvalue.models.base import ValuationModel
from fairvalue.models.registry import create_models
from fairvalue.store import Store
from fairvalue.synthesis.guardrails import validate_proposal
from fairvalue.synthesis.resynthesize import deterministic_view
from fairvalue.synthesis.resynthesize import resynthesize
from fairvalue.synthesis.synthesizer import synthesize

logger = logging.getLogger(__name__)


@dataclass
class BatchResult:
  '''Outcome of analyze_batch: saved records and per-ticker errors.'''
  records: dict[str, AnalysisRecord] = field(default_factory=dict)
  errors: list[dict[str, str]] = field(default_factory=list)


@dataclass
class EnhanceResult:
  '''
  Outcome of enhance.

  Attributes:
    record: The resynthesized record when the proposal was accepted,
      otherwise the unchanged deterministic record
    accepted: Whether the proposal passed the guardrails
    errors: Itemized guardrail violations (empty when accepted)
  '''
  record: AnalysisRecord
  accepted: bool
  errors: list[str] = field(default_factory=list)


class ValuationService:

  def __init__(self,
               config: Optional[EngineConfig] = None,
               store: Optional[Store] = None,
               client: Optional[FinMindClient] = None,
               models: Optional[Sequence[ValuationModel]] = None,
               feedback: Optional[FeedbackCache] = None,
               clock: Clock = utc_now):
    '''
    Build the service context.

    Args:
      config: Engine configuration (default: EngineConfig.default())
      store: Persistent store (default: SQLite at config.db_path)
      client: Market-data provider with fetch_bundle and fetch_price_series
      models: Valuation models (default: every registered model)
      feedback: Feedback cache (default: empty cache)
      clock: Source of the current time
    '''
    self.config = config or EngineConfig.default()
    self.clock = clock
    if store is None:
      self.config.db_path.parent.mkdir(parents=True, exist_ok=True)
      store = Store(self.config.db_path, clock=clock)
    self.store = store
    self.client = client or FinMindClient(self.config.provider)
    self.models = list(models if models is not None else create_models(
        self.config.sectors))
    self.feedback = feedback or FeedbackCache(self.config.feedback, clock)

  def analyze(self, ticker: str) -> AnalysisRecord:
    '''
    Fetch, evaluate, synthesize and persist one ticker.

    Raises:
      CollaboratorUnavailable: No price data for the ticker
      PersistenceFailure: The analysis could not be saved
    '''
    bundle = self.client.fetch_bundle(ticker)
    results = collect_results(evaluate_models(self.models, bundle))

    sectors = self.config.sectors
    sector_tag = sectors.tag_of(sectors.sector_of(ticker, bundle.industry))
    record = synthesize(ticker,
                        bundle.latest_price,
                        results,
                        sector_tag,
                        feedback=self.feedback,
                        clock=self.clock)
    record = self.store.save_analysis(record)
    logger.info('%s: %s %s (fair value %.2f, %s)', ticker,
                record.classification.archetype.value,
                record.recommendation.action.value, record.valuation.fair_value,
                record.source.value)
    return record

  def analyze_batch(self, tickers: Sequence[str]) -> BatchResult:
    '''
    Analyze several tickers with bounded concurrency.

    Tickers start at least config.batch_spacing_sec apart. A failing
    ticker is recorded in errors and does not stop the others.
    '''
    result = BatchResult()
    spacing = RateLimiter(self.config.batch_spacing_sec)

    def run_one(ticker: str) -> AnalysisRecord:
      spacing.wait()
      return self.analyze(ticker)

    workers = max(1, self.config.batch_concurrency)
    with ThreadPoolExecutor(max_workers=workers) as executor:
      futures = {executor.submit(run_one, t): t for t in dict.fromkeys(tickers)}
      for future in as_completed(futures):
        ticker = futures[future]
        try:
          result.records[ticker] = future.result()
        except FairValueError as e:
          logger.warning('%s: analysis failed: %s', ticker, e)
          result.errors.append({
              'ticker': ticker,
              'error_type': type(e).__name__,
              'error': str(e),
          })
    logger.info('Batch: %d analyzed, %d failed', len(result.records),
                len(result.errors))
    return result

  def enhance(self, ticker: str, proposal: Any) -> EnhanceResult:
    '''
    Apply an external classification proposal to the latest analysis.

    An invalid proposal never changes anything: the latest deterministic
    result is returned with the itemized violations.

    Raises:
      InsufficientData: The ticker has no stored analysis
      PersistenceFailure: The enhanced analysis could not be saved
    '''
    latest = self.store.get_latest(ticker)
    if latest is None:
      raise InsufficientData(f'{ticker} 尚無分析紀錄')

    baseline = latest.deterministic or latest
    available = baseline.valuation.available_models
    validation = validate_proposal(proposal, available)
    if not validation.valid:
      logger.warning('%s: proposal rejected: %s', ticker,
                     '; '.join(validation.errors))
      return EnhanceResult(deterministic_view(latest),
                           accepted=False,
                           errors=validation.errors)

    try:
      enhanced = resynthesize(latest, validation.sanitized, clock=self.clock)
    except GuardrailViolation as e:
      return EnhanceResult(deterministic_view(latest),
                           accepted=False,
                           errors=e.errors)
    return EnhanceResult(self.store.save_analysis(enhanced), accepted=True)

  def run_backtest(self) -> BacktestReport:
    '''Run one backtest scan over the store.'''
    return run_backtest(self.store, self.client, self.config.backtest,
                        self.clock)

  def refresh_feedback(self) -> dict[str, FeedbackEntry]:
    '''Recompute the feedback cache from every stored accuracy check.'''
    return self.feedback.refresh(self.store.get_all_accuracy_checks())

  def accuracy_summary(self) -> AccuracySummary:
    return compute_accuracy_summary(self.store.get_all_accuracy_checks())

  def check_alerts(
      self,
      alerts: Sequence[Alert],
      prices: Optional[dict[str, float]] = None) -> list[TriggeredAlert]:
    return check_alerts(alerts, self.store, prices)
