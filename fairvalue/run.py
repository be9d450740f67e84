'''
Single-ticker valuation entrypoint.

Fetches market data, evaluates every registered model, synthesizes the
classification, blended fair value and recommendation, and persists the
analysis.

Usage:
  python -m fairvalue.run --ticker 2330
  python -m fairvalue.run --ticker 2330 2317 2412 --json
'''

import argparse
import json
import logging
from pathlib import Path

from fairvalue.config import EngineConfig
from fairvalue.domain.types import AnalysisRecord
from fairvalue.domain.types import MODEL_KEYS
from fairvalue.domain.types import MODEL_LABELS
from fairvalue.service import ValuationService

logger = logging.getLogger(__name__)


def log_record(record: AnalysisRecord) -> None:
  '''Human-readable report of one analysis.'''
  separator = '=' * 70
  logger.info('\n%s', separator)
  logger.info('Valuation - %s on %s (source: %s)', record.ticker,
              record.analysis_date, record.source.value)
  logger.info(separator)
  logger.info('Classification: %s (%s)', record.classification.archetype.value,
              record.classification.description)

  logger.info('\nModels:')
  for key in MODEL_KEYS:
    summary = record.model_summaries.get(key, {})
    weight = record.valuation.weights.get(key, 0.0)
    if summary.get('available'):
      logger.info('  %-10s %10.2f  weight %5.1f%%', MODEL_LABELS[key],
                  summary.get('fair_value') or 0.0, weight * 100)
    else:
      logger.info('  %-10s %10s  %s', MODEL_LABELS[key], '-',
                  summary.get('reason', ''))

  logger.info('\nBlend: %s', record.valuation.method)
  logger.info('  Fair Value: %.2f', record.valuation.fair_value)
  logger.info('  Price: %.2f', record.current_price)
  rec = record.recommendation
  logger.info('  Upside: %.2f%%', rec.upside_pct)
  logger.info('  Action: %s (%s)', rec.action.value, rec.confidence.value)

  logger.info('\nReasons:')
  for reason in rec.reasons:
    logger.info('  - %s', reason)
  logger.info('\nRisks:')
  for risk in record.risks:
    logger.info('  - %s', risk)
  logger.info('%s\n', separator)


def main() -> None:
  '''CLI entrypoint.'''
  parser = argparse.ArgumentParser(description='Run synthesized valuation')
  parser.add_argument('--ticker',
                      type=str,
                      nargs='+',
                      required=True,
                      help='Ticker symbol(s)')
  parser.add_argument('--db',
                      type=Path,
                      default=None,
                      help='SQLite database path (default: config/env)')
  parser.add_argument('--config',
                      type=Path,
                      default=None,
                      help='Engine configuration JSON')
  parser.add_argument('--json',
                      action='store_true',
                      help='Print analyses as JSON')
  args = parser.parse_args()

  config = (EngineConfig.from_json(args.config.read_text(encoding='utf-8'))
            if args.config else EngineConfig.from_env())
  if args.db is not None:
    config.db_path = args.db

  service = ValuationService(config)
  try:
    # Feedback weights apply from the first analysis of the run.
    service.refresh_feedback()
    if len(args.ticker) == 1:
      records = [service.analyze(args.ticker[0])]
      errors = []
    else:
      batch = service.analyze_batch(args.ticker)
      records = [batch.records[t] for t in args.ticker if t in batch.records]
      errors = batch.errors
  finally:
    service.store.close()

  for record in records:
    if args.json:
      logger.info('%s', json.dumps(record.to_dict(), ensure_ascii=False,
                                   indent=2))
    else:
      log_record(record)
  for error in errors:
    logger.error('%s: %s', error['ticker'], error['error'])


if __name__ == '__main__':
  logging.basicConfig(
      level=logging.INFO,
      format='%(message)s',
  )
  main()
