'''
Backtest scan entrypoint.

Runs one scan over the store (create new checks, backfill partial ones),
refreshes the feedback cache from every check and prints the accuracy
summary.

Usage:
  python -m fairvalue.analysis.backtest.runner --db data/fairvalue.db
'''

import argparse
import json
import logging
from pathlib import Path

from fairvalue.analysis.backtest.metrics import format_summary
from fairvalue.config import EngineConfig
from fairvalue.service import ValuationService

logger = logging.getLogger(__name__)


def main():
  '''CLI entrypoint for the backtest scan.'''
  parser = argparse.ArgumentParser(description='Run accuracy backtest scan')
  parser.add_argument('--db',
                      type=Path,
                      default=None,
                      help='SQLite database path (default: config/env)')
  parser.add_argument('--min-days',
                      type=int,
                      default=None,
                      help='Minimum analysis age in days')
  parser.add_argument('--max-results',
                      type=int,
                      default=None,
                      help='Maximum new checks per scan')
  parser.add_argument('--json',
                      action='store_true',
                      help='Print the summary as JSON')
  args = parser.parse_args()

  config = EngineConfig.from_env()
  if args.db is not None:
    config.db_path = args.db
  if args.min_days is not None:
    config.backtest.min_days_ago = args.min_days
  if args.max_results is not None:
    config.backtest.max_results = args.max_results

  service = ValuationService(config)
  try:
    report = service.run_backtest()
    entries = service.refresh_feedback()
    summary = service.accuracy_summary()
  finally:
    service.store.close()

  separator = '=' * 70
  logger.info('\n%s', separator)
  logger.info('Backtest Scan')
  logger.info(separator)
  logger.info('Processed: %d  Skipped: %d  Backfilled: %d', report.processed,
              report.skipped, report.backfilled)
  for error in report.errors:
    logger.info('  error %s: %s', error['ticker'], error['error'])
  logger.info('Feedback covers %d archetypes: %s', len(entries),
              ', '.join(sorted(entries)) or '-')

  if args.json:
    logger.info('%s', json.dumps(summary.to_dict(), ensure_ascii=False,
                                 indent=2, default=str))
  else:
    for line in format_summary(summary):
      logger.info(line)
  logger.info('%s\n', separator)


if __name__ == '__main__':
  logging.basicConfig(
      level=logging.INFO,
      format='%(message)s',
  )
  main()
