"""Backtest scan and accuracy metrics."""

from fairvalue.analysis.backtest.engine import BacktestReport
from fairvalue.analysis.backtest.engine import run_backtest
from fairvalue.analysis.backtest.metrics import compute_accuracy_summary

__all__ = ['BacktestReport', 'compute_accuracy_summary', 'run_backtest']
