"""Valuation models: the collaborators producing ModelResults."""

from fairvalue.models.base import collect_results
from fairvalue.models.base import evaluate_models
from fairvalue.models.base import ValuationModel
from fairvalue.models.registry import create_models
from fairvalue.models.registry import list_models

__all__ = [
    'ValuationModel',
    'collect_results',
    'create_models',
    'evaluate_models',
    'list_models',
]
