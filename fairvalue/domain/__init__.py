"""Domain types and errors for the valuation synthesis engine."""

from fairvalue.domain.errors import CollaboratorUnavailable
from fairvalue.domain.errors import FetchTimeout
from fairvalue.domain.errors import GuardrailViolation
from fairvalue.domain.errors import InsufficientData
from fairvalue.domain.errors import PersistenceFailure
from fairvalue.domain.types import AccuracyCheck
from fairvalue.domain.types import Action
from fairvalue.domain.types import AnalysisRecord
from fairvalue.domain.types import Archetype
from fairvalue.domain.types import Classification
from fairvalue.domain.types import ModelKey
from fairvalue.domain.types import ModelResult
from fairvalue.domain.types import Recommendation
from fairvalue.domain.types import WeightedValuation

__all__ = [
    'AccuracyCheck',
    'Action',
    'AnalysisRecord',
    'Archetype',
    'Classification',
    'CollaboratorUnavailable',
    'FetchTimeout',
    'GuardrailViolation',
    'InsufficientData',
    'ModelKey',
    'ModelResult',
    'PersistenceFailure',
    'Recommendation',
    'WeightedValuation',
]
