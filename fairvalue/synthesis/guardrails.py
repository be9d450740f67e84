'''
Guardrail validator for externally supplied classification proposals.

A proposal (for example produced by a language model) may only influence a
valuation after passing every check below. Validation is all-or-nothing:
any violation rejects the whole proposal with an itemized error list.

1. type is one of the seven archetypes
2. a numeric weight is present for every model key
3. every weight lies in [0, MAX_MODEL_WEIGHT]
4. unavailable models carry exactly 0
5. weights sum to 1.0 within SUM_TOLERANCE
'''

from collections.abc import Mapping
from dataclasses import dataclass
from dataclasses import field
import logging
from math import isfinite
from typing import Any, Optional

from fairvalue.domain.errors import GuardrailViolation
from fairvalue.domain.types import Archetype
from fairvalue.domain.types import MODEL_KEYS
from fairvalue.domain.types import ModelKey
from fairvalue.domain.types import Weights

logger = logging.getLogger(__name__)

MAX_MODEL_WEIGHT = 0.50
SUM_TOLERANCE = 0.02
VALID_TYPES = tuple(a.value for a in Archetype)


@dataclass(frozen=True)
class Proposal:
  '''A sanitized external proposal; weights sum to exactly 1.0.'''
  archetype: Archetype
  description: str
  weights: Weights
  confidence: str = 'MEDIUM'
  narrative: str = ''


@dataclass(frozen=True)
class ValidationResult:
  valid: bool
  sanitized: Optional[Proposal] = None
  errors: list[str] = field(default_factory=list)

  def raise_for_errors(self) -> Proposal:
    '''Return the sanitized proposal or raise GuardrailViolation.'''
    if not self.valid or self.sanitized is None:
      raise GuardrailViolation(self.errors)
    return self.sanitized


def _is_number(value: Any) -> bool:
  return (isinstance(value, (int, float)) and not isinstance(value, bool) and
          isfinite(value))


def validate_proposal(
    proposal: Any,
    available: Mapping[ModelKey, bool],
) -> ValidationResult:
  '''
  Validate one external proposal.

  Args:
    proposal: Untrusted mapping with 'type', 'weights' and optional
      'description', 'confidence', 'narrative'
    available: Availability of each model for the security

  Returns:
    ValidationResult; sanitized is set only when valid
  '''
  if not isinstance(proposal, Mapping):
    return ValidationResult(valid=False, errors=['proposal is not a mapping'])

  errors: list[str] = []

  proposed_type = proposal.get('type')
  if proposed_type not in VALID_TYPES:
    errors.append(f'invalid type {proposed_type!r}, expected one of: '
                  f'{", ".join(VALID_TYPES)}')

  raw_weights = proposal.get('weights')
  if not isinstance(raw_weights, Mapping):
    errors.append('missing weights mapping')
    return ValidationResult(valid=False, errors=errors)

  weights: Weights = {}
  for key in MODEL_KEYS:
    value = raw_weights.get(key.value)
    if not _is_number(value):
      errors.append(f'weights.{key.value} must be a number, got {value!r}')
      continue
    value = float(value)
    if value < 0 or value > MAX_MODEL_WEIGHT:
      errors.append(f'weights.{key.value} = {value} outside '
                    f'[0, {MAX_MODEL_WEIGHT}]')
      continue
    if not available.get(key, False) and value != 0:
      errors.append(f'model {key.value} is unavailable but weight = {value}')
      continue
    weights[key] = value

  if errors:
    return ValidationResult(valid=False, errors=errors)

  total = sum(weights.values())
  if abs(total - 1.0) > SUM_TOLERANCE:
    return ValidationResult(
        valid=False,
        errors=[f'weights sum to {round(total, 4)}, outside 1.0 ± '
                f'{SUM_TOLERANCE}'])

  return ValidationResult(
      valid=True,
      sanitized=Proposal(
          archetype=Archetype(proposed_type),
          description=str(proposal.get('description') or ''),
          weights={key: weights[key] / total for key in MODEL_KEYS},
          confidence=str(proposal.get('confidence') or 'MEDIUM'),
          narrative=str(proposal.get('narrative') or ''),
      ),
  )


def validate_batch(
    proposals: Mapping[str, Any],
    availability: Mapping[str, Mapping[ModelKey, bool]],
) -> dict[str, ValidationResult]:
  '''Validate proposals for several tickers; tickers are independent.'''
  results: dict[str, ValidationResult] = {}
  for ticker, proposal in proposals.items():
    available = availability.get(ticker)
    if available is None:
      results[ticker] = ValidationResult(
          valid=False, errors=[f'no model availability for {ticker}'])
      continue
    results[ticker] = validate_proposal(proposal, available)
    if not results[ticker].valid:
      logger.warning('Rejected proposal for %s: %s', ticker,
                     '; '.join(results[ticker].errors))
  return results
