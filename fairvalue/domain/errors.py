'''
Error taxonomy.

Failures local to one model or one ticker are absorbed and represented as
data (availability flags, error lists). Only PersistenceFailure is meant to
reach the caller of an operation.
'''

from typing import List


class FairValueError(Exception):
  '''Base class for all errors raised by this package.'''


class CollaboratorUnavailable(FairValueError):
  '''A data fetch or a model evaluation failed.'''


class FetchTimeout(CollaboratorUnavailable):
  '''A data fetch exceeded its timeout.'''


class HTTPStatusError(CollaboratorUnavailable):
  '''The data provider answered with an HTTP error status.'''

  def __init__(self, status_code: int, message: str):
    super().__init__(f'HTTP {status_code}: {message}')
    self.status_code = status_code


class ProviderAPIError(CollaboratorUnavailable):
  '''The data provider answered but reported an API-level failure.'''


class InsufficientData(FairValueError):
  '''Not enough history to evaluate; reason is required.'''

  def __init__(self, reason: str):
    super().__init__(reason)
    self.reason = reason


class GuardrailViolation(FairValueError):
  '''An external proposal failed validation.'''

  def __init__(self, errors: List[str]):
    super().__init__('; '.join(errors))
    self.errors = list(errors)


class PersistenceFailure(FairValueError):
  '''Reading from or writing to the store failed.'''
