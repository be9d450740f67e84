'''
Feedback weight cache.

Holds the last complete feedback snapshot. refresh() computes a new
snapshot off to the side and swaps it in with one attribute assignment, so
readers never wait on a refresh: they see the previous snapshot or the new
one. Entries older than the staleness window read as unavailable.
'''

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime
import logging
from typing import Any, Optional

from fairvalue.clock import Clock
from fairvalue.clock import utc_now
from fairvalue.config import FeedbackConfig
from fairvalue.domain.types import AccuracyCheck
from fairvalue.domain.types import Archetype
from fairvalue.domain.types import encode_weights
from fairvalue.feedback.adaptive import FeedbackEntry
from fairvalue.feedback.adaptive import compute_feedback_by_type

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FeedbackSnapshot:
  entries: dict[str, FeedbackEntry]
  computed_at: datetime
  total_checks: int


class FeedbackCache:
  '''
  Process-lifetime cache of feedback weights keyed by archetype.

  Owned by the service context and injected where needed; there is no
  module-level instance.
  '''

  def __init__(self,
               config: Optional[FeedbackConfig] = None,
               clock: Clock = utc_now):
    '''
    Initialize an empty cache.

    Args:
      config: Feedback configuration (staleness window, blend parameters)
      clock: Source of the current time
    '''
    self.config = config or FeedbackConfig()
    self._clock = clock
    self._snapshot: Optional[FeedbackSnapshot] = None

  def refresh(self,
              checks: Iterable[AccuracyCheck]) -> dict[str, FeedbackEntry]:
    '''Recompute all archetypes from scratch and publish the result.'''
    checks = list(checks)
    entries = compute_feedback_by_type(checks, self.config)
    self._snapshot = FeedbackSnapshot(
        entries=entries,
        computed_at=self._clock(),
        total_checks=len(checks),
    )
    logger.info('Feedback refreshed from %d checks, %d archetypes covered',
                len(checks), len(entries))
    return entries

  def _fresh_snapshot(self) -> Optional[FeedbackSnapshot]:
    snapshot = self._snapshot
    if snapshot is None:
      return None
    if self._clock() - snapshot.computed_at >= self.config.stale_after:
      return None
    return snapshot

  def get(self, archetype: Archetype | str) -> Optional[FeedbackEntry]:
    '''Feedback for an archetype, or None when missing or stale.'''
    snapshot = self._fresh_snapshot()
    if snapshot is None:
      return None
    key = archetype.value if isinstance(archetype, Archetype) else archetype
    return snapshot.entries.get(key)

  @property
  def is_stale(self) -> bool:
    return self._snapshot is not None and self._fresh_snapshot() is None

  def status(self) -> dict[str, Any]:
    '''Diagnostic view of the cache.'''
    snapshot = self._snapshot
    if snapshot is None:
      return {'initialized': False}
    return {
        'initialized': True,
        'computed_at': snapshot.computed_at.isoformat(),
        'age_seconds': (self._clock() - snapshot.computed_at).total_seconds(),
        'is_stale': self._fresh_snapshot() is None,
        'total_checks': snapshot.total_checks,
        'covered_types': sorted(snapshot.entries),
        'feedback_by_type': {
            archetype: {
                'weights': encode_weights(entry.weights),
                'total_checks': entry.total_checks,
                'sample_counts': encode_weights(
                    {k: float(v) for k, v in entry.sample_counts.items()}),
            } for archetype, entry in snapshot.entries.items()
        },
    }

  def clear(self) -> None:
    self._snapshot = None
