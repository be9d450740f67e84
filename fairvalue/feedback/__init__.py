"""Adaptive feedback: accuracy-driven model weights and their cache."""

from fairvalue.feedback.adaptive import blend_weights
from fairvalue.feedback.adaptive import compute_blended_mae
from fairvalue.feedback.adaptive import compute_feedback_by_type
from fairvalue.feedback.adaptive import FeedbackEntry
from fairvalue.feedback.adaptive import mae_to_weights
from fairvalue.feedback.cache import FeedbackCache

__all__ = [
    'FeedbackCache',
    'FeedbackEntry',
    'blend_weights',
    'compute_blended_mae',
    'compute_feedback_by_type',
    'mae_to_weights',
]
