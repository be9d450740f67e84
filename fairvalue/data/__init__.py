"""Market-data retrieval."""

from fairvalue.data.finmind import FinMindClient
from fairvalue.data.finmind import MarketDataBundle
from fairvalue.data.finmind import RateLimiter

__all__ = ['FinMindClient', 'MarketDataBundle', 'RateLimiter']
