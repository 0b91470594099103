"""
Services package for the progress engine.

Storage-backed services sharing session management and error translation.
"""

from .base import BaseService
from .leaderboard import LeaderboardService

__all__ = ['BaseService', 'LeaderboardService']
