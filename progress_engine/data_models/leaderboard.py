"""
Leaderboard data models.

Provides immutable data transfer objects for leaderboard reads.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional


@dataclass(frozen=True)
class LeaderboardRow:
    """Single leaderboard row."""
    rank: int
    player_id: int
    display_name: str
    total_points: int
    completed_missions: int
    completed_tasks: int
    updated_at: Optional[datetime] = None


@dataclass(frozen=True)
class LeaderboardPage:
    """Paginated leaderboard data."""
    entries: List[LeaderboardRow]
    current_page: int
    total_pages: int
    total_players: int
    game_id: int


@dataclass(frozen=True)
class PlayerRanking:
    """A player's standing in one game."""
    player_id: int
    game_id: int
    rank: int
    total_players: int
    total_points: int
    percentile: float


@dataclass(frozen=True)
class LeaderboardStats:
    """Aggregate numbers for one game's leaderboard."""
    game_id: int
    total_players: int
    top_score: int
    average_score: float
    total_missions_completed: int
    total_tasks_completed: int
