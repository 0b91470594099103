"""
Engine-wide constants for the onboarding progress engine.

This module contains the status vocabularies and tuning values used throughout
the codebase so they are not repeated as string literals.
"""

class TaskStatus:
    """TaskProgress status values."""
    
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    SKIPPED = "skipped"
    
    # No transition leaves these states
    TERMINAL = (COMPLETED, SKIPPED)
    OPEN = (NOT_STARTED, IN_PROGRESS)

class MissionStatus:
    """MissionProgress status values."""
    
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    SKIPPED = "skipped"

class RewardStatus:
    """PlayerReward status values."""
    
    EARNED = "earned"
    CLAIMED = "claimed"
    EXPIRED = "expired"

class TargetMode:
    """Audience targeting modes for games and missions."""
    
    ALL = "all"
    SPECIFIC = "specific"
    FILTERED = "filtered"

class RecurrenceConstants:
    """Recurring mission cycle settings."""
    
    # Cycle key used by every non-recurring mission
    NO_CYCLE = ""
    
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"

class PaginationConstants:
    """Constants for paginated leaderboard reads."""
    
    DEFAULT_PAGE_SIZE = 10
    MAX_PAGE_SIZE = 100
    
    # Players shown on each side of a player in the nearby view
    DEFAULT_NEARBY_RANGE = 3

class CacheConstants:
    """Constants for caching behavior."""
    
    # Maximum cached leaderboard pages
    DEFAULT_MAX_CACHE_SIZE = 500
