"""
Result objects returned by the engine.

Expected outcomes (not eligible, already completed, required task) are carried
here as values with an ErrorKind instead of being raised.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from progress_engine.constants import RecurrenceConstants
from progress_engine.utils.exceptions import ErrorKind


@dataclass(frozen=True)
class TaskHitResult:
    """Outcome of applying one matching event to one task."""
    task_completed: bool
    mission_completed: bool
    points_earned: int
    progress: int = 0
    cycle_key: str = RecurrenceConstants.NO_CYCLE
    # Set when the hit was a no-op on a terminal row
    error: Optional[ErrorKind] = None


@dataclass(frozen=True)
class SkipResult:
    """Outcome of a skip request."""
    success: bool
    error: Optional[ErrorKind] = None
    message: Optional[str] = None
    points_earned: int = 0


@dataclass
class ProcessingResult:
    """Outcome of processing one event."""
    success: bool
    tasks_completed: List[int] = field(default_factory=list)
    missions_completed: List[int] = field(default_factory=list)
    rewards_granted: List[int] = field(default_factory=list)
    duplicate: bool = False
    # NOT_ELIGIBLE accompanies a successful result when no task matched
    error: Optional[ErrorKind] = None
    message: Optional[str] = None

    @classmethod
    def failure(cls, error: ErrorKind, message: str) -> 'ProcessingResult':
        return cls(success=False, error=error, message=message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'success': self.success,
            'tasksCompleted': list(self.tasks_completed),
            'missionsCompleted': list(self.missions_completed),
            'rewardsGranted': list(self.rewards_granted),
            'duplicate': self.duplicate,
            'error': self.error.value if self.error else None,
            'message': self.message,
        }
