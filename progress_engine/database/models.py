from sqlalchemy import (
    Column, Integer, String, DateTime, Boolean, Text,
    ForeignKey, UniqueConstraint, CheckConstraint, Index
)
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func

from progress_engine.constants import TaskStatus, MissionStatus, RewardStatus, TargetMode, RecurrenceConstants

Base = declarative_base()

# ============================================================================
# Catalog (read-only to the engine)
# ============================================================================

class Game(Base):
    __tablename__ = 'games'

    id = Column(Integer, primary_key=True)
    name = Column(String(200), nullable=False, unique=True)
    description = Column(Text)

    is_active = Column(Boolean, default=True, nullable=False)
    start_date = Column(DateTime, nullable=True)
    end_date = Column(DateTime, nullable=True)

    # Audience targeting: target_players holds a JSON list of player ids or filter criteria
    target_type = Column(String(20), default=TargetMode.ALL, nullable=False)
    target_players = Column(Text, nullable=True)

    # Metadata
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    # Relationships
    missions = relationship("Mission", back_populates="game")

    def __repr__(self):
        return f"<Game(name='{self.name}', active={self.is_active})>"

class EventType(Base):
    """Catalog of platform activity event names that tasks can listen for."""
    __tablename__ = 'event_types'

    id = Column(Integer, primary_key=True)
    name = Column(String(200), nullable=False, unique=True, index=True)
    description = Column(Text)

    created_at = Column(DateTime, default=func.now())

    def __repr__(self):
        return f"<EventType(name='{self.name}')>"

class Mission(Base):
    __tablename__ = 'missions'

    id = Column(Integer, primary_key=True)
    game_id = Column(Integer, ForeignKey('games.id'), nullable=False, index=True)
    name = Column(String(200), nullable=False)
    description = Column(Text)

    # Completion threshold
    points_required = Column(Integer, default=0, nullable=False)

    # Availability
    is_active = Column(Boolean, default=True, nullable=False)
    start_date = Column(DateTime, nullable=True)
    end_date = Column(DateTime, nullable=True)

    # Recurrence: pattern is "daily"/"weekly"/"monthly" or JSON {"frequency": ...}
    is_recurring = Column(Boolean, default=False, nullable=False)
    recurrence_pattern = Column(String(255), nullable=True)

    # Must be completed by the same player before this mission becomes eligible
    prerequisite_mission_id = Column(Integer, ForeignKey('missions.id'), nullable=True)

    target_type = Column(String(20), default=TargetMode.ALL, nullable=False)
    target_players = Column(Text, nullable=True)

    # Metadata
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    # Relationships
    game = relationship("Game", back_populates="missions")
    tasks = relationship("Task", back_populates="mission", order_by="Task.order_index")
    rewards = relationship("Reward", back_populates="mission")
    prerequisite = relationship("Mission", remote_side=[id])

    __table_args__ = (
        CheckConstraint('points_required >= 0', name='ck_mission_points_required'),
    )

    def __repr__(self):
        return f"<Mission(name='{self.name}', game_id={self.game_id}, points_required={self.points_required})>"

class Task(Base):
    __tablename__ = 'tasks'

    id = Column(Integer, primary_key=True)
    mission_id = Column(Integer, ForeignKey('missions.id'), nullable=False, index=True)
    event_type_id = Column(Integer, ForeignKey('event_types.id'), nullable=False, index=True)
    name = Column(String(200), nullable=False)
    description = Column(Text)

    points = Column(Integer, default=0, nullable=False)
    is_optional = Column(Boolean, default=False, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    order_index = Column(Integer, default=0, nullable=False)

    # Matching events needed before the task completes (e.g. "sell 5 products")
    required_progress = Column(Integer, default=1, nullable=False)

    # Metadata
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    # Relationships
    mission = relationship("Mission", back_populates="tasks")
    event_type = relationship("EventType")

    __table_args__ = (
        CheckConstraint('required_progress >= 1', name='ck_task_required_progress'),
        CheckConstraint('points >= 0', name='ck_task_points'),
    )

    def __repr__(self):
        return f"<Task(name='{self.name}', mission_id={self.mission_id}, points={self.points})>"

class RewardType(Base):
    __tablename__ = 'reward_types'

    id = Column(Integer, primary_key=True)
    name = Column(String(100), nullable=False, unique=True)
    description = Column(Text)

    created_at = Column(DateTime, default=func.now())

    def __repr__(self):
        return f"<RewardType(name='{self.name}')>"

class Reward(Base):
    __tablename__ = 'rewards'

    id = Column(Integer, primary_key=True)
    mission_id = Column(Integer, ForeignKey('missions.id'), nullable=False, index=True)
    reward_type_id = Column(Integer, ForeignKey('reward_types.id'), nullable=False)
    name = Column(String(200), nullable=False)
    description = Column(Text)

    # JSON details (badge id, coupon code, benefit ...)
    value = Column(Text, nullable=False, default='{}')

    # Catalog-configured expiry, copied onto grants as-is
    expires_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=func.now())

    # Relationships
    mission = relationship("Mission", back_populates="rewards")
    reward_type = relationship("RewardType")

    def __repr__(self):
        return f"<Reward(name='{self.name}', mission_id={self.mission_id})>"

# ============================================================================
# Progress (mutated only through atomic row operations)
# ============================================================================

class Player(Base):
    __tablename__ = 'players'

    id = Column(Integer, primary_key=True)
    external_id = Column(String(255), unique=True, nullable=False, index=True)
    display_name = Column(String(200))

    # Cumulative counters
    points = Column(Integer, default=0, nullable=False)
    tasks_completed = Column(Integer, default=0, nullable=False)
    missions_completed = Column(Integer, default=0, nullable=False)

    # Metadata
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<Player(external_id='{self.external_id}', points={self.points})>"

class TaskProgress(Base):
    """
    Per-player progress on one task.

    The counter is compared against Task.required_progress. Rows are terminal
    once completed or skipped. cycle_key separates recurring mission cycles.
    """
    __tablename__ = 'task_progress'

    id = Column(Integer, primary_key=True)
    player_id = Column(Integer, ForeignKey('players.id'), nullable=False)
    task_id = Column(Integer, ForeignKey('tasks.id'), nullable=False, index=True)
    cycle_key = Column(String(32), nullable=False, default=RecurrenceConstants.NO_CYCLE)

    status = Column(String(20), nullable=False, default=TaskStatus.NOT_STARTED)
    progress = Column(Integer, nullable=False, default=0)
    completed_at = Column(DateTime, nullable=True)
    skipped_at = Column(DateTime, nullable=True)
    # Set once the completion has been added to the leaderboard totals
    credited_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now())

    task = relationship("Task")

    __table_args__ = (
        UniqueConstraint('player_id', 'task_id', 'cycle_key', name='uq_task_progress_owner'),
        CheckConstraint(
            "status IN ('not_started', 'in_progress', 'completed', 'skipped')",
            name='ck_task_progress_status'
        ),
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in TaskStatus.TERMINAL

    def __repr__(self):
        return f"<TaskProgress(player_id={self.player_id}, task_id={self.task_id}, status='{self.status}', progress={self.progress})>"

class MissionProgress(Base):
    """
    Per-player mission roll-up, recomputed from the mission's TaskProgress rows.

    Completion is one-way: once completed the row is never recomputed.
    """
    __tablename__ = 'mission_progress'

    id = Column(Integer, primary_key=True)
    player_id = Column(Integer, ForeignKey('players.id'), nullable=False)
    mission_id = Column(Integer, ForeignKey('missions.id'), nullable=False, index=True)
    cycle_key = Column(String(32), nullable=False, default=RecurrenceConstants.NO_CYCLE)

    status = Column(String(20), nullable=False, default=MissionStatus.NOT_STARTED)
    points_earned = Column(Integer, nullable=False, default=0)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    credited_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now())

    __table_args__ = (
        UniqueConstraint('player_id', 'mission_id', 'cycle_key', name='uq_mission_progress_owner'),
        CheckConstraint(
            "status IN ('not_started', 'in_progress', 'completed', 'skipped')",
            name='ck_mission_progress_status'
        ),
    )

    def __repr__(self):
        return f"<MissionProgress(player_id={self.player_id}, mission_id={self.mission_id}, status='{self.status}', points={self.points_earned})>"

class PlayerReward(Base):
    __tablename__ = 'player_rewards'

    id = Column(Integer, primary_key=True)
    player_id = Column(Integer, ForeignKey('players.id'), nullable=False)
    reward_id = Column(Integer, ForeignKey('rewards.id'), nullable=False)
    mission_id = Column(Integer, ForeignKey('missions.id'), nullable=True)

    status = Column(String(20), nullable=False, default=RewardStatus.EARNED)
    earned_at = Column(DateTime, nullable=False)
    claimed_at = Column(DateTime, nullable=True)
    expires_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=func.now())

    reward = relationship("Reward")

    __table_args__ = (
        UniqueConstraint('player_id', 'reward_id', name='uq_player_reward'),
    )

    def __repr__(self):
        return f"<PlayerReward(player_id={self.player_id}, reward_id={self.reward_id}, status='{self.status}')>"

class LeaderboardEntry(Base):
    """
    Running per-(player, game) totals.

    rank is a derived ordinal written by the batch recalculation only.
    """
    __tablename__ = 'leaderboard_entries'

    id = Column(Integer, primary_key=True)
    player_id = Column(Integer, ForeignKey('players.id'), nullable=False)
    game_id = Column(Integer, ForeignKey('games.id'), nullable=False)

    total_points = Column(Integer, nullable=False, default=0)
    completed_missions = Column(Integer, nullable=False, default=0)
    completed_tasks = Column(Integer, nullable=False, default=0)
    rank = Column(Integer, nullable=True)

    created_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, nullable=False)

    player = relationship("Player")

    __table_args__ = (
        UniqueConstraint('player_id', 'game_id', name='uq_leaderboard_player_game'),
        Index('ix_leaderboard_game_points', 'game_id', 'total_points'),
    )

    def __repr__(self):
        return f"<LeaderboardEntry(player_id={self.player_id}, game_id={self.game_id}, points={self.total_points}, rank={self.rank})>"

class EventLog(Base):
    """Append-only record of received events; the idempotency boundary."""
    __tablename__ = 'event_logs'

    id = Column(Integer, primary_key=True)
    player_id = Column(Integer, ForeignKey('players.id'), nullable=False, index=True)
    game_id = Column(Integer, nullable=True)
    event_type_id = Column(Integer, ForeignKey('event_types.id'), nullable=True)
    idempotency_key = Column(String(128), nullable=False, unique=True)

    payload = Column(Text)
    processed = Column(Boolean, nullable=False, default=False)

    # Set by the invocation currently processing the entry
    claimed_at = Column(DateTime, nullable=True)
    processed_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=func.now())

    def __repr__(self):
        return f"<EventLog(player_id={self.player_id}, key='{self.idempotency_key[:12]}', processed={self.processed})>"
