"""
Audience Strategy Pattern for Game and Mission Targeting

Each target mode (all / specific / filtered) is a strategy deciding whether a
player belongs to the audience of a game or mission. The Matcher receives the
mode → strategy mapping, so richer targeting can be registered without
touching the matching rules.
"""

import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Optional

from progress_engine.constants import TargetMode

logger = logging.getLogger(__name__)

# (player, criteria) -> bool
CriteriaPredicate = Callable[[Any, Dict[str, Any]], bool]


def parse_target_players(raw: Optional[str]) -> Any:
    """Decode the JSON target list/criteria stored on a game or mission."""
    if not raw:
        return None
    try:
        return json.loads(raw)
    except (json.JSONDecodeError, TypeError):
        # Plain comma-separated ids are accepted too
        return [part.strip() for part in str(raw).split(',') if part.strip()]


class AudienceStrategy(ABC):
    """Abstract base class for audience targeting strategies."""

    @abstractmethod
    def includes(self, player, target_players: Optional[str]) -> bool:
        """
        Check whether the player belongs to the targeted audience.

        Args:
            player: Player row (id and external_id are consulted)
            target_players: Raw target list or criteria from the catalog
        """
        pass

    @abstractmethod
    def get_strategy_name(self) -> str:
        """Get human-readable name of this strategy"""
        pass

class AllPlayersAudience(AudienceStrategy):
    """Every player is targeted."""

    def includes(self, player, target_players: Optional[str]) -> bool:
        return True

    def get_strategy_name(self) -> str:
        return "All players"

class SpecificPlayersAudience(AudienceStrategy):
    """
    Only listed players are targeted.

    The list may hold internal player ids or external ids, either as a JSON
    array or as {"players": [...]}.
    """

    def includes(self, player, target_players: Optional[str]) -> bool:
        targets = parse_target_players(target_players)
        if isinstance(targets, dict):
            targets = targets.get('players') or targets.get('player_ids') or []
        if not isinstance(targets, list):
            return False

        identities = {str(player.id), str(player.external_id)}
        return any(str(target) in identities for target in targets)

    def get_strategy_name(self) -> str:
        return "Specific players"

class FilteredAudience(AudienceStrategy):
    """
    Players matching dynamic criteria are targeted.

    No criteria language is defined yet, so without a predicate every player
    is eligible.
    """

    def __init__(self, predicate: Optional[CriteriaPredicate] = None):
        self.predicate = predicate

    def includes(self, player, target_players: Optional[str]) -> bool:
        if self.predicate is None:
            return True
        criteria = parse_target_players(target_players)
        if not isinstance(criteria, dict):
            criteria = {'values': criteria} if criteria is not None else {}
        return bool(self.predicate(player, criteria))

    def get_strategy_name(self) -> str:
        return "Filtered players"


def default_audience_strategies() -> Dict[str, AudienceStrategy]:
    """Build the default target mode → strategy mapping."""
    return {
        TargetMode.ALL: AllPlayersAudience(),
        TargetMode.SPECIFIC: SpecificPlayersAudience(),
        TargetMode.FILTERED: FilteredAudience(),
    }


def is_in_audience(strategies: Dict[str, AudienceStrategy], target_type: Optional[str],
                   target_players: Optional[str], player) -> bool:
    """Resolve the strategy for a target mode and apply it; unknown modes target nobody."""
    strategy = strategies.get(target_type or TargetMode.ALL)
    if strategy is None:
        logger.warning(f"Unknown target mode '{target_type}', excluding player {player.id}")
        return False
    return strategy.includes(player, target_players)