"""Services package — expose all concrete services from one import."""
from .game_state_service import GameStateService

__all__ = [
    'GameStateService',
]
