"""Business logic for per-user game-state documents."""
import logging
import time
import uuid
from typing import Any, Dict, List, Optional, Tuple

from ..exceptions import InvalidInput, NotFound
from .state_document import (
    decode_field, is_number, load_document, normalize_document,
)

logger = logging.getLogger('rpg.service')

MIN_LEVEL = 1
DEFAULT_MAX_HEARTS = 5
NON_NEGATIVE_STATS = ('rupees', 'trust', 'xp')


def clamp_stat(stats: Dict[str, Any], name: str) -> Any:
    """Return ``stats[name]`` restricted to the range allowed for *name*.

    * ``level`` never drops below 1.
    * ``hearts`` stays within ``[0, maxHearts]`` (``maxHearts`` falls back to 5).
    * ``rupees``, ``trust`` and ``xp`` never go negative.
    * Any other stat is returned unchanged.
    """
    value = stats[name]
    if name == 'level':
        return max(MIN_LEVEL, value)
    if name == 'hearts':
        return max(0, min(stats.get('maxHearts') or DEFAULT_MAX_HEARTS, value))
    if name in NON_NEGATIVE_STATS:
        return max(0, value)
    return value


def generate_task_id(existing_ids) -> str:
    """Return a ``custom_<millis>_<hex>`` id not present in *existing_ids*."""
    while True:
        candidate = f"custom_{int(time.time() * 1000)}_{uuid.uuid4().hex[:8]}"
        if candidate not in existing_ids:
            return candidate


class GameStateService:
    """Reads and mutates game-state documents, delegating persistence to the
    ``database`` module's helper functions.

    All methods accept a *db* SQLAlchemy session as the first argument so
    that callers (Flask route handlers, scripts, tests) control the session
    lifecycle.  Every mutation is a single read-modify-write; concurrent
    writers to the same user id follow last-write-wins.
    """

    def __init__(self, db_module) -> None:
        """
        Args:
            db_module: The imported ``database`` module (or any object that
                exposes ``get_game_state``, ``save_game_state`` and
                ``update_game_state_field``).
        """
        self._db = db_module

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _require_state(self, db, user_id: str):
        state = self._db.get_game_state(db, user_id)
        if state is None:
            raise NotFound('State not found')
        return state

    def _custom_tasks(self, state) -> List[Dict[str, Any]]:
        custom = decode_field('custom', state.custom)
        return list(custom or [])

    # ------------------------------------------------------------------
    # Whole document
    # ------------------------------------------------------------------

    def get_state(self, db, user_id: str) -> Dict[str, Any]:
        """Return the stored document for *user_id*.

        Raises:
            NotFound: if no document exists.
        """
        state = self._require_state(db, user_id)
        return load_document(state.to_dict())

    def save_state(self, db, user_id: str, payload: Dict[str, Any]) -> bool:
        """Replace the whole document for *user_id*, creating it if needed.

        Returns:
            ``True`` when a new document was inserted, ``False`` on update.

        Raises:
            InvalidInput: if *payload* does not have the document shape.
        """
        document = normalize_document(payload)
        logger.info("Saving state for user: %s", user_id)
        _, created = self._db.save_game_state(db, user_id, document)
        logger.info("State %s for user %s", 'inserted' if created else 'updated', user_id)
        return created

    # ------------------------------------------------------------------
    # Stats
    # ------------------------------------------------------------------

    def patch_stat(self, db, user_id: str, stat_name: str,
                   value: Optional[Any] = None,
                   delta: Optional[Any] = None) -> Dict[str, Any]:
        """Set or adjust one stat and return the full clamped stats map.

        *value* replaces the stat outright; otherwise *delta* is added to the
        current value (missing/``null`` counts as 0).  *value* wins when both
        are given.

        Raises:
            InvalidInput: neither *value* nor *delta* given, either is not a
                number, or *stat_name* is not present in the stored stats.
            NotFound: no document for *user_id*.
        """
        if value is None and delta is None:
            raise InvalidInput("Either 'value' or 'delta' is required")
        if value is not None and not is_number(value):
            raise InvalidInput("'value' must be a number")
        if value is None and not is_number(delta):
            raise InvalidInput("'delta' must be a number")

        state = self._require_state(db, user_id)
        stats = dict(decode_field('stats', state.stats) or {})
        if stat_name not in stats:
            raise InvalidInput(f"Unknown stat: {stat_name}")

        if value is not None:
            stats[stat_name] = value
        else:
            current = stats[stat_name] or 0
            if not is_number(current):
                raise InvalidInput(f"Stat '{stat_name}' does not hold a number")
            stats[stat_name] = current + delta
            if not is_number(stats[stat_name]):
                raise InvalidInput(f"Stat '{stat_name}' would overflow")
        stats[stat_name] = clamp_stat(stats, stat_name)

        self._db.update_game_state_field(db, user_id, 'stats', stats)
        logger.debug("Stat %s for user %s is now %s", stat_name, user_id, stats[stat_name])
        return stats

    # ------------------------------------------------------------------
    # Custom tasks
    # ------------------------------------------------------------------

    def list_custom_tasks(self, db, user_id: str) -> List[Dict[str, Any]]:
        """Return the custom-task list of *user_id* in stored order."""
        return self._custom_tasks(self._require_state(db, user_id))

    def add_custom_task(self, db, user_id: str,
                        task: Dict[str, Any]) -> Tuple[Dict[str, Any], List[Dict[str, Any]]]:
        """Append *task*, assigning an id when it has none.

        Returns:
            ``(stored_task, custom_tasks)``.

        Raises:
            InvalidInput: *task* is not an object, or its id is already used.
        """
        if not isinstance(task, dict):
            raise InvalidInput("'task' must be an object")
        state = self._require_state(db, user_id)
        custom = self._custom_tasks(state)
        existing_ids = {t.get('id') for t in custom if isinstance(t, dict)}

        new_task = dict(task)
        if not new_task.get('id'):
            new_task['id'] = generate_task_id(existing_ids)
        elif not isinstance(new_task['id'], str):
            raise InvalidInput("Custom task 'id' must be a string")
        elif new_task['id'] in existing_ids:
            raise InvalidInput(f"Custom task id already exists: {new_task['id']}")

        custom.append(new_task)
        self._db.update_game_state_field(db, user_id, 'custom', custom)
        return new_task, custom

    def update_custom_task(self, db, user_id: str, task_id: str,
                           updates: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Shallow-merge *updates* onto the task with *task_id*.

        An unknown *task_id* leaves the list unchanged and is not an error.

        Raises:
            InvalidInput: *updates* is not an object, or it renames the task
                to an empty, non-string or already used id.
        """
        if not isinstance(updates, dict):
            raise InvalidInput("'updates' must be an object")
        if 'id' in updates and (not isinstance(updates['id'], str) or not updates['id']):
            raise InvalidInput("Custom task 'id' must be a non-empty string")
        state = self._require_state(db, user_id)
        current = self._custom_tasks(state)
        if 'id' in updates and updates['id'] != task_id:
            other_ids = {t.get('id') for t in current
                         if isinstance(t, dict) and t.get('id') != task_id}
            if updates['id'] in other_ids:
                raise InvalidInput(f"Custom task id already exists: {updates['id']}")
        custom = [
            {**task, **updates} if isinstance(task, dict) and task.get('id') == task_id else task
            for task in current
        ]
        self._db.update_game_state_field(db, user_id, 'custom', custom)
        return custom

    def delete_custom_task(self, db, user_id: str, task_id: str) -> List[Dict[str, Any]]:
        """Remove the task with *task_id*; unknown ids leave the list unchanged."""
        state = self._require_state(db, user_id)
        custom = [
            task for task in self._custom_tasks(state)
            if not (isinstance(task, dict) and task.get('id') == task_id)
        ]
        self._db.update_game_state_field(db, user_id, 'custom', custom)
        return custom
