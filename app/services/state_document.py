"""Shape validation and normalisation of game-state documents.

Clients send every JSON sub-field either as a structured value or as a
JSON-encoded string of that value.  Both forms are decoded here so the rest
of the application only ever sees structured data.

Rules
-----
* ``stats`` maps stat names to numbers (``null`` is tolerated).
* ``tasks``, ``items``, ``props`` and ``custom`` are lists of objects.
* Every ``custom`` entry carries a non-empty string ``id``, unique in the list.
* ``collapsed`` maps section keys to booleans.
* ``world`` is an object; missing or ``null`` becomes ``{}``.
* ``day`` is a string; missing or ``null`` becomes ``""``.
"""
import json
import math
from typing import Any, Dict, List

from ..exceptions import InvalidInput

KNOWN_STATS = ('trust', 'rupees', 'hearts', 'maxHearts', 'xp', 'level', 'ticksToday')

REQUIRED_FIELDS = ('stats', 'tasks', 'items', 'props', 'custom', 'collapsed')


def is_number(value: Any) -> bool:
    """Return ``True`` for finite ints/floats (``bool`` excluded)."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    try:
        return math.isfinite(value)
    except OverflowError:
        return False


def decode_field(name: str, value: Any) -> Any:
    """Decode *value* if it arrived as a JSON-encoded string."""
    if not isinstance(value, str):
        return value
    try:
        return json.loads(value)
    except ValueError as exc:
        raise InvalidInput(f"Field '{name}' is not valid JSON", str(exc)) from exc


def validate_stats(stats: Any) -> Dict[str, Any]:
    if not isinstance(stats, dict):
        raise InvalidInput("Field 'stats' must be an object")
    for key, value in stats.items():
        if value is not None and not is_number(value):
            raise InvalidInput(f"Stat '{key}' must be a number")
    return stats


def validate_records(name: str, records: Any) -> List[Dict[str, Any]]:
    if not isinstance(records, list):
        raise InvalidInput(f"Field '{name}' must be a list")
    for index, record in enumerate(records):
        if not isinstance(record, dict):
            raise InvalidInput(f"Field '{name}' entry {index} must be an object")
    return records


def validate_custom(custom: Any) -> List[Dict[str, Any]]:
    validate_records('custom', custom)
    seen = set()
    for index, task in enumerate(custom):
        task_id = task.get('id')
        if not isinstance(task_id, str) or not task_id:
            raise InvalidInput(f"Custom task {index} needs a non-empty string 'id'")
        if task_id in seen:
            raise InvalidInput(f"Duplicate custom task id: {task_id}")
        seen.add(task_id)
    return custom


def validate_collapsed(collapsed: Any) -> Dict[str, bool]:
    if not isinstance(collapsed, dict):
        raise InvalidInput("Field 'collapsed' must be an object")
    for key, value in collapsed.items():
        if not isinstance(value, bool):
            raise InvalidInput(f"Collapsed flag '{key}' must be a boolean")
    return collapsed


def normalize_document(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Validate a client payload and return a fully structured document.

    Raises:
        InvalidInput: if a required field is missing or any field has the
            wrong shape.
    """
    if not isinstance(payload, dict):
        raise InvalidInput('Request body must be a JSON object')
    missing = [name for name in REQUIRED_FIELDS if payload.get(name) is None]
    if missing:
        raise InvalidInput(f"Missing required field(s): {', '.join(missing)}")

    day = payload.get('day')
    if day is None:
        day = ''
    if not isinstance(day, str):
        raise InvalidInput("Field 'day' must be a string")

    world = decode_field('world', payload.get('world'))
    if world is None:
        world = {}
    if not isinstance(world, dict):
        raise InvalidInput("Field 'world' must be an object")

    return {
        'stats': validate_stats(decode_field('stats', payload['stats'])),
        'tasks': validate_records('tasks', decode_field('tasks', payload['tasks'])),
        'items': validate_records('items', decode_field('items', payload['items'])),
        'props': validate_records('props', decode_field('props', payload['props'])),
        'custom': validate_custom(decode_field('custom', payload['custom'])),
        'day': day,
        'collapsed': validate_collapsed(decode_field('collapsed', payload['collapsed'])),
        'world': world,
    }


def load_document(stored: Dict[str, Any]) -> Dict[str, Any]:
    """Turn stored column values into the document returned to clients.

    Rows written by older clients may hold string-encoded JSON; those are
    decoded.  Stored data is otherwise passed through untouched.

    Raises:
        InvalidInput: if a stored string is not valid JSON.
    """
    document = {}
    for name, value in stored.items():
        if name == 'day':
            document[name] = value if value is not None else ''
            continue
        document[name] = decode_field(name, value)
    if document.get('world') is None:
        document['world'] = {}
    return document
