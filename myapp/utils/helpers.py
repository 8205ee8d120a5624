import copy
import random
import jsonpickle
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


def now() -> str:
    return datetime.now(timezone.utc).isoformat()


def sort_dict_keys(d):
    """Recursively sort dictionary keys and handle nested structures.

    Args:
        d: Data structure (dict, list, or primitive type)

    Returns:
        Sorted version of the data structure
    """
    if isinstance(d, dict):
        return {key: sort_dict_keys(value) for key, value in sorted(d.items())}
    elif isinstance(d, list):
        return [sort_dict_keys(item) for item in d]
    else:
        return d


def canonicalize_dict(data):
    """
    Returns a canonical JSON representation of a dictionary.

    Keys are sorted recursively so the representation stays the same
    regardless of insertion order.
    """
    return jsonpickle.dumps(sort_dict_keys(data), unpicklable=False)


def deep_compare_dict(data1, data2) -> bool:
    """Compare two data structures deeply, ignoring dictionary key order.

    Args:
        data1: First data structure (dict, list, or nested combination)
        data2: Second data structure (dict, list, or nested combination)

    Returns:
        True if data structures are equivalent, False otherwise
    """
    if data1 is None and data2 is None:
        return True
    if data1 is None or data2 is None:
        return False

    if not isinstance(data1, type(data2)) and not isinstance(data2, type(data1)):
        return False

    try:
        return canonicalize_dict(data1) == canonicalize_dict(data2)
    except (TypeError, ValueError):
        return data1 == data2


def upsert_condition(conds: Optional[List[Dict]], newc: Dict) -> List[Dict]:
    """In-memory merge by .type. Only bump lastTransitionTime when status flips.

    A condition with the same type replaces the previous entry, so at most one
    condition per type is ever retained.
    """
    result = []
    replaced = False
    for c in conds or []:
        if c.get("type") != newc["type"]:
            result.append(c)
            continue
        if replaced:
            # drop duplicates left behind by older writers
            continue
        ltt = c.get("lastTransitionTime") or now()
        if c.get("status") != newc["status"]:
            ltt = now()
        result.append({**newc, "lastTransitionTime": ltt})
        replaced = True
    if not replaced:
        result.append({**newc, "lastTransitionTime": now()})
    return result


def get_path(data: Dict, *keys: str, default: Any = None) -> Any:
    """Walk nested dictionaries, returning `default` when any key is missing."""
    current = data
    for key in keys:
        if not isinstance(current, dict) or key not in current:
            return default
        current = current[key]
    return current


def apply_merge_patch(target: Any, patch: Any) -> Any:
    """Apply a JSON merge patch (RFC 7386) and return the merged document.

    `target` is left untouched; `None` values in the patch remove keys.
    """
    if not isinstance(patch, dict):
        return copy.deepcopy(patch)
    result = copy.deepcopy(target) if isinstance(target, dict) else {}
    for key, value in patch.items():
        if value is None:
            result.pop(key, None)
        else:
            result[key] = apply_merge_patch(result.get(key), value)
    return result


def escape_json_pointer(token: str) -> str:
    """Escape a single JSON pointer reference token (RFC 6901)."""
    return token.replace("~", "~0").replace("/", "~1")


def jittered(delay: float, jitter: float = 0.5) -> float:
    """Spread `delay` uniformly over [delay * (1 - jitter), delay * (1 + jitter)]."""
    if delay <= 0 or jitter <= 0:
        return delay
    return delay * (1 - jitter + 2 * jitter * random.random())  # noqa: S311
