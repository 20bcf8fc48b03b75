"""
Generic desired/observed diff.

Every collection the engine converges (permissions, policies) follows the
same rule: keys only in desired are created, keys in both whose values are
not equal are updated, and keys only in observed are deleted.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Hashable, Iterable, List


@dataclass
class DiffResult:
    """Operations needed to bring observed state to desired state."""

    create: Dict[Hashable, Any] = field(default_factory=dict)
    update: Dict[Hashable, Any] = field(default_factory=dict)
    delete: Dict[Hashable, Any] = field(default_factory=dict)
    unchanged: List[Hashable] = field(default_factory=list)

    @property
    def empty(self) -> bool:
        return not (self.create or self.update or self.delete)


def deep_equal(a: Any, b: Any) -> bool:
    """
    Compare decoded JSON values.

    Booleans never equal numbers, unlike Python's ``True == 1``.
    """
    if isinstance(a, bool) or isinstance(b, bool):
        return isinstance(a, bool) and isinstance(b, bool) and a == b
    if isinstance(a, dict) and isinstance(b, dict):
        return a.keys() == b.keys() and all(deep_equal(a[k], b[k]) for k in a)
    if isinstance(a, list) and isinstance(b, list):
        return len(a) == len(b) and all(deep_equal(x, y) for x, y in zip(a, b))
    if isinstance(a, (int, float)) and isinstance(b, (int, float)):
        return a == b
    return type(a) is type(b) and a == b


def index_by(items: Iterable[Any], key: Callable[[Any], Hashable]) -> Dict[Hashable, Any]:
    """Index a list of observed entities by a key extractor."""
    return {key(item): item for item in items}


def diff(
    desired: Dict[Hashable, Any],
    observed: Dict[Hashable, Any],
    equal: Callable[[Any, Any], bool],
) -> DiffResult:
    """
    Compute create/update/delete sets.

    Args:
        desired: Desired values by key.
        observed: Observed values by key.
        equal: ``equal(desired_value, observed_value)``.

    Returns:
        A DiffResult. ``create`` and ``update`` hold desired values in
        desired order; ``delete`` holds observed values in observed order.
    """
    result = DiffResult()
    remaining = dict(observed)

    for key, want in desired.items():
        if key not in remaining:
            result.create[key] = want
            continue
        have = remaining.pop(key)
        if equal(want, have):
            result.unchanged.append(key)
        else:
            result.update[key] = want

    result.delete = remaining
    return result
