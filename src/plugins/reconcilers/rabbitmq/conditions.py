"""
Readiness conditions.

Conditions are recomputed from scratch on every pass. The previous pass's
conditions are consulted only to keep ``last_transition_time`` stable when
a condition's status does not change.
"""

from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Set

READY = "Ready"


class ConditionStatus(Enum):
    TRUE = "True"
    FALSE = "False"
    UNKNOWN = "Unknown"


@dataclass
class Condition:
    type: str
    status: str
    reason: str = ""
    message: str = ""
    last_transition_time: str = ""

    @property
    def is_true(self) -> bool:
        return self.status == ConditionStatus.TRUE.value

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Condition":
        return cls(
            type=data["type"],
            status=data.get("status", ConditionStatus.UNKNOWN.value),
            reason=data.get("reason", ""),
            message=data.get("message", ""),
            last_transition_time=data.get("last_transition_time", ""),
        )


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class Conditions:
    """The set of named conditions produced by one pass."""

    def __init__(self, previous: Optional[Iterable[Dict[str, Any]]] = None):
        self._previous: Dict[str, Condition] = {}
        for item in previous or []:
            cond = Condition.from_dict(item)
            self._previous[cond.type] = cond
        self._current: Dict[str, Condition] = {}
        # Types whose current entry is only the pass-entry Unknown marker
        self._placeholders: Set[str] = set()

    def set(
        self,
        type_: str,
        status: ConditionStatus,
        reason: str,
        message: str = "",
    ) -> Condition:
        existing = None
        if type_ not in self._placeholders:
            existing = self._current.get(type_)
        existing = existing or self._previous.get(type_)
        if existing is not None and existing.status == status.value:
            transition_time = existing.last_transition_time
        else:
            transition_time = _now()

        cond = Condition(
            type=type_,
            status=status.value,
            reason=reason,
            message=message,
            last_transition_time=transition_time,
        )
        self._current[type_] = cond
        self._placeholders.discard(type_)
        return cond

    def set_true(self, type_: str, reason: str, message: str = "") -> Condition:
        return self.set(type_, ConditionStatus.TRUE, reason, message)

    def set_false(self, type_: str, reason: str, message: str = "") -> Condition:
        return self.set(type_, ConditionStatus.FALSE, reason, message)

    def set_unknown(
        self, type_: str, reason: str = "Unknown", message: str = ""
    ) -> Condition:
        return self.set(type_, ConditionStatus.UNKNOWN, reason, message)

    def mark_evaluating(self, type_: str) -> Condition:
        """
        Set ``type_`` to Unknown until a component decides it.

        A later ``set`` in the same pass compares against the previous pass,
        not against this marker, so an unchanged status keeps its
        ``last_transition_time``.
        """
        cond = self.set_unknown(type_)
        self._placeholders.add(type_)
        return cond

    def get(self, type_: str) -> Optional[Condition]:
        return self._current.get(type_)

    def is_true(self, type_: str) -> bool:
        cond = self._current.get(type_)
        return cond is not None and cond.is_true

    def aggregate(self, constituents: Iterable[str]) -> Condition:
        """
        Set ``Ready`` from the named constituent conditions.

        Ready is true only when every constituent is true. Otherwise it
        carries the first non-true constituent's reason and message.
        """
        constituents = list(constituents)
        for type_ in constituents:
            cond = self._current.get(type_)
            if cond is None:
                return self.set_unknown(READY, "Unknown", f"{type_} not evaluated")
            if not cond.is_true:
                return self.set(
                    READY, ConditionStatus(cond.status), cond.reason, cond.message
                )
        return self.set_true(READY, "Ready", ", ".join(constituents))

    def to_list(self) -> List[Dict[str, Any]]:
        return [cond.to_dict() for cond in self._current.values()]

    def __contains__(self, type_: str) -> bool:
        return type_ in self._current

    def __len__(self) -> int:
        return len(self._current)
