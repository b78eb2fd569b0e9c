"""In-memory poll cursors keyed by ``(owner_id, target)``."""

from __future__ import annotations

import threading
from collections import OrderedDict
from collections.abc import Iterable
from typing import Any

_UNSET = object()


class CursorStore:
    """
    Per-owner "last seen" state for a poller.

    Scalar cursors hold a last id, count or snapshot id. Set cursors hold
    seen ids, capped at ``set_cap`` entries with the oldest evicted first.
    A cursor that was never written is distinct from an empty one: the first
    observation after a (re)start only seeds it.
    """

    def __init__(self, set_cap: int = 100):
        if set_cap < 1:
            raise ValueError("set_cap must be at least 1")
        self.set_cap = set_cap
        self._scalars: dict[tuple[str, str], Any] = {}
        self._sets: dict[tuple[str, str], OrderedDict[str, None]] = {}
        self._lock = threading.RLock()

    def reserve(self, window: int) -> None:
        """Raise the set cap to at least ``window``.

        A poller that fetches up to ``window`` ids per cycle must be able to
        hold all of them, or ids still in the fetch would be evicted and seen
        as new on the next cycle.
        """
        with self._lock:
            self.set_cap = max(self.set_cap, window)

    def is_set(self, owner_id: str, target: str) -> bool:
        key = (owner_id, target)
        with self._lock:
            return key in self._scalars or key in self._sets

    def get(self, owner_id: str, target: str, default: Any = None) -> Any:
        with self._lock:
            value = self._scalars.get((owner_id, target), _UNSET)
        return default if value is _UNSET else value

    def set(self, owner_id: str, target: str, value: Any) -> None:
        with self._lock:
            self._scalars[(owner_id, target)] = value

    def advance(self, owner_id: str, target: str, value: Any) -> bool:
        """
        Store a scalar observation.

        Returns:
            True if the cursor was already set and the value differs
        """
        with self._lock:
            previous = self._scalars.get((owner_id, target), _UNSET)
            self._scalars[(owner_id, target)] = value
        return previous is not _UNSET and previous != value

    def get_set(self, owner_id: str, target: str) -> set[str] | None:
        """Members of a set cursor, or None if it was never seeded."""
        with self._lock:
            members = self._sets.get((owner_id, target))
            return set(members) if members is not None else None

    def add(self, owner_id: str, target: str, items: Iterable[str]) -> None:
        """Add items to a set cursor, evicting the oldest past the cap."""
        with self._lock:
            members = self._sets.setdefault((owner_id, target), OrderedDict())
            for item in items:
                members.pop(item, None)
                members[item] = None
            while len(members) > self.set_cap:
                members.popitem(last=False)

    def replace(self, owner_id: str, target: str, items: Iterable[str]) -> None:
        """Replace a set cursor with exactly ``items`` (capped)."""
        with self._lock:
            self._sets[(owner_id, target)] = OrderedDict()
            self.add(owner_id, target, items)

    def diff(self, owner_id: str, target: str, items: Iterable[str]) -> list[str]:
        """
        Items not yet in a set cursor, in the given order.

        An unseeded cursor yields nothing.
        """
        seen = self.get_set(owner_id, target)
        if seen is None:
            return []
        return [item for item in items if item not in seen]

    def reset(self, owner_id: str | None = None) -> None:
        """Forget cursors for one owner, or for everyone."""
        with self._lock:
            if owner_id is None:
                self._scalars.clear()
                self._sets.clear()
                return
            for store in (self._scalars, self._sets):
                for key in [k for k in store if k[0] == owner_id]:
                    del store[key]

    def snapshot(self, owner_id: str) -> dict[str, Any]:
        """JSON-friendly view of an owner's cursors."""
        with self._lock:
            data: dict[str, Any] = {
                target: value
                for (owner, target), value in self._scalars.items()
                if owner == owner_id
            }
            for (owner, target), members in self._sets.items():
                if owner == owner_id:
                    data[target] = list(members)
        return data
