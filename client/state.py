from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, List, Optional, Tuple


MIN_NAME_LENGTH = 2


class SessionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    LIVE = "live"
    SIMULATED = "simulated"
    FAILED = "failed"

    @property
    def can_send(self) -> bool:
        return self in (SessionState.LIVE, SessionState.SIMULATED)


@dataclass(frozen=True)
class Identity:
    name: str
    password: Optional[str] = None


@dataclass
class Roster:
    """Members as last reported by the relay or simulator."""
    own_name: str = ""
    members: List[str] = field(default_factory=list)

    def replace(self, names: Iterable[str]) -> None:
        """Rebuild wholesale; repeated names keep their first position."""
        seen = set()
        self.members = []
        for name in names:
            if name not in seen:
                seen.add(name)
                self.members.append(name)

    def clear(self) -> None:
        self.own_name = ""
        self.members = []

    def is_current(self, name: str) -> bool:
        return bool(self.own_name) and name == self.own_name

    def snapshot(self) -> Tuple[str, ...]:
        return tuple(self.members)

    def __len__(self) -> int:
        return len(self.members)

    def __contains__(self, name: object) -> bool:
        return name in self.members
