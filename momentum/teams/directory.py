"""
Team directory — read-only membership lookups used for authorization.

Team storage belongs to a separate service; the core only needs
``{user_id, role, team_id}`` answers. ``InMemoryTeamDirectory`` is the
shipped implementation, seeded from the ``teams:`` block of momentum.yaml.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

MANAGER_ROLES = frozenset({"owner", "admin"})


@dataclass(frozen=True)
class TeamMember:
    user_id: str
    role: str
    team_id: str

    @property
    def is_manager(self) -> bool:
        return self.role in MANAGER_ROLES


@dataclass
class Team:
    team_id: str
    name: str = ""
    members: List[TeamMember] = field(default_factory=list)

    @property
    def member_ids(self) -> List[str]:
        return [m.user_id for m in self.members]


class TeamDirectory(ABC):
    """Membership lookups consumed by the task service."""

    @abstractmethod
    def get_team(self, team_id: str) -> Optional[Team]:
        ...

    def get_membership(self, team_id: str, user_id: str) -> Optional[TeamMember]:
        team = self.get_team(team_id)
        if team is None:
            return None
        for member in team.members:
            if member.user_id == user_id:
                return member
        return None

    def is_manager(self, team_id: Optional[str], user_id: str) -> bool:
        if not team_id:
            return False
        member = self.get_membership(team_id, user_id)
        return member is not None and member.is_manager


class InMemoryTeamDirectory(TeamDirectory):
    """Thread-safe dict-backed directory."""

    def __init__(self) -> None:
        self._teams: Dict[str, Team] = {}
        self._lock = threading.Lock()

    def add_team(self, team_id: str, name: str = "") -> Team:
        with self._lock:
            team = self._teams.setdefault(team_id, Team(team_id=team_id, name=name))
            if name:
                team.name = name
            return team

    def add_member(self, team_id: str, user_id: str, role: str = "member") -> TeamMember:
        if role not in ("owner", "admin", "member"):
            raise ValueError(f"Unknown team role '{role}'")
        team = self.add_team(team_id)
        member = TeamMember(user_id=user_id, role=role, team_id=team_id)
        with self._lock:
            team.members = [m for m in team.members if m.user_id != user_id] + [member]
        return member

    def get_team(self, team_id: str) -> Optional[Team]:
        with self._lock:
            return self._teams.get(team_id)

    @classmethod
    def from_config(cls, teams: Iterable) -> "InMemoryTeamDirectory":
        """Build from ``TeamConfig`` entries."""
        directory = cls()
        for team_cfg in teams:
            directory.add_team(team_cfg.team_id, team_cfg.name)
            for member in team_cfg.members:
                directory.add_member(team_cfg.team_id, member.user_id, member.role)
        return directory
