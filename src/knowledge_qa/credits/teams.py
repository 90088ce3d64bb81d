"""Team-shared provider keys."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol


@dataclass(frozen=True, slots=True)
class TeamKeyResult:
    has_key: bool
    key: str | None = None
    team_name: str | None = None
    provider: str = "openai"


@dataclass(slots=True)
class Team:
    team_id: str
    name: str
    owner_id: str
    api_key: str | None = None
    provider: str = "openai"
    member_ids: set[str] = field(default_factory=set)


class TeamDirectory(Protocol):
    def get_team_key(self, user_id: str) -> TeamKeyResult:
        ...


class InMemoryTeamDirectory:
    """Teams held in process memory.

    A user's owned team is checked before teams they are a member of.
    """

    def __init__(self, teams: list[Team] | None = None) -> None:
        self._teams: dict[str, Team] = {}
        for team in teams or []:
            self.add_team(team)

    def add_team(self, team: Team) -> None:
        self._teams[team.team_id] = team

    def add_member(self, team_id: str, user_id: str) -> None:
        self._teams[team_id].member_ids.add(user_id)

    def get_team_key(self, user_id: str) -> TeamKeyResult:
        owned = next(
            (team for team in self._teams.values() if team.owner_id == user_id), None
        )
        team = owned or next(
            (team for team in self._teams.values() if user_id in team.member_ids), None
        )
        if team is None:
            return TeamKeyResult(has_key=False)
        if not team.api_key:
            return TeamKeyResult(has_key=False, team_name=team.name, provider=team.provider)
        return TeamKeyResult(
            has_key=True, key=team.api_key, team_name=team.name, provider=team.provider
        )
