"""Team-scoped authorization checks with an admin bypass."""

from __future__ import annotations

from hackathon_atlas.directory import TeamStore
from hackathon_atlas.errors import Forbidden, NotFound, Unauthorized
from hackathon_atlas.models import Anonymous, Authenticated, Caller, Team


class AuthGuard:
    """Answers "may this caller act on team T?".

    Admin and super-admin callers pass every team check without the team
    being loaded. A missing or blank ``team_id`` is reported as NotFound,
    since cluster records with a lost team reference do occur.
    """

    def __init__(self, teams: TeamStore) -> None:
        self._teams = teams

    def require_authenticated(self, caller: Caller) -> Authenticated:
        match caller:
            case Authenticated():
                return caller
            case Anonymous():
                raise Unauthorized("Authentication required")

    def require_admin(self, caller: Caller) -> Authenticated:
        user = self.require_authenticated(caller)
        if not user.is_admin:
            raise Forbidden("Admin access required")
        return user

    def require_team_leader(self, caller: Caller, team_id: str | None) -> Authenticated:
        user = self.require_authenticated(caller)
        if user.is_admin:
            return user
        team = self._load_team(team_id)
        if team.leader_id != user.user_id:
            raise Forbidden("Only the team leader can perform this action")
        return user

    def require_team_member(self, caller: Caller, team_id: str | None) -> Authenticated:
        user = self.require_authenticated(caller)
        if user.is_admin:
            return user
        team = self._load_team(team_id)
        if not team.is_member(user.user_id):
            raise Forbidden("You must be a team member to view this")
        return user

    def _load_team(self, team_id: str | None) -> Team:
        team = self._teams.get(team_id)
        if team is None:
            raise NotFound(f"Team {team_id!r} not found", public_message="Team not found")
        return team
