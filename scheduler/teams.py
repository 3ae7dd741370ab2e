"""
Team Selector.

Turns the PreceptorTeams of a clerkship into ranked candidate pools for the solver.
Teams that break their own formation rules are excluded and reported, never repaired.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set

from models import Clerkship, Elective, PreceptorTeam, PreceptorTeamMember

logger = logging.getLogger(__name__)


@dataclass
class RankedTeam:
    """A candidate pool: a team (or a synthetic pool) with its members in placement order."""
    team_id: Optional[str]
    rank: int
    members: List[PreceptorTeamMember]
    health_system_id: Optional[str] = None
    site_ids: Optional[List[str]] = None  # restricts sites when set (electives)

    @property
    def preceptor_ids(self) -> List[str]:
        return [m.preceptor_id for m in self.members]


@dataclass
class InvalidTeam:
    team_id: str
    clerkship_id: str
    reasons: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {"team_id": self.team_id, "clerkship_id": self.clerkship_id, "reasons": list(self.reasons)}


@dataclass
class FallbackTier:
    tier: int
    teams: List[RankedTeam]


class TeamSelector:
    """
    Ranks teams per clerkship: (priority, created_at, id).
    Members go primaries first by ascending priority, then fallback-only members.
    """

    def __init__(self, snapshot):
        self.snapshot = snapshot
        self._valid: Dict[str, List[PreceptorTeam]] = {}
        self._invalid: Dict[str, List[InvalidTeam]] = {}

        for clerkship_id, teams in snapshot.teams_by_clerkship.items():
            ordered = sorted(teams, key=lambda t: (t.priority, t.created_at, t.id))
            for team in ordered:
                reasons = self.validate_team(team)
                if reasons:
                    logger.warning(f"Team {team.id} excluded for {clerkship_id}: {'; '.join(reasons)}")
                    self._invalid.setdefault(clerkship_id, []).append(
                        InvalidTeam(team_id=team.id, clerkship_id=clerkship_id, reasons=reasons)
                    )
                else:
                    self._valid.setdefault(clerkship_id, []).append(team)

    def validate_team(self, team: PreceptorTeam) -> List[str]:
        """Formation rule failures of the team against its current members (empty = valid)."""
        reasons = []
        preceptors = []
        for member in team.members:
            preceptor = self.snapshot.preceptor_by_id.get(member.preceptor_id)
            if preceptor is None:
                reasons.append(f"Unknown preceptor {member.preceptor_id}")
            else:
                preceptors.append(preceptor)

        if team.requires_admin_approval and not team.is_approved:
            reasons.append("Awaiting admin approval")

        if reasons:
            return reasons

        if team.require_same_health_system:
            shared = None
            for preceptor in preceptors:
                systems = self._health_systems(preceptor.id)
                shared = systems if shared is None else shared & systems
            if not shared:
                reasons.append("Members do not share a health system")

        if team.require_same_site:
            shared = set(preceptors[0].site_ids)
            for preceptor in preceptors[1:]:
                shared &= set(preceptor.site_ids)
            if not shared:
                reasons.append("Members do not share a site")

        if team.require_same_specialty:
            specialties = {(p.specialty or "").lower() for p in preceptors}
            if len(specialties) != 1:
                reasons.append("Members have different specialties")

        return reasons

    def _health_systems(self, preceptor_id: str) -> Set[str]:
        preceptor = self.snapshot.preceptor_by_id[preceptor_id]
        if preceptor.health_system_id:
            return {preceptor.health_system_id}
        systems = {self.snapshot.site_health_system(s) for s in preceptor.site_ids}
        systems.discard(None)
        return systems

    def _team_health_system(self, members: List[PreceptorTeamMember]) -> Optional[str]:
        for member in members:
            systems = self._health_systems(member.preceptor_id)
            if systems:
                return sorted(systems)[0]
        return None

    def _rank(self, team: PreceptorTeam, rank: int) -> RankedTeam:
        members = team.ordered_members
        return RankedTeam(
            team_id=team.id,
            rank=rank,
            members=members,
            health_system_id=self._team_health_system(members),
        )

    # --- Public API ---

    def candidate_teams(self, clerkship_id: str) -> List[RankedTeam]:
        """Valid teams in rank order, or the open pool when the clerkship has none."""
        teams = self._valid.get(clerkship_id, [])
        if not teams:
            return [self.open_pool()]
        return [self._rank(team, i) for i, team in enumerate(teams)]

    def invalid_teams(self, clerkship_id: Optional[str] = None) -> List[InvalidTeam]:
        if clerkship_id is not None:
            return list(self._invalid.get(clerkship_id, []))
        return [t for key in sorted(self._invalid) for t in self._invalid[key]]

    def open_pool(self) -> RankedTeam:
        """Every preceptor of the period, ordered by id, all primaries."""
        members = [
            PreceptorTeamMember(preceptor_id=p.id, priority=i + 1)
            for i, p in enumerate(self.snapshot.preceptors)
        ]
        return RankedTeam(team_id=None, rank=0, members=members)

    def elective_pools(self, clerkship: Clerkship, elective: Elective) -> List[RankedTeam]:
        """Elective preceptors in listed order, else the clerkship's own pools."""
        site_ids = list(elective.site_ids) or None

        if elective.preceptor_ids:
            members = [
                PreceptorTeamMember(preceptor_id=pid, priority=i + 1)
                for i, pid in enumerate(elective.preceptor_ids)
                if pid in self.snapshot.preceptor_by_id
            ]
            return [RankedTeam(team_id=None, rank=0, members=members, site_ids=site_ids)]

        pools = self.candidate_teams(clerkship.id)
        for pool in pools:
            pool.site_ids = site_ids
        return pools

    def fallback_tiers(
        self,
        clerkship_id: str,
        primary_team_id: Optional[str],
        allow_cross_system: bool = False
    ) -> List[FallbackTier]:
        """
        Tier 1: the whole primary team, fallback-only members included.
        Tier 2: other teams in the primary team's health system.
        Tier 3: any remaining team for the clerkship (cross-system, opt-in).
        """
        ranked = self.candidate_teams(clerkship_id)
        primary = next((t for t in ranked if t.team_id == primary_team_id), ranked[0])

        tiers = [FallbackTier(tier=1, teams=[primary])]

        others = [t for t in ranked if t is not primary]
        same_system = [t for t in others if t.health_system_id == primary.health_system_id]
        if same_system:
            tiers.append(FallbackTier(tier=2, teams=same_system))

        if allow_cross_system:
            cross = [t for t in others if t.health_system_id != primary.health_system_id]
            if cross:
                tiers.append(FallbackTier(tier=3, teams=cross))

        return tiers
