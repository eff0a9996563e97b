"""
Gym KPI Hub — Metric Visibility
=================================

Which metric groups each staff role may see, kept as a plain table so policy
can change without touching the calculators.

  Overview groups - every staff role
  Email groups    - front-desk, va and the money roles
  Money groups    - owner, coach, ptsi-intern, admin
  Trainers only see their own leaderboard row.
  Phone and DM setting totals cover every setter only for owner,
  ptsi-intern and admin; other roles see the rows they logged themselves.

Usage:
    perms = permissions_for("owner")
    perms.can_see(MetricGroup.REVENUE)      # True
"""
from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from typing import Dict, FrozenSet, Iterable, Optional


class MetricGroup(str, Enum):
    FUNNEL = "funnel"
    LEAD_SOURCES = "lead_sources"
    AD_EFFICIENCY = "ad_efficiency"
    REVENUE = "revenue"
    RISK = "risk"
    LTV = "ltv"
    TIMING = "timing"
    FOLLOW_UP = "follow_up"
    CHANNELS = "channels"
    SOURCE_ROI = "source_roi"
    REP_PERFORMANCE = "rep_performance"
    LEADERBOARD = "leaderboard"
    CONSULT_OUTCOMES = "consult_outcomes"
    PAYMENT_MIX = "payment_mix"
    PHONE_SETTING = "phone_setting"
    DM_SETTING = "dm_setting"
    EMAIL = "email"
    EMAIL_REVENUE = "email_revenue"


OVERVIEW_GROUPS: FrozenSet[MetricGroup] = frozenset({
    MetricGroup.FUNNEL,
    MetricGroup.LEAD_SOURCES,
    MetricGroup.TIMING,
    MetricGroup.FOLLOW_UP,
    MetricGroup.CHANNELS,
    MetricGroup.REP_PERFORMANCE,
    MetricGroup.LEADERBOARD,
    MetricGroup.CONSULT_OUTCOMES,
    MetricGroup.PHONE_SETTING,
    MetricGroup.DM_SETTING,
})

EMAIL_GROUPS: FrozenSet[MetricGroup] = frozenset({MetricGroup.EMAIL})

MONEY_GROUPS: FrozenSet[MetricGroup] = frozenset({
    MetricGroup.AD_EFFICIENCY,
    MetricGroup.REVENUE,
    MetricGroup.RISK,
    MetricGroup.LTV,
    MetricGroup.SOURCE_ROI,
    MetricGroup.PAYMENT_MIX,
    MetricGroup.EMAIL_REVENUE,
})

ALL_GROUPS: FrozenSet[MetricGroup] = OVERVIEW_GROUPS | EMAIL_GROUPS | MONEY_GROUPS


@dataclass(frozen=True)
class RolePolicy:
    groups: FrozenSet[MetricGroup]
    self_only: bool = False
    all_setters: bool = False


ROLE_TABLE: Dict[str, RolePolicy] = {
    "admin": RolePolicy(ALL_GROUPS, all_setters=True),
    "owner": RolePolicy(ALL_GROUPS, all_setters=True),
    "ptsi-intern": RolePolicy(ALL_GROUPS, all_setters=True),
    "coach": RolePolicy(ALL_GROUPS),
    "front-desk": RolePolicy(OVERVIEW_GROUPS | EMAIL_GROUPS),
    "va": RolePolicy(OVERVIEW_GROUPS | EMAIL_GROUPS),
    "closer": RolePolicy(OVERVIEW_GROUPS),
    "trainer": RolePolicy(OVERVIEW_GROUPS, self_only=True),
    "va-training": RolePolicy(frozenset()),
    "client": RolePolicy(frozenset()),
    "anon": RolePolicy(frozenset()),
}


@dataclass(frozen=True)
class Permissions:
    """Opaque token the engine receives: what to return and whose rows."""

    groups: FrozenSet[MetricGroup] = frozenset()
    self_only: bool = False
    all_setters: bool = False
    rep_id: Optional[str] = None
    role: Optional[str] = None

    def can_see(self, group: MetricGroup) -> bool:
        return group in self.groups

    @property
    def is_empty(self) -> bool:
        return not self.groups

    def ordered_groups(self) -> list:
        """Visible group names in display order."""
        return [g.value for g in MetricGroup if g in self.groups]

    def owns_setting_row(self, author_id: Optional[str]) -> bool:
        """Whether a phone/DM setting summary logged by author_id counts for this caller."""
        if self.all_setters:
            return True
        return self.rep_id is not None and author_id == self.rep_id


NO_PERMISSIONS = Permissions()


def permissions_for(
    role: Optional[str],
    profile_id: Optional[str] = None,
    table: Dict[str, RolePolicy] = ROLE_TABLE,
) -> Permissions:
    """Look up a role; unknown or missing roles see nothing."""
    key = (role or "").strip().lower()
    policy = table.get(key)
    if policy is None:
        return Permissions(role=key or None)
    return Permissions(
        groups=policy.groups,
        self_only=policy.self_only,
        all_setters=policy.all_setters,
        rep_id=profile_id,
        role=key,
    )


def restrict(permissions: Permissions, groups: Iterable[str]) -> Permissions:
    """Narrow a token to the requested group names (never widens it)."""
    wanted = set()
    for name in groups:
        try:
            wanted.add(MetricGroup(name.strip().lower()))
        except ValueError:
            continue
    return replace(permissions, groups=permissions.groups & frozenset(wanted))


# ---------------------------------------------------------------------------
# Callers
# ---------------------------------------------------------------------------

ADMIN_ROLE = "admin"


@dataclass(frozen=True)
class CallerContext:
    """Who is asking: resolved from an API key (or development mode)."""

    role: Optional[str] = None
    profile_id: Optional[str] = None
    gym_id: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return (self.role or "").lower() == ADMIN_ROLE

    def permissions(self) -> Permissions:
        return permissions_for(self.role, self.profile_id)

    def tenant_for(self, requested_gym_id: Optional[str]) -> Optional[str]:
        """Admins pick any gym; everyone else is pinned to their own."""
        if self.is_admin:
            return requested_gym_id or self.gym_id
        return self.gym_id


ANONYMOUS = CallerContext()
DEVELOPMENT_CALLER = CallerContext(role=ADMIN_ROLE)
