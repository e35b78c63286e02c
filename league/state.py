"""Application state values and the closed sets of dashboard tabs.

State is built by the controllers for each request and handed explicitly to
rendering; nothing here is shared between requests.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Optional

from . import stats as stats_module

ADMIN_ROLE = "Admin"


class AdminTab(Enum):
    DASHBOARD = "dashboard"
    TEAM_FORMATION = "team-formation"
    MATCH_RESULTS = "match-results"
    CHAMIGO_MANAGEMENT = "chamigo-management"
    TT_ATTENDANCE = "tt-attendance"
    EDIT_MATCH = "edit-match"
    PLAYERS_MANAGEMENT = "players-management"
    USER_MANAGEMENT = "user-management"

    @property
    def title(self) -> str:
        return _ADMIN_TITLES[self]

    @property
    def icon(self) -> str:
        return _ADMIN_ICONS[self]

    @property
    def admin_only(self) -> bool:
        return self in (AdminTab.EDIT_MATCH, AdminTab.PLAYERS_MANAGEMENT, AdminTab.USER_MANAGEMENT)

    @classmethod
    def parse(cls, value: Optional[str]) -> "AdminTab":
        """Map a URL segment or hash to a tab; unknown values give the dashboard."""
        key = (value or "").lstrip("#")
        for tab in cls:
            if tab.value == key:
                return tab
        return cls.DASHBOARD


_ADMIN_TITLES = {
    AdminTab.DASHBOARD: "Dashboard",
    AdminTab.TEAM_FORMATION: "Armar Equipos",
    AdminTab.MATCH_RESULTS: "Resultados",
    AdminTab.CHAMIGO_MANAGEMENT: "Chamigo",
    AdminTab.TT_ATTENDANCE: "Asistencia TT",
    AdminTab.EDIT_MATCH: "Editar Partido",
    AdminTab.PLAYERS_MANAGEMENT: "ABM Jugadores",
    AdminTab.USER_MANAGEMENT: "ABM Usuarios",
}

_ADMIN_ICONS = {
    AdminTab.DASHBOARD: "fa-tachometer-alt",
    AdminTab.TEAM_FORMATION: "fa-users-cog",
    AdminTab.MATCH_RESULTS: "fa-trophy",
    AdminTab.CHAMIGO_MANAGEMENT: "fa-star",
    AdminTab.TT_ATTENDANCE: "fa-beer",
    AdminTab.EDIT_MATCH: "fa-edit",
    AdminTab.PLAYERS_MANAGEMENT: "fa-user-plus",
    AdminTab.USER_MANAGEMENT: "fa-user-shield",
}


class StatsTab(Enum):
    LEADERBOARD = "leaderboard"
    CHAMIGO = "chamigo"
    TT = "tt"
    PRESENTISMO = "presentismo"
    AUSENTISMO = "ausentismo"
    ESTADISTICAS = "estadisticas"
    EQUIPOS = "equipos"
    FIXTURE = "fixture"

    @property
    def title(self) -> str:
        return _STATS_TITLES[self]

    @property
    def icon(self) -> str:
        return _STATS_ICONS[self]

    @property
    def by_month(self) -> bool:
        """The fixture filters by month; every other tab by period."""
        return self is StatsTab.FIXTURE

    @classmethod
    def parse(cls, value: Optional[str]) -> Optional["StatsTab"]:
        """Accept ``leaderboard``, ``#leaderboard`` or ``leaderboard-content``."""
        key = (value or "").lstrip("#")
        if key.endswith("-content"):
            key = key[: -len("-content")]
        for tab in cls:
            if tab.value == key:
                return tab
        return None


_STATS_TITLES = {
    StatsTab.LEADERBOARD: "Tabla de Posiciones",
    StatsTab.CHAMIGO: "Chamigo",
    StatsTab.TT: "Tercer Tiempo",
    StatsTab.PRESENTISMO: "Presentismo",
    StatsTab.AUSENTISMO: "Ausentismo",
    StatsTab.ESTADISTICAS: "Estadísticas",
    StatsTab.EQUIPOS: "Equipos",
    StatsTab.FIXTURE: "Fixture",
}

_STATS_ICONS = {
    StatsTab.LEADERBOARD: "fa-trophy",
    StatsTab.CHAMIGO: "fa-star",
    StatsTab.TT: "fa-beer",
    StatsTab.PRESENTISMO: "fa-user-check",
    StatsTab.AUSENTISMO: "fa-user-times",
    StatsTab.ESTADISTICAS: "fa-table",
    StatsTab.EQUIPOS: "fa-shield-alt",
    StatsTab.FIXTURE: "fa-calendar-alt",
}


@dataclass(frozen=True)
class AdminState:
    user: Dict[str, Any]
    profile: Dict[str, Any]
    players: List[Dict[str, Any]] = field(default_factory=list)
    matches: List[Dict[str, Any]] = field(default_factory=list)
    users: List[Dict[str, Any]] = field(default_factory=list)
    selected_match_id: Optional[int] = None
    selected_player_id: Optional[int] = None
    player_sort: tuple = ("id", "asc")
    user_sort: tuple = ("email", "asc")

    @property
    def is_admin(self) -> bool:
        return (self.profile or {}).get("role") == ADMIN_ROLE

    @property
    def selected_match(self) -> Optional[Dict[str, Any]]:
        return find_by_id(self.matches, self.selected_match_id)

    @property
    def selected_player(self) -> Optional[Dict[str, Any]]:
        return find_by_id(self.players, self.selected_player_id)

    def with_collections(self, players, matches, users) -> "AdminState":
        return replace(self, players=list(players), matches=list(matches), users=list(users or []))


@dataclass(frozen=True)
class StatsState:
    tab: StatsTab
    players: List[Dict[str, Any]] = field(default_factory=list)
    matches: List[Dict[str, Any]] = field(default_factory=list)
    filters: Dict[str, Any] = field(default_factory=dict)
    stats: Dict[str, Any] = field(default_factory=lambda: {"players": [], "team_stats": {}})
    sort: tuple = ("points", "desc")
    selected_match_id: Optional[int] = None

    def recompute(self) -> "StatsState":
        """Return a copy with stats recalculated for the current filters."""
        computed = stats_module.calculate_all_stats(self.matches, self.players, self.filters)
        return replace(self, stats=computed)


def find_by_id(rows: List[Dict[str, Any]], row_id: Any) -> Optional[Dict[str, Any]]:
    if row_id is None:
        return None
    for row in rows:
        if str(row.get("id")) == str(row_id):
            return row
    return None
