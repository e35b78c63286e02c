"""Statistics aggregation for the public league dashboard."""

from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional

logger = logging.getLogger(__name__)

POINTS_PER_WIN = 3
POINTS_PER_DRAW = 1

RESULT_CLAROS = "Claros"
RESULT_OSCUROS = "Oscuros"
RESULT_EMPATE = "Empate"
RESULT_SUSPENDIDO = "Suspendido"
RESULTS = (RESULT_CLAROS, RESULT_OSCUROS, RESULT_EMPATE, RESULT_SUSPENDIDO)

PERIOD_APERTURA = "apertura"
PERIOD_CLAUSURA = "clausura"
PERIOD_TOTAL = "total"
PERIODS = (PERIOD_APERTURA, PERIOD_CLAUSURA, PERIOD_TOTAL)

ALL = "all"

MONTH_NAMES = (
    "Enero", "Febrero", "Marzo", "Abril", "Mayo", "Junio",
    "Julio", "Agosto", "Septiembre", "Octubre", "Noviembre", "Diciembre",
)

# Sortable columns of the full statistics table.
SORT_CRITERIA = ("name", "points", "pj", "pg", "pe", "pp", "efectividad", "chamigos", "tt", "ausentes")


def match_datetime(value: Any) -> Optional[datetime]:
    """Return the match date as an aware UTC datetime, or None if unreadable.

    Accepts ``date``/``datetime`` objects as returned by psycopg2 and ISO
    strings as stored by forms. Naive values are taken as UTC.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, date):
        dt = datetime(value.year, value.month, value.day)
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(text)
        except ValueError:
            return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _selected(values: Optional[Iterable[str]]) -> List[str]:
    """Return the active selections, or an empty list when nothing filters."""
    if not values:
        return []
    picked = [str(v) for v in values]
    if ALL in picked:
        return []
    return picked


def filter_matches(matches: Iterable[Dict], filters: Optional[Dict] = None) -> List[Dict]:
    """Apply the year filter, then either the period or the month filter.

    The period filter wins over the month filter whenever a period is given;
    ``"total"`` keeps the whole year.
    """
    filters = filters or {}
    selected = list(matches)

    years = _selected(filters.get("years"))
    if years:
        def _in_years(match: Dict) -> bool:
            dt = match_datetime(match.get("match_date"))
            return dt is not None and str(dt.year) in years

        selected = [m for m in selected if _in_years(m)]

    period = filters.get("period")
    months = _selected(filters.get("months"))
    if period and period != PERIOD_TOTAL:
        def _in_period(match: Dict) -> bool:
            dt = match_datetime(match.get("match_date"))
            if dt is None:
                return False
            # month index 0-5 is the first half of the year
            first_half = dt.month - 1 <= 5
            return first_half if period == PERIOD_APERTURA else not first_half

        selected = [m for m in selected if _in_period(m)]
    elif months:
        def _in_months(match: Dict) -> bool:
            dt = match_datetime(match.get("match_date"))
            return dt is not None and str(dt.month) in months

        selected = [m for m in selected if _in_months(m)]

    return selected


def _roster(match: Dict, field: str) -> List[str]:
    return [str(pid) for pid in (match.get(field) or [])]


def _empty_player_stat(player: Dict) -> Dict[str, Any]:
    return {
        "id": player.get("id"),
        "name": player.get("name"),
        "photo_url": player.get("photo_url"),
        "status": player.get("status"),
        "points": 0,
        "pg": 0,
        "pe": 0,
        "pp": 0,
        "pj": 0,
        "efectividad": "0.00",
        "chamigos": 0,
        "tt": 0,
        "ausentes": 0,
    }


def effectiveness(points: int, played: int) -> str:
    """Return points over maximum possible points as a two-decimal percentage."""
    max_points = played * POINTS_PER_WIN
    if max_points <= 0:
        return "0.00"
    return f"{points / max_points * 100:.2f}"


def vote_count(value: Any) -> int:
    """Read a stored vote count; null or unreadable counts are zero."""
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


def calculate_all_stats(matches: Iterable[Dict], players: Iterable[Dict], filters: Optional[Dict] = None) -> Dict[str, Any]:
    """Fold match records into per-player and per-team statistics.

    Args:
        matches: Match rows with ``match_date``, ``result``,
            ``team_white_players``, ``team_dark_players``, ``chamigo_votes``
            and ``tt_attendees``.
        players: Player rows; every one of them gets a stat record even when
            it played no match in the filtered range.
        filters: Optional ``years``, ``period`` and ``months`` selections.

    Returns:
        Dictionary with ``players`` (list of stat dictionaries in player
        order) and ``team_stats``.
    """
    player_stats: Dict[str, Dict[str, Any]] = {}
    for player in players:
        player_stats[str(player.get("id"))] = _empty_player_stat(player)

    team_stats = {
        "claros_wins": 0,
        "oscuros_wins": 0,
        "empates": 0,
        "suspendidos": 0,
        "total_pj_matches": 0,
    }

    for match in filter_matches(matches, filters):
        result = match.get("result")
        if not result:
            continue
        if result == RESULT_SUSPENDIDO:
            team_stats["suspendidos"] += 1
            continue
        team_stats["total_pj_matches"] += 1

        if result == RESULT_CLAROS:
            team_stats["claros_wins"] += 1
        elif result == RESULT_OSCUROS:
            team_stats["oscuros_wins"] += 1
        elif result == RESULT_EMPATE:
            team_stats["empates"] += 1
        else:
            logger.warning("Unrecognised result %r for match %s", result, match.get("id"))

        white = _roster(match, "team_white_players")
        dark = _roster(match, "team_dark_players")
        for pid in dict.fromkeys(white + dark):
            stat = player_stats.get(pid)
            if stat is None:
                continue
            stat["pj"] += 1
            if (result == RESULT_CLAROS and pid in white) or (result == RESULT_OSCUROS and pid in dark):
                stat["points"] += POINTS_PER_WIN
                stat["pg"] += 1
            elif result == RESULT_EMPATE:
                stat["points"] += POINTS_PER_DRAW
                stat["pe"] += 1
            else:
                stat["pp"] += 1

        votes = {str(pid): vote_count(count) for pid, count in (match.get("chamigo_votes") or {}).items()}
        if votes:
            max_votes = max(votes.values())
            for pid, count in votes.items():
                stat = player_stats.get(pid)
                # a map of empty counts names nobody
                if max_votes > 0 and count == max_votes and stat is not None:
                    stat["chamigos"] += 1

        for pid in dict.fromkeys(str(p) for p in (match.get("tt_attendees") or [])):
            stat = player_stats.get(pid)
            if stat is not None:
                stat["tt"] += 1

    for stat in player_stats.values():
        stat["efectividad"] = effectiveness(stat["points"], stat["pj"])
        stat["ausentes"] = max(0, team_stats["total_pj_matches"] - stat["pj"])

    return {"players": list(player_stats.values()), "team_stats": team_stats}


def current_tournament_filters(today: Optional[date] = None, by_month: bool = False) -> Dict[str, Any]:
    """Return the filter selection for the tournament running on ``today``."""
    today = today or date.today()
    if by_month:
        return {"years": [str(today.year)], "period": None, "months": [str(today.month)]}
    period = PERIOD_APERTURA if today.month <= 6 else PERIOD_CLAUSURA
    return {"years": [str(today.year)], "period": period, "months": []}


def parse_filters(args: Any, by_month: bool = False, today: Optional[date] = None) -> Dict[str, Any]:
    """Build a filter selection from request arguments.

    ``args`` is a Werkzeug ``MultiDict`` (or anything with ``getlist``).
    Without any filter argument the current tournament is selected.
    """
    years = [y for y in args.getlist("year") if y]
    months = [m for m in args.getlist("month") if m]
    period = args.get("period") or None
    if not years and not months and not period:
        return current_tournament_filters(today, by_month=by_month)
    if period not in PERIODS:
        period = None
    if by_month:
        period = None
    return {"years": years or [ALL], "period": period, "months": months}


def available_years(matches: Iterable[Dict]) -> List[str]:
    years = set()
    for match in matches:
        dt = match_datetime(match.get("match_date"))
        if dt is not None:
            years.add(dt.year)
    return [str(y) for y in sorted(years, reverse=True)]


def rank_players(
    players: Iterable[Dict],
    key: str,
    predicate: Optional[Callable[[Dict], bool]] = None,
) -> List[Dict]:
    """Return players ordered by ``key`` descending, optionally filtered."""
    selected = [p for p in players if predicate is None or predicate(p)]
    selected.sort(key=lambda p: (-float(p.get(key) or 0), p.get("name") or ""))
    return selected


def sort_players(players: Iterable[Dict], criterion: str = "points", order: str = "desc") -> List[Dict]:
    """Sort the full statistics table by one column."""
    if criterion not in SORT_CRITERIA:
        criterion = "points"
    reverse = order != "asc"
    if criterion == "name":
        return sorted(players, key=lambda p: (p.get("name") or "").lower(), reverse=reverse)
    return sorted(players, key=lambda p: float(p.get(criterion) or 0), reverse=reverse)


def filter_fixture(matches: Iterable[Dict], filters: Optional[Dict] = None) -> List[Dict]:
    """Return the matches shown in the fixture view, newest first."""
    selected = filter_matches(matches, filters)
    epoch = datetime.min.replace(tzinfo=timezone.utc)
    selected.sort(key=lambda m: match_datetime(m.get("match_date")) or epoch, reverse=True)
    return selected


__all__ = [
    "available_years",
    "calculate_all_stats",
    "current_tournament_filters",
    "effectiveness",
    "filter_fixture",
    "filter_matches",
    "match_datetime",
    "parse_filters",
    "rank_players",
    "sort_players",
    "vote_count",
]
