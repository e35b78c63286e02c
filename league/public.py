from concurrent.futures import ThreadPoolExecutor

from flask import Blueprint, abort, current_app, make_response, redirect, render_template, request, url_for

from . import datastore
from .stats import (
    MONTH_NAMES,
    PERIODS,
    available_years,
    filter_fixture,
    parse_filters,
    rank_players,
    sort_players,
)
from .state import StatsState, StatsTab, find_by_id


bp = Blueprint('public', __name__)

LAST_TAB_COOKIE = 'lastActiveTab'
LAST_TAB_MAX_AGE = 60 * 60 * 24 * 365
PLAYER_PLACEHOLDER = 'https://placehold.co/128x128/e2e8f0/64748b?text=%E2%9A%BD'


def load_collections():
    """Players and matches fetched together; both fall back to empty lists."""
    with ThreadPoolExecutor(max_workers=2) as pool:
        players = pool.submit(datastore.get_players)
        matches = pool.submit(datastore.get_matches)
        return players.result(), matches.result()


def _ranking(column: str, label: str, only_positive: bool = False):
    def view(state: StatsState) -> dict:
        predicate = (lambda p: (p.get(column) or 0) > 0) if only_positive else None
        return {
            'template': 'stats/ranking.html',
            'rows': rank_players(state.stats['players'], column, predicate),
            'column': column,
            'label': label,
        }
    return view


def _estadisticas(state: StatsState) -> dict:
    criterion, order = state.sort
    return {
        'template': 'stats/estadisticas.html',
        'rows': sort_players(state.stats['players'], criterion, order),
        'criterion': criterion,
        'order': order,
    }


def _equipos(state: StatsState) -> dict:
    return {'template': 'stats/equipos.html', 'team_stats': state.stats['team_stats']}


def _roster_players(state: StatsState, ids) -> list:
    out = []
    for pid in dict.fromkeys(str(x) for x in (ids or [])):
        player = find_by_id(state.players, pid)
        if player is not None:
            out.append(player)
    return out


def _fixture(state: StatsState) -> dict:
    matches = filter_fixture(state.matches, state.filters)
    selected = find_by_id(matches, state.selected_match_id) if state.selected_match_id else None
    if selected is None and matches:
        selected = matches[0]
    details = None
    if selected is not None:
        details = {
            'match': selected,
            'white': _roster_players(state, selected.get('team_white_players')),
            'dark': _roster_players(state, selected.get('team_dark_players')),
            'tt_attendees': _roster_players(state, selected.get('tt_attendees')),
        }
    return {'template': 'stats/fixture.html', 'matches': matches, 'details': details}


# One view per tab; every StatsTab member appears exactly once.
TAB_VIEWS = {
    StatsTab.LEADERBOARD: _ranking('points', 'Puntos'),
    StatsTab.CHAMIGO: _ranking('chamigos', 'Chamigos', only_positive=True),
    StatsTab.TT: _ranking('tt', 'TT', only_positive=True),
    StatsTab.PRESENTISMO: _ranking('pj', 'PJ'),
    StatsTab.AUSENTISMO: _ranking('ausentes', 'Ausentes'),
    StatsTab.ESTADISTICAS: _estadisticas,
    StatsTab.EQUIPOS: _equipos,
    StatsTab.FIXTURE: _fixture,
}


def build_state(tab: StatsTab, players, matches, args) -> StatsState:
    order = 'asc' if args.get('order') == 'asc' else 'desc'
    return StatsState(
        tab=tab,
        players=players,
        matches=matches,
        filters=parse_filters(args, by_month=tab.by_month),
        sort=(args.get('sort') or 'points', order),
        selected_match_id=args.get('match_id', type=int),
    ).recompute()


@bp.route('/')
def index():
    tab = StatsTab.parse(request.args.get('tab')) or StatsTab.parse(request.cookies.get(LAST_TAB_COOKIE))
    tab = tab or StatsTab.LEADERBOARD
    return redirect(url_for('public.stats_tab', tab_id=tab.value))


@bp.route('/stats/<tab_id>')
def stats_tab(tab_id):
    tab = StatsTab.parse(tab_id)
    if tab is None:
        return redirect(url_for('public.stats_tab', tab_id=StatsTab.LEADERBOARD.value))
    try:
        players, matches = load_collections()
        state = build_state(tab, players, matches, request.args)
        context = TAB_VIEWS[tab](state)
    except Exception:
        current_app.logger.exception("Error fatal en la inicialización")
        return render_template('stats/error.html', title='Error', tabs=list(StatsTab), tab=tab), 500

    template = context.pop('template')
    resp = make_response(render_template(
        template,
        title=tab.title,
        tab=tab,
        tabs=list(StatsTab),
        state=state,
        years=available_years(matches),
        periods=PERIODS,
        month_names=MONTH_NAMES,
        **context,
    ))
    resp.set_cookie(LAST_TAB_COOKIE, tab.value, max_age=LAST_TAB_MAX_AGE, samesite='Lax')
    return resp


@bp.route('/stats/player/<int:player_id>')
def player_card(player_id):
    """Photo, status and the filtered points/chamigo/TT totals of one player."""
    players, matches = load_collections()
    player = find_by_id(players, player_id)
    if player is None:
        abort(404)
    state = build_state(StatsTab.LEADERBOARD, players, matches, request.args)
    stat = find_by_id(state.stats['players'], player_id)
    return render_template(
        'stats/player.html',
        title=player.get('name'),
        tab=None,
        tabs=list(StatsTab),
        player=player,
        stat=stat,
        photo_url=player.get('photo_url') or PLAYER_PLACEHOLDER,
        active=player.get('status') == 'Activo',
    )
