from league.admin import TAB_CONTROLLERS
from league.public import TAB_VIEWS
from league.state import AdminState, AdminTab, StatsState, StatsTab, find_by_id


def test_every_admin_tab_has_a_controller():
    assert set(TAB_CONTROLLERS) == set(AdminTab)


def test_every_stats_tab_has_a_view():
    assert set(TAB_VIEWS) == set(StatsTab)


def test_admin_tab_parse_falls_back_to_dashboard():
    assert AdminTab.parse("#tt-attendance") is AdminTab.TT_ATTENDANCE
    assert AdminTab.parse("no-such-tab") is AdminTab.DASHBOARD
    assert AdminTab.parse(None) is AdminTab.DASHBOARD


def test_admin_only_tabs():
    assert {t for t in AdminTab if t.admin_only} == {
        AdminTab.EDIT_MATCH,
        AdminTab.PLAYERS_MANAGEMENT,
        AdminTab.USER_MANAGEMENT,
    }


def test_stats_tab_parse_accepts_panel_ids():
    assert StatsTab.parse("leaderboard") is StatsTab.LEADERBOARD
    assert StatsTab.parse("#chamigo") is StatsTab.CHAMIGO
    assert StatsTab.parse("fixture-content") is StatsTab.FIXTURE
    assert StatsTab.parse("individual-stats") is None
    assert StatsTab.FIXTURE.by_month and not StatsTab.EQUIPOS.by_month


def test_admin_state_selection_and_role():
    state = AdminState(user={"id": "u"}, profile={"role": "Admin"}).with_collections(
        [{"id": 1, "name": "Ana"}], [{"id": 7, "result": None}], None,
    )
    assert state.is_admin
    assert state.users == []
    assert state.selected_match is None
    chosen = AdminState(user={"id": "u"}, profile={"role": "Usuario"}, matches=state.matches, selected_match_id=7)
    assert chosen.selected_match == {"id": 7, "result": None}
    assert not chosen.is_admin


def test_stats_state_recompute_returns_new_value():
    players = [{"id": 1, "name": "Ana"}]
    matches = [{"id": 1, "match_date": "2024-03-01", "result": "Claros", "team_white_players": ["1"]}]
    state = StatsState(tab=StatsTab.LEADERBOARD, players=players, matches=matches, filters={"years": ["2024"]})
    computed = state.recompute()
    assert computed is not state
    assert state.stats["players"] == []
    assert computed.stats["players"][0]["points"] == 3


def test_find_by_id_compares_as_text():
    rows = [{"id": 3}, {"id": "4"}]
    assert find_by_id(rows, "3") == {"id": 3}
    assert find_by_id(rows, 4) == {"id": "4"}
    assert find_by_id(rows, None) is None
