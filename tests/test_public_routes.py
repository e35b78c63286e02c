import pytest


@pytest.fixture()
def seeded(memory_store):
    memory_store["matches"] = [
        {
            "id": 1, "match_date": "2024-03-02", "result": "Claros",
            "team_white_players": ["1", "2"], "team_dark_players": ["3"],
            "chamigo_votes": {"1": 2, "3": 1}, "tt_attendees": ["1", "3"],
        },
        {
            "id": 2, "match_date": "2024-08-10", "result": "Suspendido",
            "team_white_players": ["1"], "team_dark_players": ["2"],
            "chamigo_votes": None, "tt_attendees": [],
        },
        {
            "id": 3, "match_date": "2023-11-04", "result": "Empate",
            "team_white_players": ["2"], "team_dark_players": ["3"],
            "chamigo_votes": None, "tt_attendees": ["2"],
        },
    ]
    return memory_store


def test_index_redirects_to_leaderboard(client):
    resp = client.get("/")
    assert resp.status_code == 302
    assert resp.headers["Location"].endswith("/stats/leaderboard")


def test_index_restores_last_tab_from_cookie(client):
    client.set_cookie("lastActiveTab", "equipos")
    resp = client.get("/")
    assert resp.headers["Location"].endswith("/stats/equipos")


def test_index_accepts_panel_ids(client):
    resp = client.get("/?tab=fixture-content")
    assert resp.headers["Location"].endswith("/stats/fixture")


def test_unknown_tab_redirects(client):
    resp = client.get("/stats/comparador")
    assert resp.status_code == 302
    assert resp.headers["Location"].endswith("/stats/leaderboard")


def test_leaderboard_ranks_by_points_and_remembers_tab(client, seeded):
    resp = client.get("/stats/leaderboard?year=2024&period=total")
    assert resp.status_code == 200
    html = resp.get_data(as_text=True)
    # Ana and Beto won the only counted 2024 match
    assert html.index("Ana") < html.index("Caro")
    assert "100.00%" in html
    cookies = resp.headers.getlist("Set-Cookie")
    assert any(c.startswith("lastActiveTab=leaderboard") for c in cookies)


def test_chamigo_lists_only_players_with_awards(client, seeded):
    resp = client.get("/stats/chamigo?year=all&period=total")
    html = resp.get_data(as_text=True)
    assert "Ana" in html
    assert "Beto</td>" not in html


def test_empty_filter_result_shows_message(client, seeded):
    resp = client.get("/stats/tt?year=2019")
    html = resp.get_data(as_text=True)
    assert resp.status_code == 200
    assert "No hay datos para los filtros seleccionados." in html


def test_players_without_matches_still_listed(client, seeded):
    resp = client.get("/stats/presentismo?year=2019")
    html = resp.get_data(as_text=True)
    assert resp.status_code == 200
    for name in ("Ana", "Beto", "Caro"):
        assert f">{name}</td>" in html


def test_equipos_shows_team_counters(client, seeded):
    resp = client.get("/stats/equipos?year=2024&period=total")
    html = resp.get_data(as_text=True)
    assert resp.status_code == 200
    assert '<span class="stat-value">1</span> <span class="stat-label">Claros Ganados</span>' in html
    assert '<span class="stat-value">1</span> <span class="stat-label">Suspendidos</span>' in html
    assert '<span class="stat-value">1</span> <span class="stat-label">Partidos Jugados</span>' in html


def test_estadisticas_sorts_by_requested_column(client, seeded):
    resp = client.get("/stats/estadisticas?year=all&period=total&sort=name&order=asc")
    html = resp.get_data(as_text=True)
    assert resp.status_code == 200
    assert html.index(">Ana<") < html.index(">Beto<") < html.index(">Caro<")


def test_fixture_shows_selected_match_details(client, seeded):
    resp = client.get("/stats/fixture?year=all&month=all&match_id=1")
    html = resp.get_data(as_text=True)
    assert resp.status_code == 200
    assert "Partido del 2024-03-02: Claros" in html
    assert 'id="tt-attendees-table"' in html


def test_fixture_defaults_to_current_month(client, seeded):
    resp = client.get("/stats/fixture")
    assert resp.status_code == 200
    assert 'id="fixture-hoy-button"' in resp.get_data(as_text=True)


def test_read_failures_still_render(client, monkeypatch):
    import league.datastore_pg as pg

    def _down(claims=None):
        raise RuntimeError("db down")

    monkeypatch.setattr(pg, "list_players", _down)
    monkeypatch.setattr(pg, "list_matches", _down)
    resp = client.get("/stats/leaderboard")
    assert resp.status_code == 200
    assert "No hay datos para los filtros seleccionados." in resp.get_data(as_text=True)


def test_fatal_error_shows_error_panel(client, monkeypatch):
    import league.public as public

    def _broken(*args, **kwargs):
        raise RuntimeError("boom")

    monkeypatch.setattr(public, "build_state", _broken)
    resp = client.get("/stats/leaderboard")
    assert resp.status_code == 500
    assert "Error al cargar datos. Por favor, recarga la página." in resp.get_data(as_text=True)


def test_player_card(client, seeded):
    resp = client.get("/stats/player/1?year=2024&period=total")
    html = resp.get_data(as_text=True)
    assert resp.status_code == 200
    assert '<dd id="player-modal-points">3</dd>' in html
    assert '<dd id="player-modal-chamigo">1</dd>' in html
    assert "placehold.co" in html


def test_player_card_unknown_player(client):
    assert client.get("/stats/player/999").status_code == 404


def test_theme_toggle_sets_cookie_and_returns(client):
    resp = client.post("/theme/toggle", data={"next": "/stats/tt"})
    assert resp.headers["Location"].endswith("/stats/tt")
    assert any(c.startswith("theme=dark") for c in resp.headers.getlist("Set-Cookie"))

    client.set_cookie("theme", "dark")
    resp = client.post("/theme/toggle", data={"next": "//evil.example.com"})
    assert resp.headers["Location"].endswith("/")
    assert any(c.startswith("theme=light") for c in resp.headers.getlist("Set-Cookie"))


def test_theme_toggle_requires_form_token(client):
    resp = client.post("/theme/toggle", data={"next": "/stats/tt", "csrf_token": ""})
    assert resp.status_code == 400
    assert not any(c.startswith("theme=") for c in resp.headers.getlist("Set-Cookie"))
