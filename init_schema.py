#!/usr/bin/env python3
"""
Create the league schema (tables, row-level security, RPC) and optionally
seed players and matches from a JSON export:

    DATABASE_URL=... python init_schema.py [export.json]

The export holds {"players": [...], "matches": [...]} rows using the table
column names.
"""
import json
import os
import sys

import psycopg2
from psycopg2.extras import Json


def create_tables(conn):
    """Create tables, helper functions and policies."""
    with conn.cursor() as cur:
        cur.execute("""
            CREATE TABLE IF NOT EXISTS players (
                id SERIAL PRIMARY KEY,
                name TEXT NOT NULL,
                status TEXT NOT NULL DEFAULT 'Activo',
                role TEXT NOT NULL DEFAULT 'Titular',
                photo_url TEXT
            )
        """)

        cur.execute("""
            CREATE TABLE IF NOT EXISTS matches (
                id SERIAL PRIMARY KEY,
                match_date DATE NOT NULL,
                result TEXT,
                team_white_players TEXT[] NOT NULL DEFAULT '{}',
                team_dark_players TEXT[] NOT NULL DEFAULT '{}',
                chamigo_votes JSONB,
                tt_attendees TEXT[] NOT NULL DEFAULT '{}'
            )
        """)
        cur.execute("CREATE INDEX IF NOT EXISTS idx_matches_match_date ON matches (match_date DESC)")

        # One profile per auth user
        cur.execute("""
            CREATE TABLE IF NOT EXISTS profiles (
                id UUID PRIMARY KEY REFERENCES auth.users(id) ON DELETE CASCADE,
                role TEXT,
                name TEXT,
                avatar_url TEXT
            )
        """)

        cur.execute("""
            CREATE OR REPLACE FUNCTION is_admin() RETURNS BOOLEAN
            LANGUAGE sql STABLE SECURITY DEFINER AS $$
                SELECT EXISTS (SELECT 1 FROM profiles WHERE id = auth.uid() AND role = 'Admin')
            $$
        """)

        cur.execute("""
            CREATE OR REPLACE FUNCTION get_all_users_with_roles()
            RETURNS TABLE (id UUID, email TEXT, name TEXT, avatar_url TEXT, role TEXT)
            LANGUAGE plpgsql STABLE SECURITY DEFINER AS $$
            BEGIN
                IF NOT is_admin() THEN
                    RAISE EXCEPTION 'Solo los administradores pueden ver los usuarios';
                END IF;
                RETURN QUERY
                    SELECT u.id, u.email::TEXT, p.name, p.avatar_url, p.role
                    FROM auth.users u
                    LEFT JOIN profiles p ON p.id = u.id
                    ORDER BY u.email;
            END
            $$
        """)

        for table in ("players", "matches", "profiles"):
            cur.execute(f"ALTER TABLE {table} ENABLE ROW LEVEL SECURITY")

        policies = [
            ("players", "players_read", "SELECT", "true", None),
            ("players", "players_admin_write", "ALL", "is_admin()", "is_admin()"),
            ("matches", "matches_read", "SELECT", "true", None),
            ("matches", "matches_insert", "INSERT", None, "auth.role() = 'authenticated'"),
            ("matches", "matches_update", "UPDATE", "auth.role() = 'authenticated'", "auth.role() = 'authenticated'"),
            ("matches", "matches_admin_delete", "DELETE", "is_admin()", None),
            ("profiles", "profiles_read_own", "SELECT", "id = auth.uid() OR is_admin()", None),
            ("profiles", "profiles_update_own", "UPDATE", "id = auth.uid() OR is_admin()", "id = auth.uid() OR is_admin()"),
        ]
        for table, name, command, using, check in policies:
            cur.execute(f"DROP POLICY IF EXISTS {name} ON {table}")
            clause = f"CREATE POLICY {name} ON {table} FOR {command}"
            if using:
                clause += f" USING ({using})"
            if check:
                clause += f" WITH CHECK ({check})"
            cur.execute(clause)

        conn.commit()
        print("Database schema created successfully")


def seed_players(conn, data):
    players = data.get('players', [])
    with conn.cursor() as cur:
        for player in players:
            cur.execute("""
                INSERT INTO players (id, name, status, role, photo_url)
                VALUES (%s, %s, %s, %s, %s)
                ON CONFLICT (id) DO UPDATE SET
                    name = EXCLUDED.name,
                    status = EXCLUDED.status,
                    role = EXCLUDED.role,
                    photo_url = EXCLUDED.photo_url
            """, (
                player['id'],
                player.get('name'),
                player.get('status') or 'Activo',
                player.get('role') or 'Titular',
                player.get('photo_url'),
            ))
        # Keep the serial ahead of explicit ids
        cur.execute("SELECT setval(pg_get_serial_sequence('players', 'id'), COALESCE(MAX(id), 1)) FROM players")
        conn.commit()
    print(f"Seeded {len(players)} players")


def seed_matches(conn, data):
    matches = data.get('matches', [])
    with conn.cursor() as cur:
        for match in matches:
            cur.execute("""
                INSERT INTO matches (id, match_date, result, team_white_players, team_dark_players,
                                     chamigo_votes, tt_attendees)
                VALUES (%s, %s, %s, %s, %s, %s, %s)
                ON CONFLICT (id) DO UPDATE SET
                    match_date = EXCLUDED.match_date,
                    result = EXCLUDED.result,
                    team_white_players = EXCLUDED.team_white_players,
                    team_dark_players = EXCLUDED.team_dark_players,
                    chamigo_votes = EXCLUDED.chamigo_votes,
                    tt_attendees = EXCLUDED.tt_attendees
            """, (
                match['id'],
                match.get('match_date'),
                match.get('result'),
                [str(p) for p in match.get('team_white_players') or []],
                [str(p) for p in match.get('team_dark_players') or []],
                Json(match['chamigo_votes']) if match.get('chamigo_votes') is not None else None,
                [str(p) for p in match.get('tt_attendees') or []],
            ))
        cur.execute("SELECT setval(pg_get_serial_sequence('matches', 'id'), COALESCE(MAX(id), 1)) FROM matches")
        conn.commit()
    print(f"Seeded {len(matches)} matches")


def main():
    database_url = os.environ.get('DATABASE_URL')
    if not database_url:
        print("ERROR: DATABASE_URL environment variable not set")
        sys.exit(1)

    data = None
    if len(sys.argv) > 1:
        with open(sys.argv[1], encoding='utf-8') as f:
            data = json.load(f)

    conn = psycopg2.connect(database_url)
    try:
        print("Connected to PostgreSQL database")
        create_tables(conn)
        if data:
            seed_players(conn, data)
            seed_matches(conn, data)

        with conn.cursor() as cur:
            cur.execute("SELECT COUNT(*) FROM players")
            player_count = cur.fetchone()[0]
            cur.execute("SELECT COUNT(*) FROM matches")
            match_count = cur.fetchone()[0]
        print("\nSummary:")
        print(f"- {player_count} players")
        print(f"- {match_count} matches")
    finally:
        conn.close()


if __name__ == "__main__":
    main()
