"""
Tests de la API (FastAPI TestClient sobre SQLite en memoria)
"""
from urllib.parse import quote

import pytest
from sqlalchemy.orm import sessionmaker

import main
from conftest import PRE, build_state, held_green_state
from store import SqlStore

PRE_URL = quote(PRE)


@pytest.fixture
def user_id(client):
    response = client.post("/users", json={"name": "Ana", "timezone": "Europe/Madrid"})
    assert response.status_code == 201
    return response.json()["id"]


def create_code(client, user_id, code_id, name, section=PRE, force=False):
    return client.post(f"/users/{user_id}/codes",
                       json={"id": code_id, "name": name, "section": section, "force": force})


class TestHealth:

    def test_health(self, client):
        response = client.get("/")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    def test_constants(self, client):
        data = client.get("/constants").json()
        assert data["sections"] == ["Pre-Game", "In-Game", "Post-Game", "Off Court", "Locker Room"]
        assert data["guardrails"]["green"] == {"logs": 12, "unique": 3}
        assert data["daily_cap_per_section"] == 3


class TestUsers:

    def test_unknown_timezone_is_422(self, client):
        response = client.post("/users", json={"name": "Ana", "timezone": "Mars/Olympus"})
        assert response.status_code == 422

    def test_unknown_user_is_404(self, client):
        assert client.get("/users/999/radar").status_code == 404

    def test_new_user_has_red_radar(self, client, user_id):
        radar = client.get(f"/users/{user_id}/radar").json()
        assert radar["radar_score"] == 0
        assert radar["is_full_radar_green"] is False
        assert radar["section_scores"][PRE]["color"] == "red"


class TestCodes:

    def test_create_and_list(self, client, user_id):
        response = create_code(client, user_id, "ftr", "Free Throw Reset")
        assert response.status_code == 200
        assert response.json()["outcome"] == "created"

        codes = client.get(f"/users/{user_id}/codes").json()
        assert [c["id"] for c in codes] == ["ftr"]
        assert codes[0]["status"] == "active"

    def test_similar_name_suggests_merge(self, client, user_id):
        create_code(client, user_id, "mvr", "Morning Visualization Routine Drill")
        response = create_code(client, user_id, "mv", "Morning Visualization Routine")
        body = response.json()
        assert body["outcome"] == "suggest_merge"
        assert body["merge_candidate"]["id"] == "mvr"
        assert len(client.get(f"/users/{user_id}/codes").json()) == 1

    def test_unknown_section_is_422(self, client, user_id):
        response = create_code(client, user_id, "x", "Something", section="Half-Time")
        assert response.status_code == 422

    def test_free_throw_reset_through_the_api(self, client, clock, notifier, user_id):
        create_code(client, user_id, "ftr", "Free Throw Reset")
        powers = []
        for _ in range(3):
            clock.advance(minutes=10)
            body = client.post(f"/users/{user_id}/codes/ftr/use").json()
            assert body["counted"] is True
            powers.append(body["amount_gained"])
        assert powers == [30, 25, 25]

        codes = client.get(f"/users/{user_id}/codes").json()
        assert codes[0]["power_percentage"] == 80
        assert codes[0]["total_logs"] == 3

        clock.advance(minutes=10)
        fourth = client.post(f"/users/{user_id}/codes/ftr/use").json()
        assert fourth["counted"] is False
        assert fourth["events"][0]["kind"] == "daily_cap_reached"
        assert any(e.kind == "daily_cap_reached" for _, e in notifier.events)

    def test_use_unknown_code_is_404(self, client, user_id):
        assert client.post(f"/users/{user_id}/codes/nope/use").status_code == 404

    def test_archive_and_reactivate(self, client, user_id):
        create_code(client, user_id, "ftr", "Free Throw Reset")
        archived = client.post(f"/users/{user_id}/codes/ftr/archive").json()
        assert archived["outcome"] == "archived"
        assert archived["technique"]["status"] == "archived"

        # un código archivado no se puede usar
        assert client.post(f"/users/{user_id}/codes/ftr/use").status_code == 422

        reactivated = client.post(f"/users/{user_id}/codes/ftr/reactivate").json()
        assert reactivated["outcome"] == "reactivated"
        assert client.post(f"/users/{user_id}/codes/ftr/use").json()["counted"] is True

    def test_capacity_full(self, client, user_id):
        names = ["Alpha", "Bravo", "Charlie", "Delta", "Echo", "Foxtrot", "Golf"]
        for i, name in enumerate(names):
            assert create_code(client, user_id, f"c{i}", name).json()["outcome"] == "created"
        body = create_code(client, user_id, "c7", "Hotel").json()
        assert body["outcome"] == "capacity_full"
        assert len(body["candidates"]) == 3

    def test_merge(self, client, user_id):
        create_code(client, user_id, "ftr", "Free Throw Reset")
        client.post(f"/users/{user_id}/codes/ftr/use")
        body = client.post(f"/users/{user_id}/codes/ftr/merge",
                           json={"source_name": "Free Throw Reset Routine"}).json()
        assert body["outcome"] == "merged"
        assert body["technique"]["power_percentage"] == 35


def seed_state(db_engine, user_id, state):
    db = sessionmaker(bind=db_engine)()
    try:
        SqlStore(db).save_state(user_id, state)
    finally:
        db.close()


def event_kinds(body):
    return [e["kind"] for e in body["events"]]


class TestSlotChangesFollowColor:

    def test_archive_out_of_green_stops_hold(self, client, clock, notifier, db_engine, user_id):
        seed_state(db_engine, user_id, held_green_state())
        clock.advance(hours=1)

        body = client.post(f"/users/{user_id}/codes/a/archive").json()
        assert body["outcome"] == "archived"
        assert "hold_stopped" in event_kinds(body)
        assert "color_changed" in event_kinds(body)
        assert any(e.kind == "hold_stopped" for _, e in notifier.events)

        detail = client.get(f"/users/{user_id}/sections/{PRE_URL}").json()
        assert detail["score"]["color"] == "yellow"
        assert detail["hold"]["has_active_hold"] is False

    def test_reactivate_back_into_green_restarts_hold(self, client, clock, db_engine, user_id):
        seed_state(db_engine, user_id, held_green_state())
        clock.advance(hours=1)
        client.post(f"/users/{user_id}/codes/a/archive")
        clock.advance(hours=1)

        body = client.post(f"/users/{user_id}/codes/a/reactivate").json()
        assert body["outcome"] == "reactivated"
        assert "hold_started" in event_kinds(body)

        detail = client.get(f"/users/{user_id}/sections/{PRE_URL}").json()
        assert detail["score"]["color"] == "green"
        assert detail["hold"]["has_active_hold"] is True

    def test_merge_into_green_starts_hold(self, client, db_engine, user_id):
        seed_state(db_engine, user_id, build_state({"a": 72, "b": 72, "c": 75}, logs=12))
        assert create_code(client, user_id, "a", "Free Throw Reset").json()["outcome"] == "created"

        body = client.post(f"/users/{user_id}/codes/a/merge",
                           json={"source_name": "Free Throw Reset Routine"}).json()
        assert body["outcome"] == "merged"
        assert "hold_started" in event_kinds(body)

        detail = client.get(f"/users/{user_id}/sections/{PRE_URL}").json()
        assert detail["score"]["color"] == "green"
        assert detail["hold"]["has_active_hold"] is True


class TestSectionDetail:

    def test_section_detail(self, client, user_id):
        create_code(client, user_id, "ftr", "Free Throw Reset")
        client.post(f"/users/{user_id}/codes/ftr/use")
        detail = client.get(f"/users/{user_id}/sections/{PRE_URL}").json()

        assert detail["score"]["score"] == 30
        assert detail["remaining_daily_logs"] == 2
        assert detail["hold"]["has_active_hold"] is False
        assert detail["next_target"]["next_color"] == "orange"
        assert [t["id"] for t in detail["techniques"]] == ["ftr"]

    def test_unknown_section_is_422(self, client, user_id):
        assert client.get(f"/users/{user_id}/sections/Overtime").status_code == 422


class TestMaintenanceEndpoint:

    def test_runs_both_jobs(self, client, clock, user_id):
        create_code(client, user_id, "ftr", "Free Throw Reset")
        client.post(f"/users/{user_id}/codes/ftr/use")

        clock.advance(days=6)
        body = client.post("/maintenance").json()
        assert body["decay"]["updated"] == 1
        assert body["green_hold"]["updated"] == 1

        codes = client.get(f"/users/{user_id}/codes").json()
        assert codes[0]["power_percentage"] < 30

    def test_secret_is_enforced(self, client, monkeypatch):
        monkeypatch.setattr(main, "MAINTENANCE_SECRET", "s3cret")
        assert client.post("/maintenance").status_code == 401
        ok = client.post("/maintenance?job=decay", headers={"Authorization": "Bearer s3cret"})
        assert ok.status_code == 200
        assert "green_hold" not in ok.json()

    def test_unknown_job_is_422(self, client):
        assert client.post("/maintenance?job=everything").status_code == 422
