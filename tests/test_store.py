"""
Tests del Store: guardar/cargar el UserState, migración y estado corrupto
"""
import pytest

from conftest import PRE, T0, build_state
from errors import CorruptState
from models import EngineState, User
from radar import apply_use_and_rescore
from schemas import STATE_SCHEMA_VERSION
from store import SqlStore


@pytest.fixture
def user(db_session):
    user = User(name="Ana", timezone="Europe/Madrid")
    db_session.add(user)
    db_session.commit()
    return user


class TestSqlStore:

    def test_missing_state_is_default(self, db_session, user):
        state = SqlStore(db_session).load_state(user.id, T0)
        assert state.power.account_created_at == T0
        assert state.power.techniques == {}

    def test_state_survives_a_round_trip(self, db_session, user):
        store = SqlStore(db_session)
        state = build_state({"a": 80, "b": 80, "c": 80}, logs=11)
        state = apply_use_and_rescore(state, "a", "Code a", PRE, T0).state
        store.save_state(user.id, state)

        loaded = SqlStore(db_session).load_state(user.id, T0)
        assert loaded.power.techniques["a"].power_percentage == 90
        assert loaded.progress[PRE].unique_technique_ids == {"a", "b", "c"}
        assert loaded.holds.timers[PRE].is_active is True
        assert loaded.holds.timers[PRE].started_at == T0
        assert loaded.daily_cap.day == T0.date()

    def test_save_overwrites_previous_state(self, db_session, user):
        store = SqlStore(db_session)
        store.save_state(user.id, build_state({"a": 10}))
        store.save_state(user.id, build_state({"a": 20}))
        assert db_session.query(EngineState).count() == 1
        assert store.load_state(user.id, T0).power.techniques["a"].power_percentage == 20

    def test_invalid_payload_is_corrupt(self, db_session, user):
        db_session.add(EngineState(user_id=user.id, payload={"power": "nope"}, schema_version=2))
        db_session.commit()
        with pytest.raises(CorruptState):
            SqlStore(db_session).load_state(user.id, T0)

    def test_legacy_inventory_is_migrated_on_load(self, db_session, user):
        store = SqlStore(db_session)
        payload = build_state({"a": 50}).model_dump(mode="json")
        payload["inventories"][PRE]["active_techniques"] = [{
            "id": "a", "name": "Code a", "section": PRE, "created_at": T0.isoformat(),
            "isActive": False, "archived": True, "archiveTimestamp": T0.isoformat(),
        }]
        db_session.add(EngineState(user_id=user.id, payload=payload, schema_version=1))
        db_session.commit()

        state = store.load_state(user.id, T0)
        assert state.schema_version == STATE_SCHEMA_VERSION
        assert state.inventories[PRE].active_techniques == []
        assert state.inventories[PRE].archived_techniques[0].status == "archived"
