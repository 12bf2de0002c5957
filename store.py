"""
=============================================================================
STORE.PY — Cargar y Guardar el Estado del Motor
=============================================================================
El motor es puro: recibe un UserState y devuelve otro. El Store es quien
lo lee de la BD y lo vuelve a escribir.

  load_state(user_id, now) → UserState   (estado vacío si no hay nada)
  save_state(user_id, state)

Al cargar:
  - Los inventarios antiguos (isActive/archived a la vez) se migran al
    campo único `status`
  - Si el JSON no pasa la validación de Pydantic → CorruptState
"""

import logging
from datetime import datetime

from pydantic import ValidationError
from sqlalchemy.orm import Session

from errors import CorruptState
from models import EngineState, UsageEvent, User
from schemas import STATE_SCHEMA_VERSION, UserState, default_user_state
from slots import migrate_inventory

logger = logging.getLogger("cheatcodes.store")


def migrate_payload(payload: dict) -> dict:
    """Pone al día un estado guardado con una versión anterior"""
    if not isinstance(payload, dict):
        raise CorruptState("El estado guardado no es un objeto JSON")
    payload = dict(payload)
    inventories = payload.get("inventories")
    if isinstance(inventories, dict):
        payload["inventories"] = {
            section: migrate_inventory(raw) if isinstance(raw, dict) else raw
            for section, raw in inventories.items()
        }
    payload["schema_version"] = STATE_SCHEMA_VERSION
    return payload


class SqlStore:
    """Store sobre SQLAlchemy: una fila EngineState por usuario"""

    def __init__(self, db: Session):
        self.db = db

    def get_user(self, user_id: int) -> User | None:
        return self.db.query(User).filter(User.id == user_id).first()

    def user_ids(self) -> list[int]:
        return [row.id for row in self.db.query(User.id).order_by(User.id).all()]

    def load_state(self, user_id: int, now: datetime) -> UserState:
        row = self.db.query(EngineState).filter(EngineState.user_id == user_id).first()
        if row is None:
            return default_user_state(now)

        try:
            payload = migrate_payload(row.payload)
            if row.schema_version != STATE_SCHEMA_VERSION:
                logger.info(f"Estado de user={user_id} migrado de v{row.schema_version} "
                            f"a v{STATE_SCHEMA_VERSION}")
            return UserState.model_validate(payload)
        except (ValidationError, AttributeError, TypeError) as e:
            logger.error(f"Estado corrupto para user={user_id}: {e}")
            raise CorruptState(f"Estado guardado inválido para el usuario {user_id}") from e

    def save_state(self, user_id: int, state: UserState, commit: bool = True):
        payload = state.model_dump(mode="json")
        row = self.db.query(EngineState).filter(EngineState.user_id == user_id).first()
        if row is None:
            row = EngineState(user_id=user_id, payload=payload, schema_version=state.schema_version)
            self.db.add(row)
        else:
            row.payload = payload
            row.schema_version = state.schema_version
        if commit:
            self.db.commit()

    def record_usage(self, user_id: int, technique_id: str, section: str, at: datetime,
                     counted: bool, amount_gained: int = 0):
        self.db.add(UsageEvent(
            user_id=user_id,
            technique_id=technique_id,
            section=section,
            timestamp=at,
            counted=counted,
            amount_gained=amount_gained,
        ))
