"""
=============================================================================
NOTIFIER.PY — Eventos del Motor
=============================================================================
El motor NO envía notificaciones. Solo emite eventos como datos planos:

  color_changed       → la sección cambió de color (old, new)
  hold_started        → la sección entró en verde
  hold_stopped        → la sección salió del verde (duración)
  milestone_crossed   → hito del green hold cruzado
  grace_warning       → 2 días sin actividad, plazo de gracia abierto
  demotion_forced     → plazo vencido, sección degradada
  daily_cap_reached   → 4º log del día descartado
  full_radar_achieved → las 5 secciones en verde

Quien quiera mandar un push, un email o un mensaje escucha estos eventos.
Por defecto, LoggingNotifier los escribe en el log "cheatcodes.events".
"""

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from typing import Optional

logger = logging.getLogger("cheatcodes.events")

COLOR_CHANGED = "color_changed"
HOLD_STARTED = "hold_started"
HOLD_STOPPED = "hold_stopped"
MILESTONE_CROSSED = "milestone_crossed"
GRACE_WARNING = "grace_warning"
DEMOTION_FORCED = "demotion_forced"
DAILY_CAP_REACHED = "daily_cap_reached"
FULL_RADAR_ACHIEVED = "full_radar_achieved"

EVENT_KINDS = [
    COLOR_CHANGED, HOLD_STARTED, HOLD_STOPPED, MILESTONE_CROSSED,
    GRACE_WARNING, DEMOTION_FORCED, DAILY_CAP_REACHED, FULL_RADAR_ACHIEVED,
]


@dataclass
class EngineEvent:
    kind: str
    at: datetime
    section: Optional[str] = None
    data: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        """Versión serializable (fechas ISO, duraciones en segundos)"""
        payload = asdict(self)
        payload["at"] = self.at.isoformat()
        payload["data"] = {
            k: (v.total_seconds() if isinstance(v, timedelta)
                else v.isoformat() if isinstance(v, datetime)
                else getattr(v, "value", v))
            for k, v in self.data.items()
        }
        return payload


class LoggingNotifier:
    """Notificador por defecto: solo deja constancia en el log"""

    def notify(self, user_id, events: list[EngineEvent]):
        for event in events:
            logger.info(f"[user={user_id}] {event.kind} {event.section or ''} {event.to_dict()['data']}")


class CollectingNotifier:
    """Guarda los eventos en memoria (útil en tests)"""

    def __init__(self):
        self.events: list[tuple] = []

    def notify(self, user_id, events: list[EngineEvent]):
        self.events.extend((user_id, e) for e in events)
