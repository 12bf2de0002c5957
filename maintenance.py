"""
=============================================================================
MAINTENANCE.PY — Barridos Periódicos
=============================================================================
Dos trabajos que recorren TODOS los usuarios guardados:

  run_decay_job       → decay de poder (después de medianoche)
  run_green_hold_job  → avisos de gracia, degradaciones e hitos (a mediodía)

Cada usuario se procesa con SU hora local. Si un usuario falla, se anota
en el log y se sigue con el siguiente.
"""

import logging

import pytz
from sqlalchemy.orm import Session

from clock import DEFAULT_TIMEZONE
from notifier import LoggingNotifier
from radar import apply_decay_to_state, run_green_maintenance
from store import SqlStore

logger = logging.getLogger("cheatcodes.maintenance")


def user_now(clock, user):
    """La hora del reloj vista desde la zona horaria del usuario"""
    tz = pytz.timezone(user.timezone or DEFAULT_TIMEZONE)
    return clock.now().astimezone(tz)


def _sweep(db: Session, clock, notifier, job: str, apply) -> dict:
    store = SqlStore(db)
    notifier = notifier or LoggingNotifier()
    summary = {"users": 0, "updated": 0, "events": 0, "errors": 0, "warned": 0, "demoted": 0}

    for user_id in store.user_ids():
        summary["users"] += 1
        try:
            user = store.get_user(user_id)
            now = user_now(clock, user)
            state = store.load_state(user_id, now)
            outcome = apply(state, now)
            store.save_state(user_id, outcome.state)
            notifier.notify(user_id, outcome.events)
            summary["updated"] += 1
            summary["events"] += len(outcome.events)
            summary["warned"] += len(outcome.warned)
            summary["demoted"] += len(outcome.demoted)
        except Exception as e:
            db.rollback()
            summary["errors"] += 1
            logger.error(f"Error en {job} para user={user_id}: {e}")

    logger.info(f"{job}: {summary}")
    return summary


def run_decay_job(db: Session, clock, notifier=None) -> dict:
    return _sweep(db, clock, notifier, "decay", apply_decay_to_state)


def run_green_hold_job(db: Session, clock, notifier=None) -> dict:
    return _sweep(db, clock, notifier, "green_hold", run_green_maintenance)
