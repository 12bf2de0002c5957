"""
=============================================================================
SCHEDULER.PY — Trabajos Automáticos
=============================================================================
El motor no corre solo: alguien tiene que pasar el decay y el mantenimiento
del verde aunque el usuario no abra la app.

  00:05 → run_decay_job       (ya ha cruzado la medianoche)
  12:05 → run_green_hold_job  (justo después del plazo de gracia de las 12:00)

Usa APScheduler con CronTrigger. Solo arranca si SCHEDULER_ENABLED=1.
"""

import logging

import pytz
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from clock import DEFAULT_TIMEZONE, SystemClock
from database import session_scope
from maintenance import run_decay_job, run_green_hold_job
from notifier import LoggingNotifier

logger = logging.getLogger("cheatcodes.scheduler")

scheduler: AsyncIOScheduler = None


async def decay_check():
    try:
        with session_scope() as db:
            run_decay_job(db, SystemClock(), LoggingNotifier())
    except Exception as e:
        logger.error(f"Error en decay_check: {e}")


async def green_hold_check():
    try:
        with session_scope() as db:
            run_green_hold_job(db, SystemClock(), LoggingNotifier())
    except Exception as e:
        logger.error(f"Error en green_hold_check: {e}")


def create_scheduler(timezone: str = DEFAULT_TIMEZONE) -> AsyncIOScheduler:
    global scheduler
    scheduler = AsyncIOScheduler(timezone=pytz.timezone(timezone))

    scheduler.add_job(
        decay_check,
        CronTrigger(hour=0, minute=5),
        id="decay_check",
        name="Decay de poder",
        replace_existing=True,
    )
    scheduler.add_job(
        green_hold_check,
        CronTrigger(hour=12, minute=5),
        id="green_hold_check",
        name="Mantenimiento del verde",
        replace_existing=True,
    )

    logger.info("⏰ Scheduler configurado: decay 00:05 + mantenimiento 12:05")
    return scheduler


def start_scheduler():
    if scheduler and not scheduler.running:
        scheduler.start()
        logger.info("⏰ Scheduler arrancado")


def stop_scheduler():
    if scheduler and scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("⏰ Scheduler parado")
