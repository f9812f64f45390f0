"""Celery application: RabbitMQ broker, Redis result backend.

The API never schedules work itself. Periodic sweeps are fired by a separate
`celery beat` process (or the cron HTTP endpoint).
"""
from __future__ import annotations

from celery import Celery
from celery.signals import setup_logging as celery_setup_logging
from kombu import Exchange, Queue

from stumpwatch.config import settings

celery = Celery(
    "stumpwatch",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.REDIS_URL,
    include=["stumpwatch.workers.auto_promotion"],
)

# ── Serialisation ──
celery.conf.accept_content = ["json"]
celery.conf.task_serializer = "json"
celery.conf.result_serializer = "json"
celery.conf.timezone = "UTC"
celery.conf.enable_utc = True

# ── Reliability ──
celery.conf.task_acks_late = True
celery.conf.worker_prefetch_multiplier = 1
celery.conf.task_reject_on_worker_lost = True

# ── Exchanges & Queues ──
default_exchange = Exchange("stumpwatch", type="direct")

celery.conf.task_queues = (
    Queue("maintenance", default_exchange, routing_key="maintenance"),
)

celery.conf.task_default_queue = "maintenance"
celery.conf.task_default_exchange = "stumpwatch"
celery.conf.task_default_routing_key = "maintenance"

# ── Task routes ──
celery.conf.task_routes = {
    "stumpwatch.workers.auto_promotion.run_auto_promotion": {"queue": "maintenance"},
}

# ── Beat Schedule ──
celery.conf.beat_schedule = {
    "auto-promotion-sweep": {
        "task": "stumpwatch.workers.auto_promotion.run_auto_promotion",
        "schedule": float(settings.AUTO_PROMOTION_INTERVAL_S),
    },
}


@celery_setup_logging.connect
def _configure_worker_logging(**kwargs) -> None:
    from stumpwatch.logging_config import setup_logging

    setup_logging()
