"""
Celery application configuration.

This configures Celery with Redis as the broker and result backend.
Beat schedule is defined here for periodic tasks.
"""
from __future__ import annotations

import os
import sys
from pathlib import Path

# Ensure backend directory is in Python path for Celery workers
backend_dir = Path(__file__).resolve().parent.parent
if str(backend_dir) not in sys.path:
    sys.path.insert(0, str(backend_dir))

# Load .env BEFORE importing config/settings so workers see the same
# DATABASE_URL as the API server
from dotenv import load_dotenv
env_file = backend_dir / ".env"
if not env_file.exists():
    env_file = backend_dir.parent / ".env"
if env_file.exists():
    load_dotenv(env_file)
    print(f"[Celery] Loaded environment from: {env_file}")

from celery import Celery
from celery.schedules import crontab
from kombu import Exchange, Queue

# Get Redis URL from environment
REDIS_URL: str = os.environ.get("REDIS_URL", "redis://localhost:6379")

# Create Celery app
celery_app = Celery(
    "agency_hub",
    broker=REDIS_URL,
    backend=REDIS_URL,
    include=["workers.tasks.sync"],
)

celery_app.conf.update(
    # Serialization
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",

    # Timezone
    timezone="UTC",
    enable_utc=True,

    # Task settings
    task_track_started=True,
    task_time_limit=30 * 60,  # 30 minutes max per task
    task_soft_time_limit=25 * 60,

    # Result settings
    result_expires=60 * 60 * 24,

    # One task at a time per process keeps database connections low
    worker_prefetch_multiplier=1,
    worker_concurrency=2,

    task_queues=(
        Queue("default", Exchange("default"), routing_key="default"),
        Queue("sync", Exchange("sync"), routing_key="sync.#"),
    ),
    task_default_queue="default",
    task_default_exchange="default",
    task_default_routing_key="default",
    task_routes={
        "workers.tasks.sync.*": {"queue": "sync"},
    },
)

# Beat schedule (all times UTC)
celery_app.conf.beat_schedule = {
    "hourly-incremental-contact-sync": {
        "task": "workers.tasks.sync.sync_contacts",
        "schedule": crontab(minute=0),
        "kwargs": {"mode": "incremental"},
        "options": {"queue": "sync"},
    },
    "daily-brightlocal-sync": {
        "task": "workers.tasks.sync.sync_brightlocal",
        "schedule": crontab(hour=5, minute=0),
        "options": {"queue": "sync"},
    },
    "daily-gbp-reviews-sync": {
        "task": "workers.tasks.sync.sync_gbp",
        "schedule": crontab(hour=6, minute=0),
        "args": ("reviews",),
        "options": {"queue": "sync"},
    },
    "weekly-gbp-analytics-sync": {
        "task": "workers.tasks.sync.sync_gbp",
        "schedule": crontab(hour=7, minute=0, day_of_week="sun"),
        "args": ("analytics",),
        "options": {"queue": "sync"},
    },
    "weekly-gbp-posts-sync": {
        "task": "workers.tasks.sync.sync_gbp",
        "schedule": crontab(hour=9, minute=0, day_of_week="sun"),
        "args": ("posts",),
        "options": {"queue": "sync"},
    },
    "weekly-gbp-media-sync": {
        "task": "workers.tasks.sync.sync_gbp",
        "schedule": crontab(hour=10, minute=0, day_of_week="sun"),
        "args": ("media",),
        "options": {"queue": "sync"},
    },
    "weekly-gbp-locations-sync": {
        "task": "workers.tasks.sync.sync_gbp",
        "schedule": crontab(hour=11, minute=0, day_of_week="sun"),
        "args": ("locations",),
        "options": {"queue": "sync"},
    },
}
