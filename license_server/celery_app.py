from celery import Celery

from license_server.config import settings

# Create Celery app
celery_app = Celery(
    "license_server",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=["license_server.tasks"],  # Auto-discover tasks from this module
)

# Celery configuration
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=300,  # 5 minutes max for any task
    task_soft_time_limit=270,
    worker_prefetch_multiplier=1,  # Process one task at a time per worker
    worker_max_tasks_per_child=100,  # Restart worker after 100 tasks to prevent memory leaks
)

celery_app.conf.beat_schedule = {
    "email-queue-sweep": {
        "task": "license_server.tasks.process_email_queue",
        "schedule": float(settings.email_queue_interval_seconds),
        "args": [],
        "options": {"expires": float(settings.email_queue_interval_seconds)},  # drop stale sweeps
    },
}
