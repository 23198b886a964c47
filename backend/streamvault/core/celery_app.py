"""Celery application for TRANSCODE_EXECUTOR=celery.

Transcode tasks go to their own queue so ffmpeg workers can be scaled and
sized apart from anything else sharing the broker. A worker takes one job at
a time and acknowledges it only after the video reached a terminal status.
"""

from celery import Celery

from streamvault.core.config import settings

TRANSCODE_TASK_NAME = "streamvault.transcode_video"

celery_app = Celery(
    "streamvault",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=["streamvault.modules.transcoding.tasks"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    result_expires=24 * 3600,
    enable_utc=True,
    task_routes={TRANSCODE_TASK_NAME: {"queue": settings.CELERY_TRANSCODE_QUEUE}},
    # Soft limit fires inside the job, which then records the error
    task_soft_time_limit=settings.TRANSCODE_TASK_TIME_LIMIT_SECONDS,
    task_time_limit=settings.TRANSCODE_TASK_TIME_LIMIT_SECONDS + 60,
    worker_prefetch_multiplier=1,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    broker_connection_retry_on_startup=True,
)
