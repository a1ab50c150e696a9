from celery import Celery

from netapp.config import settings

celery_app = Celery(
    "netapp",
    broker=settings.redis_url,
    backend=settings.redis_url,
)

celery_app.conf.update(
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    task_track_started=True,
    result_expires=settings.job_result_expires_s,
    include=["netapp.worker.tasks"],
)
