from celery import Celery

from app.config import settings
from app.logging import configure_logging

configure_logging()

celery_app = Celery("isp_billing")
celery_app.conf.update(
    broker_url=settings.celery_broker_url,
    result_backend=settings.celery_result_backend,
    timezone=settings.celery_timezone,
    task_acks_late=True,
)
celery_app.autodiscover_tasks(["app.tasks"])
