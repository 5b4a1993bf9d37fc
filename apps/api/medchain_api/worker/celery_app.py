"""Celery application configuration."""

from celery import Celery
from celery.signals import setup_logging

from medchain_api.settings import get_settings
from medchain_api.utils.logging import configure_logging

settings = get_settings()
settings.validate_production_settings()

celery_app = Celery(
    "medchain_worker",
    broker=settings.redis_url,
    backend=settings.redis_url,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=5 * 60,  # 5 minutes
    task_soft_time_limit=4 * 60,  # 4 minutes
)


@setup_logging.connect
def _configure_worker_logging(**kwargs):
    """Use the service log format in worker processes."""
    configure_logging(get_settings())


# Import tasks to register them with Celery
# This must be done after celery_app is created
from medchain_api.worker import tasks  # noqa: F401, E402
