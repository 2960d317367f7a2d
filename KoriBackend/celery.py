from celery import Celery

from KoriBackend.config import get_settings


def make_celery() -> Celery:
    settings = get_settings()
    broker = settings.redis_url
    app = Celery("kori", broker=broker, backend=broker)
    app.conf.update(
        task_serializer="json",
        accept_content=["json"],
        result_serializer="json",
        timezone="UTC",
        enable_utc=True,
        imports=("KoriBackend.background_tasks.archive",),
        worker_concurrency=1,
        broker_connection_retry_on_startup=True,
    )
    return app

celery = make_celery()
