from celery import Celery
from listingsync.core.config import settings

celery = Celery(
    "listingsync-worker",
    broker=settings.rabbitmq_url,
    backend=settings.redis_url,
    include=["worker.tasks"],
)

celery.conf.update(
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    task_default_queue="default",
    task_routes={
        "worker.tasks.ingest_csv": {"queue": "ingest"},
        "worker.tasks.finalize_photos": {"queue": "ingest"},
    },
)
