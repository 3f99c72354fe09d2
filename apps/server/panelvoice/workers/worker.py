from redis import Redis
from rq import Queue, Worker

from panelvoice.core.config import settings
from panelvoice.core.logging import setup_logging


def main() -> None:
    setup_logging(settings.log_level)
    redis = Redis.from_url(settings.redis_url)
    worker = Worker([Queue(settings.job_queue_name, connection=redis)], connection=redis)
    worker.work(with_scheduler=True)


if __name__ == "__main__":
    main()
