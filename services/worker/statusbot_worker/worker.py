import os

from redis import Redis
from rq import Queue, Worker

from statusbot_common.config import load_config
from statusbot_common.log import setup_logger


def main():
    cfg = load_config()
    log = setup_logger("statusbot", cfg.log_level)
    missing = cfg.missing()
    if missing:
        raise RuntimeError("missing_config=" + ",".join(missing))

    # One worker per shard queue keeps each pipeline's events in arrival order.
    names = [q.strip() for q in os.environ.get("WORKER_QUEUES", "").split(",") if q.strip()] or cfg.all_queues()
    r = Redis.from_url(cfg.redis_url)
    log.info("worker listening on %s (state backend %s)", ",".join(names), cfg.state_backend)
    w = Worker([Queue(n, connection=r) for n in names], connection=r)
    w.work(with_scheduler=False)


if __name__ == "__main__":
    main()
