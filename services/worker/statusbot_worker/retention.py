"""Delete pipeline states that have not been written for a while. Run from cron."""
import argparse

from statusbot_common.config import load_config
from statusbot_common.log import get_logger, setup_logger
from statusbot_common.store import StateStore, make_store

log = get_logger("retention")


def purge_states(store: StateStore, older_than_days: float) -> int:
    n = store.cleanup(older_than_days)
    log.info("removed %d pipeline states older than %s days", n, older_than_days)
    return n


def main(argv=None):
    cfg = load_config()
    setup_logger("statusbot", cfg.log_level)
    p = argparse.ArgumentParser(description=__doc__)
    p.add_argument("--days", type=float, default=cfg.state_ttl_days)
    args = p.parse_args(argv)
    purge_states(make_store(cfg), args.days)


if __name__ == "__main__":
    main()
