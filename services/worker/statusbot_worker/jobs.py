import functools

from statusbot_common.actions import ActionResolver, parse_interaction
from statusbot_common.config import load_config
from statusbot_common.engine import StatusEngine
from statusbot_common.errors import StatusBotError
from statusbot_common.gitlab import GitLabClient
from statusbot_common.log import get_logger
from statusbot_common.models import event_pipeline_id
from statusbot_common.slack import SlackTransport
from statusbot_common.store import make_store

log = get_logger("worker")


class Runtime:
    def __init__(self, engine: StatusEngine, resolver: ActionResolver):
        self.engine = engine
        self.resolver = resolver


@functools.lru_cache(maxsize=1)
def runtime() -> Runtime:
    cfg = load_config()
    store = make_store(cfg)
    transport = SlackTransport(cfg.slack_bot_token, cfg.slack_api_url)
    gitlab = GitLabClient(cfg.gitlab_base_url, cfg.gitlab_api_token, cfg.gitlab_project_id)
    return Runtime(
        engine=StatusEngine(store, transport, cfg.slack_channel_id, cfg.conflict_retries),
        resolver=ActionResolver(store, transport, gitlab, cfg.log_tail_lines, cfg.conflict_retries),
    )


def process_gitlab_event(payload: dict, rt: Runtime | None = None) -> str:
    """
    rq job: merge one webhook event into its pipeline's message.
    Per-event failures are logged and reported in the job result, never
    retried: the event source is acknowledged already and redelivery is
    GitLab's concern.
    """
    rt = rt or runtime()
    try:
        return rt.engine.handle_event(payload).value
    except StatusBotError as e:
        log.error("pipeline=%s event failed (%s): %s", event_pipeline_id(payload), type(e).__name__, e)
        return type(e).__name__


def process_slack_interaction(payload: dict, rt: Runtime | None = None) -> list[str]:
    rt = rt or runtime()
    results = []
    for action in parse_interaction(payload):
        try:
            results.append("patched" if rt.resolver.handle(action) else "noop")
        except StatusBotError as e:
            log.error("action %s on ts=%s failed (%s): %s", action.action_id, action.ts, type(e).__name__, e)
            results.append(type(e).__name__)
    return results
