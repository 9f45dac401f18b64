import json
from urllib.parse import parse_qs

import uvicorn
from fastapi import FastAPI, Header, HTTPException, Request
from redis import Redis
from redis.exceptions import RedisError
from rq import Queue

from statusbot_common.auth import slack_signature_ok, token_ok
from statusbot_common.config import BotConfig, load_config
from statusbot_common.log import get_logger, setup_logger
from statusbot_common.models import event_pipeline_id

log = get_logger("api")

GITLAB_JOB = "statusbot_worker.jobs.process_gitlab_event"
SLACK_JOB = "statusbot_worker.jobs.process_slack_interaction"
HANDLED_KINDS = ("pipeline", "build")


def rq_enqueuer(cfg: BotConfig):
    redis = Redis.from_url(cfg.redis_url)
    # INLINE_PROCESSING runs jobs in the request (development only).
    queues = {
        name: Queue(name, connection=redis, default_timeout=300, is_async=not cfg.inline_processing)
        for name in cfg.all_queues()
    }

    def enqueue(func: str, pipeline_id, payload: dict):
        queues[cfg.queue_for(pipeline_id)].enqueue(func, payload)

    return enqueue


def interaction_pipeline_id(payload: dict):
    """Pipeline id carried by a stage toggle, so it queues behind that pipeline's events."""
    for a in payload.get("actions") or []:
        try:
            value = json.loads(a.get("value") or "")
        except ValueError:
            continue
        if isinstance(value, dict) and "pipeline_id" in value:
            return event_pipeline_id(value)
    return None


def create_app(cfg: BotConfig, enqueue=None) -> FastAPI:
    enqueue = enqueue or rq_enqueuer(cfg)
    app = FastAPI(title="statusbot", version="0.1.0")

    def submit(func: str, pipeline_id, payload: dict) -> bool:
        try:
            enqueue(func, pipeline_id, payload)
            return True
        except RedisError as e:
            # Still acknowledged: a redelivery storm would not bring Redis back.
            log.error("enqueue %s pipeline=%s failed: %s", func, pipeline_id, e)
            return False

    @app.get("/health")
    def health():
        return {"ok": True}

    @app.post("/webhooks/gitlab")
    async def gitlab_webhook(request: Request, x_gitlab_token: str | None = Header(default=None)):
        if not token_ok(x_gitlab_token, cfg.gitlab_webhook_secret):
            log.warning("rejected GitLab webhook with invalid token")
            raise HTTPException(status_code=401, detail="unauthorized")
        try:
            payload = await request.json()
        except ValueError:
            log.warning("GitLab webhook with undecodable body")
            return {"ok": True, "queued": False}
        kind = payload.get("object_kind") if isinstance(payload, dict) else None
        if kind not in HANDLED_KINDS:
            log.info("ignoring GitLab webhook object_kind=%r", kind)
            return {"ok": True, "queued": False}
        pid = event_pipeline_id(payload)
        return {"ok": True, "queued": submit(GITLAB_JOB, pid, payload)}

    @app.post("/slack/actions")
    async def slack_actions(
        request: Request,
        x_slack_request_timestamp: str | None = Header(default=None),
        x_slack_signature: str | None = Header(default=None),
    ):
        body = await request.body()
        if not slack_signature_ok(cfg.slack_signing_secret, x_slack_request_timestamp or "", body, x_slack_signature or ""):
            log.warning("rejected Slack interaction with invalid signature")
            raise HTTPException(status_code=401, detail="unauthorized")
        form = parse_qs(body.decode("utf-8"))
        try:
            payload = json.loads((form.get("payload") or [""])[0])
        except ValueError:
            log.warning("Slack interaction without a JSON payload")
            return {"ok": True, "queued": False}
        if not isinstance(payload, dict) or payload.get("type") != "block_actions":
            return {"ok": True, "queued": False}
        return {"ok": True, "queued": submit(SLACK_JOB, interaction_pipeline_id(payload), payload)}

    return app


_cfg = load_config()
setup_logger("statusbot", _cfg.log_level)
app = create_app(_cfg)


def run():
    """Console entry point: serve the API with uvicorn."""
    uvicorn.run(app, host=_cfg.api_host, port=_cfg.api_port, log_level=_cfg.log_level.lower())
