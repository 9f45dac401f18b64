import os

from pydantic import BaseModel, Field

from .utils import read_secret

SECRETS_DIR = os.environ.get("SECRETS_DIR", "/secrets")

REQUIRED = (
    "slack_bot_token",
    "slack_signing_secret",
    "slack_channel_id",
    "gitlab_webhook_secret",
    "gitlab_api_token",
    "gitlab_project_id",
    "gitlab_base_url",
)


def env_secret(name: str, env=None) -> str:
    """Value of ``name``, else the contents of the file named by ``name_FILE``."""
    env = os.environ if env is None else env
    val = env.get(name, "")
    if val:
        return val.strip()
    path = env.get(f"{name}_FILE", f"{SECRETS_DIR}/{name.lower()}.txt")
    try:
        return read_secret(path)
    except OSError:
        return ""


class BotConfig(BaseModel):
    slack_bot_token: str = ""
    slack_signing_secret: str = ""
    slack_channel_id: str = ""
    slack_api_url: str = "https://slack.com/api"
    gitlab_webhook_secret: str = ""
    gitlab_api_token: str = ""
    gitlab_base_url: str = "https://gitlab.com"
    gitlab_project_id: str = ""
    redis_url: str = "redis://redis:6379/0"
    state_backend: str = Field(default="redis", description="redis | sqlite | memory")
    db_path: str = "/data/statusbot.db"
    state_ttl_days: int = Field(default=7, ge=1)
    queue_name: str = "statusbot"
    queue_shards: int = Field(default=1, ge=1, le=64)
    log_tail_lines: int = Field(default=20, ge=1, le=500)
    conflict_retries: int = Field(default=3, ge=1, le=10)
    inline_processing: bool = False
    log_level: str = "INFO"
    api_host: str = "0.0.0.0"
    api_port: int = Field(default=8000, ge=1, le=65535)

    def missing(self) -> list[str]:
        cfg = self.model_dump()
        return [k for k in REQUIRED if not str(cfg[k]).strip()]

    def queue_for(self, pipeline_id: int | None) -> str:
        """Events for one pipeline always land on the same shard queue."""
        return f"{self.queue_name}-{(pipeline_id or 0) % self.queue_shards}"

    def all_queues(self) -> list[str]:
        return [f"{self.queue_name}-{n}" for n in range(self.queue_shards)]


def load_config(env=None) -> BotConfig:
    env = os.environ if env is None else env
    return BotConfig(
        slack_bot_token=env_secret("SLACK_BOT_TOKEN", env),
        slack_signing_secret=env_secret("SLACK_SIGNING_SECRET", env),
        slack_channel_id=env.get("SLACK_CHANNEL_ID", ""),
        slack_api_url=env.get("SLACK_API_URL", "https://slack.com/api"),
        gitlab_webhook_secret=env_secret("GITLAB_WEBHOOK_SECRET", env),
        gitlab_api_token=env_secret("GITLAB_API_TOKEN", env),
        gitlab_base_url=env.get("GITLAB_BASE_URL", "https://gitlab.com").rstrip("/"),
        gitlab_project_id=env.get("GITLAB_PROJECT_ID", ""),
        redis_url=env.get("REDIS_URL", "redis://redis:6379/0"),
        state_backend=env.get("STATE_BACKEND", "redis").lower(),
        db_path=env.get("DB_PATH", "/data/statusbot.db"),
        state_ttl_days=int(env.get("STATE_TTL_DAYS", "7")),
        queue_name=env.get("QUEUE_NAME", "statusbot"),
        queue_shards=int(env.get("QUEUE_SHARDS", "1")),
        log_tail_lines=int(env.get("LOG_TAIL_LINES", "20")),
        conflict_retries=int(env.get("CONFLICT_RETRIES", "3")),
        inline_processing=env.get("INLINE_PROCESSING", "0").lower() in ("1", "true", "yes"),
        log_level=env.get("LOG_LEVEL", "INFO"),
        api_host=env.get("API_HOST", "0.0.0.0"),
        api_port=int(env.get("API_PORT", "8000")),
    )
