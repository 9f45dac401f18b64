import requests

from .errors import TransportRejected
from .log import get_logger
from .models import MessageRef

log = get_logger("slack")

API = "https://slack.com/api"


def slack_headers(token: str) -> dict:
    return {
        "Authorization": f"Bearer {token}",
        "Content-Type": "application/json; charset=utf-8",
    }


class SlackTransport:
    """chat.postMessage / chat.update / chat.delete over the Slack Web API."""

    def __init__(self, token: str, api_url: str = API, session: requests.Session | None = None, timeout: int = 30):
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update(slack_headers(token))

    def call(self, method: str, payload: dict) -> dict:
        url = f"{self.api_url}/{method}"
        log.debug("slack %s channel=%s", method, payload.get("channel"))
        try:
            r = self.session.post(url, json=payload, timeout=self.timeout)
        except requests.RequestException as e:
            raise TransportRejected(f"Slack {method} -> {e}") from e
        if r.status_code >= 400:
            raise TransportRejected(f"Slack {method} -> {r.status_code} {r.text}")
        try:
            data = r.json()
        except ValueError as e:
            raise TransportRejected(f"Slack {method} -> non-JSON response") from e
        if not data.get("ok"):
            raise TransportRejected(f"Slack {method} -> {data.get('error', 'unknown_error')}")
        return data

    def post_message(self, channel: str, blocks: list, text: str) -> MessageRef:
        data = self.call("chat.postMessage", {"channel": channel, "blocks": blocks, "text": text})
        if not data.get("ts") or not data.get("channel"):
            raise TransportRejected("Slack chat.postMessage -> response without channel/ts")
        return MessageRef(channel=data["channel"], ts=data["ts"])

    def update_message(self, ref: MessageRef, blocks: list, text: str) -> None:
        self.call("chat.update", {"channel": ref.channel, "ts": ref.ts, "blocks": blocks, "text": text})

    def delete_message(self, ref: MessageRef) -> None:
        self.call("chat.delete", {"channel": ref.channel, "ts": ref.ts})
