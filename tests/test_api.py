import json
import time
import unittest
from unittest import mock
from urllib.parse import urlencode

from fastapi.testclient import TestClient
from redis.exceptions import ConnectionError as RedisConnectionError

from statusbot_api import main as api_main
from statusbot_api.main import GITLAB_JOB, SLACK_JOB, create_app
from statusbot_common.auth import slack_signature
from statusbot_common.config import BotConfig

from fakes import job_payload, pipeline_payload

SECRET = "gitlab-hook-secret-0123456789"
SIGNING = "slack-signing-secret-abcdef"


class ApiTest(unittest.TestCase):
    def setUp(self):
        self.enqueued = []
        self.fail_enqueue = False

        def enqueue(func, pipeline_id, payload):
            if self.fail_enqueue:
                raise RedisConnectionError("Error 111 connecting to redis:6379")
            self.enqueued.append((func, pipeline_id, payload))

        cfg = BotConfig(gitlab_webhook_secret=SECRET, slack_signing_secret=SIGNING)
        self.client = TestClient(create_app(cfg, enqueue=enqueue))

    def hook(self, body, token=SECRET):
        headers = {"X-Gitlab-Token": token} if token is not None else {}
        return self.client.post("/webhooks/gitlab", json=body, headers=headers)

    def slack(self, payload, secret=SIGNING, ts=None):
        body = urlencode({"payload": json.dumps(payload)}).encode()
        ts = str(int(time.time())) if ts is None else ts
        headers = {
            "Content-Type": "application/x-www-form-urlencoded",
            "X-Slack-Request-Timestamp": ts,
            "X-Slack-Signature": slack_signature(secret, ts, body),
        }
        return self.client.post("/slack/actions", content=body, headers=headers)

    def test_health(self):
        self.assertEqual(self.client.get("/health").json(), {"ok": True})

    def test_webhook_requires_token(self):
        self.assertEqual(self.hook(pipeline_payload(), token="wrong").status_code, 401)
        self.assertEqual(self.hook(pipeline_payload(), token=None).status_code, 401)
        self.assertEqual(self.enqueued, [])

    def test_pipeline_and_job_events_are_queued(self):
        r = self.hook(pipeline_payload(pipeline_id=7))
        self.assertEqual(r.json(), {"ok": True, "queued": True})
        self.hook(job_payload(pipeline_id=7, job_id=3))
        self.assertEqual([(f, pid) for f, pid, _ in self.enqueued], [(GITLAB_JOB, 7), (GITLAB_JOB, 7)])
        self.assertEqual(self.enqueued[1][2]["build_id"], 3)

    def test_other_kinds_are_acknowledged_not_queued(self):
        r = self.hook({"object_kind": "push"})
        self.assertEqual(r.status_code, 200)
        self.assertEqual(r.json(), {"ok": True, "queued": False})
        self.assertEqual(self.enqueued, [])

    def test_queue_outage_still_acknowledges(self):
        self.fail_enqueue = True
        r = self.hook(pipeline_payload())
        self.assertEqual(r.status_code, 200)
        self.assertEqual(r.json(), {"ok": True, "queued": False})

    def test_slack_signature_checked(self):
        payload = {"type": "block_actions", "actions": []}
        self.assertEqual(self.slack(payload, secret="forged").status_code, 401)
        self.assertEqual(self.slack(payload, ts=str(int(time.time()) - 3600)).status_code, 401)
        self.assertEqual(self.enqueued, [])

    def test_slack_toggle_routes_by_pipeline(self):
        payload = {
            "type": "block_actions",
            "channel": {"id": "C1"},
            "message": {"ts": "1.1", "blocks": []},
            "actions": [{"action_id": "show_stage", "value": json.dumps({"pipeline_id": 55, "stage": "test"})}],
        }
        r = self.slack(payload)
        self.assertEqual(r.json(), {"ok": True, "queued": True})
        self.assertEqual(self.enqueued, [(SLACK_JOB, 55, payload)])

    def test_slack_log_click_has_no_pipeline(self):
        payload = {"type": "block_actions", "actions": [{"action_id": "show_error_log:3", "value": "3"}]}
        self.slack(payload)
        self.assertEqual(self.enqueued[0][1], None)


class RunTest(unittest.TestCase):
    def test_run_serves_app_with_uvicorn(self):
        with mock.patch.object(api_main.uvicorn, "run") as serve:
            api_main.run()
        serve.assert_called_once()
        args, kwargs = serve.call_args
        self.assertIs(args[0], api_main.app)
        self.assertEqual(kwargs["port"], api_main._cfg.api_port)


if __name__ == "__main__":
    unittest.main()
