import os
import tempfile
import unittest

from statusbot_common.auth import slack_signature, slack_signature_ok, token_ok
from statusbot_common.config import BotConfig, load_config


class ConfigTest(unittest.TestCase):
    def test_defaults_and_missing(self):
        cfg = load_config({})
        self.assertEqual(cfg.state_backend, "redis")
        self.assertEqual(cfg.log_tail_lines, 20)
        self.assertEqual(cfg.state_ttl_days, 7)
        self.assertIn("slack_bot_token", cfg.missing())
        self.assertIn("gitlab_webhook_secret", cfg.missing())

    def test_env_values_and_secret_files(self):
        with tempfile.TemporaryDirectory() as d:
            token_file = os.path.join(d, "slack_token.txt")
            with open(token_file, "w", encoding="utf-8") as f:
                f.write("xoxb-from-file\n")
            cfg = load_config({
                "SLACK_BOT_TOKEN_FILE": token_file,
                "GITLAB_BASE_URL": "https://gitlab.example.com/",
                "STATE_BACKEND": "SQLite",
                "QUEUE_SHARDS": "4",
                "INLINE_PROCESSING": "true",
                "API_PORT": "9090",
            })
        self.assertEqual(cfg.slack_bot_token, "xoxb-from-file")
        self.assertEqual(cfg.gitlab_base_url, "https://gitlab.example.com")
        self.assertEqual(cfg.state_backend, "sqlite")
        self.assertTrue(cfg.inline_processing)
        self.assertEqual((cfg.api_host, cfg.api_port), ("0.0.0.0", 9090))
        self.assertEqual(cfg.all_queues(), ["statusbot-0", "statusbot-1", "statusbot-2", "statusbot-3"])

    def test_queue_sharding_is_stable(self):
        cfg = BotConfig(queue_shards=3)
        self.assertEqual(cfg.queue_for(10), "statusbot-1")
        self.assertEqual(cfg.queue_for(10), cfg.queue_for(10))
        self.assertEqual(cfg.queue_for(None), "statusbot-0")


class AuthTest(unittest.TestCase):
    def test_token(self):
        self.assertTrue(token_ok("s3cret", "s3cret"))
        self.assertFalse(token_ok("nope", "s3cret"))
        self.assertFalse(token_ok(None, "s3cret"))
        self.assertFalse(token_ok("", ""))

    def test_slack_signature(self):
        body = b"payload=%7B%7D"
        sig = slack_signature("shh", "1700000000", body)
        self.assertTrue(sig.startswith("v0="))
        self.assertTrue(slack_signature_ok("shh", "1700000000", body, sig, now=1700000100))
        self.assertFalse(slack_signature_ok("shh", "1700000000", body + b"x", sig, now=1700000100))
        self.assertFalse(slack_signature_ok("shh", "1700000000", body, sig, now=1700009999))
        self.assertFalse(slack_signature_ok("shh", "not-a-time", body, sig))
        self.assertFalse(slack_signature_ok("", "1700000000", body, sig, now=1700000100))


if __name__ == "__main__":
    unittest.main()
