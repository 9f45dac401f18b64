import hashlib
import hmac
import time

# Slack rejects replays older than five minutes; so do we.
SLACK_MAX_SKEW_S = 300

def token_ok(got: str, expected: str) -> bool:
    # constant-time compare; an unset secret never matches
    if not expected:
        return False
    return hmac.compare_digest(got or "", expected)

def slack_signature(secret: str, timestamp: str, body: bytes) -> str:
    base = b"v0:" + timestamp.encode() + b":" + body
    return "v0=" + hmac.new(secret.encode(), base, hashlib.sha256).hexdigest()

def slack_signature_ok(secret: str, timestamp: str, body: bytes, signature: str, now: float | None = None) -> bool:
    if not secret or not timestamp or not signature:
        return False
    try:
        ts = int(timestamp)
    except ValueError:
        return False
    now = time.time() if now is None else now
    if abs(now - ts) > SLACK_MAX_SKEW_S:
        return False
    return hmac.compare_digest(slack_signature(secret, timestamp, body), signature)
