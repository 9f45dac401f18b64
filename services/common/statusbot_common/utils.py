import json
from datetime import datetime, timedelta, timezone

def utc_now() -> datetime:
    return datetime.now(timezone.utc)

def utc_now_iso() -> str:
    return utc_now().isoformat()

def days_ago_iso(days: float) -> str:
    return (utc_now() - timedelta(days=days)).isoformat()

def read_secret(path: str) -> str:
    with open(path, "r", encoding="utf-8") as f:
        return f.read().strip()

def jdump(obj) -> str:
    """Stable JSON encoding, used for action payloads so equal inputs give equal bytes."""
    return json.dumps(obj, ensure_ascii=False, sort_keys=True)

def chunked(items, size: int):
    for i in range(0, len(items), size):
        yield items[i:i + size]

def tail_lines(text: str, n: int) -> str:
    lines = (text or "").rstrip("\n").split("\n")
    return "\n".join(lines[-n:])
