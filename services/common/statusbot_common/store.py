"""
Pipeline render state storage.

Every backend stores the whole ``PipelineRenderState`` document per pipeline
id; there is no partial-field update. Writes are compare-and-swap on
``state.version`` (0 means "must not exist yet") so two writers racing on
one pipeline cannot silently clobber each other: the loser gets
``StoreConflict`` and is expected to reload and re-apply its change.
"""
import os
import sqlite3
import threading

from pydantic import ValidationError
from redis import Redis
from redis.exceptions import RedisError, WatchError

from .errors import StoreConflict, StoreUnavailable
from .log import get_logger
from .models import PipelineRenderState
from .utils import days_ago_iso, utc_now_iso

log = get_logger("store")


def _decode(pipeline_id: int, raw) -> PipelineRenderState | None:
    if raw is None:
        return None
    try:
        return PipelineRenderState.model_validate_json(raw)
    except ValidationError as e:
        # An unreadable document is treated as absent; the next pipeline
        # event recreates it.
        log.error("corrupt state document pipeline=%s: %s", pipeline_id, e)
        return None


def _next(state: PipelineRenderState) -> PipelineRenderState:
    return state.model_copy(update={"version": state.version + 1, "updated_at": utc_now_iso()})


class StateStore:
    def get(self, pipeline_id: int) -> PipelineRenderState | None:
        raise NotImplementedError

    def put(self, pipeline_id: int, state: PipelineRenderState) -> PipelineRenderState:
        """Write the full state; returns it with the stored version."""
        raise NotImplementedError

    def delete(self, pipeline_id: int) -> bool:
        raise NotImplementedError

    def cleanup(self, older_than_days: float) -> int:
        """Delete states not written for ``older_than_days``; returns how many."""
        raise NotImplementedError


class MemoryStateStore(StateStore):
    """Process-local store. Documents are kept serialized so callers never share objects."""

    def __init__(self):
        self._lock = threading.Lock()
        self._docs: dict[int, str] = {}

    def get(self, pipeline_id):
        with self._lock:
            raw = self._docs.get(pipeline_id)
        return _decode(pipeline_id, raw)

    def put(self, pipeline_id, state):
        with self._lock:
            cur = _decode(pipeline_id, self._docs.get(pipeline_id))
            found = cur.version if cur else 0
            if found != state.version:
                raise StoreConflict(pipeline_id, state.version, found)
            new = _next(state)
            self._docs[pipeline_id] = new.model_dump_json()
        return new

    def delete(self, pipeline_id):
        with self._lock:
            return self._docs.pop(pipeline_id, None) is not None

    def cleanup(self, older_than_days):
        cutoff = days_ago_iso(older_than_days)
        with self._lock:
            stale = []
            for pid, raw in self._docs.items():
                state = _decode(pid, raw)
                if state is None or state.updated_at < cutoff:
                    stale.append(pid)
            for pid in stale:
                del self._docs[pid]
        return len(stale)


SCHEMA = """
CREATE TABLE IF NOT EXISTS pipeline_states (
  pipeline_id INTEGER PRIMARY KEY,
  version INTEGER NOT NULL,
  created_at TEXT NOT NULL,
  updated_at TEXT NOT NULL,
  state_json TEXT NOT NULL
);
"""


class SqliteStateStore(StateStore):
    def __init__(self, db_path: str):
        self.db_path = db_path
        self._lock = threading.Lock()

    def _connect(self):
        parent = os.path.dirname(self.db_path)
        if parent:
            os.makedirs(parent, exist_ok=True)
        conn = sqlite3.connect(self.db_path, timeout=30, isolation_level=None, check_same_thread=False)
        conn.execute("PRAGMA journal_mode=WAL;")
        conn.execute("PRAGMA synchronous=NORMAL;")
        conn.execute(SCHEMA)
        return conn

    def _run(self, fn):
        with self._lock:
            try:
                conn = self._connect()
            except (OSError, sqlite3.Error) as e:
                raise StoreUnavailable(f"sqlite open {self.db_path}: {e}") from e
            try:
                return fn(conn)
            except sqlite3.Error as e:
                raise StoreUnavailable(f"sqlite {self.db_path}: {e}") from e
            finally:
                conn.close()

    def get(self, pipeline_id):
        row = self._run(lambda c: c.execute(
            "SELECT state_json FROM pipeline_states WHERE pipeline_id=?", (pipeline_id,)
        ).fetchone())
        return _decode(pipeline_id, row[0] if row else None)

    def put(self, pipeline_id, state):
        def _write(conn):
            new = _next(state)
            if state.version == 0:
                try:
                    conn.execute(
                        "INSERT INTO pipeline_states(pipeline_id,version,created_at,updated_at,state_json) VALUES(?,?,?,?,?)",
                        (pipeline_id, new.version, new.updated_at, new.updated_at, new.model_dump_json()),
                    )
                    return new
                except sqlite3.IntegrityError:
                    row = conn.execute(
                        "SELECT version, state_json FROM pipeline_states WHERE pipeline_id=?", (pipeline_id,)
                    ).fetchone()
                    if row and _decode(pipeline_id, row[1]) is None:
                        # get() reported this row as absent; a create replaces it.
                        return self._replace(conn, pipeline_id, state, row[0])
                    raise StoreConflict(pipeline_id, 0, row[0] if row else None)
            cur = conn.execute(
                "UPDATE pipeline_states SET version=?, updated_at=?, state_json=? WHERE pipeline_id=? AND version=?",
                (new.version, new.updated_at, new.model_dump_json(), pipeline_id, state.version),
            )
            if cur.rowcount == 0:
                found = conn.execute(
                    "SELECT version FROM pipeline_states WHERE pipeline_id=?", (pipeline_id,)
                ).fetchone()
                raise StoreConflict(pipeline_id, state.version, found[0] if found else None)
            return new

        return self._run(_write)

    def _replace(self, conn, pipeline_id, state, found_version):
        new = _next(state.model_copy(update={"version": found_version}))
        cur = conn.execute(
            "UPDATE pipeline_states SET version=?, updated_at=?, state_json=? WHERE pipeline_id=? AND version=?",
            (new.version, new.updated_at, new.model_dump_json(), pipeline_id, found_version),
        )
        if cur.rowcount == 0:
            raise StoreConflict(pipeline_id, 0, None)
        log.warning("pipeline=%s replaced unreadable state document (version %s)", pipeline_id, found_version)
        return new

    def delete(self, pipeline_id):
        n = self._run(lambda c: c.execute("DELETE FROM pipeline_states WHERE pipeline_id=?", (pipeline_id,)).rowcount)
        return n > 0

    def cleanup(self, older_than_days):
        cutoff = days_ago_iso(older_than_days)
        return self._run(lambda c: c.execute("DELETE FROM pipeline_states WHERE updated_at < ?", (cutoff,)).rowcount)


class RedisStateStore(StateStore):
    """
    One JSON document per pipeline under ``<prefix>:<pipeline_id>``.
    Retention is the key TTL, refreshed on every write.
    """

    def __init__(self, redis: Redis, prefix: str = "statusbot:pipeline", ttl_days: float = 7):
        self.redis = redis
        self.prefix = prefix
        self.ttl_seconds = int(ttl_days * 86400)

    def key(self, pipeline_id: int) -> str:
        return f"{self.prefix}:{pipeline_id}"

    def get(self, pipeline_id):
        try:
            raw = self.redis.get(self.key(pipeline_id))
        except RedisError as e:
            raise StoreUnavailable(f"redis get pipeline={pipeline_id}: {e}") from e
        return _decode(pipeline_id, raw)

    def put(self, pipeline_id, state):
        key = self.key(pipeline_id)
        new = _next(state)
        try:
            with self.redis.pipeline() as pipe:
                pipe.watch(key)
                cur = _decode(pipeline_id, pipe.get(key))
                found = cur.version if cur else 0
                if found != state.version:
                    pipe.unwatch()
                    raise StoreConflict(pipeline_id, state.version, found)
                pipe.multi()
                pipe.set(key, new.model_dump_json(), ex=self.ttl_seconds)
                pipe.execute()
        except WatchError as e:
            raise StoreConflict(pipeline_id, state.version, None) from e
        except RedisError as e:
            raise StoreUnavailable(f"redis put pipeline={pipeline_id}: {e}") from e
        return new

    def delete(self, pipeline_id):
        try:
            return self.redis.delete(self.key(pipeline_id)) > 0
        except RedisError as e:
            raise StoreUnavailable(f"redis delete pipeline={pipeline_id}: {e}") from e

    def cleanup(self, older_than_days):
        # expiry is handled by the key TTL
        return 0


def make_store(cfg) -> StateStore:
    if cfg.state_backend == "memory":
        return MemoryStateStore()
    if cfg.state_backend == "sqlite":
        return SqliteStateStore(cfg.db_path)
    if cfg.state_backend == "redis":
        return RedisStateStore(Redis.from_url(cfg.redis_url), ttl_days=cfg.state_ttl_days)
    raise ValueError(f"unknown STATE_BACKEND={cfg.state_backend!r}")
