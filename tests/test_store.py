import json
import os
import tempfile
import unittest

import sqlite3

import fakeredis
from redis import Redis

from statusbot_common.engine import Outcome, StatusEngine
from statusbot_common.errors import StoreConflict, StoreUnavailable
from statusbot_common.models import MessageRef, PipelineRenderState, PipelineSnapshot
from statusbot_common.store import MemoryStateStore, RedisStateStore, SqliteStateStore

from fakes import CHANNEL, FakeTransport, pipeline_payload


def make_state(pipeline_id=101, expanded=()):
    return PipelineRenderState(
        message=MessageRef(channel=CHANNEL, ts="1700000000.000001"),
        expanded_stages=set(expanded),
        snapshot=PipelineSnapshot.from_gitlab(pipeline_payload(
            pipeline_id=pipeline_id, builds=[(1, "compile", "build", "running")],
        )),
    )


class StoreContract:
    """Shared behaviour every backend must honour; mixed into a TestCase per backend."""

    def make_store(self):
        raise NotImplementedError

    def corrupt(self, pipeline_id):
        raise NotImplementedError

    def setUp(self):
        self.store = self.make_store()

    def test_missing_is_none(self):
        self.assertIsNone(self.store.get(404))

    def test_put_get_roundtrip(self):
        saved = self.store.put(101, make_state(expanded=("test", "build")))
        self.assertEqual(saved.version, 1)
        got = self.store.get(101)
        self.assertEqual(got.version, 1)
        self.assertEqual(got.expanded_stages, {"build", "test"})
        self.assertEqual(got.message, MessageRef(channel=CHANNEL, ts="1700000000.000001"))
        self.assertEqual(got.snapshot.builds[0].name, "compile")
        self.assertTrue(got.updated_at)

    def test_second_create_conflicts(self):
        self.store.put(101, make_state())
        with self.assertRaises(StoreConflict):
            self.store.put(101, make_state())

    def test_stale_version_conflicts(self):
        first = self.store.put(101, make_state())
        self.store.put(101, first.model_copy(update={"expanded_stages": {"build"}}))
        with self.assertRaises(StoreConflict):
            self.store.put(101, first.model_copy(update={"expanded_stages": {"test"}}))
        self.assertEqual(self.store.get(101).expanded_stages, {"build"})

    def test_delete(self):
        self.store.put(101, make_state())
        self.assertTrue(self.store.delete(101))
        self.assertIsNone(self.store.get(101))
        self.assertFalse(self.store.delete(101))

    def test_pipelines_are_independent(self):
        self.store.put(101, make_state(101))
        self.store.put(102, make_state(102, expanded=("deploy",)))
        self.assertEqual(self.store.get(101).expanded_stages, set())
        self.assertEqual(self.store.get(102).snapshot.pipeline_id, 102)

    def test_unreadable_document_reads_as_absent_and_is_replaced(self):
        self.store.put(101, make_state())
        self.corrupt(101)
        self.assertIsNone(self.store.get(101))
        self.store.put(101, make_state(expanded=("build",)))
        self.assertEqual(self.store.get(101).expanded_stages, {"build"})

    def test_pipeline_event_after_unreadable_document_posts_once(self):
        transport = FakeTransport()
        engine = StatusEngine(self.store, transport, CHANNEL)
        self.assertEqual(engine.handle_event(pipeline_payload()), Outcome.CREATED)
        self.corrupt(101)
        self.assertEqual(engine.handle_event(pipeline_payload(status="success")), Outcome.CREATED)
        self.assertEqual(len(transport.posted), 2)
        self.assertEqual(transport.deleted, [])
        state = self.store.get(101)
        self.assertEqual(state.message, transport.posted[1][0])
        self.assertEqual(state.snapshot.status, "success")


class MemoryStoreTest(StoreContract, unittest.TestCase):
    def make_store(self):
        return MemoryStateStore()

    def corrupt(self, pipeline_id):
        self.store._docs[pipeline_id] = "garbage"

    def test_returned_state_is_a_copy(self):
        self.store.put(101, make_state())
        got = self.store.get(101)
        got.snapshot.builds[0].status = "failed"
        self.assertEqual(self.store.get(101).snapshot.builds[0].status, "running")

    def test_cleanup(self):
        self.store.put(101, make_state())
        self.assertEqual(self.store.cleanup(30), 0)
        self.assertEqual(self.store.cleanup(-1), 1)
        self.assertIsNone(self.store.get(101))


class SqliteStoreTest(StoreContract, unittest.TestCase):
    def make_store(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmp.cleanup)
        return SqliteStateStore(os.path.join(self.tmp.name, "state", "statusbot.db"))

    def corrupt(self, pipeline_id):
        conn = sqlite3.connect(self.store.db_path)
        with conn:
            conn.execute("UPDATE pipeline_states SET state_json=? WHERE pipeline_id=?", ("garbage", pipeline_id))
        conn.close()

    def test_cleanup(self):
        self.store.put(101, make_state())
        self.assertEqual(self.store.cleanup(30), 0)
        self.assertEqual(self.store.cleanup(-1), 1)

    def test_unusable_path_is_unavailable(self):
        blocker = os.path.join(self.tmp.name, "not-a-dir")
        with open(blocker, "w", encoding="utf-8") as f:
            f.write("x")
        store = SqliteStateStore(os.path.join(blocker, "statusbot.db"))
        with self.assertRaises(StoreUnavailable):
            store.get(101)


class RedisStoreTest(StoreContract, unittest.TestCase):
    def make_store(self):
        self.redis = fakeredis.FakeRedis()
        return RedisStateStore(self.redis, ttl_days=7)

    def corrupt(self, pipeline_id):
        self.redis.set(self.store.key(pipeline_id), "garbage")

    def test_expanded_stages_stored_as_sorted_list(self):
        self.store.put(101, make_state(expanded=("test", "deploy", "build")))
        doc = json.loads(self.redis.get("statusbot:pipeline:101"))
        self.assertEqual(doc["expanded_stages"], ["build", "deploy", "test"])

    def test_ttl_is_set(self):
        self.store.put(101, make_state())
        ttl = self.redis.ttl("statusbot:pipeline:101")
        self.assertGreater(ttl, 6 * 86400)

    def test_unreachable_redis_is_unavailable(self):
        store = RedisStateStore(Redis(host="127.0.0.1", port=1, socket_connect_timeout=0.2))
        with self.assertRaises(StoreUnavailable):
            store.get(101)
        with self.assertRaises(StoreUnavailable):
            store.put(101, make_state())


if __name__ == "__main__":
    unittest.main()
