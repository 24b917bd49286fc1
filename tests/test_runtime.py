"""
Lab Pool — Runtime Wiring & CLI Tests

Tests:
  - WorkPool built from config (memory and SQLite stores, sinks)
  - Delegating operations reach the right component
  - list_stale uses the configured window
  - CLI commands against an injected pool, exit codes on pool errors
  - CLI building its own pool closes it, so queued webhooks are posted
"""

import io
import json
import logging
import os
import sys
import tempfile
import shutil
import time
import unittest
from contextlib import redirect_stderr, redirect_stdout
from unittest.mock import patch

_base = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, _base)

from engine.audit import AuditTrail
from engine.logging import ROOT_LOGGER
from engine.webhooks import WebhookNotifier
from workpool.cli import _parse_result, main
from workpool.errors import AlreadyClaimed, NotFound
from workpool.runtime import WorkPool
from workpool.sinks import LoggingSink
from workpool.store import InMemoryItemStore, ResilientItemStore, SQLiteItemStore
from workpool.types import ItemStatus


# ═══════════════════════════════════════════════════════════════════
# Runtime
# ═══════════════════════════════════════════════════════════════════

class TestWorkPoolFromConfig(unittest.TestCase):

    def setUp(self):
        self.tmpdir = tempfile.mkdtemp()

    def tearDown(self):
        shutil.rmtree(self.tmpdir, ignore_errors=True)

    def test_memory_store(self):
        pool = WorkPool.from_config({"store": {"backend": "memory"}})
        self.assertIsInstance(pool.store, ResilientItemStore)
        self.assertIsInstance(pool.store.inner, InMemoryItemStore)
        self.assertEqual([type(s) for s in pool.sinks], [LoggingSink])
        self.assertTrue(pool.ready())

    def test_sqlite_store_with_sinks(self):
        pool = WorkPool.from_config({
            "store": {"backend": "sqlite", "path": os.path.join(self.tmpdir, "pool.db")},
            "audit": {"enabled": True, "path": os.path.join(self.tmpdir, "audit.db")},
            "webhooks": [{"url": "https://hooks.example.org/lab", "enabled": False}],
        })
        try:
            self.assertIsInstance(pool.store.inner, SQLiteItemStore)
            kinds = [type(s) for s in pool.sinks]
            self.assertEqual(kinds, [LoggingSink, AuditTrail, WebhookNotifier])

            item = pool.create_item("lab_test", urgency="URGENT")
            pool.claim(item.item_id, "W1")
            audit = pool.sinks[1]
            self.assertEqual(len(audit.custody(item.item_id)), 1)
        finally:
            pool.close()

    def test_sqlite_state_survives_restart(self):
        cfg = {"store": {"backend": "sqlite", "path": os.path.join(self.tmpdir, "pool.db")}}
        pool = WorkPool.from_config(cfg)
        item = pool.create_item("lab_test")
        pool.claim(item.item_id, "W1")
        pool.close()

        pool = WorkPool.from_config(cfg)
        try:
            self.assertEqual(pool.get(item.item_id).owner_id, "W1")
            with self.assertRaises(AlreadyClaimed):
                pool.claim(item.item_id, "W2")
        finally:
            pool.close()


class TestWorkPoolOperations(unittest.TestCase):

    def setUp(self):
        self.now = time.time() + 10
        self.pool = WorkPool(sinks=[], clock=lambda: self.now)

    def test_full_lifecycle(self):
        item = self.pool.create_item("lab_test", {"test": "TSH"})
        self.pool.claim(item.item_id, "W1")
        self.pool.start(item.item_id, "W1")
        done = self.pool.complete(item.item_id, "W1", [{"label": "TSH", "value": "2.1"}], notes="ok")
        self.assertEqual(done.status, ItemStatus.COMPLETED)
        self.assertEqual([i.item_id for i in self.pool.list_results()], [item.item_id])
        self.assertEqual(self.pool.stats()["by_status"]["COMPLETED"], 1)

    def test_groups_and_release(self):
        items = self.pool.create_group("ord-1", "lab_test", [{}, {}], eligible=False)
        self.assertEqual(self.pool.list_available(), [])
        self.pool.release(items[0].item_id)
        self.assertEqual(len(self.pool.list_available()), 1)
        self.pool.release_group("ord-1")
        self.assertEqual(len(self.pool.list_available()), 2)
        self.assertEqual(self.pool.group_summary("ord-1")["total"], 2)

    def test_stale_uses_configured_window(self):
        item = self.pool.create_item("lab_test")
        self.pool.claim(item.item_id, "W1")
        self.pool.settings.stale_after_seconds = 600
        self.now += 300
        self.assertEqual(self.pool.list_stale(), [])
        self.now += 400
        self.assertEqual([i.item_id for i in self.pool.list_stale()], [item.item_id])
        self.assertEqual(self.pool.list_stale(older_than_seconds=10_000), [])

        self.pool.admin_cancel(item.item_id, "lead-1", "abandoned")
        self.assertEqual(self.pool.list_stale(), [])

    def test_mine_and_cancel(self):
        item = self.pool.create_item("lab_request")
        self.pool.claim(item.item_id, "W1")
        self.assertEqual(len(self.pool.list_mine("W1")), 1)
        self.pool.cancel(item.item_id, "W1", "duplicate request")
        self.assertEqual(self.pool.list_mine("W1"), [])
        self.assertEqual(len(self.pool.list_mine("W1", include_history=True)), 1)


# ═══════════════════════════════════════════════════════════════════
# CLI
# ═══════════════════════════════════════════════════════════════════

class TestCLI(unittest.TestCase):

    def setUp(self):
        self.pool = WorkPool(sinks=[])

    def run_cli(self, *argv):
        out, err = io.StringIO(), io.StringIO()
        with redirect_stdout(out), redirect_stderr(err):
            code = main(list(argv), pool=self.pool)
        return code, out.getvalue(), err.getvalue()

    def test_create_and_show(self):
        code, out, _ = self.run_cli(
            "create", "--kind", "lab_test", "--urgency", "STAT", "--payload", '{"test": "CBC"}',
        )
        self.assertEqual(code, 0)
        created = json.loads(out)
        self.assertEqual(created["urgency"], "STAT")

        code, out, _ = self.run_cli("show", created["item_id"])
        self.assertEqual(json.loads(out)["payload"], {"test": "CBC"})

    def test_worker_flow(self):
        item = self.pool.create_item("lab_test")
        self.assertEqual(self.run_cli("claim", item.item_id, "--worker", "W1")[0], 0)
        self.assertEqual(self.run_cli("start", item.item_id, "-w", "W1")[0], 0)
        code, out, _ = self.run_cli(
            "complete", item.item_id, "-w", "W1",
            "--result", "Glucose=95 mg/dL", "--result", "Potassium=6.9 mmol/L!",
        )
        self.assertEqual(code, 0)
        done = json.loads(out)
        self.assertEqual(done["status"], "COMPLETED")
        self.assertEqual(done["result"][1]["flag"], "CRITICAL")

        code, out, _ = self.run_cli("results", "--critical")
        self.assertIn(item.item_id, out)

    def test_pool_error_exit_code(self):
        item = self.pool.create_item("lab_test")
        self.pool.claim(item.item_id, "W1")
        code, _, err = self.run_cli("claim", item.item_id, "--worker", "W2")
        self.assertEqual(code, 2)
        self.assertIn("already_claimed", err)

    def test_validation_errors_listed(self):
        item = self.pool.create_item("lab_test")
        self.pool.claim(item.item_id, "W1")
        self.pool.start(item.item_id, "W1")
        code, _, err = self.run_cli("complete", item.item_id, "-w", "W1")
        self.assertEqual(code, 2)
        self.assertIn("results: at least one entry is required", err)

    def test_listing_and_stats(self):
        self.pool.create_item("lab_test", urgency="STAT")
        code, out, _ = self.run_cli("available")
        self.assertEqual(code, 0)
        self.assertIn("STAT", out)
        code, out, _ = self.run_cli("stats")
        self.assertEqual(json.loads(out)["total"], 1)
        code, out, _ = self.run_cli("mine", "--worker", "W9")
        self.assertIn("No items.", out)

    def test_release_requires_target(self):
        code, _, err = self.run_cli("release")
        self.assertEqual(code, 1)

    def test_no_command(self):
        code, _, _ = self.run_cli()
        self.assertEqual(code, 1)

    def test_parse_result(self):
        self.assertEqual(
            _parse_result("Hb=13.2 g/dL"),
            {"label": "Hb", "value": "13.2", "unit": "g/dL", "flag": "NORMAL"},
        )
        self.assertEqual(_parse_result("Ketones=trace")["unit"], "")
        self.assertEqual(_parse_result("K=7.0!")["flag"], "CRITICAL")
        self.assertEqual(_parse_result("Hb")["value"], "")


class TestCLIFromConfig(unittest.TestCase):
    """main() building its own pool from a config file."""

    def setUp(self):
        self.tmpdir = tempfile.mkdtemp()
        self.config = os.path.join(self.tmpdir, "pool_config.yaml")
        with open(self.config, "w") as f:
            f.write(
                "store:\n"
                f"  path: {os.path.join(self.tmpdir, 'labpool.db')}\n"
                "logging:\n  level: WARNING\n"
                "webhooks:\n  - url: http://hooks.test/lab\n"
            )
        self.posted = []

    def tearDown(self):
        root = logging.getLogger(ROOT_LOGGER)
        root.handlers.clear()
        root.propagate = True
        root.setLevel(logging.NOTSET)
        shutil.rmtree(self.tmpdir, ignore_errors=True)

    def fake_post(self, url, payload, headers=None, timeout=10.0):
        self.posted.append((url, payload["to_status"]))
        return {"ok": True, "status": 204, "error": ""}

    def run_cli(self, *argv):
        out, err = io.StringIO(), io.StringIO()
        env = {k: v for k, v in os.environ.items() if not k.startswith("LP_")}
        with patch.dict(os.environ, env, clear=True), \
                patch("engine.webhooks.post_json", self.fake_post), \
                redirect_stdout(out), redirect_stderr(err):
            code = main(["--config", self.config, *argv])
        return code, out.getvalue()

    def test_webhook_posted_before_exit(self):
        code, out = self.run_cli("create", "--kind", "lab_test")
        self.assertEqual(code, 0)
        item_id = json.loads(out)["item_id"]
        self.assertEqual(self.posted, [])

        code, _ = self.run_cli("claim", item_id, "--worker", "W1")
        self.assertEqual(code, 0)
        self.assertEqual(self.posted, [("http://hooks.test/lab", "CLAIMED")])

    def test_pool_closed_after_error(self):
        code, _ = self.run_cli("claim", "itm_missing", "--worker", "W1")
        self.assertEqual(code, 2)
        # the store file is released and reopens cleanly
        code, out = self.run_cli("stats")
        self.assertEqual(code, 0)
        self.assertEqual(json.loads(out)["total"], 0)


if __name__ == "__main__":
    unittest.main()
