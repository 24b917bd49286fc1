"""
Lab Pool — SQLite Backend Tests
"""

import os
import sqlite3
import sys
import tempfile
import shutil
import threading
import unittest

_base = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, _base)

from engine.db import DatabaseUnavailable, SQLiteBackend


class TestSQLiteBackend(unittest.TestCase):

    def setUp(self):
        self.db = SQLiteBackend(":memory:")
        self.db.executescript("CREATE TABLE t (k TEXT PRIMARY KEY, v INTEGER);")

    def tearDown(self):
        self.db.close()

    def test_rows_are_dicts(self):
        self.db.execute("INSERT INTO t VALUES (?, ?)", ("a", 1))
        self.db.execute("INSERT INTO t VALUES (?, ?)", ("b", 2))
        self.assertEqual(self.db.fetchone("SELECT * FROM t WHERE k = ?", ("a",)), {"k": "a", "v": 1})
        self.assertIsNone(self.db.fetchone("SELECT * FROM t WHERE k = ?", ("z",)))
        self.assertEqual([r["k"] for r in self.db.fetchall("SELECT * FROM t ORDER BY k")], ["a", "b"])

    def test_conditional_update_rowcount(self):
        self.db.execute("INSERT INTO t VALUES (?, ?)", ("a", 0))
        hit = self.db.execute("UPDATE t SET v = 1 WHERE k = ? AND v = ?", ("a", 0))
        miss = self.db.execute("UPDATE t SET v = 2 WHERE k = ? AND v = ?", ("a", 0))
        self.assertEqual((hit.rowcount, miss.rowcount), (1, 0))

    def test_concurrent_conditional_update_single_winner(self):
        self.db.execute("INSERT INTO t VALUES (?, ?)", ("a", 0))
        wins = []
        barrier = threading.Barrier(8)

        def bump():
            barrier.wait()
            cur = self.db.execute("UPDATE t SET v = v + 1 WHERE k = ? AND v = ?", ("a", 0))
            wins.append(cur.rowcount)

        threads = [threading.Thread(target=bump) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        self.assertEqual(sorted(wins), [0] * 7 + [1])

    def test_transaction_commit(self):
        with self.db.transaction():
            self.db.execute("INSERT INTO t VALUES (?, ?)", ("a", 1))
            self.db.execute("INSERT INTO t VALUES (?, ?)", ("b", 2))
        self.assertEqual(len(self.db.fetchall("SELECT * FROM t")), 2)

    def test_transaction_rollback(self):
        with self.assertRaises(RuntimeError):
            with self.db.transaction():
                self.db.execute("INSERT INTO t VALUES (?, ?)", ("a", 1))
                raise RuntimeError("abort")
        self.assertEqual(self.db.fetchall("SELECT * FROM t"), [])

    def test_nested_transaction_joins_outer(self):
        with self.assertRaises(RuntimeError):
            with self.db.transaction():
                with self.db.transaction():
                    self.db.execute("INSERT INTO t VALUES (?, ?)", ("a", 1))
                self.db.execute("INSERT INTO t VALUES (?, ?)", ("b", 2))
                raise RuntimeError("abort")
        self.assertEqual(self.db.fetchall("SELECT * FROM t"), [])

        with self.db.transaction():
            self.db.execute("INSERT INTO t VALUES (?, ?)", ("c", 3))
        self.assertEqual(len(self.db.fetchall("SELECT * FROM t")), 1)

    def test_integrity_error_keeps_type(self):
        self.db.execute("INSERT INTO t VALUES (?, ?)", ("a", 1))
        with self.assertRaises(sqlite3.IntegrityError):
            self.db.execute("INSERT INTO t VALUES (?, ?)", ("a", 2))

    def test_operational_error_is_unavailable(self):
        with self.assertRaises(DatabaseUnavailable):
            self.db.execute("SELECT * FROM missing_table")

    def test_closed_connection_is_unavailable(self):
        db = SQLiteBackend(":memory:")
        db.close()
        with self.assertRaises(DatabaseUnavailable):
            db.fetchall("SELECT 1")


class TestFileDatabase(unittest.TestCase):

    def setUp(self):
        self.tmpdir = tempfile.mkdtemp()
        self.path = os.path.join(self.tmpdir, "pool.db")

    def tearDown(self):
        shutil.rmtree(self.tmpdir, ignore_errors=True)

    def test_wal_and_persistence(self):
        db = SQLiteBackend(self.path)
        self.assertEqual(db.fetchone("PRAGMA journal_mode")["journal_mode"], "wal")
        db.executescript("CREATE TABLE t (k TEXT);")
        db.execute("INSERT INTO t VALUES ('a')")
        db.close()

        db = SQLiteBackend(self.path)
        try:
            self.assertEqual(db.fetchall("SELECT k FROM t"), [{"k": "a"}])
            self.assertEqual(db.path, self.path)
        finally:
            db.close()


if __name__ == "__main__":
    unittest.main()
