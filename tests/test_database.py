#!/usr/bin/env python3
"""
Tests for the database module: game_state row helpers and bootstrap.

Run with:
    python -m pytest tests/test_database.py
"""
import os
import shutil
import sys
import tempfile
import unittest
from unittest.mock import MagicMock

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import database
import init_database
from app.exceptions import StorageFailure
from sqlalchemy import create_engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.pool import StaticPool


# ---------------------------------------------------------------------------
# In-memory DB helper
# ---------------------------------------------------------------------------

def _make_engine():
    engine = create_engine('sqlite:///:memory:',
                           connect_args={"check_same_thread": False},
                           poolclass=StaticPool)
    database.init_db(engine)
    return engine


def _make_session():
    return database.create_session_factory(_make_engine())()


def _document(**overrides):
    doc = database.default_document()
    doc.update(overrides)
    return doc


# ===========================================================================
# URL / engine helpers
# ===========================================================================

class TestNormalizeDatabaseUrl(unittest.TestCase):

    def test_heroku_scheme_rewritten(self):
        self.assertEqual(database.normalize_database_url('postgres://u:p@h/db'),
                         'postgresql://u:p@h/db')

    def test_postgresql_scheme_untouched(self):
        self.assertEqual(database.normalize_database_url('postgresql://u:p@h/db'),
                         'postgresql://u:p@h/db')

    def test_sqlite_untouched(self):
        self.assertEqual(database.normalize_database_url('sqlite:///x.db'), 'sqlite:///x.db')


class TestCreateDbEngine(unittest.TestCase):

    def test_sqlite_engine_connects(self):
        engine = database.create_db_engine('sqlite:///:memory:')
        try:
            database.check_connection(engine)
        finally:
            engine.dispose()

    def test_check_connection_propagates_failure(self):
        engine = database.create_db_engine('sqlite:////nonexistent-dir/sub/x.db')
        try:
            with self.assertRaises(OperationalError):
                database.check_connection(engine)
        finally:
            engine.dispose()


# ===========================================================================
# default_document
# ===========================================================================

class TestDefaultDocument(unittest.TestCase):

    def test_default_stats(self):
        self.assertEqual(database.default_document()['stats'], {
            'trust': 0, 'rupees': 0, 'hearts': 3, 'maxHearts': 5,
            'xp': 0, 'level': 1, 'ticksToday': 0,
        })

    def test_empty_collections(self):
        doc = database.default_document()
        for field in ('tasks', 'items', 'props', 'custom'):
            self.assertEqual(doc[field], [])
        self.assertEqual(doc['day'], '')
        self.assertEqual(doc['collapsed'], {})
        self.assertEqual(doc['world'], {})

    def test_returns_fresh_copy(self):
        first = database.default_document()
        first['stats']['hearts'] = 0
        self.assertEqual(database.default_document()['stats']['hearts'], 3)


# ===========================================================================
# Row helpers
# ===========================================================================

class TestGameStateHelpers(unittest.TestCase):

    def setUp(self):
        self.db = _make_session()

    def tearDown(self):
        self.db.close()

    def test_get_missing_returns_none(self):
        self.assertIsNone(database.get_game_state(self.db, 'nobody'))

    def test_save_inserts_then_updates(self):
        _, created = database.save_game_state(self.db, 'alice', _document())
        self.assertTrue(created)
        _, created = database.save_game_state(self.db, 'alice', _document(day='Day 2'))
        self.assertFalse(created)
        self.assertEqual(self.db.query(database.GameState).count(), 1)
        self.assertEqual(database.get_game_state(self.db, 'alice').day, 'Day 2')

    def test_save_replaces_every_field(self):
        database.save_game_state(self.db, 'alice', _document(
            tasks=[{'name': 'old'}], world={'weather': 'rain'}))
        database.save_game_state(self.db, 'alice', _document())
        row = database.get_game_state(self.db, 'alice')
        self.assertEqual(row.tasks, [])
        self.assertEqual(row.world, {})

    def test_save_sets_updated_at(self):
        row, _ = database.save_game_state(self.db, 'alice', _document())
        self.assertIsNotNone(row.updated_at)
        self.assertIsNotNone(row.created_at)

    def test_save_does_not_alias_caller_data(self):
        doc = _document()
        database.save_game_state(self.db, 'alice', doc)
        doc['stats']['rupees'] = 999
        self.db.expire_all()
        self.assertEqual(database.get_game_state(self.db, 'alice').stats['rupees'], 0)

    def test_to_dict_has_document_fields(self):
        row, _ = database.save_game_state(self.db, 'alice', _document(day='Day 1'))
        self.assertEqual(set(row.to_dict()), set(database.DOCUMENT_FIELDS))
        self.assertEqual(row.to_dict()['day'], 'Day 1')

    def test_users_are_isolated(self):
        database.save_game_state(self.db, 'alice', _document(day='A'))
        database.save_game_state(self.db, 'bob', _document(day='B'))
        self.assertEqual(database.get_game_state(self.db, 'alice').day, 'A')
        self.assertEqual(database.get_game_state(self.db, 'bob').day, 'B')

    def test_update_field_missing_user_returns_none(self):
        self.assertIsNone(database.update_game_state_field(self.db, 'nobody', 'stats', {}))

    def test_update_field_touches_only_that_column(self):
        database.save_game_state(self.db, 'alice', _document(day='Day 1', tasks=[{'n': 1}]))
        before = database.get_game_state(self.db, 'alice').updated_at
        database.update_game_state_field(self.db, 'alice', 'custom', [{'id': 'a'}])
        self.db.expire_all()
        row = database.get_game_state(self.db, 'alice')
        self.assertEqual(row.custom, [{'id': 'a'}])
        self.assertEqual(row.day, 'Day 1')
        self.assertEqual(row.tasks, [{'n': 1}])
        self.assertGreaterEqual(row.updated_at, before)

    def test_update_field_rejects_non_json_column(self):
        with self.assertRaises(ValueError):
            database.update_game_state_field(self.db, 'alice', 'user_id', 'x')

    def test_list_game_states_sorted(self):
        database.save_game_state(self.db, 'zed', _document())
        database.save_game_state(self.db, 'amy', _document())
        self.assertEqual([s.user_id for s in database.list_game_states(self.db)],
                         ['amy', 'zed'])


class TestEnsureDefaultState(unittest.TestCase):

    def setUp(self):
        self.db = _make_session()

    def tearDown(self):
        self.db.close()

    def test_creates_default_user(self):
        self.assertTrue(database.ensure_default_state(self.db))
        row = database.get_game_state(self.db, 'default')
        self.assertEqual(row.stats['hearts'], 3)
        self.assertEqual(row.stats['maxHearts'], 5)

    def test_is_idempotent(self):
        database.ensure_default_state(self.db)
        self.assertFalse(database.ensure_default_state(self.db))
        self.assertEqual(self.db.query(database.GameState).count(), 1)

    def test_leaves_existing_document_alone(self):
        database.save_game_state(self.db, 'default', _document(day='Day 9'))
        database.ensure_default_state(self.db)
        self.assertEqual(database.get_game_state(self.db, 'default').day, 'Day 9')


class TestStorageFailures(unittest.TestCase):
    """SQLAlchemy errors are rolled back and re-raised as StorageFailure."""

    def _broken_session(self):
        db = MagicMock()
        db.query.side_effect = OperationalError('SELECT', {}, Exception('down'))
        return db

    def test_get_raises_storage_failure(self):
        db = self._broken_session()
        with self.assertRaises(StorageFailure):
            database.get_game_state(db, 'alice')
        db.rollback.assert_called_once()

    def test_save_raises_storage_failure(self):
        db = self._broken_session()
        with self.assertRaises(StorageFailure) as ctx:
            database.save_game_state(db, 'alice', _document())
        self.assertEqual(ctx.exception.message, 'Failed to save state')
        db.rollback.assert_called_once()

    def test_update_raises_storage_failure(self):
        db = self._broken_session()
        with self.assertRaises(StorageFailure):
            database.update_game_state_field(db, 'alice', 'stats', {})
        db.rollback.assert_called_once()


class TestInitDatabaseScript(unittest.TestCase):

    def setUp(self):
        self.tmp = tempfile.mkdtemp()
        self.url = 'sqlite:///' + os.path.join(self.tmp, 'rpg.db')

    def tearDown(self):
        shutil.rmtree(self.tmp, ignore_errors=True)

    def test_creates_table_and_seeds(self):
        self.assertEqual(init_database.main(['--database-url', self.url, '--user-id', 'link']), 0)
        engine = database.create_db_engine(self.url)
        db = database.create_session_factory(engine)()
        try:
            self.assertIsNotNone(database.get_game_state(db, 'link'))
        finally:
            db.close()
            engine.dispose()

    def test_safe_to_repeat(self):
        init_database.main(['--database-url', self.url])
        self.assertEqual(init_database.main(['--database-url', self.url]), 0)

    def test_unreachable_database_returns_error(self):
        code = init_database.main(['--database-url', 'sqlite:////nonexistent-dir/sub/x.db'])
        self.assertEqual(code, 1)


if __name__ == '__main__':
    unittest.main()
