#!/usr/bin/env python3
"""
Tests for configuration loading and backend construction in cravegames.py.

Run with:
    python -m pytest tests/test_config.py
"""
import json
import os
import shutil
import sys
import tempfile
import unittest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import cravegames
from app.repositories import MemoryStorage, SQLStorage
from app.serializers import camel_to_snake, from_wire, snake_to_camel, to_wire


class TestLoadConfig(unittest.TestCase):

    def setUp(self):
        self.tmp = tempfile.mkdtemp()

    def tearDown(self):
        shutil.rmtree(self.tmp, ignore_errors=True)

    def test_defaults(self):
        config = cravegames.load_config(environ={})
        self.assertEqual(config['starting_coins'], 100)
        self.assertEqual(config['coin_click_cooldown'], 0.0)
        self.assertTrue(config['seed_data'])
        self.assertIsNone(config['database_url'])
        self.assertIsNone(config['admin_password'])
        self.assertEqual(len(config['session_secret']), 64)

    def test_environment_overrides(self):
        config = cravegames.load_config(environ={
            'SESSION_SECRET': 's3cret',
            'ADMIN_PASSWORD': 'letmein',
            'STARTING_COINS': '250',
            'COIN_CLICK_COOLDOWN': '0.5',
            'SEED_DATA': 'no',
            'CRAVEGAMES_ENV': 'production',
        })
        self.assertEqual(config['session_secret'], 's3cret')
        self.assertEqual(config['admin_password'], 'letmein')
        self.assertEqual(config['starting_coins'], 250)
        self.assertEqual(config['coin_click_cooldown'], 0.5)
        self.assertFalse(config['seed_data'])
        self.assertEqual(config['env'], 'production')

    def test_config_file_then_environment(self):
        path = os.path.join(self.tmp, 'config.json')
        with open(path, 'w') as f:
            json.dump({'starting_coins': 10, 'upload_dir': '/srv/uploads'}, f)
        config = cravegames.load_config(path, environ={'STARTING_COINS': '20'})
        self.assertEqual(config['starting_coins'], 20)
        self.assertEqual(config['upload_dir'], '/srv/uploads')

    def test_bad_config_file(self):
        path = os.path.join(self.tmp, 'config.json')
        with open(path, 'w') as f:
            f.write('{oops')
        with self.assertRaises(ValueError):
            cravegames.load_config(path, environ={})
        with self.assertRaises(ValueError):
            cravegames.load_config(os.path.join(self.tmp, 'missing.json'), environ={})

    def test_bad_numeric_value(self):
        with self.assertRaises(ValueError):
            cravegames.load_config(environ={'STARTING_COINS': 'lots'})


class TestBuildStorage(unittest.TestCase):

    def test_memory_backend_by_default(self):
        config = cravegames.load_config(environ={'SEED_DATA': 'false'})
        storage = cravegames.build_storage(config)
        self.assertIsInstance(storage, MemoryStorage)
        self.assertEqual(storage.list_categories(), [])

    def test_sql_backend_from_database_url(self):
        config = cravegames.load_config(environ={'DATABASE_URL': 'sqlite://'})
        storage = cravegames.build_storage(config)
        self.assertIsInstance(storage, SQLStorage)
        self.assertEqual(len(storage.list_categories()), 5)
        self.assertEqual(len(storage.list_store_items()), 6)


class TestSerializers(unittest.TestCase):

    def test_key_conversion(self):
        self.assertEqual(snake_to_camel('crave_coins'), 'craveCoins')
        self.assertEqual(snake_to_camel('id'), 'id')
        self.assertEqual(camel_to_snake('activeAvatarId'), 'active_avatar_id')

    def test_to_wire_is_recursive(self):
        payload = {'games_by_category': [{'category': {'icon_name': 'x'}, 'games': []}]}
        self.assertEqual(to_wire(payload),
                         {'gamesByCategory': [{'category': {'iconName': 'x'}, 'games': []}]})

    def test_from_wire(self):
        self.assertEqual(from_wire({'thumbnailUrl': 'u', 'isTrending': True}),
                         {'thumbnail_url': 'u', 'is_trending': True})
        self.assertEqual(from_wire(['not', 'a', 'dict']), {})


if __name__ == '__main__':
    unittest.main()
