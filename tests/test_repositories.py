#!/usr/bin/env python3
"""
Tests for the storage backends in app/repositories.

The same contract suite runs against MemoryStorage and SQLStorage (in-memory
SQLite) so both backends are held to identical behaviour.

Run with:
    python -m pytest tests/test_repositories.py
"""
import json
import os
import shutil
import sys
import tempfile
import unittest
from unittest.mock import MagicMock

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import database
from app.errors import StorageError, ValidationError
from app.repositories import (
    JsonFileStore, MemoryStorage, SQLStorage, Storage, seed_storage,
)
from app.repositories.seed import SEED_CATEGORIES, SEED_GAMES, SEED_STORE_ITEMS


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _make_sql_storage() -> SQLStorage:
    engine = database.make_engine('sqlite://')
    database.init_db(engine)
    return SQLStorage(database.make_session_factory(engine))


class StorageContract:
    """Behaviour every Storage implementation must share.

    Subclasses set ``make_storage``.
    """

    make_storage = None

    def setUp(self):
        self.store = type(self).make_storage()
        self.cat = self.store.create_category({'name': 'Puzzle', 'icon': 'puzzle'})
        self.user = self.store.create_user('alice', 'hash', crave_coins=100)

    def _game(self, name='Block Drop', **extra):
        fields = {
            'name': name,
            'category_id': self.cat['id'],
            'thumbnail_url': 'https://example.com/t.png',
            'iframe_url': 'https://example.com/play',
        }
        fields.update(extra)
        return self.store.create_game(fields)

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def test_satisfies_protocol(self):
        self.assertIsInstance(self.store, Storage)

    def test_create_and_get_user(self):
        fetched = self.store.get_user(self.user['id'])
        self.assertEqual(fetched['username'], 'alice')
        self.assertEqual(fetched['password_hash'], 'hash')
        self.assertEqual(fetched['crave_coins'], 100)
        self.assertIsNone(fetched['active_avatar_id'])
        self.assertFalse(fetched['is_admin'])

    def test_get_user_by_username(self):
        self.assertEqual(self.store.get_user_by_username('alice')['id'], self.user['id'])
        self.assertIsNone(self.store.get_user_by_username('nobody'))

    def test_get_missing_user_returns_none(self):
        self.assertIsNone(self.store.get_user('no-such-id'))

    def test_update_user_coins(self):
        self.assertTrue(self.store.update_user_coins(self.user['id'], 42))
        self.assertEqual(self.store.get_user(self.user['id'])['crave_coins'], 42)
        self.assertFalse(self.store.update_user_coins('no-such-id', 1))

    def test_set_user_admin(self):
        self.store.set_user_admin(self.user['id'], True)
        self.assertTrue(self.store.get_user(self.user['id'])['is_admin'])

    def test_count_users(self):
        self.store.create_user('bob', 'hash')
        self.assertEqual(self.store.count_users(), 2)

    def test_duplicate_username_rejected(self):
        with self.assertRaises(ValidationError) as ctx:
            self.store.create_user('alice', 'other-hash')
        self.assertEqual(ctx.exception.message, 'Username already exists')
        self.assertEqual(self.store.count_users(), 1)
        self.assertEqual(self.store.get_user_by_username('alice')['password_hash'], 'hash')

    # ------------------------------------------------------------------
    # Categories
    # ------------------------------------------------------------------

    def test_categories_sorted_by_name(self):
        self.store.create_category({'name': 'Action'})
        names = [c['name'] for c in self.store.list_categories()]
        self.assertEqual(names, ['Action', 'Puzzle'])

    def test_name_order_ignores_case(self):
        self.store.create_category({'name': 'arcade'})
        self.store.create_category({'name': 'Racing'})
        names = [c['name'] for c in self.store.list_categories()]
        self.assertEqual(names, ['arcade', 'Puzzle', 'Racing'])
        self._game('zombie Run')
        self._game('Apple Catch')
        self._game('bubble Pop')
        names = [g['name'] for g in self.store.list_games()]
        self.assertEqual(names, ['Apple Catch', 'bubble Pop', 'zombie Run'])

    def test_category_default_icon(self):
        cat = self.store.create_category({'name': 'Racing'})
        self.assertEqual(cat['icon'], 'gamepad-2')

    def test_category_lookup_by_name_ignores_case(self):
        self.assertEqual(self.store.get_category_by_name('puzzle')['id'], self.cat['id'])
        self.assertIsNone(self.store.get_category_by_name('Sports'))

    def test_update_and_delete_category(self):
        updated = self.store.update_category(self.cat['id'], {'icon': 'brain'})
        self.assertEqual(updated['icon'], 'brain')
        self.assertEqual(updated['name'], 'Puzzle')
        self.assertTrue(self.store.delete_category(self.cat['id']))
        self.assertIsNone(self.store.get_category(self.cat['id']))
        self.assertFalse(self.store.delete_category(self.cat['id']))

    def test_update_missing_category_returns_none(self):
        self.assertIsNone(self.store.update_category('no-such-id', {'icon': 'x'}))

    # ------------------------------------------------------------------
    # Games
    # ------------------------------------------------------------------

    def test_create_game_defaults(self):
        game = self._game()
        self.assertEqual(game['play_count'], 0)
        self.assertEqual(game['average_rating'], 0.0)
        self.assertEqual(game['rating_count'], 0)
        self.assertEqual(game['type'], 'iframe')
        self.assertFalse(game['is_trending'])
        self.assertIsNone(game['badge'])
        self.assertIsNone(game['html_content'])

    def test_create_game_ignores_unknown_and_counter_fields(self):
        game = self._game(play_count=999, average_rating=5.0, bogus='x')
        self.assertEqual(game['play_count'], 0)
        self.assertEqual(game['average_rating'], 0.0)
        self.assertNotIn('bogus', game)

    def test_games_sorted_by_name(self):
        self._game('Zeta')
        self._game('Alpha')
        self.assertEqual([g['name'] for g in self.store.list_games()], ['Alpha', 'Zeta'])

    def test_list_games_by_category(self):
        other = self.store.create_category({'name': 'Action'})
        self._game('A')
        self._game('B', category_id=other['id'])
        games = self.store.list_games_by_category(self.cat['id'])
        self.assertEqual([g['name'] for g in games], ['A'])

    def test_list_trending_games(self):
        self._game('Hot One', is_trending=True)
        self._game('Quiet One')
        self.assertEqual([g['name'] for g in self.store.list_trending_games()], ['Hot One'])

    def test_increment_play_count(self):
        game = self._game()
        self.assertTrue(self.store.increment_play_count(game['id']))
        self.assertTrue(self.store.increment_play_count(game['id']))
        self.assertEqual(self.store.get_game(game['id'])['play_count'], 2)
        self.assertFalse(self.store.increment_play_count('no-such-id'))

    def test_update_game_rating(self):
        game = self._game()
        self.store.update_game_rating(game['id'], 4.5, 2)
        fetched = self.store.get_game(game['id'])
        self.assertEqual(fetched['average_rating'], 4.5)
        self.assertEqual(fetched['rating_count'], 2)

    def test_update_game_partial(self):
        game = self._game()
        updated = self.store.update_game(game['id'], {'badge': 'hot', 'play_count': 50})
        self.assertEqual(updated['badge'], 'hot')
        self.assertEqual(updated['play_count'], 0)
        self.assertEqual(updated['name'], 'Block Drop')
        self.assertIsNone(self.store.update_game('no-such-id', {'name': 'x'}))

    def test_delete_game_cascades(self):
        game = self._game()
        uid = self.user['id']
        self.store.add_favorite(uid, game['id'])
        self.store.upsert_rating(uid, game['id'], 4)
        self.store.add_comment(uid, game['id'], 'fun')
        self.assertTrue(self.store.delete_game(game['id']))
        self.assertIsNone(self.store.get_game(game['id']))
        self.assertEqual(self.store.list_favorites_by_user(uid), [])
        self.assertEqual(self.store.list_ratings_by_game(game['id']), [])
        self.assertEqual(self.store.list_comments_by_game(game['id']), [])
        self.assertFalse(self.store.delete_game(game['id']))

    # ------------------------------------------------------------------
    # Favorites
    # ------------------------------------------------------------------

    def test_add_favorite_is_idempotent(self):
        game = self._game()
        self.store.add_favorite(self.user['id'], game['id'])
        self.store.add_favorite(self.user['id'], game['id'])
        self.assertEqual(len(self.store.list_favorites_by_user(self.user['id'])), 1)

    def test_remove_favorite(self):
        game = self._game()
        self.store.add_favorite(self.user['id'], game['id'])
        self.assertTrue(self.store.remove_favorite(self.user['id'], game['id']))
        self.assertIsNone(self.store.get_favorite(self.user['id'], game['id']))
        self.assertFalse(self.store.remove_favorite(self.user['id'], game['id']))

    # ------------------------------------------------------------------
    # Ratings
    # ------------------------------------------------------------------

    def test_upsert_rating_replaces(self):
        game = self._game()
        self.store.upsert_rating(self.user['id'], game['id'], 2)
        self.store.upsert_rating(self.user['id'], game['id'], 5)
        ratings = self.store.list_ratings_by_game(game['id'])
        self.assertEqual(len(ratings), 1)
        self.assertEqual(ratings[0]['rating'], 5)
        self.assertEqual(self.store.get_rating(self.user['id'], game['id'])['rating'], 5)

    # ------------------------------------------------------------------
    # Comments
    # ------------------------------------------------------------------

    def test_comments_newest_first_with_username(self):
        game = self._game()
        self.store.add_comment(self.user['id'], game['id'], 'first',
                               created_at='2024-01-01T10:00:00+00:00')
        self.store.add_comment(self.user['id'], game['id'], 'second',
                               created_at='2024-01-02T10:00:00+00:00')
        comments = self.store.list_comments_by_game(game['id'])
        self.assertEqual([c['content'] for c in comments], ['second', 'first'])
        self.assertEqual(comments[0]['username'], 'alice')

    def test_comment_timestamp_ties_break_by_insertion(self):
        game = self._game()
        stamp = '2024-01-01T10:00:00+00:00'
        for text in ('one', 'two', 'three'):
            self.store.add_comment(self.user['id'], game['id'], text, created_at=stamp)
        comments = self.store.list_comments_by_game(game['id'])
        self.assertEqual([c['content'] for c in comments], ['three', 'two', 'one'])

    def test_comment_from_missing_user_shows_unknown(self):
        game = self._game()
        self.store.add_comment('ghost-id', game['id'], 'boo')
        self.assertEqual(self.store.list_comments_by_game(game['id'])[0]['username'], 'Unknown')

    # ------------------------------------------------------------------
    # Store + inventory
    # ------------------------------------------------------------------

    def _item(self, name='Cool Cat', price=50):
        return self.store.create_store_item({
            'name': name, 'image_url': 'https://example.com/a.svg', 'price': price,
        })

    def test_store_items_sorted_by_price_then_name(self):
        self._item('B', 10)
        self._item('A', 10)
        self._item('C', 5)
        names = [i['name'] for i in self.store.list_store_items()]
        self.assertEqual(names, ['C', 'A', 'B'])

    def test_store_item_default_type(self):
        self.assertEqual(self._item()['item_type'], 'avatar')

    def test_purchase_item_debits_and_grants(self):
        item = self._item(price=60)
        balance = self.store.purchase_item(self.user['id'], item['id'], 60)
        self.assertEqual(balance, 40)
        self.assertEqual(self.store.get_user(self.user['id'])['crave_coins'], 40)
        self.assertIsNotNone(self.store.get_inventory_item(self.user['id'], item['id']))

    def test_purchase_item_insufficient_funds(self):
        item = self._item(price=500)
        self.assertIsNone(self.store.purchase_item(self.user['id'], item['id'], 500))
        self.assertEqual(self.store.get_user(self.user['id'])['crave_coins'], 100)
        self.assertEqual(self.store.list_inventory_by_user(self.user['id']), [])

    def test_purchase_item_already_owned(self):
        item = self._item(price=10)
        self.store.purchase_item(self.user['id'], item['id'], 10)
        self.assertIsNone(self.store.purchase_item(self.user['id'], item['id'], 10))
        self.assertEqual(self.store.get_user(self.user['id'])['crave_coins'], 90)

    def test_purchase_exact_balance(self):
        item = self._item(price=100)
        self.assertEqual(self.store.purchase_item(self.user['id'], item['id'], 100), 0)

    def test_add_to_inventory_is_idempotent(self):
        item = self._item()
        self.store.add_to_inventory(self.user['id'], item['id'])
        self.store.add_to_inventory(self.user['id'], item['id'])
        self.assertEqual(len(self.store.list_inventory_by_user(self.user['id'])), 1)

    def test_delete_store_item_clears_inventory_and_avatar(self):
        item = self._item()
        self.store.add_to_inventory(self.user['id'], item['id'])
        self.store.update_user_avatar(self.user['id'], item['id'])
        self.assertTrue(self.store.delete_store_item(item['id']))
        self.assertEqual(self.store.list_inventory_by_user(self.user['id']), [])
        self.assertIsNone(self.store.get_user(self.user['id'])['active_avatar_id'])
        self.assertFalse(self.store.delete_store_item(item['id']))

    # ------------------------------------------------------------------
    # Seeding
    # ------------------------------------------------------------------

    def test_seed_skips_populated_store(self):
        self.assertFalse(seed_storage(self.store))


class TestMemoryStorage(StorageContract, unittest.TestCase):
    make_storage = MemoryStorage

    def test_returned_records_are_copies(self):
        user = self.store.get_user(self.user['id'])
        user['crave_coins'] = 1_000_000
        self.assertEqual(self.store.get_user(self.user['id'])['crave_coins'], 100)


class TestSQLStorage(StorageContract, unittest.TestCase):
    make_storage = staticmethod(_make_sql_storage)

    def test_user_created_at_not_exposed(self):
        self.assertNotIn('created_at', self.store.get_user(self.user['id']))
        self.assertNotIn('password', self.store.get_user(self.user['id']))

    def test_comment_seq_not_exposed(self):
        game = self._game()
        comment = self.store.add_comment(self.user['id'], game['id'], 'hi')
        self.assertNotIn('seq', comment)
        self.assertTrue(comment['created_at'].endswith('+00:00'))

    def test_constraint_violation_raises_storage_error(self):
        with self.assertRaises(StorageError):
            self.store.create_category({'name': 'Puzzle'})


# ===========================================================================
# Seeding
# ===========================================================================

class TestSeedStorage(unittest.TestCase):

    def test_seed_empty_store(self):
        store = MemoryStorage()
        self.assertTrue(seed_storage(store))
        self.assertEqual(len(store.list_categories()), len(SEED_CATEGORIES))
        self.assertEqual(len(store.list_games()), len(SEED_GAMES))
        self.assertEqual(len(store.list_store_items()), len(SEED_STORE_ITEMS))

    def test_seeded_catalog_shape(self):
        store = MemoryStorage()
        seed_storage(store)
        self.assertEqual(len(store.list_trending_games()), 5)
        for game in store.list_games():
            self.assertEqual(game['rating_count'], 0)
            self.assertIsNotNone(store.get_category(game['category_id']))
        prices = [i['price'] for i in store.list_store_items()]
        self.assertEqual(prices, [500, 750, 1000, 1500, 2500, 5000])

    def test_seed_is_idempotent(self):
        store = MemoryStorage()
        seed_storage(store)
        self.assertFalse(seed_storage(store))
        self.assertEqual(len(store.list_games()), len(SEED_GAMES))


# ===========================================================================
# JSON persistence
# ===========================================================================

class TestMemoryStoragePersistence(unittest.TestCase):

    def setUp(self):
        self.tmp = tempfile.mkdtemp()
        self.path = os.path.join(self.tmp, 'store.json')

    def tearDown(self):
        shutil.rmtree(self.tmp, ignore_errors=True)

    def test_round_trip_through_file(self):
        store = MemoryStorage(self.path)
        user = store.create_user('alice', 'hash', crave_coins=7)
        reloaded = MemoryStorage(self.path)
        self.assertEqual(reloaded.get_user(user['id'])['crave_coins'], 7)

    def test_file_is_valid_json_with_all_tables(self):
        MemoryStorage(self.path).create_category({'name': 'Action'})
        with open(self.path) as f:
            data = json.load(f)
        self.assertIn('categories', data)
        self.assertIn('inventory', data)

    def test_corrupt_file_starts_empty(self):
        with open(self.path, 'w') as f:
            f.write('{not json')
        store = MemoryStorage(self.path)
        self.assertEqual(store.list_categories(), [])

    def test_failed_purchase_write_rolls_back(self):
        store = MemoryStorage(self.path)
        user = store.create_user('alice', 'hash', crave_coins=100)
        item = store.create_store_item({'name': 'Crown', 'image_url': 'x', 'price': 30})
        store._file.save = MagicMock(side_effect=StorageError('disk full'))
        with self.assertRaises(StorageError):
            store.purchase_item(user['id'], item['id'], 30)
        self.assertEqual(store.get_user(user['id'])['crave_coins'], 100)
        self.assertIsNone(store.get_inventory_item(user['id'], item['id']))

    def test_failed_create_write_rolls_back(self):
        store = MemoryStorage(self.path)
        store._file.save = MagicMock(side_effect=StorageError('disk full'))
        with self.assertRaises(StorageError):
            store.create_user('bob', 'hash')
        self.assertIsNone(store.get_user_by_username('bob'))
        self.assertEqual(store.count_users(), 0)

        # the retry succeeds once the disk recovers
        del store._file.save
        self.assertEqual(store.create_user('bob', 'hash')['username'], 'bob')
        self.assertEqual(MemoryStorage(self.path).count_users(), 1)

    def test_failed_update_write_rolls_back(self):
        store = MemoryStorage(self.path)
        user = store.create_user('alice', 'hash', crave_coins=100)
        cat = store.create_category({'name': 'Puzzle'})
        game = store.create_game({'name': 'Block Drop', 'category_id': cat['id'],
                                  'thumbnail_url': 't', 'iframe_url': 'u'})
        store._file.save = MagicMock(side_effect=StorageError('disk full'))
        with self.assertRaises(StorageError):
            store.update_user_coins(user['id'], 5)
        with self.assertRaises(StorageError):
            store.increment_play_count(game['id'])
        with self.assertRaises(StorageError):
            store.upsert_rating(user['id'], game['id'], 4)
        self.assertEqual(store.get_user(user['id'])['crave_coins'], 100)
        self.assertEqual(store.get_game(game['id'])['play_count'], 0)
        self.assertIsNone(store.get_rating(user['id'], game['id']))

    def test_failed_delete_write_rolls_back(self):
        store = MemoryStorage(self.path)
        user = store.create_user('alice', 'hash', crave_coins=100)
        cat = store.create_category({'name': 'Puzzle'})
        game = store.create_game({'name': 'Block Drop', 'category_id': cat['id'],
                                  'thumbnail_url': 't', 'iframe_url': 'u'})
        store.add_favorite(user['id'], game['id'])
        item = store.create_store_item({'name': 'Crown', 'image_url': 'x', 'price': 30})
        store.purchase_item(user['id'], item['id'], 30)
        store.update_user_avatar(user['id'], item['id'])
        store._file.save = MagicMock(side_effect=StorageError('disk full'))

        with self.assertRaises(StorageError):
            store.delete_game(game['id'])
        self.assertIsNotNone(store.get_game(game['id']))
        self.assertIsNotNone(store.get_favorite(user['id'], game['id']))

        with self.assertRaises(StorageError):
            store.delete_store_item(item['id'])
        self.assertIsNotNone(store.get_store_item(item['id']))
        self.assertIsNotNone(store.get_inventory_item(user['id'], item['id']))
        self.assertEqual(store.get_user(user['id'])['active_avatar_id'], item['id'])

        with self.assertRaises(StorageError):
            store.remove_favorite(user['id'], game['id'])
        self.assertIsNotNone(store.get_favorite(user['id'], game['id']))


class TestJsonFileStore(unittest.TestCase):

    def setUp(self):
        self.tmp = tempfile.mkdtemp()

    def tearDown(self):
        shutil.rmtree(self.tmp, ignore_errors=True)

    def test_missing_file_returns_default(self):
        fs = JsonFileStore(os.path.join(self.tmp, 'nope.json'))
        self.assertEqual(fs.load({'a': 1}), {'a': 1})

    def test_save_leaves_no_temp_files(self):
        fs = JsonFileStore(os.path.join(self.tmp, 'data.json'))
        fs.save({'x': [1, 2]})
        self.assertEqual(os.listdir(self.tmp), ['data.json'])
        self.assertEqual(fs.load(None), {'x': [1, 2]})

    def test_unserializable_data_raises_storage_error(self):
        fs = JsonFileStore(os.path.join(self.tmp, 'data.json'))
        with self.assertRaises(StorageError):
            fs.save({'bad': object()})
        self.assertEqual(os.listdir(self.tmp), [])


if __name__ == '__main__':
    unittest.main()
