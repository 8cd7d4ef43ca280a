"""In-process storage backend used for development, demos and tests."""
import copy
import datetime
import logging
import threading
import uuid
from contextlib import contextmanager
from typing import Dict, List, Optional

from ..errors import ValidationError
from .base import (
    CATEGORY_DEFAULTS, CATEGORY_FIELDS, GAME_DEFAULTS, GAME_FIELDS,
    STORE_ITEM_DEFAULTS, STORE_ITEM_FIELDS, JsonFileStore, Record, pick_fields,
)

TABLES = (
    'users', 'categories', 'games', 'favorites', 'ratings', 'comments',
    'store_items', 'inventory',
)


def _now_iso() -> str:
    return datetime.datetime.now(datetime.timezone.utc).isoformat()


def _by_name(record: Record):
    return record['name'].lower(), record['name']


class MemoryStorage:
    """Map-based implementation of :class:`~app.repositories.base.Storage`.

    Each entity lives in its own ``{id: record}`` dict.  All access goes
    through one re-entrant lock, which is also what makes
    :meth:`purchase_item` a single atomic debit+grant.

    When *file_path* is given the whole store is loaded from that JSON file on
    start and written back (atomically) after every mutation.  A mutation
    whose write fails is undone in memory before the error propagates.

    Schema::

        {
            "users":       {"<id>": {...}},
            "categories":  {"<id>": {...}},
            ...
        }
    """

    def __init__(self, file_path: Optional[str] = None) -> None:
        self._lock = threading.RLock()
        self._log = logging.getLogger('cravegames.storage.MemoryStorage')
        self._file = JsonFileStore(file_path) if file_path else None
        raw = self._file.load({}) if self._file else {}
        self._tables: Dict[str, Dict[str, Record]] = {
            name: dict(raw.get(name, {})) for name in TABLES
        }

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @contextmanager
    def _mutating(self, *tables: str):
        """Hold the lock for a change to *tables* and save it afterwards.

        If saving fails, *tables* are restored to their previous contents.
        """
        with self._lock:
            snapshot = {t: copy.deepcopy(self._tables[t]) for t in tables} if self._file else {}
            yield
            if self._file:
                try:
                    self._file.save(self._tables)
                except Exception:
                    self._tables.update(snapshot)
                    self._log.warning('Rolled back unsaved change to %s', ', '.join(tables))
                    raise

    @staticmethod
    def _copy(record: Optional[Record]) -> Optional[Record]:
        return copy.deepcopy(record) if record is not None else None

    def _all(self, table: str) -> List[Record]:
        with self._lock:
            return [copy.deepcopy(r) for r in self._tables[table].values()]

    def _find(self, table: str, **match) -> Optional[Record]:
        for record in self._tables[table].values():
            if all(record.get(k) == v for k, v in match.items()):
                return record
        return None

    def _insert(self, table: str, record: Record) -> Record:
        with self._mutating(table):
            record['id'] = str(uuid.uuid4())
            self._tables[table][record['id']] = record
        return copy.deepcopy(record)

    def _update(self, table: str, record_id: str, fields: Record) -> Optional[Record]:
        with self._lock:
            if record_id not in self._tables[table]:
                return None
            with self._mutating(table):
                existing = self._tables[table][record_id]
                existing.update(fields)
            return copy.deepcopy(self._tables[table][record_id])

    def _delete_where(self, table: str, **match) -> int:
        doomed = [
            rid for rid, r in self._tables[table].items()
            if all(r.get(k) == v for k, v in match.items())
        ]
        for rid in doomed:
            del self._tables[table][rid]
        return len(doomed)

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def get_user(self, user_id: str) -> Optional[Record]:
        with self._lock:
            return self._copy(self._tables['users'].get(user_id))

    def get_user_by_username(self, username: str) -> Optional[Record]:
        with self._lock:
            return self._copy(self._find('users', username=username))

    def create_user(self, username: str, password_hash: str,
                    crave_coins: int = 0, is_admin: bool = False) -> Record:
        with self._lock:
            if self._find('users', username=username):
                raise ValidationError('Username already exists')
            return self._insert('users', {
                'username': username,
                'password_hash': password_hash,
                'crave_coins': int(crave_coins),
                'active_avatar_id': None,
                'is_admin': bool(is_admin),
            })

    def update_user_coins(self, user_id: str, coins: int) -> bool:
        return self._update('users', user_id, {'crave_coins': int(coins)}) is not None

    def update_user_avatar(self, user_id: str, avatar_id: Optional[str]) -> bool:
        return self._update('users', user_id, {'active_avatar_id': avatar_id}) is not None

    def set_user_admin(self, user_id: str, is_admin: bool) -> bool:
        return self._update('users', user_id, {'is_admin': bool(is_admin)}) is not None

    def count_users(self) -> int:
        with self._lock:
            return len(self._tables['users'])

    # ------------------------------------------------------------------
    # Categories
    # ------------------------------------------------------------------

    def list_categories(self) -> List[Record]:
        return sorted(self._all('categories'), key=_by_name)

    def get_category(self, category_id: str) -> Optional[Record]:
        with self._lock:
            return self._copy(self._tables['categories'].get(category_id))

    def get_category_by_name(self, name: str) -> Optional[Record]:
        wanted = name.lower()
        with self._lock:
            for cat in self._tables['categories'].values():
                if cat['name'].lower() == wanted:
                    return self._copy(cat)
        return None

    def create_category(self, fields: Record) -> Record:
        record = dict(CATEGORY_DEFAULTS)
        record.update(pick_fields(fields, CATEGORY_FIELDS))
        return self._insert('categories', record)

    def update_category(self, category_id: str, fields: Record) -> Optional[Record]:
        return self._update('categories', category_id, pick_fields(fields, CATEGORY_FIELDS))

    def delete_category(self, category_id: str) -> bool:
        with self._lock:
            if category_id not in self._tables['categories']:
                return False
            with self._mutating('categories'):
                self._delete_where('categories', id=category_id)
            return True

    # ------------------------------------------------------------------
    # Games
    # ------------------------------------------------------------------

    def list_games(self) -> List[Record]:
        return sorted(self._all('games'), key=_by_name)

    def get_game(self, game_id: str) -> Optional[Record]:
        with self._lock:
            return self._copy(self._tables['games'].get(game_id))

    def list_games_by_category(self, category_id: str) -> List[Record]:
        return [g for g in self.list_games() if g['category_id'] == category_id]

    def list_trending_games(self) -> List[Record]:
        return [g for g in self.list_games() if g['is_trending']]

    def increment_play_count(self, game_id: str) -> bool:
        with self._lock:
            if game_id not in self._tables['games']:
                return False
            with self._mutating('games'):
                self._tables['games'][game_id]['play_count'] += 1
            return True

    def update_game_rating(self, game_id: str, average: float, count: int) -> bool:
        return self._update('games', game_id, {
            'average_rating': float(average),
            'rating_count': int(count),
        }) is not None

    def create_game(self, fields: Record) -> Record:
        record = dict(GAME_DEFAULTS)
        record.update(pick_fields(fields, GAME_FIELDS))
        record.update({'play_count': 0, 'average_rating': 0.0, 'rating_count': 0})
        return self._insert('games', record)

    def update_game(self, game_id: str, fields: Record) -> Optional[Record]:
        return self._update('games', game_id, pick_fields(fields, GAME_FIELDS))

    def delete_game(self, game_id: str) -> bool:
        with self._lock:
            if game_id not in self._tables['games']:
                return False
            with self._mutating('games', 'favorites', 'ratings', 'comments'):
                self._delete_where('games', id=game_id)
                for table in ('favorites', 'ratings', 'comments'):
                    self._delete_where(table, game_id=game_id)
            return True

    # ------------------------------------------------------------------
    # Favorites
    # ------------------------------------------------------------------

    def list_favorites_by_user(self, user_id: str) -> List[Record]:
        return [f for f in self._all('favorites') if f['user_id'] == user_id]

    def get_favorite(self, user_id: str, game_id: str) -> Optional[Record]:
        with self._lock:
            return self._copy(self._find('favorites', user_id=user_id, game_id=game_id))

    def add_favorite(self, user_id: str, game_id: str) -> Record:
        with self._lock:
            existing = self._find('favorites', user_id=user_id, game_id=game_id)
            if existing:
                return self._copy(existing)
            return self._insert('favorites', {'user_id': user_id, 'game_id': game_id})

    def remove_favorite(self, user_id: str, game_id: str) -> bool:
        with self._lock:
            if not self._find('favorites', user_id=user_id, game_id=game_id):
                return False
            with self._mutating('favorites'):
                self._delete_where('favorites', user_id=user_id, game_id=game_id)
            return True

    # ------------------------------------------------------------------
    # Ratings
    # ------------------------------------------------------------------

    def list_ratings_by_game(self, game_id: str) -> List[Record]:
        return [r for r in self._all('ratings') if r['game_id'] == game_id]

    def get_rating(self, user_id: str, game_id: str) -> Optional[Record]:
        with self._lock:
            return self._copy(self._find('ratings', user_id=user_id, game_id=game_id))

    def upsert_rating(self, user_id: str, game_id: str, rating: int) -> Record:
        with self._lock:
            existing = self._find('ratings', user_id=user_id, game_id=game_id)
            if existing is None:
                return self._insert('ratings', {
                    'user_id': user_id, 'game_id': game_id, 'rating': int(rating),
                })
            return self._update('ratings', existing['id'], {'rating': int(rating)})

    # ------------------------------------------------------------------
    # Comments
    # ------------------------------------------------------------------

    def list_comments_by_game(self, game_id: str) -> List[Record]:
        with self._lock:
            # dicts keep insertion order, so index breaks created_at ties
            found = [
                (c['created_at'], i, copy.deepcopy(c))
                for i, c in enumerate(self._tables['comments'].values())
                if c['game_id'] == game_id
            ]
            found.sort(key=lambda t: (t[0], t[1]), reverse=True)
            comments = []
            for _, _, comment in found:
                user = self._tables['users'].get(comment['user_id'])
                comment['username'] = user['username'] if user else 'Unknown'
                comments.append(comment)
            return comments

    def add_comment(self, user_id: str, game_id: str, content: str,
                    created_at: Optional[str] = None) -> Record:
        return self._insert('comments', {
            'user_id': user_id,
            'game_id': game_id,
            'content': content,
            'created_at': created_at or _now_iso(),
        })

    # ------------------------------------------------------------------
    # Store
    # ------------------------------------------------------------------

    def list_store_items(self) -> List[Record]:
        return sorted(self._all('store_items'), key=lambda i: (i['price'],) + _by_name(i))

    def get_store_item(self, item_id: str) -> Optional[Record]:
        with self._lock:
            return self._copy(self._tables['store_items'].get(item_id))

    def create_store_item(self, fields: Record) -> Record:
        record = dict(STORE_ITEM_DEFAULTS)
        record.update(pick_fields(fields, STORE_ITEM_FIELDS))
        return self._insert('store_items', record)

    def update_store_item(self, item_id: str, fields: Record) -> Optional[Record]:
        return self._update('store_items', item_id, pick_fields(fields, STORE_ITEM_FIELDS))

    def delete_store_item(self, item_id: str) -> bool:
        with self._lock:
            if item_id not in self._tables['store_items']:
                return False
            with self._mutating('store_items', 'inventory', 'users'):
                self._delete_where('store_items', id=item_id)
                self._delete_where('inventory', item_id=item_id)
                for user in self._tables['users'].values():
                    if user['active_avatar_id'] == item_id:
                        user['active_avatar_id'] = None
            return True

    # ------------------------------------------------------------------
    # Inventory
    # ------------------------------------------------------------------

    def list_inventory_by_user(self, user_id: str) -> List[Record]:
        return [i for i in self._all('inventory') if i['user_id'] == user_id]

    def get_inventory_item(self, user_id: str, item_id: str) -> Optional[Record]:
        with self._lock:
            return self._copy(self._find('inventory', user_id=user_id, item_id=item_id))

    def add_to_inventory(self, user_id: str, item_id: str) -> Record:
        with self._lock:
            existing = self._find('inventory', user_id=user_id, item_id=item_id)
            if existing:
                return self._copy(existing)
            return self._insert('inventory', {'user_id': user_id, 'item_id': item_id})

    def purchase_item(self, user_id: str, item_id: str, price: int) -> Optional[int]:
        """Debit *price* and grant *item_id* in one step.

        Returns the new balance, or ``None`` if the user is missing, already
        owns the item, or cannot afford it.
        """
        with self._lock:
            user = self._tables['users'].get(user_id)
            if user is None or user['crave_coins'] < price:
                return None
            if self._find('inventory', user_id=user_id, item_id=item_id):
                return None
            with self._mutating('users', 'inventory'):
                user = self._tables['users'][user_id]
                user['crave_coins'] -= int(price)
                record = {'id': str(uuid.uuid4()), 'user_id': user_id, 'item_id': item_id}
                self._tables['inventory'][record['id']] = record
            return self._tables['users'][user_id]['crave_coins']
