"""Storage interface and the JSON persistence helper used by the memory backend."""
import json
import logging
import os
import tempfile
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

from ..errors import StorageError


Record = Dict[str, Any]


@runtime_checkable
class Storage(Protocol):
    """Capability interface implemented by every storage backend.

    Records are plain dicts with snake_case keys; ids are UUID strings.

    Rules shared by all implementations
    -----------------------------------
    * Reads of absent entities return ``None`` (or an empty list / ``False``);
      they never raise.
    * ``update_*`` returns the updated record, or ``None`` when it is absent.
    * ``delete_*`` returns ``True`` if something was deleted.
    * A failed backend write raises :class:`~app.errors.StorageError` and
      leaves the store as it was before the call.
    * ``create_user`` raises :class:`~app.errors.ValidationError` when the
      username is taken.
    * Name-ordered lists sort case-insensitively.
    * Returned records are copies; mutating them does not touch the store.
    """

    # Users
    def get_user(self, user_id: str) -> Optional[Record]: ...
    def get_user_by_username(self, username: str) -> Optional[Record]: ...
    def create_user(self, username: str, password_hash: str,
                    crave_coins: int = 0, is_admin: bool = False) -> Record: ...
    def update_user_coins(self, user_id: str, coins: int) -> bool: ...
    def update_user_avatar(self, user_id: str, avatar_id: Optional[str]) -> bool: ...
    def set_user_admin(self, user_id: str, is_admin: bool) -> bool: ...
    def count_users(self) -> int: ...

    # Categories
    def list_categories(self) -> List[Record]: ...
    def get_category(self, category_id: str) -> Optional[Record]: ...
    def get_category_by_name(self, name: str) -> Optional[Record]: ...
    def create_category(self, fields: Record) -> Record: ...
    def update_category(self, category_id: str, fields: Record) -> Optional[Record]: ...
    def delete_category(self, category_id: str) -> bool: ...

    # Games
    def list_games(self) -> List[Record]: ...
    def get_game(self, game_id: str) -> Optional[Record]: ...
    def list_games_by_category(self, category_id: str) -> List[Record]: ...
    def list_trending_games(self) -> List[Record]: ...
    def increment_play_count(self, game_id: str) -> bool: ...
    def update_game_rating(self, game_id: str, average: float, count: int) -> bool: ...
    def create_game(self, fields: Record) -> Record: ...
    def update_game(self, game_id: str, fields: Record) -> Optional[Record]: ...
    def delete_game(self, game_id: str) -> bool: ...

    # Favorites
    def list_favorites_by_user(self, user_id: str) -> List[Record]: ...
    def get_favorite(self, user_id: str, game_id: str) -> Optional[Record]: ...
    def add_favorite(self, user_id: str, game_id: str) -> Record: ...
    def remove_favorite(self, user_id: str, game_id: str) -> bool: ...

    # Ratings
    def list_ratings_by_game(self, game_id: str) -> List[Record]: ...
    def get_rating(self, user_id: str, game_id: str) -> Optional[Record]: ...
    def upsert_rating(self, user_id: str, game_id: str, rating: int) -> Record: ...

    # Comments
    def list_comments_by_game(self, game_id: str) -> List[Record]: ...
    def add_comment(self, user_id: str, game_id: str, content: str,
                    created_at: Optional[str] = None) -> Record: ...

    # Store
    def list_store_items(self) -> List[Record]: ...
    def get_store_item(self, item_id: str) -> Optional[Record]: ...
    def create_store_item(self, fields: Record) -> Record: ...
    def update_store_item(self, item_id: str, fields: Record) -> Optional[Record]: ...
    def delete_store_item(self, item_id: str) -> bool: ...

    # Inventory
    def list_inventory_by_user(self, user_id: str) -> List[Record]: ...
    def get_inventory_item(self, user_id: str, item_id: str) -> Optional[Record]: ...
    def add_to_inventory(self, user_id: str, item_id: str) -> Record: ...
    def purchase_item(self, user_id: str, item_id: str, price: int) -> Optional[int]: ...


# Writable columns per entity; anything else in a ``fields`` dict is ignored.
CATEGORY_FIELDS = ('name', 'icon')
GAME_FIELDS = (
    'name', 'description', 'instructions', 'category_id', 'thumbnail_url',
    'iframe_url', 'html_content', 'type', 'badge', 'is_trending',
)
STORE_ITEM_FIELDS = ('name', 'image_url', 'price', 'item_type')

CATEGORY_DEFAULTS: Record = {'icon': 'gamepad-2'}
GAME_DEFAULTS: Record = {
    'description': None,
    'instructions': None,
    'iframe_url': None,
    'html_content': None,
    'type': 'iframe',
    'badge': None,
    'is_trending': False,
}
STORE_ITEM_DEFAULTS: Record = {'item_type': 'avatar'}


def pick_fields(fields: Record, allowed) -> Record:
    """Return only the keys of *fields* that are in *allowed*."""
    return {k: v for k, v in fields.items() if k in allowed}


class JsonFileStore:
    """Atomic JSON persistence for a single data file.

    The atomic write uses a write-then-rename strategy so the file is never
    left in a partially-written state.
    """

    def __init__(self, file_path: str) -> None:
        self._path = file_path
        self._log = logging.getLogger(f'cravegames.storage.{type(self).__name__}')

    @property
    def path(self) -> str:
        return self._path

    def load(self, default: Any) -> Any:
        """Load JSON from the file, returning *default* on missing/corrupt file."""
        if os.path.exists(self._path):
            try:
                with open(self._path, 'r') as fh:
                    return json.load(fh)
            except (json.JSONDecodeError, IOError) as exc:
                self._log.warning("Could not load %s: %s", self._path, exc)
        return default

    def save(self, data: Any) -> None:
        """Atomically write *data* as JSON to the file."""
        dir_name = os.path.dirname(os.path.abspath(self._path))
        try:
            fd, tmp_path = tempfile.mkstemp(dir=dir_name, suffix='.tmp')
        except OSError as exc:
            raise StorageError(f'Could not write {self._path}: {exc}') from exc
        try:
            with os.fdopen(fd, 'w') as fh:
                json.dump(data, fh, indent=2)
            os.replace(tmp_path, self._path)
        except (OSError, TypeError, ValueError) as exc:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise StorageError(f'Could not write {self._path}: {exc}') from exc
