"""Business logic for the admin panel: catalog and store CRUD."""
import logging
from typing import Dict, Iterable

from ..errors import ConflictError, NotFoundError, ValidationError
from ..repositories.base import (
    CATEGORY_FIELDS, GAME_FIELDS, STORE_ITEM_FIELDS, Storage, pick_fields,
)

GAME_TYPES = ('iframe', 'flash', 'embed', 'uploaded')
BADGES = ('new', 'hot')
ITEM_TYPES = ('avatar',)

_OPTIONAL_TEXT_GAME_FIELDS = ('description', 'instructions', 'iframe_url', 'html_content')


def _require_text(fields: Dict, key: str, label: str) -> None:
    value = fields.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f'{label} is required')


def _check_required(fields: Dict, required: Iterable, partial: bool, labels: Dict) -> None:
    for key in required:
        if not partial or key in fields:
            _require_text(fields, key, labels[key])


class AdminService:
    """Validates admin edits before handing them to storage.

    Validation reports the first violated constraint.  Partial updates only
    validate the fields they carry.

    Category deletion policy: a category that still has games cannot be
    deleted (:class:`~app.errors.ConflictError`); move or delete the games
    first.
    """

    def __init__(self, storage: Storage) -> None:
        self._storage = storage
        self._log = logging.getLogger('cravegames.service.admin')

    def dashboard(self) -> Dict:
        return {
            'games': self._storage.list_games(),
            'categories': self._storage.list_categories(),
            'store_items': self._storage.list_store_items(),
        }

    # ------------------------------------------------------------------
    # Games
    # ------------------------------------------------------------------

    def _validate_game(self, fields: Dict, partial: bool = False) -> Dict:
        fields = pick_fields(fields, GAME_FIELDS)
        _check_required(fields, ('name', 'category_id', 'thumbnail_url'), partial, {
            'name': 'Name', 'category_id': 'Category', 'thumbnail_url': 'Thumbnail URL',
        })
        if 'category_id' in fields and self._storage.get_category(fields['category_id']) is None:
            raise ValidationError('Category not found')
        if 'type' in fields and fields['type'] not in GAME_TYPES:
            raise ValidationError(f"Type must be one of: {', '.join(GAME_TYPES)}")
        if fields.get('badge') == '':
            fields['badge'] = None
        if 'badge' in fields and fields['badge'] is not None and fields['badge'] not in BADGES:
            raise ValidationError(f"Badge must be one of: {', '.join(BADGES)}")
        if 'is_trending' in fields and not isinstance(fields['is_trending'], bool):
            raise ValidationError('Trending must be true or false')
        for key in _OPTIONAL_TEXT_GAME_FIELDS:
            if key in fields and fields[key] is not None and not isinstance(fields[key], str):
                raise ValidationError(f'{key} must be text')
        return fields

    def create_game(self, fields: Dict) -> Dict:
        game = self._storage.create_game(self._validate_game(fields))
        self._log.info('Created game %s (%s)', game['name'], game['id'])
        return game

    def update_game(self, game_id: str, fields: Dict) -> Dict:
        game = self._storage.update_game(game_id, self._validate_game(fields, partial=True))
        if game is None:
            raise NotFoundError('Game not found')
        self._log.info('Updated game %s', game_id)
        return game

    def delete_game(self, game_id: str) -> None:
        if not self._storage.delete_game(game_id):
            raise NotFoundError('Game not found')
        self._log.info('Deleted game %s', game_id)

    # ------------------------------------------------------------------
    # Categories
    # ------------------------------------------------------------------

    def _validate_category(self, fields: Dict, category_id: str = None,
                           partial: bool = False) -> Dict:
        fields = pick_fields(fields, CATEGORY_FIELDS)
        _check_required(fields, ('name',), partial, {'name': 'Name'})
        if 'name' in fields:
            fields['name'] = fields['name'].strip()
            clash = self._storage.get_category_by_name(fields['name'])
            if clash is not None and clash['id'] != category_id:
                raise ValidationError('Category already exists')
        if 'icon' in fields and (not isinstance(fields['icon'], str) or not fields['icon']):
            raise ValidationError('Icon must be text')
        return fields

    def create_category(self, fields: Dict) -> Dict:
        category = self._storage.create_category(self._validate_category(fields))
        self._log.info('Created category %s', category['name'])
        return category

    def update_category(self, category_id: str, fields: Dict) -> Dict:
        category = self._storage.update_category(
            category_id, self._validate_category(fields, category_id, partial=True))
        if category is None:
            raise NotFoundError('Category not found')
        return category

    def delete_category(self, category_id: str) -> None:
        if self._storage.get_category(category_id) is None:
            raise NotFoundError('Category not found')
        if self._storage.list_games_by_category(category_id):
            raise ConflictError('Category still has games')
        self._storage.delete_category(category_id)
        self._log.info('Deleted category %s', category_id)

    # ------------------------------------------------------------------
    # Store items
    # ------------------------------------------------------------------

    @staticmethod
    def _validate_store_item(fields: Dict, partial: bool = False) -> Dict:
        fields = pick_fields(fields, STORE_ITEM_FIELDS)
        _check_required(fields, ('name', 'image_url'), partial, {
            'name': 'Name', 'image_url': 'Image URL',
        })
        if not partial or 'price' in fields:
            price = fields.get('price')
            if isinstance(price, bool) or not isinstance(price, int) or price < 0:
                raise ValidationError('Price must be a non-negative integer')
        if 'item_type' in fields and fields['item_type'] not in ITEM_TYPES:
            raise ValidationError(f"Item type must be one of: {', '.join(ITEM_TYPES)}")
        return fields

    def create_store_item(self, fields: Dict) -> Dict:
        item = self._storage.create_store_item(self._validate_store_item(fields))
        self._log.info('Created store item %s (%d coins)', item['name'], item['price'])
        return item

    def update_store_item(self, item_id: str, fields: Dict) -> Dict:
        item = self._storage.update_store_item(
            item_id, self._validate_store_item(fields, partial=True))
        if item is None:
            raise NotFoundError('Store item not found')
        return item

    def delete_store_item(self, item_id: str) -> None:
        if not self._storage.delete_store_item(item_id):
            raise NotFoundError('Store item not found')
        self._log.info('Deleted store item %s', item_id)
