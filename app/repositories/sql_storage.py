"""SQLAlchemy-backed storage for production deployments."""
import datetime
import logging
from contextlib import contextmanager
from typing import Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

import database
from ..errors import StorageError, ValidationError
from .base import (
    CATEGORY_DEFAULTS, CATEGORY_FIELDS, GAME_DEFAULTS, GAME_FIELDS,
    STORE_ITEM_DEFAULTS, STORE_ITEM_FIELDS, Record, pick_fields,
)

# record key -> ORM attribute, where the two differ
_RENAMES: Dict[type, Dict[str, str]] = {
    database.User: {'password_hash': 'password'},
}
# ORM attributes that never leave this module
_HIDDEN: Dict[type, tuple] = {
    database.User: ('created_at',),
    database.Comment: ('seq',),
}


def _by_name(model) -> tuple:
    return func.lower(model.name), model.name


def _to_iso(value: datetime.datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=datetime.timezone.utc)
    return value.isoformat()


def _from_iso(value: str) -> datetime.datetime:
    parsed = datetime.datetime.fromisoformat(value)
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(datetime.timezone.utc).replace(tzinfo=None)
    return parsed


def _to_record(row) -> Optional[Record]:
    """Translate an ORM row into a plain record dict."""
    if row is None:
        return None
    model = type(row)
    back = {attr: key for key, attr in _RENAMES.get(model, {}).items()}
    hidden = _HIDDEN.get(model, ())
    record: Record = {}
    for column in model.__table__.columns:
        if column.key in hidden:
            continue
        value = getattr(row, column.key)
        if isinstance(value, datetime.datetime):
            value = _to_iso(value)
        record[back.get(column.key, column.key)] = value
    return record


def _to_attrs(model, fields: Record) -> Record:
    """Translate record keys into ORM attribute names."""
    renames = _RENAMES.get(model, {})
    return {renames.get(k, k): v for k, v in fields.items()}


class SQLStorage:
    """Relational implementation of :class:`~app.repositories.base.Storage`.

    Every public method runs in its own session.  Field-name translation
    between records and table columns is confined to this module.

    Args:
        session_factory: A ``sessionmaker`` bound to the target engine
            (see :func:`database.make_session_factory`).
    """

    def __init__(self, session_factory) -> None:
        self._session_factory = session_factory
        self._log = logging.getLogger('cravegames.storage.SQLStorage')

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @contextmanager
    def _session(self):
        """Yield a session; commit on success, roll back and wrap on failure."""
        db = self._session_factory()
        try:
            yield db
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            self._log.error("Database operation failed: %s", exc)
            raise StorageError(f'Database operation failed: {exc}') from exc
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def _get(self, model, record_id: str) -> Optional[Record]:
        with self._session() as db:
            return _to_record(db.get(model, record_id))

    def _list(self, model, *criteria, order_by=()) -> List[Record]:
        with self._session() as db:
            query = db.query(model)
            if criteria:
                query = query.filter(*criteria)
            if order_by:
                query = query.order_by(*order_by)
            return [_to_record(row) for row in query.all()]

    def _first(self, model, *criteria) -> Optional[Record]:
        with self._session() as db:
            return _to_record(db.query(model).filter(*criteria).first())

    def _create(self, model, fields: Record) -> Record:
        with self._session() as db:
            row = model(**_to_attrs(model, fields))
            db.add(row)
            db.flush()
            return _to_record(row)

    def _update(self, model, record_id: str, fields: Record) -> Optional[Record]:
        with self._session() as db:
            row = db.get(model, record_id)
            if row is None:
                return None
            for attr, value in _to_attrs(model, fields).items():
                setattr(row, attr, value)
            db.flush()
            return _to_record(row)

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def get_user(self, user_id: str) -> Optional[Record]:
        return self._get(database.User, user_id)

    def get_user_by_username(self, username: str) -> Optional[Record]:
        return self._first(database.User, database.User.username == username)

    def create_user(self, username: str, password_hash: str,
                    crave_coins: int = 0, is_admin: bool = False) -> Record:
        attrs = _to_attrs(database.User, {
            'username': username,
            'password_hash': password_hash,
            'crave_coins': int(crave_coins),
            'active_avatar_id': None,
            'is_admin': bool(is_admin),
        })
        db = self._session_factory()
        try:
            row = database.User(**attrs)
            db.add(row)
            db.flush()
            record = _to_record(row)
            db.commit()
            return record
        except IntegrityError:
            # another request took the username between lookup and insert
            db.rollback()
            raise ValidationError('Username already exists')
        except SQLAlchemyError as exc:
            db.rollback()
            self._log.error("Creating user %s failed: %s", username, exc)
            raise StorageError(f'Database operation failed: {exc}') from exc
        finally:
            db.close()

    def update_user_coins(self, user_id: str, coins: int) -> bool:
        return self._update(database.User, user_id, {'crave_coins': int(coins)}) is not None

    def update_user_avatar(self, user_id: str, avatar_id: Optional[str]) -> bool:
        return self._update(database.User, user_id, {'active_avatar_id': avatar_id}) is not None

    def set_user_admin(self, user_id: str, is_admin: bool) -> bool:
        return self._update(database.User, user_id, {'is_admin': bool(is_admin)}) is not None

    def count_users(self) -> int:
        with self._session() as db:
            return db.query(database.User).count()

    # ------------------------------------------------------------------
    # Categories
    # ------------------------------------------------------------------

    def list_categories(self) -> List[Record]:
        return self._list(database.Category, order_by=_by_name(database.Category))

    def get_category(self, category_id: str) -> Optional[Record]:
        return self._get(database.Category, category_id)

    def get_category_by_name(self, name: str) -> Optional[Record]:
        return self._first(database.Category,
                           func.lower(database.Category.name) == name.lower())

    def create_category(self, fields: Record) -> Record:
        record = dict(CATEGORY_DEFAULTS)
        record.update(pick_fields(fields, CATEGORY_FIELDS))
        return self._create(database.Category, record)

    def update_category(self, category_id: str, fields: Record) -> Optional[Record]:
        return self._update(database.Category, category_id,
                            pick_fields(fields, CATEGORY_FIELDS))

    def delete_category(self, category_id: str) -> bool:
        with self._session() as db:
            return db.query(database.Category).filter(
                database.Category.id == category_id).delete() > 0

    # ------------------------------------------------------------------
    # Games
    # ------------------------------------------------------------------

    def list_games(self) -> List[Record]:
        return self._list(database.Game, order_by=_by_name(database.Game))

    def get_game(self, game_id: str) -> Optional[Record]:
        return self._get(database.Game, game_id)

    def list_games_by_category(self, category_id: str) -> List[Record]:
        return self._list(database.Game, database.Game.category_id == category_id,
                          order_by=_by_name(database.Game))

    def list_trending_games(self) -> List[Record]:
        return self._list(database.Game, database.Game.is_trending.is_(True),
                          order_by=_by_name(database.Game))

    def increment_play_count(self, game_id: str) -> bool:
        with self._session() as db:
            updated = db.query(database.Game).filter(database.Game.id == game_id).update(
                {database.Game.play_count: database.Game.play_count + 1},
                synchronize_session=False,
            )
            return updated > 0

    def update_game_rating(self, game_id: str, average: float, count: int) -> bool:
        return self._update(database.Game, game_id, {
            'average_rating': float(average),
            'rating_count': int(count),
        }) is not None

    def create_game(self, fields: Record) -> Record:
        record = dict(GAME_DEFAULTS)
        record.update(pick_fields(fields, GAME_FIELDS))
        record.update({'play_count': 0, 'average_rating': 0.0, 'rating_count': 0})
        return self._create(database.Game, record)

    def update_game(self, game_id: str, fields: Record) -> Optional[Record]:
        return self._update(database.Game, game_id, pick_fields(fields, GAME_FIELDS))

    def delete_game(self, game_id: str) -> bool:
        with self._session() as db:
            deleted = db.query(database.Game).filter(database.Game.id == game_id).delete()
            if not deleted:
                return False
            for model in (database.Favorite, database.Rating, database.Comment):
                db.query(model).filter(model.game_id == game_id).delete()
            return True

    # ------------------------------------------------------------------
    # Favorites
    # ------------------------------------------------------------------

    def list_favorites_by_user(self, user_id: str) -> List[Record]:
        return self._list(database.Favorite, database.Favorite.user_id == user_id)

    def get_favorite(self, user_id: str, game_id: str) -> Optional[Record]:
        return self._first(database.Favorite,
                           database.Favorite.user_id == user_id,
                           database.Favorite.game_id == game_id)

    def add_favorite(self, user_id: str, game_id: str) -> Record:
        existing = self.get_favorite(user_id, game_id)
        if existing:
            return existing
        return self._create(database.Favorite, {'user_id': user_id, 'game_id': game_id})

    def remove_favorite(self, user_id: str, game_id: str) -> bool:
        with self._session() as db:
            return db.query(database.Favorite).filter(
                database.Favorite.user_id == user_id,
                database.Favorite.game_id == game_id,
            ).delete() > 0

    # ------------------------------------------------------------------
    # Ratings
    # ------------------------------------------------------------------

    def list_ratings_by_game(self, game_id: str) -> List[Record]:
        return self._list(database.Rating, database.Rating.game_id == game_id)

    def get_rating(self, user_id: str, game_id: str) -> Optional[Record]:
        return self._first(database.Rating,
                           database.Rating.user_id == user_id,
                           database.Rating.game_id == game_id)

    def upsert_rating(self, user_id: str, game_id: str, rating: int) -> Record:
        with self._session() as db:
            row = db.query(database.Rating).filter(
                database.Rating.user_id == user_id,
                database.Rating.game_id == game_id,
            ).first()
            if row is None:
                row = database.Rating(user_id=user_id, game_id=game_id, rating=int(rating))
                db.add(row)
            else:
                row.rating = int(rating)
            db.flush()
            return _to_record(row)

    # ------------------------------------------------------------------
    # Comments
    # ------------------------------------------------------------------

    def list_comments_by_game(self, game_id: str) -> List[Record]:
        with self._session() as db:
            rows = (
                db.query(database.Comment, database.User.username)
                .outerjoin(database.User, database.User.id == database.Comment.user_id)
                .filter(database.Comment.game_id == game_id)
                .order_by(database.Comment.created_at.desc(), database.Comment.seq.desc())
                .all()
            )
            comments = []
            for row, username in rows:
                comment = _to_record(row)
                comment['username'] = username or 'Unknown'
                comments.append(comment)
            return comments

    def add_comment(self, user_id: str, game_id: str, content: str,
                    created_at: Optional[str] = None) -> Record:
        with self._session() as db:
            last = db.query(func.max(database.Comment.seq)).scalar() or 0
            row = database.Comment(
                user_id=user_id,
                game_id=game_id,
                content=content,
                created_at=_from_iso(created_at) if created_at else datetime.datetime.utcnow(),
                seq=last + 1,
            )
            db.add(row)
            db.flush()
            return _to_record(row)

    # ------------------------------------------------------------------
    # Store
    # ------------------------------------------------------------------

    def list_store_items(self) -> List[Record]:
        return self._list(database.StoreItem,
                          order_by=(database.StoreItem.price,) + _by_name(database.StoreItem))

    def get_store_item(self, item_id: str) -> Optional[Record]:
        return self._get(database.StoreItem, item_id)

    def create_store_item(self, fields: Record) -> Record:
        record = dict(STORE_ITEM_DEFAULTS)
        record.update(pick_fields(fields, STORE_ITEM_FIELDS))
        return self._create(database.StoreItem, record)

    def update_store_item(self, item_id: str, fields: Record) -> Optional[Record]:
        return self._update(database.StoreItem, item_id,
                            pick_fields(fields, STORE_ITEM_FIELDS))

    def delete_store_item(self, item_id: str) -> bool:
        with self._session() as db:
            deleted = db.query(database.StoreItem).filter(
                database.StoreItem.id == item_id).delete()
            if not deleted:
                return False
            db.query(database.Inventory).filter(
                database.Inventory.item_id == item_id).delete()
            db.query(database.User).filter(
                database.User.active_avatar_id == item_id,
            ).update({database.User.active_avatar_id: None}, synchronize_session=False)
            return True

    # ------------------------------------------------------------------
    # Inventory
    # ------------------------------------------------------------------

    def list_inventory_by_user(self, user_id: str) -> List[Record]:
        return self._list(database.Inventory, database.Inventory.user_id == user_id)

    def get_inventory_item(self, user_id: str, item_id: str) -> Optional[Record]:
        return self._first(database.Inventory,
                           database.Inventory.user_id == user_id,
                           database.Inventory.item_id == item_id)

    def add_to_inventory(self, user_id: str, item_id: str) -> Record:
        existing = self.get_inventory_item(user_id, item_id)
        if existing:
            return existing
        return self._create(database.Inventory, {'user_id': user_id, 'item_id': item_id})

    def purchase_item(self, user_id: str, item_id: str, price: int) -> Optional[int]:
        """Debit *price* and grant *item_id* in one transaction.

        The user row is locked for the duration, so two concurrent purchases
        cannot both spend the same coins.  Returns the new balance, or
        ``None`` if the user is missing, already owns the item, or cannot
        afford it.
        """
        db = self._session_factory()
        try:
            user = db.query(database.User).filter(
                database.User.id == user_id).with_for_update().first()
            if user is None or user.crave_coins < price:
                db.rollback()
                return None
            owned = db.query(database.Inventory).filter(
                database.Inventory.user_id == user_id,
                database.Inventory.item_id == item_id,
            ).first()
            if owned is not None:
                db.rollback()
                return None
            balance = user.crave_coins - int(price)
            user.crave_coins = balance
            db.add(database.Inventory(user_id=user_id, item_id=item_id))
            db.commit()
            return balance
        except IntegrityError:
            # lost a race on the (user, item) unique constraint
            db.rollback()
            return None
        except SQLAlchemyError as exc:
            db.rollback()
            self._log.error("Purchase of %s by %s failed: %s", item_id, user_id, exc)
            raise StorageError(f'Purchase failed: {exc}') from exc
        finally:
            db.close()
