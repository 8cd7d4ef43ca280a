"""Business logic for the Crave Coins economy: store, inventory, rewards."""
import logging
import random
import threading
import time
from typing import Callable, Dict, Optional

from ..errors import (
    ConflictError, NotFoundError, RateLimitedError, ValidationError,
)
from ..repositories.base import Storage
from .locks import KeyedLock

CLICK_REWARD_MIN = 1
CLICK_REWARD_MAX = 3


class StoreService:
    """Sells store items for coins and manages what each user owns.

    Rules
    -----
    * Purchase checks, in order: the item exists, the user does not already
      own it, the balance covers the price.  The debit and the ownership
      grant then happen as one storage operation.
    * An avatar can only be selected if the user owns it.
    * The coin click grants a uniform 1–3 coins.  ``click_cooldown`` (seconds)
      limits how often a single user may click; ``0`` means no limit.

    Every balance-changing operation holds the per-user lock, so concurrent
    requests from one user are applied one at a time.
    """

    def __init__(self, storage: Storage, locks: Optional[KeyedLock] = None,
                 click_cooldown: float = 0.0,
                 clock: Callable[[], float] = time.monotonic) -> None:
        self._storage = storage
        self._locks = locks or KeyedLock()
        self._click_cooldown = float(click_cooldown)
        self._clock = clock
        self._last_click: Dict[str, float] = {}
        self._click_guard = threading.Lock()
        self._log = logging.getLogger('cravegames.service.store')

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _require_user(self, user_id: str) -> Dict:
        user = self._storage.get_user(user_id)
        if user is None:
            raise NotFoundError('User not found')
        return user

    def _check_click_rate(self, user_id: str) -> None:
        if self._click_cooldown <= 0:
            return
        now = self._clock()
        with self._click_guard:
            last = self._last_click.get(user_id)
            if last is not None and now - last < self._click_cooldown:
                raise RateLimitedError('Too many clicks, slow down')
            self._last_click[user_id] = now

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def list_items(self, user_id: Optional[str] = None) -> Dict:
        """Return all store items and the ids the user already owns."""
        owned = []
        if user_id:
            owned = [inv['item_id'] for inv in self._storage.list_inventory_by_user(user_id)]
        return {'items': self._storage.list_store_items(), 'owned_item_ids': owned}

    def purchase(self, user_id: str, item_id: str) -> int:
        """Buy *item_id* for the user.

        Returns:
            The user's new coin balance.

        Raises:
            NotFoundError: unknown user or item.
            ValidationError: already owned, or not enough coins.
            ConflictError: the balance or inventory changed underneath us.
        """
        with self._locks.hold(f'user:{user_id}'):
            item = self._storage.get_store_item(item_id)
            if item is None:
                raise NotFoundError('Item not found')
            user = self._require_user(user_id)
            if self._storage.get_inventory_item(user_id, item_id):
                raise ValidationError('Already owned')
            if user['crave_coins'] < item['price']:
                raise ValidationError('Not enough coins')
            balance = self._storage.purchase_item(user_id, item_id, item['price'])
            if balance is None:
                raise ConflictError('Purchase could not be completed, please retry')
        self._log.info('User %s bought %s for %d coins (balance %d)',
                       user['username'], item['name'], item['price'], balance)
        return balance

    def inventory(self, user_id: str) -> Dict:
        """Return the owned items and the active avatar id."""
        user = self._require_user(user_id)
        items = []
        for inv in self._storage.list_inventory_by_user(user_id):
            item = self._storage.get_store_item(inv['item_id'])
            if item is not None:
                items.append(item)
        return {'items': items, 'active_avatar_id': user.get('active_avatar_id')}

    def set_avatar(self, user_id: str, item_id: str) -> None:
        """Select an owned item as the user's avatar.

        Raises:
            ValidationError: the user does not own the item.
        """
        with self._locks.hold(f'user:{user_id}'):
            if self._storage.get_inventory_item(user_id, item_id) is None:
                raise ValidationError('Item not owned')
            self._storage.update_user_avatar(user_id, item_id)

    def click_coin(self, user_id: str) -> Dict:
        """Grant a small random coin reward.

        Returns:
            ``{'coins_earned': int, 'new_balance': int}``
        """
        self._check_click_rate(user_id)
        with self._locks.hold(f'user:{user_id}'):
            user = self._require_user(user_id)
            earned = random.randint(CLICK_REWARD_MIN, CLICK_REWARD_MAX)
            balance = user['crave_coins'] + earned
            self._storage.update_user_coins(user_id, balance)
        return {'coins_earned': earned, 'new_balance': balance}
