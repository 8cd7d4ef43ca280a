"""Business logic for game ratings and their aggregate."""
import logging
from typing import Dict, Optional

from ..errors import NotFoundError, ValidationError
from ..repositories.base import Storage
from .locks import KeyedLock

RATING_MIN = 1
RATING_MAX = 5


class RatingService:
    """Validates and applies rating operations.

    Rules
    -----
    * ``rating`` must be an integer in the range **1–5** (inclusive).
    * A second rating for the same (user, game) replaces the first
      (upsert semantics).
    * After every write the game's ``average_rating`` and ``rating_count``
      are recomputed from all of its ratings.  Writes for one game are
      serialized so two raters cannot publish a stale aggregate.
    """

    def __init__(self, storage: Storage, locks: Optional[KeyedLock] = None) -> None:
        self._storage = storage
        self._locks = locks or KeyedLock()
        self._log = logging.getLogger('cravegames.service.rating')

    @staticmethod
    def validate(rating) -> int:
        if isinstance(rating, bool) or not isinstance(rating, int):
            raise ValidationError(f'Rating must be between {RATING_MIN} and {RATING_MAX}')
        if not RATING_MIN <= rating <= RATING_MAX:
            raise ValidationError(f'Rating must be between {RATING_MIN} and {RATING_MAX}')
        return rating

    def rate(self, user_id: str, game_id: str, rating) -> Dict:
        """Add or replace the user's rating and refresh the game aggregate.

        Returns:
            ``{'average_rating': float, 'rating_count': int}``

        Raises:
            ValidationError: rating is not an integer 1–5.
            NotFoundError: the game does not exist.
        """
        value = self.validate(rating)
        with self._locks.hold(f'game:{game_id}'):
            if self._storage.get_game(game_id) is None:
                raise NotFoundError('Game not found')
            self._storage.upsert_rating(user_id, game_id, value)
            ratings = self._storage.list_ratings_by_game(game_id)
            count = len(ratings)
            average = sum(r['rating'] for r in ratings) / count
            self._storage.update_game_rating(game_id, average, count)
        self._log.debug('Game %s now %.2f over %d ratings', game_id, average, count)
        return {'average_rating': average, 'rating_count': count}
