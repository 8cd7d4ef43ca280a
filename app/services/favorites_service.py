"""Business logic for the per-user favourites list."""
import logging
from typing import Dict, List

from ..errors import NotFoundError
from ..repositories.base import Storage


class FavoritesService:
    """Manages each user's favourite games, delegating persistence to the
    storage backend.

    A favourite is a presence-only (user, game) pair; :meth:`toggle` flips it.
    """

    def __init__(self, storage: Storage) -> None:
        self._storage = storage
        self._log = logging.getLogger('cravegames.service.favorites')

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def toggle(self, user_id: str, game_id: str) -> bool:
        """Add *game_id* to the user's favourites, or remove it if present.

        Returns:
            ``True`` if the game is a favourite after the call.

        Raises:
            NotFoundError: the game does not exist.
        """
        if self._storage.get_game(game_id) is None:
            raise NotFoundError('Game not found')
        if self._storage.remove_favorite(user_id, game_id):
            self._log.debug('User %s unfavorited %s', user_id, game_id)
            return False
        self._storage.add_favorite(user_id, game_id)
        self._log.debug('User %s favorited %s', user_id, game_id)
        return True

    def get_all(self, user_id: str) -> List[Dict]:
        """Return the user's favourite games (missing games are skipped)."""
        games = []
        for fav in self._storage.list_favorites_by_user(user_id):
            game = self._storage.get_game(fav['game_id'])
            if game is not None:
                games.append(game)
        return games
