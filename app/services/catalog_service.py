"""Read-side business logic for browsing the game catalog."""
from typing import Dict, List, Optional

from ..errors import NotFoundError
from ..repositories.base import Storage

HOME_GAMES_PER_CATEGORY = 10
RELATED_GAMES_LIMIT = 8


class CatalogService:
    """Builds the catalog views: category lists, home page, game detail."""

    def __init__(self, storage: Storage) -> None:
        self._storage = storage

    def list_categories(self) -> List[Dict]:
        return self._storage.list_categories()

    def list_games(self, query: Optional[str] = None) -> List[Dict]:
        """Return all games, optionally filtered by a case-insensitive name search."""
        games = self._storage.list_games()
        if query:
            needle = query.strip().lower()
            games = [g for g in games if needle in g['name'].lower()]
        return games

    def home(self) -> Dict:
        """Trending games plus up to ten games for each non-empty category."""
        trending = self._storage.list_trending_games()
        all_games = self._storage.list_games()
        sections = []
        for category in self._storage.list_categories():
            games = [g for g in all_games if g['category_id'] == category['id']]
            if games:
                sections.append({
                    'category': category,
                    'games': games[:HOME_GAMES_PER_CATEGORY],
                })
        return {'trending_games': trending, 'games_by_category': sections}

    def games_in_category(self, name: str) -> List[Dict]:
        category = self._storage.get_category_by_name(name)
        if category is None:
            raise NotFoundError('Category not found')
        return self._storage.list_games_by_category(category['id'])

    def get_game(self, game_id: str) -> Dict:
        game = self._storage.get_game(game_id)
        if game is None:
            raise NotFoundError('Game not found')
        return game

    def game_detail(self, game_id: str, user_id: Optional[str] = None) -> Dict:
        """Return the game page payload and count the visit as a play.

        ``is_favorite`` and ``user_rating`` are only filled in for a signed-in
        user.  The returned game reflects the play count before this visit.
        """
        game = self.get_game(game_id)
        comments = self._storage.list_comments_by_game(game_id)
        related = [
            g for g in self._storage.list_games_by_category(game['category_id'])
            if g['id'] != game_id
        ][:RELATED_GAMES_LIMIT]

        is_favorite = False
        user_rating = None
        if user_id:
            is_favorite = self._storage.get_favorite(user_id, game_id) is not None
            rating = self._storage.get_rating(user_id, game_id)
            user_rating = rating['rating'] if rating else None

        self._storage.increment_play_count(game_id)
        return {
            'game': game,
            'comments': comments,
            'related_games': related,
            'is_favorite': is_favorite,
            'user_rating': user_rating,
        }
