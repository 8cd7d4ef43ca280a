"""Resolves what ``/api/game/<id>/play`` should deliver for a game."""
from collections import namedtuple

from ..errors import NotFoundError
from ..repositories.base import Storage

# kind is 'html' (body holds the document) or 'redirect' (body holds the URL)
PlayContent = namedtuple('PlayContent', ['kind', 'body'])

# Uploaded HTML runs in an opaque origin: scripts work, portal cookies and
# same-origin API calls do not.
SANDBOX_CSP = 'sandbox allow-scripts allow-pointer-lock allow-popups'


class PlayService:
    """Picks the delivery variant from the game's stored type.

    * ``uploaded`` with HTML content → served verbatim.
    * anything with an ``iframe_url`` (iframe, flash, embed) → redirect.
    * otherwise there is nothing to play.
    """

    def __init__(self, storage: Storage) -> None:
        self._storage = storage

    def resolve(self, game_id: str) -> PlayContent:
        game = self._storage.get_game(game_id)
        if game is None:
            raise NotFoundError('Game not found')
        if game.get('type') == 'uploaded' and game.get('html_content'):
            return PlayContent('html', game['html_content'])
        if game.get('iframe_url'):
            return PlayContent('redirect', game['iframe_url'])
        raise NotFoundError('Game content not available')
