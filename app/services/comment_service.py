"""Business logic for game comments."""
from typing import Dict, List

from ..errors import NotFoundError, ValidationError
from ..repositories.base import Storage

MAX_COMMENT_LENGTH = 1000


class CommentService:
    """Appends comments to games; comments are never edited or removed."""

    def __init__(self, storage: Storage) -> None:
        self._storage = storage

    def add(self, user_id: str, game_id: str, content) -> Dict:
        """Store a trimmed, non-empty comment and return it with ``username``."""
        if not isinstance(content, str) or not content.strip():
            raise ValidationError('Comment cannot be empty')
        content = content.strip()
        if len(content) > MAX_COMMENT_LENGTH:
            raise ValidationError(f'Comment must be at most {MAX_COMMENT_LENGTH} characters')
        if self._storage.get_game(game_id) is None:
            raise NotFoundError('Game not found')
        comment = self._storage.add_comment(user_id, game_id, content)
        user = self._storage.get_user(user_id)
        comment['username'] = user['username'] if user else 'Unknown'
        return comment

    def list_for_game(self, game_id: str) -> List[Dict]:
        """Newest first."""
        return self._storage.list_comments_by_game(game_id)
