"""Business logic for registration, login and the admin gate."""
import hmac
import logging
from typing import Dict, Optional

from werkzeug.security import check_password_hash, generate_password_hash

from ..errors import AuthenticationError, AuthorizationError, CraveGamesError, ValidationError
from ..repositories.base import Storage
from .locks import KeyedLock

USERNAME_MIN = 3
USERNAME_MAX = 50
PASSWORD_MIN = 6


def public_user(user: Optional[Dict]) -> Optional[Dict]:
    """Return *user* without its credential hash."""
    if user is None:
        return None
    return {k: v for k, v in user.items() if k != 'password_hash'}


class AuthService:
    """Registers users, verifies credentials and guards the admin panel.

    Rules
    -----
    * Usernames are 3–50 characters and unique.
    * Passwords are at least 6 characters and stored only as a salted hash.
    * A failed login never says whether the username exists.
    * The admin panel needs two things at once: a user with ``is_admin`` set
      and the shared ``ADMIN_PASSWORD`` entered in the current session.  The
      two checks are separate methods and callers must apply both.
    """

    def __init__(self, storage: Storage, starting_coins: int = 100,
                 admin_password: Optional[str] = None,
                 locks: Optional[KeyedLock] = None) -> None:
        self._storage = storage
        self._locks = locks or KeyedLock()
        self._starting_coins = starting_coins
        self._admin_password = admin_password
        self._log = logging.getLogger('cravegames.service.auth')

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _validate_credentials(username, password) -> None:
        if not isinstance(username, str) or not isinstance(password, str):
            raise ValidationError('Username and password required')
        if not username or not password:
            raise ValidationError('Username and password required')
        if len(username) < USERNAME_MIN:
            raise ValidationError(f'Username must be at least {USERNAME_MIN} characters')
        if len(username) > USERNAME_MAX:
            raise ValidationError(f'Username must be at most {USERNAME_MAX} characters')
        if len(password) < PASSWORD_MIN:
            raise ValidationError(f'Password must be at least {PASSWORD_MIN} characters')

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def register(self, username, password) -> Dict:
        """Create a user account.

        Returns:
            The new user record (including ``password_hash``).

        Raises:
            ValidationError: invalid input or duplicate username.
        """
        username = username.strip() if isinstance(username, str) else username
        self._validate_credentials(username, password)
        password_hash = generate_password_hash(password)
        with self._locks.hold(f'username:{username.lower()}'):
            if self._storage.get_user_by_username(username):
                raise ValidationError('Username already exists')
            user = self._storage.create_user(
                username, password_hash, crave_coins=self._starting_coins,
            )
        self._log.info('Registered new user: %s', username)
        return user

    def login(self, username, password) -> Dict:
        """Return the user matching the credentials.

        Raises:
            AuthenticationError: unknown user or wrong password (same message).
        """
        if not isinstance(username, str) or not isinstance(password, str):
            raise AuthenticationError('Invalid credentials')
        user = self._storage.get_user_by_username(username.strip())
        if user is None or not check_password_hash(user['password_hash'], password):
            self._log.info('Failed login for username=%s', username)
            raise AuthenticationError('Invalid credentials')
        self._log.info('User logged in: %s', user['username'])
        return user

    def current_user(self, user_id: Optional[str]) -> Optional[Dict]:
        """Return the user for a session's ``user_id``, or ``None``."""
        if not user_id:
            return None
        return self._storage.get_user(user_id)

    def require_user(self, user_id: Optional[str]) -> Dict:
        user = self.current_user(user_id)
        if user is None:
            raise AuthenticationError('Not authenticated')
        return user

    def require_admin_user(self, user_id: Optional[str]) -> Dict:
        """First admin predicate: the session user is a site admin."""
        user = self.require_user(user_id)
        if not user.get('is_admin'):
            raise AuthorizationError('Admin access required')
        return user

    @staticmethod
    def require_admin_password(admin_verified: bool) -> None:
        """Second admin predicate: the panel password was entered this session."""
        if not admin_verified:
            raise AuthenticationError('Admin password verification required')

    def verify_admin_password(self, password) -> bool:
        """Check *password* against the configured admin panel password.

        Raises:
            CraveGamesError: no admin password configured.
            AuthenticationError: wrong password.
        """
        if not self._admin_password:
            raise CraveGamesError('Admin password not configured')
        if not isinstance(password, str) or not hmac.compare_digest(
                password.encode('utf-8'), self._admin_password.encode('utf-8')):
            raise AuthenticationError('Invalid admin password')
        return True

    def promote(self, username: str, is_admin: bool = True) -> bool:
        """Set or clear the site-admin flag for *username*."""
        user = self._storage.get_user_by_username(username)
        if user is None:
            return False
        self._storage.set_user_admin(user['id'], is_admin)
        self._log.info('Set is_admin=%s for user %s', is_admin, username)
        return True
