#!/usr/bin/env python3
"""
CraveGames client - thin view over the portal's JSON API.

``CraveGamesClient`` exposes one method per endpoint and keeps GET results in
a :class:`QueryCache`; every mutation invalidates the queries it affects so the
next read re-fetches from the server.  Running this module gives a small
terminal front end.
"""

import argparse
import logging
import sys
import threading
from typing import Any, Callable, Dict, Hashable, List, Optional, Tuple

import requests
from colorama import init, Fore, Style

# Initialize colorama for cross-platform colored terminal output
init(autoreset=True)

logger = logging.getLogger('cravegames.client')

_DEFAULT_TIMEOUT = 10  # seconds

QueryKey = Tuple[Hashable, ...]


class ApiError(Exception):
    """Non-2xx response from the server."""

    def __init__(self, status: int, message: str) -> None:
        super().__init__(f'{status}: {message}')
        self.status = status
        self.message = message


class QueryCache:
    """GET results keyed by tuples such as ``('game', '<id>')``.

    ``invalidate(('game',))`` drops every key starting with ``'game'``.
    """

    def __init__(self) -> None:
        self._entries: Dict[QueryKey, Any] = {}
        self._lock = threading.Lock()

    def get_or_fetch(self, key: QueryKey, fetch: Callable[[], Any]) -> Any:
        with self._lock:
            if key in self._entries:
                return self._entries[key]
        value = fetch()
        with self._lock:
            self._entries[key] = value
        return value

    def invalidate(self, *prefixes: QueryKey) -> None:
        with self._lock:
            for key in list(self._entries):
                if any(key[:len(p)] == tuple(p) for p in prefixes):
                    del self._entries[key]

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __contains__(self, key: QueryKey) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)


class CraveGamesClient:
    """Client for the CraveGames REST API.

    Args:
        base_url: Server root, e.g. ``http://localhost:5000``.
        session:  Optional ``requests.Session``; its cookie jar carries the login.
        timeout:  HTTP request timeout in seconds.
    """

    def __init__(self, base_url: str = 'http://localhost:5000',
                 session: Optional[requests.Session] = None,
                 timeout: int = _DEFAULT_TIMEOUT) -> None:
        self.base_url = base_url.rstrip('/')
        self.session = session or requests.Session()
        self.timeout = timeout
        self.cache = QueryCache()

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _request(self, method: str, path: str, **kwargs) -> Any:
        url = f'{self.base_url}{path}'
        try:
            resp = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            logger.error('%s %s failed: %s', method, path, e)
            raise ApiError(0, f'Could not reach server: {e}') from e
        if not 200 <= resp.status_code < 300:
            try:
                message = resp.json().get('error') or resp.reason
            except ValueError:
                message = resp.text or resp.reason
            raise ApiError(resp.status_code, message)
        try:
            return resp.json()
        except ValueError:
            return resp.text

    def _query(self, key: QueryKey, path: str, **kwargs) -> Any:
        return self.cache.get_or_fetch(key, lambda: self._request('GET', path, **kwargs))

    # ------------------------------------------------------------------
    # Session
    # ------------------------------------------------------------------

    def me(self) -> Optional[Dict]:
        return self._query(('me',), '/api/me')

    def register(self, username: str, password: str) -> Dict:
        user = self._request('POST', '/api/register',
                             json={'username': username, 'password': password})
        self.cache.clear()
        return user

    def login(self, username: str, password: str) -> Dict:
        user = self._request('POST', '/api/login',
                             json={'username': username, 'password': password})
        self.cache.clear()
        return user

    def logout(self) -> None:
        self._request('POST', '/api/logout')
        self.cache.clear()

    # ------------------------------------------------------------------
    # Catalog
    # ------------------------------------------------------------------

    def categories(self) -> List[Dict]:
        return self._query(('categories',), '/api/categories')

    def games(self, query: Optional[str] = None) -> List[Dict]:
        params = {'q': query} if query else None
        return self._query(('games', query or ''), '/api/games', params=params)

    def home(self) -> Dict:
        return self._query(('home',), '/api/home')

    def category(self, name: str) -> List[Dict]:
        return self._query(('category', name), f'/api/category/{name}')

    def game(self, game_id: str) -> Dict:
        return self._query(('game', game_id), f'/api/game/{game_id}')

    def play_url(self, game_id: str) -> str:
        return f'{self.base_url}/api/game/{game_id}/play'

    # ------------------------------------------------------------------
    # Favorites, ratings, comments
    # ------------------------------------------------------------------

    def favorites(self) -> List[Dict]:
        return self._query(('favorites',), '/api/favorites')

    def toggle_favorite(self, game_id: str) -> bool:
        result = self._request('POST', f'/api/favorite/{game_id}')
        self.cache.invalidate(('game', game_id), ('favorites',))
        return result['isFavorite']

    def rate(self, game_id: str, rating: int) -> Dict:
        if isinstance(rating, bool) or not isinstance(rating, int) or not 1 <= rating <= 5:
            raise ValueError('Rating must be between 1 and 5')
        result = self._request('POST', f'/api/rate/{game_id}', json={'rating': rating})
        self.cache.invalidate(('game', game_id), ('home',), ('games',), ('category',))
        return result

    def comment(self, game_id: str, content: str) -> Dict:
        if not content or not content.strip():
            raise ValueError('Comment cannot be empty')
        result = self._request('POST', f'/api/comment/{game_id}',
                               json={'content': content.strip()})
        self.cache.invalidate(('game', game_id))
        return result

    # ------------------------------------------------------------------
    # Economy
    # ------------------------------------------------------------------

    def store(self) -> Dict:
        return self._query(('store',), '/api/store')

    def inventory(self) -> Dict:
        return self._query(('inventory',), '/api/inventory')

    def buy(self, item_id: str) -> int:
        result = self._request('POST', f'/api/store/buy/{item_id}')
        self.cache.invalidate(('store',), ('inventory',), ('me',))
        return result['newBalance']

    def set_avatar(self, item_id: str) -> None:
        self._request('POST', f'/api/inventory/set-avatar/{item_id}')
        self.cache.invalidate(('inventory',), ('me',))

    def click_coin(self) -> Dict:
        result = self._request('POST', '/api/coins/click')
        self.cache.invalidate(('me',))
        return result

    # ------------------------------------------------------------------
    # Admin
    # ------------------------------------------------------------------

    def admin_session(self) -> bool:
        return self._query(('admin', 'session'), '/api/admin/session')['verified']

    def verify_admin_password(self, password: str) -> None:
        self._request('POST', '/api/admin/verify-password', json={'password': password})
        self.cache.invalidate(('admin',))

    def admin_dashboard(self) -> Dict:
        return self._query(('admin', 'dashboard'), '/api/admin/dashboard')

    def _admin_mutation(self, method: str, path: str, payload: Optional[Dict] = None,
                        also: Tuple[Tuple, ...] = ()) -> Any:
        result = self._request(method, path, json=payload)
        self.cache.invalidate(('admin', 'dashboard'), ('home',), ('games',),
                              ('category',), ('categories',), ('game',), ('store',),
                              *also)
        return result

    def create_game(self, fields: Dict) -> Dict:
        return self._admin_mutation('POST', '/api/admin/games', fields)

    def update_game(self, game_id: str, fields: Dict) -> Dict:
        return self._admin_mutation('PUT', f'/api/admin/games/{game_id}', fields)

    def delete_game(self, game_id: str) -> None:
        # the game's favorites go with it
        self._admin_mutation('DELETE', f'/api/admin/games/{game_id}',
                             also=(('favorites',),))

    def create_category(self, fields: Dict) -> Dict:
        return self._admin_mutation('POST', '/api/admin/categories', fields)

    def update_category(self, category_id: str, fields: Dict) -> Dict:
        return self._admin_mutation('PUT', f'/api/admin/categories/{category_id}', fields)

    def delete_category(self, category_id: str) -> None:
        self._admin_mutation('DELETE', f'/api/admin/categories/{category_id}')

    def create_store_item(self, fields: Dict) -> Dict:
        return self._admin_mutation('POST', '/api/admin/store-items', fields)

    def update_store_item(self, item_id: str, fields: Dict) -> Dict:
        return self._admin_mutation('PUT', f'/api/admin/store-items/{item_id}', fields)

    def delete_store_item(self, item_id: str) -> None:
        # owners lose the item and any avatar set to it
        self._admin_mutation('DELETE', f'/api/admin/store-items/{item_id}',
                             also=(('inventory',), ('me',)))

    def upload(self, kind: str, filename: str, data: bytes,
               content_type: str = 'application/octet-stream') -> Dict:
        """Upload an ``avatar``, ``thumbnail`` or ``game`` file."""
        return self._request('POST', f'/api/admin/upload/{kind}',
                             files={'file': (filename, data, content_type)})


# ---------------------------------------------------------------------------
# Terminal front end
# ---------------------------------------------------------------------------

def _stars(average: float) -> str:
    full = int(round(average or 0))
    return '★' * full + '☆' * (5 - full)


def _print_game_line(game: Dict) -> None:
    badge = f" {Fore.MAGENTA}[{game['badge'].upper()}]" if game.get('badge') else ''
    print(f"  {Fore.CYAN}{game['name']}{Style.RESET_ALL}{badge}"
          f"  {Fore.YELLOW}{_stars(game.get('averageRating'))}"
          f"{Style.RESET_ALL} ({game.get('ratingCount', 0)})"
          f"  {Style.DIM}{game['id']}")


def show_home(client: CraveGamesClient) -> None:
    home = client.home()
    print(f"\n{Fore.GREEN}{Style.BRIGHT}🔥 Trending")
    for game in home['trendingGames']:
        _print_game_line(game)
    for section in home['gamesByCategory']:
        print(f"\n{Fore.GREEN}{Style.BRIGHT}{section['category']['name']}")
        for game in section['games']:
            _print_game_line(game)


def show_game(client: CraveGamesClient, game_id: str) -> None:
    detail = client.game(game_id)
    game = detail['game']
    print(f"\n{Fore.CYAN}{Style.BRIGHT}{game['name']}")
    print(f"{game.get('description') or ''}")
    print(f"{Fore.YELLOW}{_stars(game.get('averageRating'))}{Style.RESET_ALL} "
          f"{game.get('averageRating', 0):.1f} from {game.get('ratingCount', 0)} ratings, "
          f"{game.get('playCount', 0)} plays")
    if detail.get('isFavorite'):
        print(f"{Fore.RED}♥ In your favorites")
    if detail.get('userRating'):
        print(f"Your rating: {detail['userRating']}")
    print(f"Play: {client.play_url(game['id'])}")
    if detail['comments']:
        print(f"\n{Style.BRIGHT}Comments")
        for c in detail['comments']:
            print(f"  {Fore.GREEN}{c['username']}{Style.RESET_ALL}: {c['content']}")


def show_store(client: CraveGamesClient) -> None:
    store = client.store()
    owned = set(store['ownedItemIds'])
    print(f"\n{Fore.YELLOW}{Style.BRIGHT}🛒 Store")
    for item in store['items']:
        mark = f'{Fore.GREEN}owned' if item['id'] in owned else f"{item['price']} coins"
        print(f"  {item['name']:<20} {mark}  {Style.DIM}{item['id']}")


def show_inventory(client: CraveGamesClient) -> None:
    inventory = client.inventory()
    print(f"\n{Fore.YELLOW}{Style.BRIGHT}🎒 Inventory")
    if not inventory['items']:
        print('  (empty)')
    for item in inventory['items']:
        active = f' {Fore.GREEN}(active)' if item['id'] == inventory['activeAvatarId'] else ''
        print(f"  {item['name']:<20}{active}  {Style.DIM}{item['id']}")


def main(argv=None) -> int:
    """Main entry point for the terminal client"""
    parser = argparse.ArgumentParser(
        description='CraveGames terminal client',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python3 cravegames_client.py home
  python3 cravegames_client.py -u alice -p secret123 rate <game-id> 5
  python3 cravegames_client.py -u alice -p secret123 buy <item-id>
        """
    )
    parser.add_argument('--url', default='http://localhost:5000', help='Server base URL')
    parser.add_argument('--username', '-u')
    parser.add_argument('--password', '-p')
    sub = parser.add_subparsers(dest='command', required=True)
    sub.add_parser('home', help='Show trending games and categories')
    search = sub.add_parser('search', help='Search games by name')
    search.add_argument('query')
    game = sub.add_parser('game', help='Show a game page')
    game.add_argument('game_id')
    fav = sub.add_parser('favorite', help='Toggle a favorite')
    fav.add_argument('game_id')
    rate = sub.add_parser('rate', help='Rate a game 1-5')
    rate.add_argument('game_id')
    rate.add_argument('rating', type=int)
    comment = sub.add_parser('comment', help='Comment on a game')
    comment.add_argument('game_id')
    comment.add_argument('content')
    sub.add_parser('store', help='Show the store')
    buy = sub.add_parser('buy', help='Buy a store item')
    buy.add_argument('item_id')
    sub.add_parser('inventory', help='Show owned items')
    avatar = sub.add_parser('set-avatar', help='Equip an owned avatar')
    avatar.add_argument('item_id')
    sub.add_parser('click', help='Collect a few Crave Coins')
    register = sub.add_parser('register', help='Create an account')
    register.add_argument('new_username')
    register.add_argument('new_password')
    args = parser.parse_args(argv)

    client = CraveGamesClient(args.url)
    try:
        if args.command == 'register':
            user = client.register(args.new_username, args.new_password)
            print(f"{Fore.GREEN}Welcome, {user['username']}! You have {user['craveCoins']} coins.")
            return 0
        if args.username and args.password:
            client.login(args.username, args.password)

        if args.command == 'home':
            show_home(client)
        elif args.command == 'search':
            for g in client.games(args.query):
                _print_game_line(g)
        elif args.command == 'game':
            show_game(client, args.game_id)
        elif args.command == 'favorite':
            state = client.toggle_favorite(args.game_id)
            print(f"{Fore.GREEN}{'Added to' if state else 'Removed from'} favorites")
        elif args.command == 'rate':
            result = client.rate(args.game_id, args.rating)
            print(f"{Fore.GREEN}Rated! Average is now {result['averageRating']:.1f} "
                  f"({result['ratingCount']} ratings)")
        elif args.command == 'comment':
            client.comment(args.game_id, args.content)
            print(f"{Fore.GREEN}Comment posted")
        elif args.command == 'store':
            show_store(client)
        elif args.command == 'buy':
            print(f"{Fore.GREEN}Purchased! Balance: {client.buy(args.item_id)} coins")
        elif args.command == 'inventory':
            show_inventory(client)
        elif args.command == 'set-avatar':
            client.set_avatar(args.item_id)
            print(f"{Fore.GREEN}Avatar updated")
        elif args.command == 'click':
            result = client.click_coin()
            print(f"{Fore.YELLOW}+{result['coinsEarned']} coins! "
                  f"Balance: {result['newBalance']}")
    except ApiError as e:
        print(f"{Fore.RED}Error: {e.message}")
        return 1
    except ValueError as e:
        print(f"{Fore.RED}Error: {e}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
