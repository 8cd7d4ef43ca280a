#!/usr/bin/env python3
"""
CraveGames Web - JSON API for the casual games portal.
Browse and play games, rate/comment/favorite them, spend Crave Coins in the
avatar store, and manage the catalog from the admin panel.
"""

import argparse
import logging
from datetime import timedelta
from functools import wraps
from typing import Any, Dict, Optional

from flask import (
    Blueprint, Flask, Response, current_app, g, jsonify, redirect, request,
    send_from_directory, session,
)
from werkzeug.exceptions import HTTPException, RequestEntityTooLarge

import cravegames
from app.errors import CraveGamesError, NotFoundError, StorageError, ValidationError
from app.serializers import from_wire, to_wire
from app.services import (
    MAX_UPLOAD_BYTES, SANDBOX_CSP, AdminService, AuthService, CatalogService,
    CommentService, FavoritesService, KeyedLock, LocalFileStore, PlayService,
    RatingService, StoreService, SupabaseFileStore, UploadService, public_user,
)

web_logger = logging.getLogger('cravegames.web')

SESSION_LIFETIME = timedelta(days=7)

api = Blueprint('api', __name__)


class Services:
    """Everything the route handlers need, built once per app."""

    def __init__(self, storage, config: Dict[str, Any], file_store=None) -> None:
        locks = KeyedLock()
        self.storage = storage
        self.file_store = file_store
        self.auth = AuthService(storage, starting_coins=config['starting_coins'],
                                admin_password=config.get('admin_password'),
                                locks=locks)
        self.catalog = CatalogService(storage)
        self.favorites = FavoritesService(storage)
        self.ratings = RatingService(storage, locks)
        self.comments = CommentService(storage)
        self.store = StoreService(storage, locks,
                                  click_cooldown=config['coin_click_cooldown'])
        self.admin = AdminService(storage)
        self.play = PlayService(storage)
        self.uploads = UploadService(file_store)


def _services() -> Services:
    return current_app.extensions['cravegames']


def _json_body() -> Dict[str, Any]:
    body = request.get_json(silent=True)
    return body if isinstance(body, dict) else {}


def _public_game(game: Dict) -> Dict:
    return {k: v for k, v in game.items() if k != 'html_content'}


def _user_payload(user: Dict) -> Response:
    return jsonify(to_wire(public_user(user)))


# ===========================================================================================
# Guards
# ===========================================================================================

def require_login(f):
    """Decorator to require a signed-in user (available as ``g.user``)."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        g.user = _services().auth.require_user(session.get('user_id'))
        return f(*args, **kwargs)
    return decorated_function


def require_admin_user(f):
    """Decorator to require a user with the site-admin flag."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        g.user = _services().auth.require_admin_user(session.get('user_id'))
        return f(*args, **kwargs)
    return decorated_function


def require_admin_password(f):
    """Decorator to require the admin panel password in this session."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        _services().auth.require_admin_password(bool(session.get('admin_verified')))
        return f(*args, **kwargs)
    return decorated_function


def _start_session(user: Dict) -> None:
    session.clear()
    session.permanent = True
    session['user_id'] = user['id']


# ===========================================================================================
# Session Endpoints
# ===========================================================================================

@api.route('/api/me', methods=['GET'])
def api_me():
    """Get the current user, or null"""
    user_id = session.get('user_id')
    if not user_id:
        return jsonify(None)
    user = _services().auth.current_user(user_id)
    if user is None:
        session.clear()
        return jsonify(None)
    return _user_payload(user)


@api.route('/api/register', methods=['POST'])
def api_register():
    """Register a new user and sign them in"""
    data = _json_body()
    web_logger.info('Register endpoint called for username=%s', data.get('username'))
    user = _services().auth.register(data.get('username'), data.get('password'))
    _start_session(user)
    return _user_payload(user)


@api.route('/api/login', methods=['POST'])
def api_login():
    data = _json_body()
    user = _services().auth.login(data.get('username'), data.get('password'))
    _start_session(user)
    return _user_payload(user)


@api.route('/api/logout', methods=['POST'])
def api_logout():
    web_logger.info('User logged out: %s', session.get('user_id'))
    session.clear()
    return jsonify({'success': True})


# ===========================================================================================
# Catalog Endpoints
# ===========================================================================================

@api.route('/api/categories', methods=['GET'])
def api_categories():
    return jsonify(to_wire(_services().catalog.list_categories()))


@api.route('/api/games', methods=['GET'])
def api_games():
    """List games; ?q= filters by name"""
    games = _services().catalog.list_games(request.args.get('q'))
    return jsonify(to_wire([_public_game(g) for g in games]))


@api.route('/api/home', methods=['GET'])
def api_home():
    home = _services().catalog.home()
    home['trending_games'] = [_public_game(g) for g in home['trending_games']]
    for section in home['games_by_category']:
        section['games'] = [_public_game(g) for g in section['games']]
    return jsonify(to_wire(home))


@api.route('/api/category/<name>', methods=['GET'])
def api_category_games(name):
    games = _services().catalog.games_in_category(name)
    return jsonify(to_wire([_public_game(g) for g in games]))


@api.route('/api/game/<game_id>', methods=['GET'])
def api_game_detail(game_id):
    """Game page: game, comments, related games and the caller's favorite/rating"""
    detail = _services().catalog.game_detail(game_id, session.get('user_id'))
    detail['game'] = _public_game(detail['game'])
    detail['related_games'] = [_public_game(g) for g in detail['related_games']]
    return jsonify(to_wire(detail))


@api.route('/api/game/<game_id>/play', methods=['GET'])
def api_game_play(game_id):
    """Serve a game's playable content: inline HTML or a redirect"""
    try:
        content = _services().play.resolve(game_id)
    except NotFoundError as e:
        return Response(e.message, status=404, mimetype='text/plain')
    if content.kind == 'html':
        resp = Response(content.body, status=200, content_type='text/html; charset=utf-8')
        resp.headers['Content-Security-Policy'] = SANDBOX_CSP
        resp.headers['X-Content-Type-Options'] = 'nosniff'
        return resp
    return redirect(content.body)


# ===========================================================================================
# Interaction Endpoints
# ===========================================================================================

@api.route('/api/favorite/<game_id>', methods=['POST'])
@require_login
def api_toggle_favorite(game_id):
    is_favorite = _services().favorites.toggle(g.user['id'], game_id)
    return jsonify({'isFavorite': is_favorite})


@api.route('/api/favorites', methods=['GET'])
@require_login
def api_favorites():
    games = _services().favorites.get_all(g.user['id'])
    return jsonify(to_wire([_public_game(game) for game in games]))


@api.route('/api/rate/<game_id>', methods=['POST'])
@require_login
def api_rate(game_id):
    result = _services().ratings.rate(g.user['id'], game_id, _json_body().get('rating'))
    return jsonify({
        'success': True,
        'averageRating': result['average_rating'],
        'ratingCount': result['rating_count'],
    })


@api.route('/api/comment/<game_id>', methods=['POST'])
@require_login
def api_comment(game_id):
    comment = _services().comments.add(g.user['id'], game_id, _json_body().get('content'))
    return jsonify(to_wire(comment))


# ===========================================================================================
# Economy Endpoints
# ===========================================================================================

@api.route('/api/store', methods=['GET'])
@require_login
def api_store():
    return jsonify(to_wire(_services().store.list_items(g.user['id'])))


@api.route('/api/store/buy/<item_id>', methods=['POST'])
@require_login
def api_store_buy(item_id):
    balance = _services().store.purchase(g.user['id'], item_id)
    return jsonify({'success': True, 'newBalance': balance})


@api.route('/api/inventory', methods=['GET'])
@require_login
def api_inventory():
    return jsonify(to_wire(_services().store.inventory(g.user['id'])))


@api.route('/api/inventory/set-avatar/<item_id>', methods=['POST'])
@require_login
def api_set_avatar(item_id):
    _services().store.set_avatar(g.user['id'], item_id)
    return jsonify({'success': True})


@api.route('/api/coins/click', methods=['POST'])
@require_login
def api_coin_click():
    result = _services().store.click_coin(g.user['id'])
    return jsonify({
        'success': True,
        'coinsEarned': result['coins_earned'],
        'newBalance': result['new_balance'],
    })


# ===========================================================================================
# Admin Endpoints
# ===========================================================================================

@api.route('/api/admin/verify-password', methods=['POST'])
@require_admin_user
def api_admin_verify_password():
    """Unlock the admin panel for this session"""
    _services().auth.verify_admin_password(_json_body().get('password'))
    session['admin_verified'] = True
    web_logger.info('Admin panel unlocked by %s', g.user['username'])
    return jsonify({'success': True})


@api.route('/api/admin/session', methods=['GET'])
def api_admin_session():
    return jsonify({'verified': bool(session.get('admin_verified'))})


@api.route('/api/admin/dashboard', methods=['GET'])
@require_admin_user
@require_admin_password
def api_admin_dashboard():
    return jsonify(to_wire(_services().admin.dashboard()))


@api.route('/api/admin/games', methods=['POST'])
@require_admin_user
@require_admin_password
def api_admin_create_game():
    return jsonify(to_wire(_services().admin.create_game(from_wire(_json_body()))))


@api.route('/api/admin/games/<game_id>', methods=['PUT'])
@require_admin_user
@require_admin_password
def api_admin_update_game(game_id):
    return jsonify(to_wire(_services().admin.update_game(game_id, from_wire(_json_body()))))


@api.route('/api/admin/games/<game_id>', methods=['DELETE'])
@require_admin_user
@require_admin_password
def api_admin_delete_game(game_id):
    _services().admin.delete_game(game_id)
    return jsonify({'success': True})


@api.route('/api/admin/categories', methods=['POST'])
@require_admin_user
@require_admin_password
def api_admin_create_category():
    return jsonify(to_wire(_services().admin.create_category(from_wire(_json_body()))))


@api.route('/api/admin/categories/<category_id>', methods=['PUT'])
@require_admin_user
@require_admin_password
def api_admin_update_category(category_id):
    category = _services().admin.update_category(category_id, from_wire(_json_body()))
    return jsonify(to_wire(category))


@api.route('/api/admin/categories/<category_id>', methods=['DELETE'])
@require_admin_user
@require_admin_password
def api_admin_delete_category(category_id):
    _services().admin.delete_category(category_id)
    return jsonify({'success': True})


@api.route('/api/admin/store-items', methods=['POST'])
@require_admin_user
@require_admin_password
def api_admin_create_store_item():
    return jsonify(to_wire(_services().admin.create_store_item(from_wire(_json_body()))))


@api.route('/api/admin/store-items/<item_id>', methods=['PUT'])
@require_admin_user
@require_admin_password
def api_admin_update_store_item(item_id):
    item = _services().admin.update_store_item(item_id, from_wire(_json_body()))
    return jsonify(to_wire(item))


@api.route('/api/admin/store-items/<item_id>', methods=['DELETE'])
@require_admin_user
@require_admin_password
def api_admin_delete_store_item(item_id):
    _services().admin.delete_store_item(item_id)
    return jsonify({'success': True})


# ===========================================================================================
# Upload Endpoints
# ===========================================================================================

def _uploaded_file():
    upload = request.files.get('file')
    if upload is None or not upload.filename:
        raise ValidationError('No file uploaded')
    return upload


@api.route('/api/admin/upload/avatar', methods=['POST'])
@require_admin_user
@require_admin_password
def api_admin_upload_avatar():
    upload = _uploaded_file()
    url = _services().uploads.upload_avatar(upload.filename, upload.read(), upload.mimetype)
    return jsonify({'url': url})


@api.route('/api/admin/upload/thumbnail', methods=['POST'])
@require_admin_user
@require_admin_password
def api_admin_upload_thumbnail():
    upload = _uploaded_file()
    url = _services().uploads.upload_thumbnail(upload.filename, upload.read(), upload.mimetype)
    return jsonify({'url': url})


@api.route('/api/admin/upload/game', methods=['POST'])
@require_admin_user
@require_admin_password
def api_admin_upload_game():
    upload = _uploaded_file()
    html = _services().uploads.read_game_html(upload.filename, upload.read())
    web_logger.info('Game HTML uploaded by %s (%d chars)', g.user['username'], len(html))
    return jsonify({'htmlContent': html})


@api.route('/uploads/<bucket>/<path:name>', methods=['GET'])
def serve_upload(bucket, name):
    store = _services().file_store
    if not isinstance(store, LocalFileStore):
        return jsonify({'error': 'Not found'}), 404
    return send_from_directory(store.directory, f'{bucket}/{name}')


# ---------------------------------------------------------------------------
# Health + API Documentation
# ---------------------------------------------------------------------------

@api.route('/api/health', methods=['GET'])
def api_health():
    return jsonify({'status': 'ok'})


@api.route('/api/openapi.json')
def api_openapi_spec():
    """Serve the OpenAPI 3.0 specification as JSON."""
    from openapi_spec import build_spec
    server_url = request.url_root.rstrip('/')
    return jsonify(build_spec(server_url=server_url))


@api.route('/api/docs')
def api_swagger_ui():
    """Serve an interactive Swagger UI for the CraveGames REST API."""
    openapi_url = '/api/openapi.json'
    html = f"""<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="UTF-8">
  <meta name="viewport" content="width=device-width, initial-scale=1.0">
  <title>CraveGames API Documentation</title>
  <link rel="stylesheet"
        href="https://unpkg.com/swagger-ui-dist@5/swagger-ui.css">
</head>
<body>
  <div id="swagger-ui"></div>
  <script src="https://unpkg.com/swagger-ui-dist@5/swagger-ui-bundle.js"></script>
  <script>
    SwaggerUIBundle({{
      url: "{openapi_url}",
      dom_id: "#swagger-ui",
      presets: [SwaggerUIBundle.presets.apis, SwaggerUIBundle.SwaggerUIStandalonePreset],
      layout: "BaseLayout",
      deepLinking: true,
    }});
  </script>
</body>
</html>"""
    return html, 200, {'Content-Type': 'text/html; charset=utf-8'}


# ===========================================================================================
# Error handling
# ===========================================================================================

def _handle_app_error(e: CraveGamesError):
    if isinstance(e, StorageError):
        web_logger.error('Storage failure on %s %s: %s', request.method, request.path, e.message,
                         exc_info=e)
        return jsonify({'error': 'Internal server error'}), 500
    return jsonify({'error': e.message}), e.status_code


def _handle_http_error(e: HTTPException):
    if isinstance(e, RequestEntityTooLarge):
        return jsonify({'error': f'File too large (max {MAX_UPLOAD_BYTES // (1024 * 1024)}MB)'}), 413
    return jsonify({'error': e.name}), e.code


def _handle_unexpected(e: Exception):
    web_logger.exception('Unhandled error on %s %s: %s', request.method, request.path, e)
    return jsonify({'error': 'Internal server error'}), 500


# ===========================================================================================
# App factory
# ===========================================================================================

def build_file_store(config: Dict[str, Any]):
    if config.get('supabase_url') and config.get('supabase_key'):
        return SupabaseFileStore(config['supabase_url'], config['supabase_key'])
    return LocalFileStore(config.get('upload_dir') or 'uploads')


def create_app(config: Optional[Dict[str, Any]] = None, storage=None, file_store=None) -> Flask:
    """Build the Flask app around an explicitly constructed storage backend.

    Args:
        config:     Settings dict from :func:`cravegames.load_config`.
        storage:    Storage backend; built from *config* when omitted.
        file_store: Upload target; built from *config* when omitted.
    """
    if config is None:
        config = cravegames.load_config()
    if storage is None:
        storage = cravegames.build_storage(config)
    if file_store is None:
        file_store = build_file_store(config)

    app = Flask(__name__)
    app.secret_key = config['session_secret']
    app.config.update(
        PERMANENT_SESSION_LIFETIME=SESSION_LIFETIME,
        SESSION_COOKIE_HTTPONLY=True,
        SESSION_COOKIE_SAMESITE='Lax',
        SESSION_COOKIE_SECURE=config.get('env') == 'production',
        MAX_CONTENT_LENGTH=MAX_UPLOAD_BYTES,
    )
    app.extensions['cravegames'] = Services(storage, config, file_store)
    app.register_blueprint(api)
    app.register_error_handler(CraveGamesError, _handle_app_error)
    app.register_error_handler(HTTPException, _handle_http_error)
    app.register_error_handler(Exception, _handle_unexpected)
    return app


def main():
    """Main entry point for the web server"""
    parser = argparse.ArgumentParser(description='CraveGames Web API')
    parser.add_argument('--config', default=None, help='Path to optional JSON config file')
    parser.add_argument('--host', default='127.0.0.1')
    parser.add_argument('--port', type=int, default=5000)
    parser.add_argument('--debug', action='store_true')
    parser.add_argument('--promote', metavar='USERNAME',
                        help='Grant site-admin rights to USERNAME and exit')
    args = parser.parse_args()

    config = cravegames.load_config(args.config)
    cravegames.setup_logging(config['log_level'], config.get('log_file'))
    app = create_app(config)

    if args.promote:
        if app.extensions['cravegames'].auth.promote(args.promote):
            print(f"User '{args.promote}' is now a site admin")
            return 0
        print(f"User '{args.promote}' not found")
        return 1

    print("\n" + "=" * 60)
    print("🎮 CraveGames is starting...")
    print("=" * 60)
    print(f"\nAPI:  http://{args.host}:{args.port}/api/home")
    print(f"Docs: http://{args.host}:{args.port}/api/docs")
    print("\nPress Ctrl+C to stop the server")
    print("=" * 60 + "\n")

    try:
        app.run(host=args.host, port=args.port, debug=args.debug)
    except KeyboardInterrupt:
        print("\n🛑 CraveGames stopped\n")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
