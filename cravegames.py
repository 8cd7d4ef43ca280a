#!/usr/bin/env python3
"""
CraveGames - casual games portal core.
Configuration loading, logging setup and construction of the storage backend
that the web app (``cravegames_web.py``) is built around.
"""

import json
import logging
import os
import secrets
from typing import Any, Dict, Optional

from dotenv import load_dotenv

import database
from app.errors import StorageError
from app.repositories import MemoryStorage, SQLStorage, seed_storage

# ---------------------------------------------------------------------------
# Logging setup
# ---------------------------------------------------------------------------

LOG_FORMAT = '[%(levelname)s] %(name)s: %(message)s'


def setup_logging(level: str = 'INFO', log_file: Optional[str] = None) -> logging.Logger:
    """Configure the root CraveGames logger.

    Args:
        level:    Log level string (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        log_file: Optional path; when given, records are also appended there.

    Returns:
        Configured logger instance.
    """
    numeric = getattr(logging, level.upper(), logging.INFO)
    logger = logging.getLogger('cravegames')
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)
    if log_file and not any(isinstance(h, logging.FileHandler) for h in logger.handlers):
        try:
            directory = os.path.dirname(os.path.abspath(log_file))
            os.makedirs(directory, exist_ok=True)
            fh = logging.FileHandler(log_file)
            fh.setFormatter(logging.Formatter('[%(asctime)s] %(levelname)s %(name)s: %(message)s'))
            logger.addHandler(fh)
        except OSError as e:
            logger.warning('Could not create log file handler for %s: %s', log_file, e)
    logger.setLevel(numeric)
    return logger


logger = logging.getLogger('cravegames')

# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

DEFAULT_CONFIG: Dict[str, Any] = {
    'session_secret': None,
    'admin_password': None,
    'database_url': None,
    'storage_file': None,
    'seed_data': True,
    'starting_coins': 100,
    'coin_click_cooldown': 0.0,
    'upload_dir': 'uploads',
    'supabase_url': None,
    'supabase_key': None,
    'env': 'development',
    'log_level': 'INFO',
    'log_file': None,
}

# config key -> environment variable
ENV_VARS = {
    'session_secret': 'SESSION_SECRET',
    'admin_password': 'ADMIN_PASSWORD',
    'database_url': 'DATABASE_URL',
    'storage_file': 'STORAGE_FILE',
    'seed_data': 'SEED_DATA',
    'starting_coins': 'STARTING_COINS',
    'coin_click_cooldown': 'COIN_CLICK_COOLDOWN',
    'upload_dir': 'UPLOAD_DIR',
    'supabase_url': 'SUPABASE_URL',
    'supabase_key': 'SUPABASE_KEY',
    'env': 'CRAVEGAMES_ENV',
    'log_level': 'CRAVEGAMES_LOG_LEVEL',
    'log_file': 'CRAVEGAMES_LOG_FILE',
}


def _parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ('1', 'true', 'yes', 'on')


def load_config(config_path: Optional[str] = None, environ=None) -> Dict[str, Any]:
    """Load configuration from an optional JSON file and the environment.

    Environment variables (including those from a ``.env`` file) take
    precedence over config file values; see :data:`ENV_VARS` for the names.

    Raises:
        ValueError: the config file is unreadable or a numeric value is invalid.
    """
    if environ is None:
        load_dotenv()
        environ = os.environ

    config = dict(DEFAULT_CONFIG)
    if config_path:
        try:
            with open(config_path, 'r') as f:
                config.update(json.load(f))
        except (OSError, json.JSONDecodeError) as e:
            raise ValueError(f"Could not read config file '{config_path}': {e}") from e

    for key, var in ENV_VARS.items():
        if environ.get(var):
            config[key] = environ[var]

    try:
        config['starting_coins'] = int(config['starting_coins'])
        config['coin_click_cooldown'] = float(config['coin_click_cooldown'])
    except (TypeError, ValueError) as e:
        raise ValueError(f'Invalid numeric setting: {e}') from e
    config['seed_data'] = _parse_bool(config['seed_data'])

    if not config['session_secret']:
        logger.warning('SESSION_SECRET not set; sessions will not survive a restart')
        config['session_secret'] = secrets.token_hex(32)
    if not config['admin_password']:
        logger.warning('ADMIN_PASSWORD not set; the admin panel is unavailable')
    return config


# ---------------------------------------------------------------------------
# Storage
# ---------------------------------------------------------------------------

def build_storage(config: Dict[str, Any]):
    """Construct the storage backend described by *config*.

    ``database_url`` selects :class:`SQLStorage`; otherwise a
    :class:`MemoryStorage` is used, persisted to ``storage_file`` if set.
    The starter catalog is loaded into an empty store when ``seed_data`` is on.

    Raises:
        StorageError: the database tables could not be created.
    """
    if config.get('database_url'):
        engine = database.make_engine(config['database_url'])
        if not database.init_db(engine):
            raise StorageError('Could not initialize database')
        storage = SQLStorage(database.make_session_factory(engine))
        logger.info('Using SQL storage')
    else:
        storage = MemoryStorage(config.get('storage_file'))
        logger.info('Using in-memory storage%s',
                    f" persisted to {config['storage_file']}" if config.get('storage_file') else '')

    if config.get('seed_data', True):
        seed_storage(storage)
    return storage
