#!/usr/bin/env python3
"""
Database models and configuration for CraveGames.
Handles the SQL connection used by the remote storage backend
(PostgreSQL in production, SQLite for tests and local runs).
"""

import uuid
from datetime import datetime
import logging

from sqlalchemy import (
    create_engine, Column, Integer, String, Boolean, DateTime, Text, Float,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

logger = logging.getLogger('cravegames.database')

Base = declarative_base()


def _uuid() -> str:
    return str(uuid.uuid4())


class User(Base):
    """Portal account with coin balance and selected avatar."""
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=_uuid)
    username = Column(String(50), unique=True, index=True, nullable=False)
    password = Column(String(255), nullable=False)  # werkzeug hash
    crave_coins = Column(Integer, nullable=False, default=0)
    active_avatar_id = Column(String(36), nullable=True)
    is_admin = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=datetime.utcnow)


class Category(Base):
    __tablename__ = "categories"

    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(String(100), unique=True, nullable=False)
    icon = Column(String(100), nullable=False, default='gamepad-2')


class Game(Base):
    """A playable game; type is 'iframe', 'flash', 'embed' or 'uploaded'."""
    __tablename__ = "games"

    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    instructions = Column(Text, nullable=True)
    category_id = Column(String(36), index=True, nullable=False)
    thumbnail_url = Column(Text, nullable=False)
    iframe_url = Column(Text, nullable=True)
    html_content = Column(Text, nullable=True)
    type = Column(String(20), nullable=False, default='iframe')
    play_count = Column(Integer, nullable=False, default=0)
    average_rating = Column(Float, nullable=False, default=0.0)
    rating_count = Column(Integer, nullable=False, default=0)
    badge = Column(String(20), nullable=True)  # 'new', 'hot'
    is_trending = Column(Boolean, nullable=False, default=False)


class Favorite(Base):
    __tablename__ = "favorites"
    __table_args__ = (UniqueConstraint('user_id', 'game_id', name='uq_favorite_user_game'),)

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), index=True, nullable=False)
    game_id = Column(String(36), index=True, nullable=False)


class Rating(Base):
    __tablename__ = "ratings"
    __table_args__ = (UniqueConstraint('user_id', 'game_id', name='uq_rating_user_game'),)

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), index=True, nullable=False)
    game_id = Column(String(36), index=True, nullable=False)
    rating = Column(Integer, nullable=False)


class Comment(Base):
    __tablename__ = "comments"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), nullable=False)
    game_id = Column(String(36), index=True, nullable=False)
    content = Column(Text, nullable=False)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    seq = Column(Integer, nullable=False, default=0)  # insertion order tiebreak


class StoreItem(Base):
    __tablename__ = "store_items"

    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(String(200), nullable=False)
    image_url = Column(Text, nullable=False)
    price = Column(Integer, nullable=False)
    item_type = Column(String(20), nullable=False, default='avatar')


class Inventory(Base):
    __tablename__ = "inventory"
    __table_args__ = (UniqueConstraint('user_id', 'item_id', name='uq_inventory_user_item'),)

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), index=True, nullable=False)
    item_id = Column(String(36), nullable=False)


def make_engine(database_url: str, echo: bool = False):
    """Create an engine for *database_url*.

    In-memory SQLite gets a single shared connection so every session sees
    the same database.
    """
    if database_url == 'sqlite://' or (database_url.startswith('sqlite') and ':memory:' in database_url):
        return create_engine(
            database_url, echo=echo,
            connect_args={'check_same_thread': False},
            poolclass=StaticPool,
        )
    return create_engine(database_url, echo=echo, pool_pre_ping=True)


def make_session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db(engine) -> bool:
    """Initialize database tables."""
    try:
        Base.metadata.create_all(bind=engine)
        logger.info("Database tables initialized successfully")
        return True
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        return False
