"""Starter catalog loaded into an empty store."""
import logging

from .base import Storage

logger = logging.getLogger('cravegames.storage.seed')

SEED_CATEGORIES = ['Action', 'Puzzle', 'Racing', 'Sports', 'Adventure']

# (name, description, instructions, category, trending, badge)
SEED_GAMES = [
    ('Space Shooter', 'Blast through waves of enemies in this exciting space shooter!',
     'Use arrow keys to move, space to shoot', 'Action', True, 'hot'),
    ('Block Puzzle', 'Solve challenging block puzzles to advance through levels',
     'Drag and drop blocks to complete the puzzle', 'Puzzle', True, 'new'),
    ('Street Racer', 'Race through city streets at high speed',
     'Arrow keys to steer, avoid obstacles', 'Racing', True, None),
    ('Basketball Pro', 'Shoot hoops and become a basketball champion',
     'Click and drag to aim, release to shoot', 'Sports', True, 'hot'),
    ('Dungeon Quest', 'Explore dungeons and defeat monsters',
     'WASD to move, click to attack', 'Adventure', True, None),
    ('Ninja Jump', 'Jump and climb through ninja training courses',
     'Space to jump, arrows to move', 'Action', False, 'new'),
    ('Match Master', 'Match 3 or more gems to score points',
     'Swap adjacent gems to make matches', 'Puzzle', False, None),
    ('Drift King', 'Master the art of drifting on various tracks',
     'Hold space to drift, arrows to steer', 'Racing', False, 'hot'),
    ('Soccer Stars', 'Score goals in fast-paced soccer matches',
     'Click to kick, aim for the goal', 'Sports', False, None),
    ('Treasure Hunter', 'Search for hidden treasures across mysterious islands',
     'Click to dig, collect treasures', 'Adventure', False, 'new'),
    ('Zombie Defense', 'Defend your base against zombie waves',
     'Click to place turrets, upgrade for more power', 'Action', False, None),
    ('Word Search', 'Find hidden words in the letter grid',
     'Click and drag to select words', 'Puzzle', False, None),
    ('Motorcycle Rush', 'Race motorcycles through challenging terrain',
     'Up to accelerate, balance with left/right', 'Racing', False, None),
    ('Golf Master', 'Play through 18 holes of challenging golf',
     'Click and drag to aim, release to swing', 'Sports', False, None),
    ('Mystery Island', 'Solve mysteries on a tropical island',
     'Click to interact with objects', 'Adventure', False, None),
]

SEED_STORE_ITEMS = [
    ('Cool Cat', 500),
    ('Robot Head', 750),
    ('Ninja Mask', 1000),
    ('Space Helmet', 1500),
    ('Crown', 2500),
    ('Dragon Avatar', 5000),
]


def _slug(name: str) -> str:
    return name.replace(' ', '')


def seed_storage(storage: Storage) -> bool:
    """Populate *storage* with the starter catalog.

    Does nothing when the store already has categories.

    Returns:
        ``True`` if data was written.
    """
    if storage.list_categories():
        return False

    category_ids = {}
    for name in SEED_CATEGORIES:
        category_ids[name] = storage.create_category({'name': name, 'icon': 'gamepad-2'})['id']

    for name, description, instructions, category, trending, badge in SEED_GAMES:
        storage.create_game({
            'name': name,
            'description': description,
            'instructions': instructions,
            'category_id': category_ids[category],
            'thumbnail_url': f'https://picsum.photos/seed/{_slug(name)}/400/300',
            'iframe_url': 'https://www.example.com/game-placeholder',
            'type': 'iframe',
            'badge': badge,
            'is_trending': trending,
        })

    for name, price in SEED_STORE_ITEMS:
        storage.create_store_item({
            'name': name,
            'image_url': f'https://api.dicebear.com/7.x/bottts/svg?seed={_slug(name)}',
            'price': price,
            'item_type': 'avatar',
        })

    logger.info("Seeded %d categories, %d games, %d store items",
                len(SEED_CATEGORIES), len(SEED_GAMES), len(SEED_STORE_ITEMS))
    return True
