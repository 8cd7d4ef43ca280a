"""Services package: expose all concrete services from one import."""
from .locks import KeyedLock
from .auth_service import AuthService, public_user
from .catalog_service import CatalogService
from .favorites_service import FavoritesService
from .rating_service import RatingService
from .comment_service import CommentService
from .store_service import StoreService
from .admin_service import AdminService
from .play_service import PlayService, PlayContent, SANDBOX_CSP
from .upload_service import (
    UploadService, FileStore, LocalFileStore, SupabaseFileStore, MAX_UPLOAD_BYTES,
)

__all__ = [
    'KeyedLock',
    'AuthService',
    'public_user',
    'CatalogService',
    'FavoritesService',
    'RatingService',
    'CommentService',
    'StoreService',
    'AdminService',
    'PlayService',
    'PlayContent',
    'SANDBOX_CSP',
    'UploadService',
    'FileStore',
    'LocalFileStore',
    'SupabaseFileStore',
    'MAX_UPLOAD_BYTES',
]
