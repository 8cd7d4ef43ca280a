"""File uploads for the admin panel: thumbnails, avatars and HTML games.

Two :class:`FileStore` backends are provided:

* :class:`LocalFileStore`: writes under a local directory that the web app
  serves at ``/uploads/<bucket>/<name>``.
* :class:`SupabaseFileStore`: pushes the bytes to a Supabase Storage bucket
  over its REST API and hands back the public URL.
"""
import logging
import os
import re
import time
from typing import Optional, Protocol

import requests

from ..errors import StorageError, ValidationError

_DEFAULT_TIMEOUT = 15  # seconds
MAX_UPLOAD_BYTES = 10 * 1024 * 1024
HTML_EXTENSIONS = ('html', 'htm')

_SAFE_EXT = re.compile(r'^[a-z0-9]{1,10}$')

logger = logging.getLogger('cravegames.service.upload')


class FileStore(Protocol):
    def save(self, bucket: str, name: str, data: bytes, content_type: str) -> str:
        """Store *data* and return the URL it can be fetched from."""
        ...


class LocalFileStore:
    """Stores uploads on the local filesystem.

    Args:
        directory:  Root directory; one sub-directory per bucket.
        url_prefix: URL path the web app serves the directory under.
    """

    def __init__(self, directory: str, url_prefix: str = '/uploads') -> None:
        self.directory = os.path.abspath(directory)
        self._url_prefix = url_prefix.rstrip('/')

    def path_for(self, bucket: str, name: str) -> str:
        return os.path.join(self.directory, bucket, name)

    def save(self, bucket: str, name: str, data: bytes, content_type: str) -> str:
        target = self.path_for(bucket, name)
        try:
            os.makedirs(os.path.dirname(target), exist_ok=True)
            with open(target, 'wb') as fh:
                fh.write(data)
        except OSError as exc:
            raise StorageError(f'Could not write {target}: {exc}') from exc
        return f'{self._url_prefix}/{bucket}/{name}'


class SupabaseFileStore:
    """Stores uploads in Supabase Storage.

    Args:
        base_url: Project URL, e.g. ``https://xyz.supabase.co``.
        api_key:  Service key with write access to the buckets.
        session:  Optional ``requests.Session`` (handy for tests).
        timeout:  HTTP request timeout in seconds.
    """

    def __init__(self, base_url: str, api_key: str,
                 session: Optional[requests.Session] = None,
                 timeout: int = _DEFAULT_TIMEOUT) -> None:
        self._base = base_url.rstrip('/')
        self._key = api_key
        self._session = session or requests.Session()
        self._timeout = timeout

    def public_url(self, bucket: str, name: str) -> str:
        return f'{self._base}/storage/v1/object/public/{bucket}/{name}'

    def save(self, bucket: str, name: str, data: bytes, content_type: str) -> str:
        headers = {
            'Authorization': f'Bearer {self._key}',
            'apikey': self._key,
            'Content-Type': content_type or 'application/octet-stream',
            'x-upsert': 'true',
        }
        try:
            resp = self._session.post(
                f'{self._base}/storage/v1/object/{bucket}/{name}',
                data=data, headers=headers, timeout=self._timeout,
            )
            resp.raise_for_status()
        except requests.RequestException as exc:
            logger.error('Supabase upload of %s/%s failed: %s', bucket, name, exc)
            raise StorageError(f'Upload failed: {exc}') from exc
        return self.public_url(bucket, name)


def _extension(filename: str, default: str) -> str:
    ext = filename.rsplit('.', 1)[-1].lower() if '.' in filename else ''
    return ext if _SAFE_EXT.match(ext) else default


class UploadService:
    """Validates uploaded files and stores them through a :class:`FileStore`.

    Size is capped by the web layer (``MAX_CONTENT_LENGTH``); this service
    re-checks it so it is safe to call directly.
    """

    def __init__(self, file_store: FileStore,
                 clock=time.time) -> None:
        self._store = file_store
        self._clock = clock

    def _check_size(self, data: bytes) -> None:
        if not data:
            raise ValidationError('No file uploaded')
        if len(data) > MAX_UPLOAD_BYTES:
            raise ValidationError('File too large (max 10MB)')

    def upload_image(self, bucket: str, prefix: str, filename: str,
                     data: bytes, content_type: str) -> str:
        """Store an image as ``<prefix>-<epoch ms>.<ext>`` and return its URL."""
        self._check_size(data)
        if not (content_type or '').startswith('image/'):
            raise ValidationError('File must be an image')
        name = f'{prefix}-{int(self._clock() * 1000)}.{_extension(filename or "", "png")}'
        url = self._store.save(bucket, name, data, content_type)
        logger.info('Uploaded %s to %s', name, bucket)
        return url

    def upload_thumbnail(self, filename: str, data: bytes, content_type: str) -> str:
        return self.upload_image('thumbnails', 'thumb', filename, data, content_type)

    def upload_avatar(self, filename: str, data: bytes, content_type: str) -> str:
        return self.upload_image('avatars', 'avatar', filename, data, content_type)

    def read_game_html(self, filename: str, data: bytes) -> str:
        """Return the text of an uploaded single-file HTML game."""
        self._check_size(data)
        if _extension(filename or '', '') not in HTML_EXTENSIONS:
            raise ValidationError('Game file must be .html or .htm')
        try:
            return data.decode('utf-8')
        except UnicodeDecodeError:
            raise ValidationError('Game file must be UTF-8 encoded')
