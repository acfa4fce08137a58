import logging
import secrets
import time
from typing import Optional

from lib.keyed_store import KeyedStore

logger = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPE = 'application/octet-stream'


def sniff_content_type(data: bytes) -> str:
    """Content type from the file signature"""
    if data[:2] == b'\xff\xd8':
        return 'image/jpeg'
    if data[:2] == b'\x89\x50':
        return 'image/png'
    if data[:2] == b'\x47\x49':
        return 'image/gif'
    if data[:4] == b'OggS':
        return 'audio/ogg'
    if data[:2] == b'\x25\x50':
        return 'application/pdf'
    return DEFAULT_CONTENT_TYPE


class EphemeralLinkCache:
    """Short-lived token -> bytes map backing the public /media/<token> URLs.

    Tokens are not credentials; they expire after a fixed TTL no matter how
    often they are fetched.
    """

    def __init__(self, store: KeyedStore, ttl_seconds: float = 600):
        self.store = store
        self.ttl_seconds = ttl_seconds

    def publish(self, data: bytes, prefix: str = 'file') -> str:
        token = f"{prefix}_{int(time.time() * 1000)}_{secrets.token_urlsafe(9)}"
        self.store.set(token, data, ttl=self.ttl_seconds)
        logger.info(f"Published {len(data)} bytes as {token} for {self.ttl_seconds}s")
        return token

    def resolve(self, token: str) -> Optional[bytes]:
        return self.store.get(token)

    def url_for(self, token: str, base_url: str) -> str:
        return f"{base_url.rstrip('/')}/media/{token}"

    def __len__(self) -> int:
        return len(self.store)
