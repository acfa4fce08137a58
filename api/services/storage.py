import logging
import os
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from lib.database import Database
from lib.error_handler import StorageMissError
from lib.models import MediaFile

logger = logging.getLogger(__name__)

class MediaStore:
    """Per-user file persistence on local disk plus the metadata queries over it.

    Bytes live under {root}/{user}/{kind folder}/{file name}. Files are only
    ever created, never rewritten, so readers never race a writer.
    """

    def __init__(self, database: Database, root: str):
        self.db = database
        self.root = Path(root)
        logger.info(f"Media store initialized at {self.root.resolve()}")

    def user_dir(self, user_phone: str, folder: str) -> Path:
        safe_user = user_phone.replace('whatsapp:', '').replace(os.sep, '_')
        return self.root / safe_user / folder

    def save(self, data: bytes, user_phone: str, folder: str, file_name: str) -> str:
        """Write bytes durably and return the storage locator.

        A name collision gets a numeric suffix instead of overwriting.
        """
        directory = self.user_dir(user_phone, folder)
        if not directory.exists():
            directory.mkdir(parents=True, exist_ok=True)
            logger.info(f"📁 Created directory: {directory}")

        stem, dot, extension = file_name.rpartition('.')
        if not dot:
            stem, extension = file_name, ''
        candidate = directory / file_name
        counter = 1
        while True:
            try:
                with open(candidate, 'xb') as handle:
                    handle.write(data)
                    handle.flush()
                    os.fsync(handle.fileno())
                break
            except FileExistsError:
                counter += 1
                suffix = f".{extension}" if extension else ''
                candidate = directory / f"{stem}-{counter}{suffix}"

        logger.info(f"Media file saved: {candidate} ({len(data)} bytes)")
        return str(candidate)

    def read_bytes(self, media_file: MediaFile) -> bytes:
        try:
            with open(media_file.storage_url, 'rb') as handle:
                return handle.read()
        except OSError as e:
            raise StorageMissError(
                f"Stored bytes for media {media_file.id} unavailable: {str(e)}",
                locator=media_file.storage_url,
            ) from e

    async def record(
        self,
        message_id: int,
        mime_type: str,
        data: bytes,
        file_name: str,
        description: Optional[str],
        locator: str,
        origin_url: Optional[str],
    ) -> MediaFile:
        """Persist metadata for bytes already written by save()"""
        return await self.db.save_media_file(
            message_id=message_id,
            file_type=mime_type,
            file_size=len(data),
            file_name=file_name,
            file_description=description,
            storage_url=locator,
            twilio_media_url=origin_url,
        )

    async def list_by_type(self, user_phone: str, file_type: Optional[str] = None, limit: int = 20) -> List[MediaFile]:
        if file_type:
            return await self.db.search_media_files(user_phone, file_type, limit)
        return await self.db.get_all_media_files(user_phone, limit)

    async def list_by_date_range(self, user_phone: str, start: datetime, end: datetime) -> List[MediaFile]:
        return await self.db.get_media_by_date_range(user_phone, start, end)

    async def latest_by_type(self, user_phone: str, file_type: Optional[str] = None) -> Optional[MediaFile]:
        if file_type:
            return await self.db.get_latest_media_file(user_phone, file_type)
        files = await self.db.get_all_media_files(user_phone, 1)
        return files[0] if files else None

    async def search_by_keyword(self, user_phone: str, keyword: str, limit: int = 10) -> List[MediaFile]:
        return await self.db.search_media_by_filename(user_phone, keyword, limit)

    async def search_by_description(self, user_phone: str, query: str, limit: int = 10) -> List[MediaFile]:
        terms = [term for term in query.split() if term]
        if not terms:
            return []
        return await self.db.search_media_by_description(user_phone, terms, limit)

    def discard(self, locator: str) -> None:
        """Remove bytes that never got a metadata row"""
        try:
            os.remove(locator)
            logger.info(f"Discarded unrecorded file {locator}")
        except FileNotFoundError:
            pass

    async def delete(self, media_id: int) -> bool:
        """Delete the metadata row and, if present, the stored bytes"""
        media_file = await self.db.get_media_file(media_id)
        deleted = await self.db.delete_media_file(media_id)
        if media_file and os.path.isfile(media_file.storage_url):
            os.remove(media_file.storage_url)
            logger.info(f"Removed stored file {media_file.storage_url}")
        return deleted is not None
