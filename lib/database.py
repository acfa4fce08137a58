from datetime import datetime
from typing import Any, Dict, List, Optional
import logging
import re
from supabase import create_client, Client

from lib.config import get_settings
from lib.error_handler import AppError
from lib.models import MediaFile, Message, User, kind_patterns

logger = logging.getLogger(__name__)

# Characters that would break a PostgREST or() filter expression
_FILTER_UNSAFE = re.compile(r'[,()*"\\]')


def _ilike_pattern(term: str) -> str:
    return f"*{_FILTER_UNSAFE.sub('', term)}*"


class Database:
    """Relational store for users, messages and media metadata (Supabase)."""

    def __init__(self, supabase_client: Optional[Client] = None):
        if supabase_client is None:
            settings = get_settings()
            supabase_client = create_client(settings.supabase_url, settings.supabase_key)
        self.supabase = supabase_client
        self.users_table = 'users'
        self.messages_table = 'messages'
        self.media_table = 'media_files'
        self.usage_table = 'usage_logs'
        # media_files joined with the parent message, see db/schema.sql
        self.media_view = 'media_library'

    def _execute(self, query, action: str):
        try:
            result = query.execute()
        except Exception as e:
            raise AppError(f"Database error while {action}: {str(e)}") from e
        if hasattr(result, 'error') and result.error:
            raise AppError(f"Supabase error while {action}: {result.error}")
        return result

    async def get_or_create_user(self, phone_number: str, name: Optional[str] = None) -> User:
        """Return the user for a phone number, creating it on first contact"""
        result = self._execute(
            self.supabase.table(self.users_table).select('*').eq('phone_number', phone_number).limit(1),
            'fetching user',
        )
        if result.data:
            return User.model_validate(result.data[0])

        logger.info(f"Creating user for {phone_number}")
        result = self._execute(
            self.supabase.table(self.users_table).insert({'phone_number': phone_number, 'name': name}),
            'creating user',
        )
        return User.model_validate(result.data[0])

    async def save_message(
        self,
        user_id: Optional[int],
        phone_number: str,
        content: str,
        direction: str,
        message_type: str = 'text',
        message_sid: Optional[str] = None,
        is_forwarded: bool = False,
    ) -> Message:
        record = {
            'user_id': user_id,
            'phone_number': phone_number,
            'message_sid': message_sid,
            'content': content,
            'direction': direction,
            'message_type': message_type,
            'is_forwarded': is_forwarded,
        }
        result = self._execute(self.supabase.table(self.messages_table).insert(record), 'saving message')
        return Message.model_validate(result.data[0])

    async def save_media_file(
        self,
        message_id: int,
        file_type: str,
        file_size: int,
        file_name: str,
        file_description: Optional[str],
        storage_url: str,
        twilio_media_url: Optional[str],
    ) -> MediaFile:
        record = {
            'message_id': message_id,
            'file_type': file_type,
            'file_size': file_size,
            'file_name': file_name,
            'file_description': file_description or None,
            'storage_url': storage_url,
            'twilio_media_url': twilio_media_url,
        }
        result = self._execute(self.supabase.table(self.media_table).insert(record), 'saving media file')
        return MediaFile.model_validate(result.data[0])

    def _media_query(self, phone_number: str):
        return (
            self.supabase.table(self.media_view)
            .select('*')
            .eq('phone_number', phone_number)
        )

    def _media_rows(self, query, action: str) -> List[MediaFile]:
        result = self._execute(query.order('message_date', desc=True), action)
        return [MediaFile.model_validate(row) for row in result.data or []]

    async def search_media_files(self, phone_number: str, file_type: Optional[str] = None, limit: int = 10) -> List[MediaFile]:
        """Media of one kind (image, audio, video, document), newest first"""
        query = self._media_query(phone_number)
        if file_type:
            query = query.or_(','.join(f"file_type.ilike.{p}" for p in kind_patterns(file_type)))
        return self._media_rows(query.limit(limit), 'searching media files')

    async def search_media_by_description(self, phone_number: str, terms: List[str], limit: int = 10) -> List[MediaFile]:
        """Media whose description or name contains ANY of the terms (case-insensitive)"""
        conditions = []
        for term in terms:
            pattern = _ilike_pattern(term)
            if pattern == '**':
                continue
            conditions.extend([
                f"file_description.ilike.{pattern}",
                f"file_name.ilike.{pattern}",
                f"file_name_spaced.ilike.{pattern}",
            ])

        query = self._media_query(phone_number)
        if conditions:
            query = query.or_(','.join(conditions))
        return self._media_rows(query.limit(limit), 'searching media by description')

    async def search_media_by_filename(self, phone_number: str, term: str, limit: int = 10) -> List[MediaFile]:
        query = self._media_query(phone_number).ilike('file_name', _ilike_pattern(term))
        return self._media_rows(query.limit(limit), 'searching media by filename')

    async def get_media_by_date_range(self, phone_number: str, start: datetime, end: datetime) -> List[MediaFile]:
        """Media whose parent message falls within [start, end], both ends inclusive"""
        query = (
            self._media_query(phone_number)
            .gte('message_date', start.isoformat())
            .lte('message_date', end.isoformat())
        )
        return self._media_rows(query, 'fetching media by date range')

    async def get_latest_media_file(self, phone_number: str, file_type: str) -> Optional[MediaFile]:
        files = await self.search_media_files(phone_number, file_type, limit=1)
        return files[0] if files else None

    async def get_all_media_files(self, phone_number: str, limit: int = 20) -> List[MediaFile]:
        return self._media_rows(self._media_query(phone_number).limit(limit), 'fetching media files')

    async def get_media_file(self, media_id: int) -> Optional[MediaFile]:
        result = self._execute(
            self.supabase.table(self.media_view).select('*').eq('id', media_id).limit(1),
            'fetching media file',
        )
        return MediaFile.model_validate(result.data[0]) if result.data else None

    async def delete_media_file(self, media_id: int) -> Optional[Dict[str, Any]]:
        result = self._execute(
            self.supabase.table(self.media_table).delete().eq('id', media_id),
            'deleting media file',
        )
        return result.data[0] if result.data else None

    async def log_usage(self, user_id: Optional[int], action: str, details: Optional[Dict[str, Any]] = None) -> None:
        """Record a usage event; never raises"""
        try:
            self._execute(
                self.supabase.table(self.usage_table).insert({
                    'user_id': user_id,
                    'action': action,
                    'details': details or {},
                }),
                'logging usage',
            )
        except Exception as e:
            logger.error(f"Error logging usage: {str(e)}")
