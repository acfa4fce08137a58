import pytest
from unittest.mock import AsyncMock, MagicMock
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

# Add project root to Python path
project_root = str(Path(__file__).parent.parent)
sys.path.append(project_root)

from lib.models import MediaFile, Message, User

PHONE = '+15550001111'
SENDER = f'whatsapp:{PHONE}'
BOT_NUMBER = 'whatsapp:+14155238886'


class FakeClock:
    """Manually advanced monotonic clock"""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class FakeDatabase:
    """In-memory stand-in for lib.database.Database with the same filtering semantics"""

    def __init__(self):
        self.users = {}
        self.messages: List[Message] = []
        self.media: List[tuple] = []
        self.usage: List[tuple] = []

    async def get_or_create_user(self, phone_number: str, name: Optional[str] = None) -> User:
        if phone_number not in self.users:
            self.users[phone_number] = User(id=len(self.users) + 1, phone_number=phone_number, name=name)
        return self.users[phone_number]

    async def save_message(self, user_id, phone_number, content, direction, message_type='text',
                           message_sid=None, is_forwarded=False) -> Message:
        message = Message(
            id=len(self.messages) + 1,
            user_id=user_id,
            phone_number=phone_number,
            content=content,
            direction=direction,
            message_type=message_type,
            message_sid=message_sid,
            is_forwarded=is_forwarded,
            created_at=datetime.now(timezone.utc),
        )
        self.messages.append(message)
        return message

    async def save_media_file(self, message_id, file_type, file_size, file_name, file_description,
                              storage_url, twilio_media_url) -> MediaFile:
        message = next(m for m in self.messages if m.id == message_id)
        media_file = MediaFile(
            id=len(self.media) + 1,
            message_id=message_id,
            file_type=file_type,
            file_size=file_size,
            file_name=file_name,
            file_description=file_description,
            storage_url=storage_url,
            twilio_media_url=twilio_media_url,
            message_date=message.created_at,
            message_content=message.content,
        )
        self.media.append((message.phone_number, media_file))
        return media_file

    def add_media(self, file_name: str, sent_at: datetime, file_type: str = 'image/jpeg',
                  description: Optional[str] = None, phone: str = PHONE, storage_url: str = '') -> MediaFile:
        media_file = MediaFile(
            id=len(self.media) + 1,
            message_id=len(self.media) + 100,
            file_type=file_type,
            file_size=2048,
            file_name=file_name,
            file_description=description,
            storage_url=storage_url or f'media/{phone}/{file_name}',
            message_date=sent_at,
        )
        self.media.append((phone, media_file))
        return media_file

    def _rows(self, phone_number: str) -> List[MediaFile]:
        rows = [m for phone, m in self.media if phone == phone_number]
        return sorted(rows, key=lambda m: m.message_date, reverse=True)

    async def search_media_files(self, phone_number, file_type=None, limit=10):
        rows = self._rows(phone_number)
        if file_type:
            rows = [m for m in rows if m.kind == file_type]
        return rows[:limit]

    async def search_media_by_description(self, phone_number, terms, limit=10):
        terms = [t.lower() for t in terms]

        def matches(m):
            fields = [m.file_description or '', m.file_name, m.file_name.replace('-', ' ')]
            return any(t in field.lower() for t in terms for field in fields)

        return [m for m in self._rows(phone_number) if matches(m)][:limit]

    async def search_media_by_filename(self, phone_number, term, limit=10):
        return [m for m in self._rows(phone_number) if term.lower() in m.file_name.lower()][:limit]

    async def get_media_by_date_range(self, phone_number, start, end):
        return [m for m in self._rows(phone_number) if start <= m.message_date <= end]

    async def get_latest_media_file(self, phone_number, file_type):
        rows = await self.search_media_files(phone_number, file_type, limit=1)
        return rows[0] if rows else None

    async def get_all_media_files(self, phone_number, limit=20):
        return self._rows(phone_number)[:limit]

    async def get_media_file(self, media_id):
        return next((m for _, m in self.media if m.id == media_id), None)

    async def delete_media_file(self, media_id):
        for index, (_, m) in enumerate(self.media):
            if m.id == media_id:
                del self.media[index]
                return m.model_dump()
        return None

    async def log_usage(self, user_id, action, details=None):
        self.usage.append((user_id, action, details or {}))


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def fake_db():
    return FakeDatabase()


@pytest.fixture
def media_store(fake_db, tmp_path):
    from api.services.storage import MediaStore
    return MediaStore(fake_db, str(tmp_path / 'media'))


@pytest.fixture
def mock_openai():
    client = MagicMock()
    client.complete = AsyncMock()
    client.chat = AsyncMock(return_value="Respuesta de prueba")
    client.transcribe = AsyncMock(return_value="")
    return client


@pytest.fixture
def mock_twilio():
    client = MagicMock()
    client.from_number = BOT_NUMBER
    client.send_message = AsyncMock(return_value='SM123')
    client.download_media = AsyncMock(return_value=b'\xff\xd8\xff\xe0fake-jpeg')
    return client


def make_media(id: int, file_name: str, sent_at: datetime, file_type: str = 'image/jpeg',
               description: Optional[str] = None) -> MediaFile:
    return MediaFile(
        id=id,
        message_id=id,
        file_type=file_type,
        file_size=1024,
        file_name=file_name,
        file_description=description,
        storage_url=f'media/{PHONE}/{file_name}',
        message_date=sent_at,
    )
