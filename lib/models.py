"""Domain models shared by the retrieval and ingestion services."""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, field_validator

# Folder names under {media_root}/{user}/
KIND_FOLDERS = {
    'image': 'images',
    'audio': 'audio',
    'video': 'videos',
    'document': 'documents',
}


def media_kind(mime_type: Optional[str]) -> str:
    """Map a MIME type to the message type tag stored with the message."""
    if not mime_type:
        return 'media'
    mime_type = mime_type.lower()
    if mime_type.startswith('image/'):
        return 'image'
    if mime_type.startswith('audio/'):
        return 'audio'
    if mime_type.startswith('video/'):
        return 'video'
    if 'pdf' in mime_type or 'document' in mime_type or mime_type.startswith('text/'):
        return 'document'
    return 'media'


def kind_patterns(kind: str) -> List[str]:
    """MIME wildcard patterns (PostgREST `*` syntax) matching the same files as media_kind."""
    if kind == 'document':
        return ['*pdf*', '*document*', 'text/*']
    return [f"{kind}/*"]


def kind_folder(kind: str) -> str:
    return KIND_FOLDERS.get(kind, 'other')


class User(BaseModel):
    id: int
    phone_number: str
    name: Optional[str] = None
    created_at: Optional[datetime] = None


class Message(BaseModel):
    id: int
    user_id: Optional[int] = None
    phone_number: str
    message_sid: Optional[str] = None
    content: str = ''
    direction: Literal['incoming', 'outgoing']
    message_type: Literal['text', 'image', 'audio', 'video', 'document', 'media'] = 'text'
    is_forwarded: bool = False
    created_at: Optional[datetime] = None


class MediaFile(BaseModel):
    """Metadata for one stored binary, joined with its parent message."""

    id: int
    message_id: int
    file_type: str
    file_size: int = 0
    file_name: str
    file_description: Optional[str] = None
    storage_url: str
    twilio_media_url: Optional[str] = None
    created_at: Optional[datetime] = None
    message_date: Optional[datetime] = None
    message_content: Optional[str] = None

    @property
    def kind(self) -> str:
        return media_kind(self.file_type)

    @property
    def sent_at(self) -> Optional[datetime]:
        return self.message_date or self.created_at


def _blank_to_none(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, str):
        cleaned = value.strip()
        if not cleaned or cleaned.lower() in ('null', 'none', 'n/a'):
            return None
        return cleaned
    return value


class RetrievalIntent(BaseModel):
    """Structured interpretation of a free-text file request."""

    action: Literal['retrieve', 'info', 'list', 'none']
    fileType: Optional[Literal['image', 'audio', 'video', 'document']] = None
    timeframe: Optional[Literal['latest', 'today', 'yesterday', 'all']] = None
    infoType: Optional[Literal['filename', 'count', 'date', 'all']] = None
    searchQuery: Optional[str] = None
    confidence: Literal['high', 'medium', 'low'] = 'medium'

    @field_validator('action', 'confidence', mode='before')
    @classmethod
    def _lowercase(cls, value):
        # 'none' is a real action here, not a null
        return value.strip().lower() if isinstance(value, str) else value

    @field_validator('fileType', 'timeframe', 'infoType', mode='before')
    @classmethod
    def _normalize_choice(cls, value):
        value = _blank_to_none(value)
        return value.lower() if isinstance(value, str) else value

    @field_validator('searchQuery', mode='before')
    @classmethod
    def _normalize_query(cls, value):
        return _blank_to_none(value)

    @property
    def is_file_request(self) -> bool:
        return self.action != 'none'

    @property
    def is_low_confidence(self) -> bool:
        return self.confidence == 'low'


@dataclass(frozen=True)
class ClassificationFailure:
    """Classifier output could not be read as an intent; treat as "not a file query"."""

    reason: str
    raw: Optional[str] = None


@dataclass
class InboundMessage:
    """One webhook delivery from the messaging provider."""

    sender: str
    body: str = ''
    num_media: int = 0
    media_url: Optional[str] = None
    media_type: Optional[str] = None
    is_forwarded: bool = False
    message_sid: Optional[str] = None

    @property
    def user_phone(self) -> str:
        return self.sender.replace('whatsapp:', '')

    @property
    def has_media(self) -> bool:
        return self.num_media > 0 and bool(self.media_url)

    @classmethod
    def from_form(cls, form: Dict[str, Any]) -> 'InboundMessage':
        try:
            num_media = int(form.get('NumMedia') or 0)
        except (TypeError, ValueError):
            num_media = 0
        return cls(
            sender=form.get('From', ''),
            body=(form.get('Body') or '').strip(),
            num_media=num_media,
            media_url=form.get('MediaUrl0') or None,
            media_type=form.get('MediaContentType0') or None,
            is_forwarded=str(form.get('Forwarded', '')).lower() == 'true',
            message_sid=form.get('MessageSid') or None,
        )


# Response actions produced by the dispatcher and carried out by the handler.

@dataclass(frozen=True)
class Reply:
    text: str


@dataclass(frozen=True)
class SendFile:
    media_file: MediaFile
    caption: Optional[str] = None


@dataclass
class IngestionResult:
    media_file: MediaFile
    message: Message
    data: bytes = b''
    transcription: Optional[str] = None
    explicit_name: Optional[str] = None


Action = Reply | SendFile
ActionList = List[Action]
