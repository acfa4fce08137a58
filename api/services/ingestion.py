import logging
import os
import re
import unicodedata
from datetime import datetime
from typing import Callable, Optional, Tuple

from api.services.intent import IntentClassifier
from api.services.storage import MediaStore
from lib.database import Database
from lib.error_handler import AppError, ErrorHandler
from lib.json_utils import extract_json_object
from lib.models import IngestionResult, InboundMessage, User, kind_folder, media_kind
from lib.openai_client import OpenAIClient
from lib.twilio_client import TwilioClient

logger = logging.getLogger(__name__)

MAX_SLUG_LENGTH = 50
MAX_DESCRIPTION_LENGTH = 500

_DISALLOWED = re.compile(r'[^a-z0-9-]')
_REPEATED_HYPHENS = re.compile(r'-+')

EXTENSION_MAP = {
    'jpeg': 'jpg',
    'pjpeg': 'jpg',
    'mpeg': 'mp3',
    'mp3': 'mp3',
    'x-wav': 'wav',
    'amr-wb': 'amr',
    'x-m4a': 'm4a',
    'quicktime': 'mov',
    'plain': 'txt',
    'msword': 'doc',
    'vnd.openxmlformats-officedocument.wordprocessingml.document': 'docx',
    'vnd.ms-excel': 'xls',
    'vnd.openxmlformats-officedocument.spreadsheetml.sheet': 'xlsx',
}

VISION_NAMING_PROMPT = (
    'Look at this image and reply with ONLY a JSON object: '
    '{"filename": "2-4 words describing it, lowercase, hyphens instead of spaces", '
    '"description": "1-2 sentences with any visible text, objects, people or important details"}. '
    'Filename examples: "invoice-march-2024", "family-photo", "product-receipt".'
)

AUDIO_NAMING_PROMPT = """Create a short filename (2-4 words max, lowercase, hyphens only, no quotes) that describes what this audio is about:

"{transcription}"

Examples:
"I need to schedule a meeting for next week" -> "schedule-meeting"
"Reminder to buy groceries" -> "grocery-reminder"

Now create a filename for the audio above (2-4 words, lowercase, hyphens, no other text):"""


def sanitize_slug(name: Optional[str]) -> str:
    """Lowercase, hyphen-separated [a-z0-9-] slug of at most 50 characters."""
    if not name:
        return ''
    # Fold accents so "cédula" becomes "cedula" rather than "c-dula"
    folded = unicodedata.normalize('NFKD', name)
    folded = ''.join(ch for ch in folded if not unicodedata.combining(ch))
    slug = _DISALLOWED.sub('-', folded.lower())
    slug = _REPEATED_HYPHENS.sub('-', slug).strip('-')
    return slug[:MAX_SLUG_LENGTH].strip('-')


def extension_for(mime_type: Optional[str]) -> str:
    if not mime_type or '/' not in mime_type:
        return 'bin'
    subtype = mime_type.split('/', 1)[1].split(';')[0].strip().lower()
    if subtype in EXTENSION_MAP:
        return EXTENSION_MAP[subtype]
    subtype = re.sub(r'[^a-z0-9]', '', subtype.split('+')[0])
    return subtype or 'bin'


def compose_file_name(slug: str, mime_type: Optional[str], when: datetime) -> str:
    return f"{slug}_{when.strftime('%Y-%m-%d')}_{when.strftime('%H-%M-%S')}.{extension_for(mime_type)}"


class MediaIngestionPipeline:
    """Stores an inbound attachment under a descriptive, searchable name."""

    def __init__(
        self,
        store: MediaStore,
        database: Database,
        openai_client: OpenAIClient,
        classifier: IntentClassifier,
        twilio_client: TwilioClient,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.store = store
        self.db = database
        self.ai = openai_client
        self.classifier = classifier
        self.twilio = twilio_client
        self.clock = clock

    async def ingest_inbound(self, user: User, inbound: InboundMessage) -> IngestionResult:
        """Download the first attachment of an inbound message and ingest it.

        Raises MediaDownloadError when the attachment cannot be fetched; the
        caller then records the message as text only.
        """
        logger.info(f"Media received: {inbound.media_type} at {inbound.media_url}")
        data = await self.twilio.download_media(inbound.media_url)
        return await self.ingest(
            user,
            data,
            inbound.media_type or 'application/octet-stream',
            context_text=inbound.body,
            origin_url=inbound.media_url,
            message_sid=inbound.message_sid,
            is_forwarded=inbound.is_forwarded,
        )

    async def ingest(
        self,
        user: User,
        data: bytes,
        mime_type: str,
        context_text: Optional[str] = None,
        explicit_name: Optional[str] = None,
        origin_url: Optional[str] = None,
        message_sid: Optional[str] = None,
        is_forwarded: bool = False,
    ) -> IngestionResult:
        kind = media_kind(mime_type)

        if explicit_name is None:
            explicit_name = await self.classifier.detect_save_name(context_text)
            if explicit_name:
                logger.info(f"User asked to save the file as \"{explicit_name}\"")

        transcription = None
        if kind == 'audio':
            transcription = await self._transcribe(data, mime_type)

        message = await self.db.save_message(
            user_id=user.id,
            phone_number=user.phone_number,
            content=transcription or context_text or '',
            direction='incoming',
            message_type=kind,
            message_sid=message_sid,
            is_forwarded=is_forwarded,
        )
        logger.info(f"Message saved to database: {message.id}")

        slug, description = await self._describe(kind, data, mime_type, transcription, explicit_name)
        file_name = compose_file_name(slug, mime_type, self.clock())

        # Bytes are durable before any metadata points at them
        locator = self.store.save(data, user.phone_number, kind_folder(kind), file_name)
        try:
            media_file = await self.store.record(
                message_id=message.id,
                mime_type=mime_type,
                data=data,
                file_name=os.path.basename(locator),
                description=description,
                locator=locator,
                origin_url=origin_url,
            )
        except AppError:
            self.store.discard(locator)
            raise
        logger.info(f"Media metadata saved to database: {media_file.id} ({media_file.file_name})")
        return IngestionResult(
            media_file=media_file,
            message=message,
            data=data,
            transcription=transcription,
            explicit_name=explicit_name,
        )

    async def _transcribe(self, data: bytes, mime_type: str) -> Optional[str]:
        logger.info("Transcribing audio...")
        try:
            text = await self.ai.transcribe(data, mime_type)
        except AppError as e:
            ErrorHandler.handle_transcription_error(e)
            return None
        logger.info(f"Transcribed: {text[:100]}")
        return text or None

    async def _describe(
        self,
        kind: str,
        data: bytes,
        mime_type: str,
        transcription: Optional[str],
        explicit_name: Optional[str],
    ) -> Tuple[str, Optional[str]]:
        """Slug and searchable description; naming failures fall back to a generic name"""
        fallback = kind if kind in ('image', 'audio', 'video', 'document') else 'file'

        if explicit_name:
            # The user's own name is the search key; skip content analysis
            return sanitize_slug(explicit_name) or fallback, explicit_name

        slug, description = '', None
        try:
            if kind == 'image':
                slug, description = await self._name_image(data, mime_type)
            elif kind == 'audio' and transcription:
                description = transcription[:MAX_DESCRIPTION_LENGTH]
                slug = await self._name_audio(transcription)
            elif kind == 'document':
                slug = 'document'
        except AppError as e:
            logger.error(f"Error generating descriptive filename: {str(e)}")
            slug = ''

        return sanitize_slug(slug) or fallback, description

    async def _name_image(self, data: bytes, mime_type: str) -> Tuple[str, Optional[str]]:
        raw = await self.ai.complete(VISION_NAMING_PROMPT, image=data, image_mime=mime_type, max_tokens=150)
        payload = extract_json_object(raw) or {}
        slug = payload.get('filename') if isinstance(payload.get('filename'), str) else ''
        description = payload.get('description') if isinstance(payload.get('description'), str) else None
        if description:
            description = description.strip()[:MAX_DESCRIPTION_LENGTH]
            logger.info(f"✅ Generated image description: {description}")
        return slug, description or None

    async def _name_audio(self, transcription: str) -> str:
        raw = await self.ai.complete(
            AUDIO_NAMING_PROMPT.format(transcription=transcription[:1000]),
            max_tokens=15,
            temperature=0.3,
        )
        logger.info(f"✅ Generated audio filename: {raw}")
        return raw.strip().strip('"\'')
