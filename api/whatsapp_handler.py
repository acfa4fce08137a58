import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from api.services.chat import ChatService
from api.services.ingestion import MediaIngestionPipeline
from api.services.intent import IntentClassifier, looks_like_file_query
from api.services.links import EphemeralLinkCache
from api.services.retrieval import FileRetrievalService
from api.services.selection import OutOfRange, RetrievalSessionManager, Selected
from api.services.storage import MediaStore
from api.services.whatsapp import WhatsAppService
from lib.database import Database
from lib.error_handler import AIServiceError, AppError, ErrorHandler, MediaDownloadError, MessagingError, StorageMissError
from lib.keyed_store import KeyedStore
from lib.models import (
    ActionList,
    ClassificationFailure,
    InboundMessage,
    IngestionResult,
    Reply,
    SendFile,
    User,
)

logger = logging.getLogger(__name__)

FORWARDED_ACK = "📩 Mensaje reenviado recibido. Envíame tu pregunta o comando sobre este mensaje."


class InboundKind(Enum):
    """What an inbound message is, in dispatch priority order."""

    IGNORED = 'ignored'
    FORWARDED = 'forwarded'
    SELECTION = 'selection'
    FILE_QUERY = 'file_query'
    MEDIA = 'media'
    CONVERSATION = 'conversation'


@dataclass
class ForwardedMessage:
    content: str
    received_at: datetime
    num_media: int = 0


def interpret(inbound: InboundMessage, has_pending: bool, bot_number: Optional[str] = None) -> InboundKind:
    """Classify an inbound message.

    forwarded > pending selection > file query > media > conversation.
    A pending selection only consumes a pure number sent without an
    attachment; file queries are only considered for text-only messages.
    """
    if bot_number and inbound.sender == bot_number:
        return InboundKind.IGNORED
    if inbound.is_forwarded:
        return InboundKind.FORWARDED
    if has_pending and not inbound.has_media and RetrievalSessionManager.is_selection_reply(inbound.body):
        return InboundKind.SELECTION
    if not inbound.has_media and looks_like_file_query(inbound.body):
        return InboundKind.FILE_QUERY
    if inbound.has_media:
        return InboundKind.MEDIA
    return InboundKind.CONVERSATION


class WhatsAppHandler:
    def __init__(
        self,
        database: Database,
        whatsapp: WhatsAppService,
        classifier: IntentClassifier,
        retrieval: FileRetrievalService,
        sessions: RetrievalSessionManager,
        ingestion: MediaIngestionPipeline,
        chat: ChatService,
        media_store: MediaStore,
        links: EphemeralLinkCache,
        state: KeyedStore,
        public_base_url: Optional[str] = None,
        forwarded_ttl: float = 1800,
    ):
        self.db = database
        self.whatsapp = whatsapp
        self.classifier = classifier
        self.retrieval = retrieval
        self.sessions = sessions
        self.ingestion = ingestion
        self.chat = chat
        self.media_store = media_store
        self.links = links
        self.state = state
        self.public_base_url = public_base_url
        self.forwarded_ttl = forwarded_ttl

    async def handle_incoming_message(self, form: Dict[str, Any], base_url: str = '') -> InboundKind:
        """Handle one Twilio WhatsApp webhook delivery.

        Raises AIServiceError when the conversational reply cannot be produced.
        """
        inbound = InboundMessage.from_form(form)
        conversation_id = inbound.sender
        logger.info(f"Received message from {conversation_id}: {inbound.body} ({inbound.num_media} media)")

        kind = interpret(inbound, self.sessions.has_pending(conversation_id), self.whatsapp.sender)
        if kind is InboundKind.IGNORED:
            logger.info("Ignoring message from bot itself")
            return kind

        user = await self._get_user(inbound.user_phone)
        logger.info(f"Dispatching message from {conversation_id} as {kind.value}")

        if kind is InboundKind.FORWARDED:
            actions = await self._buffer_forwarded(user, inbound)
        elif kind is InboundKind.SELECTION:
            actions = await self._select(user, inbound)
        elif kind is InboundKind.FILE_QUERY:
            actions = await self._file_query(user, inbound)
            if actions is None:
                kind = InboundKind.CONVERSATION
                actions = await self._converse(user, inbound)
        elif kind is InboundKind.MEDIA:
            actions = await self._ingest(user, inbound)
        else:
            actions = await self._converse(user, inbound)

        await self._perform(user, conversation_id, actions, base_url)
        return kind

    async def _get_user(self, phone_number: str) -> Optional[User]:
        try:
            user = await self.db.get_or_create_user(phone_number)
            logger.info(f"User identified: {user.id} - {user.phone_number}")
            return user
        except AppError as e:
            # Keep answering without persistence
            logger.error(f"Database error getting user: {str(e)}")
            return None

    async def _record(self, user: Optional[User], content: str, direction: str, inbound: Optional[InboundMessage] = None) -> None:
        if user is None:
            return
        try:
            await self.db.save_message(
                user_id=user.id,
                phone_number=user.phone_number,
                content=content,
                direction=direction,
                message_type='text',
                message_sid=inbound.message_sid if inbound else None,
                is_forwarded=inbound.is_forwarded if inbound else False,
            )
        except AppError as e:
            logger.error(f"Failed to save {direction} message: {str(e)}")

    async def _log_usage(self, user: Optional[User], action: str, details: Dict[str, Any]) -> None:
        if user is not None:
            await self.db.log_usage(user.id, action, details)

    async def _buffer_forwarded(self, user: Optional[User], inbound: InboundMessage) -> ActionList:
        logger.info(f"Forwarded message detected from {inbound.sender}")
        self.state.set(
            self._forwarded_key(inbound.sender),
            ForwardedMessage(content=inbound.body, received_at=datetime.now(), num_media=inbound.num_media),
            ttl=self.forwarded_ttl,
        )
        await self._record(user, inbound.body, 'incoming', inbound)
        return [Reply(FORWARDED_ACK)]

    def _forwarded_key(self, conversation_id: str) -> str:
        return f"forwarded:{conversation_id}"

    async def _select(self, user: Optional[User], inbound: InboundMessage) -> ActionList:
        await self._record(user, inbound.body, 'incoming', inbound)
        outcome = self.sessions.select(inbound.sender, inbound.body)
        if isinstance(outcome, Selected):
            media_file = outcome.media_file
            return [SendFile(media_file, caption=f"📎 {media_file.file_name}")]
        if isinstance(outcome, OutOfRange):
            return [Reply(outcome.prompt)]
        # Expired between dispatch and selection
        return await self._converse(user, inbound, record=False)

    async def _file_query(self, user: Optional[User], inbound: InboundMessage) -> Optional[ActionList]:
        """Actions for a file request, or None to fall back to conversation"""
        if user is None:
            return None

        logger.info(f"🔍 Potential file query detected: {inbound.body}")
        intent = await self.classifier.classify(inbound.body)
        if isinstance(intent, ClassificationFailure) or not intent.is_file_request:
            logger.info("ℹ️  Not a file query, continuing to normal chat")
            return None

        await self._record(user, inbound.body, 'incoming', inbound)
        await self._log_usage(user, 'file_query', intent.model_dump())
        return await self.retrieval.handle(inbound.sender, inbound.user_phone, intent)

    async def _ingest(self, user: Optional[User], inbound: InboundMessage) -> ActionList:
        if user is None:
            logger.warning("No user record, media will not be stored")
            return await self._converse(user, inbound)

        try:
            result = await self.ingestion.ingest_inbound(user, inbound)
        except MediaDownloadError as e:
            ErrorHandler.handle_download_error(e)
            return await self._converse(user, inbound)
        except AppError as e:
            logger.error(f"❌ Media could not be stored: {str(e)}")
            return await self._converse(user, inbound)

        await self._log_usage(user, 'media_saved', {
            'media_id': result.media_file.id,
            'file_name': result.media_file.file_name,
            'file_type': result.media_file.file_type,
        })
        return await self._converse_about_media(user, inbound, result)

    async def _converse_about_media(self, user: User, inbound: InboundMessage, result: IngestionResult) -> ActionList:
        media_file = result.media_file
        confirmation = f"✅ Guardé el archivo como \"{media_file.file_name}\"."
        note = f"El archivo se guardó como {media_file.file_name}"
        # A user-chosen name means the image content is not analysed at all
        image = result.data if media_file.kind == 'image' and not result.explicit_name else None

        try:
            reply = await self.chat.process_message(
                inbound.sender,
                result.transcription or inbound.body,
                forwarded_context=self._take_forwarded(inbound.sender),
                image=image,
                image_mime=media_file.file_type if image is not None else None,
                note=note,
            )
        except AIServiceError as e:
            logger.warning(f"Conversational reply failed after saving media: {str(e)}")
            reply = confirmation

        await self._record(user, reply, 'outgoing')
        return [Reply(reply)]

    async def _converse(self, user: Optional[User], inbound: InboundMessage, record: bool = True) -> ActionList:
        if record:
            await self._record(user, inbound.body, 'incoming', inbound)
        reply = await self.chat.process_message(
            inbound.sender,
            inbound.body,
            forwarded_context=self._take_forwarded(inbound.sender),
        )
        logger.info(f"Generated response: {reply[:100]}")
        await self._record(user, reply, 'outgoing')
        return [Reply(reply)]

    def _take_forwarded(self, conversation_id: str) -> Optional[str]:
        forwarded = self.state.get(self._forwarded_key(conversation_id))
        if forwarded is None:
            return None
        self.state.delete(self._forwarded_key(conversation_id))
        logger.info(f"Cleared forwarded message for {conversation_id}")
        return forwarded.content

    async def _perform(self, user: Optional[User], conversation_id: str, actions: ActionList, base_url: str) -> None:
        for action in actions:
            try:
                if isinstance(action, SendFile):
                    await self._send_file(user, conversation_id, action, base_url)
                else:
                    await self.whatsapp.send_text(conversation_id, action.text)
            except MessagingError as e:
                ErrorHandler.handle_messaging_error(e)

    async def _send_file(self, user: Optional[User], conversation_id: str, action: SendFile, base_url: str) -> None:
        media_file = action.media_file
        try:
            data = self.media_store.read_bytes(media_file)
        except StorageMissError as e:
            await self.whatsapp.send_text(conversation_id, ErrorHandler.handle_storage_miss(e))
            return

        token = self.links.publish(data)
        url = self.links.url_for(token, self.public_base_url or base_url)
        await self.whatsapp.send_file(conversation_id, action.caption or media_file.file_name, url)
        logger.info(f"Sent file: {media_file.file_name}")
        await self._log_usage(user, 'file_sent', {'media_id': media_file.id, 'file_name': media_file.file_name})
