import logging
from typing import List, Optional

from api.services.resolver import MediaQueryResolver
from api.services.selection import RetrievalSessionManager, format_date
from lib.models import ActionList, MediaFile, Reply, RetrievalIntent, SendFile

logger = logging.getLogger(__name__)

MAX_LISTED = 10

CLARIFICATION_TEXT = (
    "No estoy seguro de qué archivo buscas. ¿Podrías ser más específico? Por ejemplo:\n"
    "- \"Mándame mi cédula\"\n"
    "- \"Envíame el audio de hoy\"\n"
    "- \"Dame la factura de marzo\""
)


def not_found_text(file_type: Optional[str]) -> str:
    return f"❌ No encontré archivos de tipo {file_type or 'media'} que coincidan con tu solicitud."


def format_timestamp(media_file: MediaFile) -> str:
    sent_at = media_file.sent_at
    return sent_at.strftime('%Y-%m-%d %H:%M:%S') if sent_at else '?'


class FileRetrievalService:
    """Turns a classified intent into the replies and file sends for one conversation."""

    def __init__(self, resolver: MediaQueryResolver, sessions: RetrievalSessionManager):
        self.resolver = resolver
        self.sessions = sessions

    async def handle(self, conversation_id: str, user_phone: str, intent: RetrievalIntent) -> ActionList:
        # Low confidence never reaches storage
        if intent.is_low_confidence:
            logger.info("⚠️  Low confidence - asking for clarification")
            return [Reply(CLARIFICATION_TEXT)]

        candidates = await self.resolver.resolve(user_phone, intent)
        logger.info(f"📊 Found {len(candidates)} files for {intent.action} query")

        if not candidates:
            return [Reply(not_found_text(intent.fileType))]

        if intent.action == 'info':
            return [Reply(self.describe(candidates, intent))]
        if intent.action == 'list':
            return [Reply(self.render_list(candidates))]
        return self.retrieve(conversation_id, candidates)

    def retrieve(self, conversation_id: str, candidates: List[MediaFile]) -> ActionList:
        if len(candidates) == 1:
            media_file = candidates[0]
            return [SendFile(media_file, caption=f"📎 {media_file.file_name}")]
        # A new multi-match replaces whatever was pending
        return [Reply(self.sessions.begin(conversation_id, candidates))]

    @staticmethod
    def describe(candidates: List[MediaFile], intent: RetrievalIntent) -> str:
        media_file = candidates[0]
        if intent.infoType == 'filename':
            return f"📎 El archivo se llama: \"{media_file.file_name}\"\n📅 Fecha: {format_date(media_file.sent_at)}"
        if intent.infoType == 'count':
            return f"📊 Tienes {len(candidates)} archivo(s) de tipo {intent.fileType or 'media'} guardado(s)."
        if intent.infoType == 'date':
            return f"📅 El archivo se envió el: {format_timestamp(media_file)}"
        return (
            f"📎 Archivo: \"{media_file.file_name}\"\n"
            f"📅 Fecha: {format_timestamp(media_file)}\n"
            f"📦 Tamaño: {media_file.file_size / 1024:.2f} KB\n"
            f"📁 Tipo: {media_file.file_type}"
        )

    @staticmethod
    def render_list(candidates: List[MediaFile]) -> str:
        lines = [f"📁 Encontré {len(candidates)} archivo(s):", ""]
        for index, media_file in enumerate(candidates[:MAX_LISTED], start=1):
            lines.append(f"{index}. {media_file.file_name} ({format_date(media_file.sent_at)})")
        if len(candidates) > MAX_LISTED:
            lines.append("")
            lines.append(f"... y {len(candidates) - MAX_LISTED} archivo(s) más.")
        return "\n".join(lines)
