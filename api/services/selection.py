import logging
import re
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from lib.keyed_store import KeyedStore
from lib.models import MediaFile

logger = logging.getLogger(__name__)

MAX_CANDIDATES = 10
DESCRIPTION_PREVIEW = 60
SELECTION_PATTERN = re.compile(r"^\d+$")


@dataclass(frozen=True)
class PendingSelection:
    candidates: List[MediaFile]
    created_at: datetime


@dataclass(frozen=True)
class Selected:
    media_file: MediaFile


@dataclass(frozen=True)
class OutOfRange:
    prompt: str


def format_date(value: Optional[datetime]) -> str:
    return value.strftime('%Y-%m-%d') if value else '?'


def preview(description: Optional[str], limit: int = DESCRIPTION_PREVIEW) -> Optional[str]:
    if not description:
        return None
    description = ' '.join(description.split())
    if len(description) <= limit:
        return description
    return description[:limit - 3].rstrip() + '...'


class RetrievalSessionManager:
    """Holds multi-match candidates per conversation until the user picks one by number."""

    def __init__(self, store: KeyedStore, ttl_seconds: float = 600):
        self.store = store
        self.ttl_seconds = ttl_seconds

    def _key(self, conversation_id: str) -> str:
        return f"selection:{conversation_id}"

    def pending(self, conversation_id: str) -> Optional[PendingSelection]:
        return self.store.get(self._key(conversation_id))

    def has_pending(self, conversation_id: str) -> bool:
        return self.pending(conversation_id) is not None

    @staticmethod
    def is_selection_reply(text: Optional[str]) -> bool:
        return bool(text and SELECTION_PATTERN.match(text.strip()))

    def begin(self, conversation_id: str, candidates: List[MediaFile]) -> str:
        """Store the first candidates and return the numbered menu to send"""
        kept = list(candidates[:MAX_CANDIDATES])
        self.store.set(
            self._key(conversation_id),
            PendingSelection(candidates=kept, created_at=datetime.now()),
            ttl=self.ttl_seconds,
        )
        logger.info(f"Pending selection of {len(kept)} files stored for {conversation_id}")
        return self.render_menu(kept, total=len(candidates))

    @staticmethod
    def render_menu(candidates: List[MediaFile], total: Optional[int] = None) -> str:
        total = total if total is not None else len(candidates)
        lines = [f"📁 Encontré {total} archivo(s):", ""]
        for index, media_file in enumerate(candidates, start=1):
            lines.append(f"{index}. {media_file.file_name} ({format_date(media_file.sent_at)})")
            description = preview(media_file.file_description)
            if description:
                lines.append(f"   {description}")
        lines.append("")
        lines.append(f"Responde con un número del 1 al {len(candidates)} para recibir el archivo.")
        return "\n".join(lines)

    def select(self, conversation_id: str, text: str) -> Optional[Selected | OutOfRange]:
        """Resolve a numeric reply against the pending candidates.

        Returns None when nothing is pending. An out-of-range number keeps
        the pending candidates so the user can try again.
        """
        pending = self.pending(conversation_id)
        if pending is None:
            return None

        choice = int(text.strip())
        count = len(pending.candidates)
        if 1 <= choice <= count:
            self.clear(conversation_id)
            logger.info(f"Selection {choice}/{count} resolved for {conversation_id}")
            return Selected(pending.candidates[choice - 1])

        logger.info(f"Selection {choice} out of range 1-{count} for {conversation_id}")
        return OutOfRange(f"❌ Número inválido. Responde con un número del 1 al {count}.")

    def clear(self, conversation_id: str) -> None:
        self.store.delete(self._key(conversation_id))
