import logging
from typing import Any, Dict, List, Optional

from lib.keyed_store import KeyedStore
from lib.openai_client import OpenAIClient, image_data_url

logger = logging.getLogger(__name__)

MAX_HISTORY_MESSAGES = 20
HISTORY_TTL_SECONDS = 30 * 60
DEFAULT_IMAGE_PROMPT = "Describe esta imagen."


class ChatService:
    def __init__(self, openai_client: OpenAIClient, store: KeyedStore, history_ttl: float = HISTORY_TTL_SECONDS):
        self.ai = openai_client
        self.store = store
        self.history_ttl = history_ttl

    def _build_system_prompt(self, forwarded_context: Optional[str] = None) -> str:
        """Build the system prompt with context"""
        base_prompt = (
            "Eres un asistente personal que conversa por WhatsApp. "
            "Responde en el idioma del usuario, de forma breve y clara. "
            "El usuario puede enviarte fotos, audios y documentos; tú los guardas "
            "y puedes reenviarlos cuando te los pida."
        )

        if forwarded_context:
            return (
                f"{base_prompt}\n\nEl usuario reenvió previamente este mensaje, "
                f"úsalo como contexto:\n{forwarded_context}"
            )
        return base_prompt

    def _key(self, conversation_id: str) -> str:
        return f"history:{conversation_id}"

    def history(self, conversation_id: str) -> List[Dict[str, str]]:
        return list(self.store.get(self._key(conversation_id)) or [])

    def _remember(self, conversation_id: str, user_text: str, reply: str) -> None:
        turns = self.history(conversation_id)
        turns.append({"role": "user", "content": user_text})
        turns.append({"role": "assistant", "content": reply})
        # Inactivity resets the conversation; every turn pushes the expiry out
        self.store.set(self._key(conversation_id), turns[-MAX_HISTORY_MESSAGES:], ttl=self.history_ttl)

    async def process_message(
        self,
        conversation_id: str,
        message: str,
        forwarded_context: Optional[str] = None,
        image: Optional[bytes] = None,
        image_mime: Optional[str] = None,
        note: Optional[str] = None,
    ) -> str:
        """Process a chat message and return a response.

        Raises AIServiceError when the model gives no answer after retries.
        """
        text = message or (DEFAULT_IMAGE_PROMPT if image is not None else '')
        if note:
            text = f"{text}\n\n[{note}]" if text else f"[{note}]"

        if image is not None:
            content: Any = [
                {"type": "text", "text": text},
                {"type": "image_url", "image_url": {"url": image_data_url(image, image_mime or 'image/jpeg')}},
            ]
        else:
            content = text

        messages = [{"role": "system", "content": self._build_system_prompt(forwarded_context)}]
        messages.extend(self.history(conversation_id))
        messages.append({"role": "user", "content": content})

        logger.info(f"Chat request for {conversation_id} with {len(messages) - 2} history message(s)")
        reply = await self.ai.chat(messages)

        # Images are not kept in history, only the text that went with them
        self._remember(conversation_id, text, reply)
        return reply
