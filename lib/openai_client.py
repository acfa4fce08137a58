import asyncio
import base64
import logging
from typing import Any, Callable, Dict, List, Optional

import openai
from openai import OpenAI

from lib.config import get_settings
from lib.error_handler import AIServiceError

logger = logging.getLogger(__name__)

# Rate limits and server-side failures are worth another attempt
RETRIABLE_STATUS_CODES = {429, 500, 502, 503, 504}


def is_retriable(error: Exception) -> bool:
    return isinstance(error, openai.APIStatusError) and error.status_code in RETRIABLE_STATUS_CODES


def image_data_url(image: bytes, mime_type: str) -> str:
    return f"data:{mime_type};base64,{base64.b64encode(image).decode()}"


class OpenAIClient:
    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        transcription_model: Optional[str] = None,
        max_retries: Optional[int] = None,
        base_delay: Optional[float] = None,
        client: Any = None,
    ):
        settings = get_settings()
        # Synchronous SDK client; the SDK's own retry loop is disabled, retries happen here
        self.client = client or OpenAI(
            api_key=api_key or settings.openai_api_key,
            max_retries=0,
        )
        self.model = model or settings.openai_model
        self.transcription_model = transcription_model or settings.transcription_model
        self.max_retries = settings.ai_max_retries if max_retries is None else max_retries
        self.base_delay = settings.ai_retry_base_delay if base_delay is None else base_delay

    async def complete(
        self,
        prompt: str,
        image: Optional[bytes] = None,
        image_mime: Optional[str] = None,
        max_tokens: int = 150,
        temperature: Optional[float] = None,
    ) -> str:
        """
        Single-turn completion, optionally with one image attached
        """
        if image is not None:
            content: Any = [
                {"type": "text", "text": prompt},
                {"type": "image_url", "image_url": {"url": image_data_url(image, image_mime or 'image/jpeg')}},
            ]
        else:
            content = prompt

        return await self.chat(
            [{"role": "user", "content": content}],
            max_tokens=max_tokens,
            temperature=temperature,
        )

    async def chat(
        self,
        messages: List[Dict[str, Any]],
        max_tokens: int = 2000,
        temperature: Optional[float] = None,
    ) -> str:
        """
        Multi-turn completion; returns the assistant text
        """
        kwargs: Dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "max_tokens": max_tokens,
        }
        if temperature is not None:
            kwargs["temperature"] = temperature

        response = await self._with_retries(
            "chat completion",
            lambda: self.client.chat.completions.create(**kwargs),
        )
        content = response.choices[0].message.content if response.choices else None
        if not content:
            raise AIServiceError("Chat completion returned no content")
        return content.strip()

    async def transcribe(self, audio: bytes, mime_hint: Optional[str] = None) -> str:
        """
        Transcribe audio bytes using OpenAI Whisper API
        """
        extension = (mime_hint or 'audio/ogg').split('/')[-1].split(';')[0].strip() or 'ogg'
        upload = (f"audio.{extension}", audio, mime_hint or 'audio/ogg')

        transcript = await self._with_retries(
            "transcription",
            lambda: self.client.audio.transcriptions.create(
                model=self.transcription_model,
                file=upload,
            ),
        )
        text = getattr(transcript, 'text', transcript)
        return (text or '').strip()

    async def _with_retries(self, label: str, call: Callable[[], Any]) -> Any:
        attempt = 0
        loop = asyncio.get_running_loop()
        while True:
            try:
                # Blocking SDK call runs in an executor; each request may bring its own event loop
                return await loop.run_in_executor(None, call)
            except Exception as e:
                logger.error(
                    f"OpenAI {label} error (attempt {attempt + 1}/{self.max_retries + 1}): "
                    f"{str(e)} status={getattr(e, 'status_code', None)}"
                )
                if is_retriable(e) and attempt < self.max_retries:
                    delay = self.base_delay * (2 ** attempt)
                    logger.info(f"Retrying {label} in {delay:.1f}s...")
                    await asyncio.sleep(delay)
                    attempt += 1
                    continue
                raise AIServiceError(f"OpenAI {label} failed: {str(e)}") from e
