import asyncio
import logging
import re
from typing import List

from lib.twilio_client import TwilioClient

logger = logging.getLogger(__name__)

_SENTENCE = re.compile(r'[^.!?]+[.!?]+|[^.!?]+$')


def split_message(message: str, max_length: int = 1500) -> List[str]:
    """Split a long body on paragraph, then sentence, boundaries"""
    if len(message) <= max_length:
        return [message]

    chunks = []
    current = ''

    def flush():
        nonlocal current
        if current.strip():
            chunks.append(current.strip())
        current = ''

    for paragraph in message.split('\n'):
        candidate = f"{current}\n{paragraph}" if current else paragraph
        if len(candidate) <= max_length:
            current = candidate
            continue

        flush()
        if len(paragraph) <= max_length:
            current = paragraph
            continue

        # Paragraph itself is too long, split by sentences
        for sentence in _SENTENCE.findall(paragraph) or [paragraph]:
            sentence = sentence.strip()
            candidate = f"{current} {sentence}" if current else sentence
            if len(candidate) <= max_length:
                current = candidate
                continue
            flush()
            # A single sentence longer than a chunk is cut hard
            while len(sentence) > max_length:
                chunks.append(sentence[:max_length])
                sentence = sentence[max_length:]
            current = sentence

    flush()
    return chunks


def _numbered(index: int, total: int, chunk: str) -> str:
    return f"({index}/{total})\n\n{chunk}"


class WhatsAppService:
    def __init__(self, twilio_client: TwilioClient, chunk_size: int = 1500, chunk_delay: float = 0.5):
        self.client = twilio_client
        self.chunk_size = chunk_size
        self.chunk_delay = chunk_delay
        logger.info(f"WhatsApp service initialized with sender: {twilio_client.from_number}")

    @property
    def sender(self) -> str:
        return self.client.from_number

    async def send_text(self, to_number: str, text: str) -> None:
        """Send a text reply, split into numbered chunks when long"""
        chunks = self._chunk(text)
        logger.info(f"Sending {len(chunks)} message(s) to {to_number}: {text[:20]}...")
        for index, chunk in enumerate(chunks):
            body = _numbered(index + 1, len(chunks), chunk) if len(chunks) > 1 else chunk
            await self.client.send_message(to_number, body)
            # Small delay between chunks to keep them in order
            if index < len(chunks) - 1:
                await asyncio.sleep(self.chunk_delay)

    def _chunk(self, text: str) -> List[str]:
        # Numbered chunks must still fit chunk_size once the "(i/n)" prefix is added
        reserved = 0
        while True:
            chunks = split_message(text, self.chunk_size - reserved)
            needed = len(_numbered(len(chunks), len(chunks), '')) if len(chunks) > 1 else 0
            if needed <= reserved:
                return chunks
            reserved = needed

    async def send_file(self, to_number: str, caption: str, media_url: str) -> None:
        logger.info(f"Sending file to {to_number}: {media_url}")
        await self.client.send_message(to_number, caption, media_urls=[media_url])
