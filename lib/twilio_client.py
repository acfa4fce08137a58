from twilio.rest import Client
from twilio.base.exceptions import TwilioRestException
import aiohttp
import asyncio
from typing import List, Optional
import logging
from lib.config import get_settings
from lib.error_handler import MediaDownloadError, MessagingError

logger = logging.getLogger(__name__)

class TwilioClient:
    def __init__(
        self,
        account_sid: Optional[str] = None,
        auth_token: Optional[str] = None,
        from_number: Optional[str] = None,
        client: Optional[Client] = None,
    ):
        settings = get_settings()
        self.account_sid = account_sid or settings.twilio_account_sid
        self.auth_token = auth_token or settings.twilio_auth_token
        self.from_number = from_number or settings.twilio_whatsapp_number
        self.client = client or Client(self.account_sid, self.auth_token)

    async def send_message(self, to_number: str, body: str, media_urls: Optional[List[str]] = None) -> str:
        """Send a WhatsApp message (optionally with media) and return the message SID."""
        kwargs = {
            'body': body,
            'from_': self.from_number,
            'to': to_number,
        }
        if media_urls:
            kwargs['media_url'] = media_urls

        try:
            # Run Twilio API call in an executor to prevent blocking
            loop = asyncio.get_running_loop()
            message = await loop.run_in_executor(
                None,
                lambda: self.client.messages.create(**kwargs)
            )
            logger.info(f"Message sent successfully to {to_number}: {message.sid}")
            return message.sid
        except TwilioRestException as e:
            logger.error(f"Twilio error sending message: {str(e)}")
            if e.code == 21608:  # Unverified number
                raise MessagingError("This phone number is not verified with our test account.")
            elif e.code == 21211:  # Invalid phone number
                raise MessagingError("Invalid phone number format.")
            else:
                raise MessagingError(f"Failed to send message: {str(e)}")

    async def download_media(self, media_url: str, timeout: Optional[float] = None) -> bytes:
        """Download a media attachment from Twilio's media URL."""
        if timeout is None:
            timeout = get_settings().media_download_timeout
        auth = aiohttp.BasicAuth(login=self.account_sid, password=self.auth_token)
        try:
            async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=timeout)) as session:
                async with session.get(media_url, auth=auth, allow_redirects=True) as response:
                    if response.status != 200:
                        logger.error(f"Failed to download media: {response.status}")
                        raise MediaDownloadError(f"Media download returned {response.status}")
                    data = await response.read()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(f"Failed to download media: {str(e)}")
            raise MediaDownloadError(f"Media download failed: {str(e)}") from e

        logger.info(f"Media downloaded: {len(data)} bytes")
        return data
