from pydantic import BaseModel
from dotenv import load_dotenv
import os

load_dotenv()

class Settings(BaseModel):
    # OpenAI settings
    openai_api_key: str = os.getenv('OPENAI_API_KEY', '')
    openai_model: str = os.getenv('OPENAI_MODEL', 'gpt-4o')
    transcription_model: str = os.getenv('TRANSCRIPTION_MODEL', 'whisper-1')
    ai_max_retries: int = int(os.getenv('AI_MAX_RETRIES', '3'))
    ai_retry_base_delay: float = float(os.getenv('AI_RETRY_BASE_DELAY', '1.0'))

    # Twilio settings
    twilio_account_sid: str = os.getenv('TWILIO_ACCOUNT_SID', '')
    twilio_auth_token: str = os.getenv('TWILIO_AUTH_TOKEN', '')
    twilio_whatsapp_number: str = os.getenv('TWILIO_WHATSAPP_NUMBER', '')

    # Supabase settings
    supabase_url: str = os.getenv('SUPABASE_URL', '')
    supabase_key: str = os.getenv('SUPABASE_KEY', '')

    # Media storage
    media_root: str = os.getenv('MEDIA_ROOT', 'media')
    public_base_url: str = os.getenv('PUBLIC_BASE_URL', '')
    media_download_timeout: float = float(os.getenv('MEDIA_DOWNLOAD_TIMEOUT', '10'))

    # Ephemeral state lifetimes, in seconds
    link_ttl_seconds: int = int(os.getenv('LINK_TTL_SECONDS', '600'))
    selection_ttl_seconds: int = int(os.getenv('SELECTION_TTL_SECONDS', '600'))
    forwarded_ttl_seconds: int = int(os.getenv('FORWARDED_TTL_SECONDS', '1800'))

    # Outbound messages
    message_chunk_size: int = int(os.getenv('MESSAGE_CHUNK_SIZE', '1500'))

    @property
    def database_configured(self) -> bool:
        return bool(self.supabase_url and self.supabase_key)

def get_settings() -> Settings:
    return Settings()
