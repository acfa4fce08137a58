from typing import Optional
import logging

logger = logging.getLogger(__name__)

class AppError(Exception):
    def __init__(self, message: str, status_code: int = 500, user_message: Optional[str] = None):
        self.message = message
        self.status_code = status_code
        self.user_message = user_message or "Ocurrió un error. Por favor intenta de nuevo más tarde."
        super().__init__(self.message)

class AIServiceError(AppError):
    """The AI provider gave no usable answer (retries exhausted or non-retriable failure)."""
    def __init__(self, message: str, status_code: int = 500):
        super().__init__(message, status_code=status_code, user_message="AI service error")

class MediaDownloadError(AppError):
    def __init__(self, message: str):
        super().__init__(message, status_code=502)

class StorageMissError(AppError):
    """Metadata exists but the stored bytes are missing or unreadable."""
    def __init__(self, message: str, locator: Optional[str] = None):
        self.locator = locator
        super().__init__(message, status_code=404)

class MessagingError(AppError):
    def __init__(self, message: str):
        super().__init__(message, status_code=502, user_message=message)

class ErrorHandler:
    @staticmethod
    def handle_transcription_error(error: Exception) -> str:
        logger.error(f"Transcription error: {str(error)}")
        return "No pude transcribir tu audio. Por favor envíalo de nuevo."

    @staticmethod
    def handle_storage_miss(error: Exception) -> str:
        logger.error(f"Storage miss: {str(error)}")
        return "⚠️ Encontré el registro del archivo, pero el archivo ya no está disponible."

    @staticmethod
    def handle_download_error(error: Exception) -> str:
        logger.error(f"Media download error: {str(error)}")
        return "No pude descargar el archivo adjunto, así que solo procesé el texto."

    @staticmethod
    def handle_messaging_error(error: Exception) -> str:
        logger.error(f"Messaging error: {str(error)}")
        return "El mensaje no se pudo enviar. Intenta de nuevo más tarde."
