from flask import Flask, request, Response, jsonify
import logging
import sys
from datetime import datetime
from typing import Optional
from twilio.twiml.messaging_response import MessagingResponse

from lib.config import Settings, get_settings
from lib.database import Database
from lib.error_handler import AIServiceError
from lib.keyed_store import InMemoryKeyedStore
from lib.openai_client import OpenAIClient
from lib.twilio_client import TwilioClient
from .services.chat import ChatService
from .services.ingestion import MediaIngestionPipeline
from .services.intent import IntentClassifier
from .services.links import EphemeralLinkCache, sniff_content_type
from .services.resolver import MediaQueryResolver
from .services.retrieval import FileRetrievalService
from .services.selection import RetrievalSessionManager
from .services.storage import MediaStore
from .services.whatsapp import WhatsAppService
from .whatsapp_handler import WhatsAppHandler

# Create logger for this file
logger = logging.getLogger(__name__)


def configure_logging():
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        stream=sys.stdout,
        force=True  # Ensure our config takes precedence
    )


def build_handler(settings: Settings, state: InMemoryKeyedStore, link_cache: EphemeralLinkCache) -> WhatsAppHandler:
    """Wire the services behind the webhook"""
    logger.info("Initializing OpenAI client...")
    openai_client = OpenAIClient(
        api_key=settings.openai_api_key,
        model=settings.openai_model,
        transcription_model=settings.transcription_model,
        max_retries=settings.ai_max_retries,
        base_delay=settings.ai_retry_base_delay,
    )

    logger.info("Initializing Twilio client...")
    twilio_client = TwilioClient(
        account_sid=settings.twilio_account_sid,
        auth_token=settings.twilio_auth_token,
        from_number=settings.twilio_whatsapp_number,
    )

    logger.info("Initializing Supabase client...")
    if not settings.database_configured:
        logger.warning("SUPABASE_URL or SUPABASE_KEY is not set, database calls will fail")
    database = Database()

    media_store = MediaStore(database, settings.media_root)
    classifier = IntentClassifier(openai_client)
    sessions = RetrievalSessionManager(state, ttl_seconds=settings.selection_ttl_seconds)

    handler = WhatsAppHandler(
        database=database,
        whatsapp=WhatsAppService(twilio_client, chunk_size=settings.message_chunk_size),
        classifier=classifier,
        retrieval=FileRetrievalService(MediaQueryResolver(media_store), sessions),
        sessions=sessions,
        ingestion=MediaIngestionPipeline(media_store, database, openai_client, classifier, twilio_client),
        chat=ChatService(openai_client, state),
        media_store=media_store,
        links=link_cache,
        state=state,
        public_base_url=settings.public_base_url,
        forwarded_ttl=settings.forwarded_ttl_seconds,
    )
    logger.info("All services initialized successfully")
    return handler


def create_app(
    settings: Optional[Settings] = None,
    handler: Optional[WhatsAppHandler] = None,
    link_cache: Optional[EphemeralLinkCache] = None,
    state: Optional[InMemoryKeyedStore] = None,
) -> Flask:
    configure_logging()
    if settings is None:
        settings = get_settings()
    if state is None:
        state = InMemoryKeyedStore()
    if link_cache is None:
        link_cache = EphemeralLinkCache(InMemoryKeyedStore(), ttl_seconds=settings.link_ttl_seconds)
    if handler is None:
        handler = build_handler(settings, state, link_cache)

    app = Flask(__name__)

    @app.route("/webhook", methods=['POST'])
    async def webhook():
        try:
            form_data = request.form.to_dict()
            logger.info(f"Webhook received: {form_data.get('MessageSid')}")
            await handler.handle_incoming_message(form_data, base_url=request.host_url)
            return Response(str(MessagingResponse()), mimetype='text/xml')
        except AIServiceError as e:
            logger.error(f"AI service error: {str(e)}")
            return Response(e.user_message, status=500)
        except Exception as e:
            logger.error(f"Webhook error: {str(e)}", exc_info=True)
            return Response("Internal server error", status=500)

    @app.route("/media/<token>", methods=['GET'])
    def media(token: str):
        data = link_cache.resolve(token)
        if data is None:
            return Response("File not found", status=404)
        response = Response(data, mimetype=sniff_content_type(data))
        response.headers['Cache-Control'] = 'public, max-age=300'
        return response

    @app.route("/", methods=['GET'])
    def index():
        return "WhatsApp file assistant is running"

    @app.route("/status", methods=['GET'])
    def status():
        return jsonify({
            'status': 'online',
            'timestamp': datetime.now().isoformat(),
            'pendingSelections': len([k for k in state.keys() if k.startswith('selection:')]),
            'activeConversations': len([k for k in state.keys() if k.startswith('history:')]),
            'publishedLinks': len(link_cache),
        })

    return app
