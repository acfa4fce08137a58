import logging
import re
from typing import Optional, Union

from pydantic import ValidationError

from lib.error_handler import AppError
from lib.json_utils import extract_json_object
from lib.models import ClassificationFailure, RetrievalIntent
from lib.openai_client import OpenAIClient

logger = logging.getLogger(__name__)

# Broad pre-check; over-matching is fine, the classifier and confidence gate sort it out
FILE_QUERY_PATTERN = re.compile(
    r"file|archivo|image|imagen|photo|foto|audio|video|document|documento|pdf|picture|"
    r"sent|envi[eé]|guardado|saved|name|nombre|[uú]ltimo|latest|ayer|yesterday|today|hoy|"
    r"how many|cu[aá]nto|list|lista|mand|dame|c[eé]dula",
    re.IGNORECASE,
)

INTENT_PROMPT = """You are analyzing a user's request for files. Understand their INTENT regardless of exact wording.

User query: "{query}"

Respond with ONLY a JSON object:

{{
  "action": "retrieve|info|list|none",
  "fileType": "image|audio|video|document|null",
  "timeframe": "latest|today|yesterday|all|null",
  "infoType": "filename|count|date|all|null",
  "searchQuery": "key terms or null",
  "confidence": "high|medium|low"
}}

Examples:
"Mandame una foto de mi cedula" -> {{"action":"retrieve","fileType":"image","timeframe":"all","infoType":null,"searchQuery":"cedula identificacion ID card","confidence":"high"}}
"Dame el audio" -> {{"action":"retrieve","fileType":"audio","timeframe":"latest","infoType":null,"searchQuery":null,"confidence":"high"}}
"Como se llama el ultimo audio?" -> {{"action":"info","fileType":"audio","timeframe":"latest","infoType":"filename","searchQuery":null,"confidence":"high"}}
"Que fotos te mande hoy?" -> {{"action":"list","fileType":"image","timeframe":"today","infoType":null,"searchQuery":null,"confidence":"high"}}
"Hola, como estas?" -> {{"action":"none","fileType":null,"timeframe":null,"infoType":null,"searchQuery":null,"confidence":"high"}}

Rules:
- searchQuery only when the user names WHAT the file is about; include synonyms in English and Spanish
- If unsure, set confidence "low"

Respond with ONLY the JSON object:"""

SAVE_NAME_PROMPT = """The user attached a file with this caption: "{caption}"

If the caption asks to save the file under a specific name, reply with {{"name": "<that name>"}}.
Otherwise reply with {{"name": null}}. Reply with ONLY the JSON object."""

# "guarda/agrega/save/add ... como/as NAME"
_SAVE_VERB = r"(?:gu[aá]rd[aeá]\w*|agreg[aueá]\w*|añad[ea]\w*|almacen[aeá]\w*|save|add|store|keep)"
SAVE_VERB_PATTERN = re.compile(rf"\b{_SAVE_VERB}\b", re.IGNORECASE)
SAVE_AS_PATTERN = re.compile(
    rf"\b{_SAVE_VERB}\b.*?\b(?:como|as|con el nombre(?: de)?|with the name|named|llamad[oa])\s+(?P<name>.+)$",
    re.IGNORECASE | re.DOTALL,
)


def looks_like_file_query(text: Optional[str]) -> bool:
    return bool(text and FILE_QUERY_PATTERN.search(text))


def parse_intent(raw: Optional[str]) -> Union[RetrievalIntent, ClassificationFailure]:
    """Turn raw model output into a validated intent or a failure sentinel."""
    payload = extract_json_object(raw)
    if payload is None:
        return ClassificationFailure(reason="no JSON object in classifier output", raw=raw)
    try:
        return RetrievalIntent.model_validate(payload)
    except ValidationError as e:
        return ClassificationFailure(reason=f"invalid intent: {e.error_count()} error(s)", raw=raw)


def _clean_name(name: str) -> Optional[str]:
    name = name.strip().rstrip('.!?,;:').strip().strip('"\'“”‘’').strip()
    return name or None


class IntentClassifier:
    def __init__(self, openai_client: OpenAIClient):
        self.ai = openai_client

    async def classify(self, text: str) -> Union[RetrievalIntent, ClassificationFailure]:
        """Classify a text message into a file-operation intent"""
        try:
            raw = await self.ai.complete(INTENT_PROMPT.format(query=text), max_tokens=150)
        except AppError as e:
            logger.error(f"Intent classification call failed: {str(e)}")
            return ClassificationFailure(reason=str(e))

        logger.info(f"📋 Intent response: {raw}")
        result = parse_intent(raw)
        if isinstance(result, ClassificationFailure):
            logger.warning(f"❌ Failed to parse intent: {result.reason}")
        else:
            logger.info(f"✅ Detected intent: {result.model_dump()}")
        return result

    async def detect_save_name(self, caption: Optional[str]) -> Optional[str]:
        """Name the user asked to store an attachment under, if any"""
        if not caption or not SAVE_VERB_PATTERN.search(caption):
            return None

        match = SAVE_AS_PATTERN.search(caption)
        if match:
            return _clean_name(match.group('name'))

        try:
            raw = await self.ai.complete(SAVE_NAME_PROMPT.format(caption=caption), max_tokens=40)
        except AppError as e:
            logger.warning(f"Save-name detection failed, ignoring: {str(e)}")
            return None
        payload = extract_json_object(raw) or {}
        name = payload.get('name')
        return _clean_name(name) if isinstance(name, str) and name.lower() != 'null' else None
