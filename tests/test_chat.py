import pytest
from unittest.mock import AsyncMock, MagicMock

from api.services.chat import ChatService, DEFAULT_IMAGE_PROMPT
from lib.error_handler import AIServiceError
from lib.keyed_store import InMemoryKeyedStore

from conftest import SENDER


@pytest.fixture
def ai():
    client = MagicMock()
    client.chat = AsyncMock(return_value="Claro, aquí estoy.")
    return client


@pytest.fixture
def chat_service(ai, fake_clock):
    return ChatService(ai, InMemoryKeyedStore(clock=fake_clock))


@pytest.mark.asyncio
async def test_process_message_sends_system_prompt_and_text(chat_service, ai):
    response = await chat_service.process_message(SENDER, "Hola")

    assert response == "Claro, aquí estoy."
    messages = ai.chat.call_args.args[0]
    assert messages[0]['role'] == 'system'
    assert messages[-1] == {"role": "user", "content": "Hola"}


@pytest.mark.asyncio
async def test_history_is_kept_and_capped(chat_service, ai):
    for i in range(15):
        await chat_service.process_message(SENDER, f"mensaje {i}")

    history = chat_service.history(SENDER)
    assert len(history) == 20
    assert history[-2] == {"role": "user", "content": "mensaje 14"}
    assert history[0] == {"role": "user", "content": "mensaje 5"}

    messages = ai.chat.call_args.args[0]
    assert len(messages) == 1 + 20 + 1


@pytest.mark.asyncio
async def test_history_resets_after_inactivity(chat_service, fake_clock):
    await chat_service.process_message(SENDER, "primero")
    fake_clock.advance(29 * 60)
    assert len(chat_service.history(SENDER)) == 2

    fake_clock.advance(31 * 60)
    assert chat_service.history(SENDER) == []


@pytest.mark.asyncio
async def test_forwarded_context_goes_into_system_prompt(chat_service, ai):
    await chat_service.process_message(SENDER, "¿qué dice?", forwarded_context="Pago pendiente de 200")

    system = ai.chat.call_args.args[0][0]['content']
    assert "Pago pendiente de 200" in system


@pytest.mark.asyncio
async def test_image_goes_to_vision_with_default_prompt(chat_service, ai):
    await chat_service.process_message(SENDER, "", image=b'\xff\xd8', image_mime='image/jpeg', note="Guardado como a.jpg")

    content = ai.chat.call_args.args[0][-1]['content']
    assert content[0]['type'] == 'text'
    assert content[0]['text'].startswith(DEFAULT_IMAGE_PROMPT)
    assert "Guardado como a.jpg" in content[0]['text']
    assert content[1]['image_url']['url'].startswith('data:image/jpeg;base64,')

    # Only text is remembered
    assert isinstance(chat_service.history(SENDER)[0]['content'], str)


@pytest.mark.asyncio
async def test_failure_propagates_and_is_not_remembered(chat_service, ai):
    ai.chat.side_effect = AIServiceError("down")

    with pytest.raises(AIServiceError):
        await chat_service.process_message(SENDER, "hola")
    assert chat_service.history(SENDER) == []
