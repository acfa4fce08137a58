import pytest
import httpx
import openai
from unittest.mock import AsyncMock, MagicMock, patch

from lib.error_handler import AIServiceError
from lib.openai_client import OpenAIClient, is_retriable


def status_error(status_code: int) -> openai.APIStatusError:
    request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
    response = httpx.Response(status_code, request=request)
    if status_code == 429:
        return openai.RateLimitError("rate limited", response=response, body=None)
    if status_code == 400:
        return openai.BadRequestError("bad request", response=response, body=None)
    return openai.InternalServerError("server error", response=response, body=None)


def completion(text):
    response = MagicMock()
    response.choices = [MagicMock()]
    response.choices[0].message.content = text
    return response


@pytest.fixture
def sdk():
    client = MagicMock()
    client.chat.completions.create = MagicMock()
    client.audio.transcriptions.create = MagicMock()
    return client


@pytest.fixture
def ai(sdk):
    return OpenAIClient(api_key='test', model='gpt-4o', transcription_model='whisper-1',
                        max_retries=3, base_delay=0, client=sdk)


def test_retriable_classes():
    assert is_retriable(status_error(429))
    assert is_retriable(status_error(503))
    assert not is_retriable(status_error(400))
    assert not is_retriable(ValueError("nope"))


class TestOpenAIClient:
    @pytest.mark.asyncio
    async def test_complete_text_only(self, ai, sdk):
        sdk.chat.completions.create.return_value = completion("  hola  ")

        assert await ai.complete("say hi", max_tokens=20) == "hola"
        kwargs = sdk.chat.completions.create.call_args.kwargs
        assert kwargs['model'] == 'gpt-4o'
        assert kwargs['messages'] == [{"role": "user", "content": "say hi"}]
        assert kwargs['max_tokens'] == 20
        assert 'temperature' not in kwargs

    @pytest.mark.asyncio
    async def test_complete_with_image(self, ai, sdk):
        sdk.chat.completions.create.return_value = completion('{"filename": "cat"}')

        await ai.complete("name it", image=b'\xff\xd8', image_mime='image/jpeg', temperature=0.2)

        kwargs = sdk.chat.completions.create.call_args.kwargs
        content = kwargs['messages'][0]['content']
        assert content[0] == {"type": "text", "text": "name it"}
        assert content[1]['image_url']['url'].startswith('data:image/jpeg;base64,')
        assert kwargs['temperature'] == 0.2

    @pytest.mark.asyncio
    async def test_retries_transient_errors_with_backoff(self, sdk):
        sdk.chat.completions.create.side_effect = [status_error(429), status_error(503), completion("ok")]
        ai = OpenAIClient(api_key='test', max_retries=3, base_delay=1.0, client=sdk)

        with patch('lib.openai_client.asyncio.sleep', new=AsyncMock()) as sleep:
            assert await ai.chat([{"role": "user", "content": "hi"}]) == "ok"

        assert sdk.chat.completions.create.call_count == 3
        assert [c.args[0] for c in sleep.call_args_list] == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_gives_up_after_cap(self, ai, sdk):
        sdk.chat.completions.create.side_effect = status_error(500)

        with pytest.raises(AIServiceError):
            await ai.chat([{"role": "user", "content": "hi"}])
        assert sdk.chat.completions.create.call_count == 4

    @pytest.mark.asyncio
    async def test_non_retriable_fails_once(self, ai, sdk):
        sdk.chat.completions.create.side_effect = status_error(400)

        with pytest.raises(AIServiceError) as exc_info:
            await ai.chat([{"role": "user", "content": "hi"}])
        assert sdk.chat.completions.create.call_count == 1
        assert isinstance(exc_info.value.__cause__, openai.BadRequestError)

    @pytest.mark.asyncio
    async def test_empty_answer_is_an_error(self, ai, sdk):
        sdk.chat.completions.create.return_value = completion(None)
        with pytest.raises(AIServiceError):
            await ai.complete("hi")

    @pytest.mark.asyncio
    async def test_transcribe(self, ai, sdk):
        transcript = MagicMock()
        transcript.text = " hola mundo "
        sdk.audio.transcriptions.create.return_value = transcript

        assert await ai.transcribe(b'OggS', 'audio/ogg; codecs=opus') == "hola mundo"
        kwargs = sdk.audio.transcriptions.create.call_args.kwargs
        assert kwargs['model'] == 'whisper-1'
        assert kwargs['file'] == ('audio.ogg', b'OggS', 'audio/ogg; codecs=opus')

    @pytest.mark.asyncio
    async def test_transcribe_retries(self, ai, sdk):
        transcript = MagicMock()
        transcript.text = "ok"
        sdk.audio.transcriptions.create.side_effect = [status_error(502), transcript]

        assert await ai.transcribe(b'OggS', 'audio/ogg') == "ok"
        assert sdk.audio.transcriptions.create.call_count == 2
