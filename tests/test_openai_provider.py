from unittest.mock import Mock, patch

import httpx
import pytest

from app.services.llm.base import LLMProviderError
from app.services.llm.openai_provider import OpenAIProvider


@pytest.fixture
def http():
    with patch("app.services.llm.openai_provider.httpx.Client") as client_class:
        yield client_class.return_value.__enter__.return_value


@pytest.fixture
def provider():
    return OpenAIProvider(api_key="sk-test", base_url="https://api.openai.com/v1/")


class TestCompleteChat:
    def test_parses_content_and_tool_calls(self, provider, http):
        http.post.return_value = Mock(
            status_code=200,
            json=Mock(
                return_value={
                    "model": "gpt-4o-2024",
                    "choices": [
                        {
                            "message": {
                                "content": None,
                                "tool_calls": [
                                    {
                                        "id": "call_1",
                                        "type": "function",
                                        "function": {"name": "send_media", "arguments": '{"media_names": ["Kit"]}'},
                                    }
                                ],
                            }
                        }
                    ],
                    "usage": {"total_tokens": 42},
                }
            ),
        )

        response = provider.complete_chat(
            model=None,
            system_prompt="sys",
            history=[{"role": "user", "content": "Oi"}],
            user_content="Foto do kit",
            tools=[{"type": "function"}],
        )

        assert response.content == ""
        assert response.model == "gpt-4o-2024"
        assert response.tool_calls[0].name == "send_media"
        assert response.usage == {"total_tokens": 42}
        url = http.post.call_args.args[0]
        payload = http.post.call_args.kwargs["json"]
        assert url == "https://api.openai.com/v1/chat/completions"
        assert payload["model"] == "gpt-4o"
        assert payload["tool_choice"] == "auto"
        assert [m["role"] for m in payload["messages"]] == ["system", "user", "user"]

    def test_no_tools_omits_tool_choice(self, provider, http):
        http.post.return_value = Mock(
            status_code=200, json=Mock(return_value={"choices": [{"message": {"content": "Olá!"}}]})
        )

        response = provider.complete_chat(model="gpt-4o-mini", system_prompt="sys", history=[], user_content="Oi")

        assert response.content == "Olá!"
        assert "tools" not in http.post.call_args.kwargs["json"]

    def test_http_error_status(self, provider, http):
        http.post.return_value = Mock(status_code=429, text="rate limited")

        with pytest.raises(LLMProviderError) as exc_info:
            provider.complete_chat(model=None, system_prompt="sys", history=[], user_content="Oi")

        assert exc_info.value.status_code == 429

    def test_transport_error(self, provider, http):
        http.post.side_effect = httpx.ReadTimeout("slow")

        with pytest.raises(LLMProviderError):
            provider.complete_chat(model=None, system_prompt="sys", history=[], user_content="Oi")


class TestTranscribeAudio:
    def test_returns_stripped_text(self, provider, http):
        http.post.return_value = Mock(status_code=200, text=" Quero saber o preço \n")

        assert provider.transcribe_audio(audio_bytes=b"OggS", filename="audio.ogg") == "Quero saber o preço"
        assert http.post.call_args.args[0] == "https://api.openai.com/v1/audio/transcriptions"

    def test_empty_audio_rejected(self, provider):
        with pytest.raises(ValueError):
            provider.transcribe_audio(audio_bytes=b"", filename="audio.ogg")


class TestDescribeImage:
    def test_sends_data_url(self, provider, http):
        http.post.return_value = Mock(
            status_code=200, json=Mock(return_value={"choices": [{"message": {"content": " Uma garrafa "}}]})
        )

        assert provider.describe_image(image_base64="SU1H", mime_type="image/png") == "Uma garrafa"
        content = http.post.call_args.kwargs["json"]["messages"][0]["content"]
        assert content[1]["image_url"]["url"] == "data:image/png;base64,SU1H"
