# tests/test_llm_client.py
import pytest
from unittest.mock import patch, MagicMock
from leadflow.llm_client import LLMClient


def test_init_openai_provider():
    client = LLMClient(provider="openai", model="gpt-4o-mini", api_key="test-key")
    assert client.provider == "openai"
    assert client.model == "gpt-4o-mini"
    assert client.max_tokens == 100
    assert client.temperature == 0.7


def test_init_anthropic_provider():
    client = LLMClient(provider="anthropic", model="claude-3-5-haiku-latest", api_key="test-key")
    assert client.provider == "anthropic"
    assert client.model == "claude-3-5-haiku-latest"


def test_init_invalid_provider():
    with pytest.raises(ValueError, match="Unsupported LLM provider"):
        LLMClient(provider="gemini", model="gemini-pro", api_key="test-key")


def test_init_missing_api_key():
    with pytest.raises(ValueError, match="API key required"):
        LLMClient(provider="openai", model="gpt-4o-mini", api_key="")


@patch("leadflow.llm_client.OpenAI")
def test_generate_openai(mock_openai_class):
    mock_client = MagicMock()
    mock_openai_class.return_value = mock_client
    mock_client.chat.completions.create.return_value = MagicMock(
        choices=[MagicMock(message=MagicMock(content="por su paella"))]
    )

    client = LLMClient(provider="openai", model="gpt-4o-mini", api_key="test-key", max_tokens=80, temperature=0.5)
    result = client.generate(system_prompt="Eres un experto", user_prompt="Negocio: Casa Pepe")

    assert result == "por su paella"
    mock_openai_class.assert_called_once_with(api_key="test-key")
    mock_client.chat.completions.create.assert_called_once_with(
        model="gpt-4o-mini",
        messages=[
            {"role": "system", "content": "Eres un experto"},
            {"role": "user", "content": "Negocio: Casa Pepe"},
        ],
        max_tokens=80,
        temperature=0.5,
    )


@patch("leadflow.llm_client.OpenAI")
def test_generate_openai_empty_content(mock_openai_class):
    mock_client = MagicMock()
    mock_openai_class.return_value = mock_client
    mock_client.chat.completions.create.return_value = MagicMock(
        choices=[MagicMock(message=MagicMock(content=None))]
    )

    client = LLMClient(provider="openai", model="gpt-4o-mini", api_key="test-key")
    assert client.generate("s", "u") == ""


@patch("leadflow.llm_client.Anthropic")
def test_generate_anthropic(mock_anthropic_class):
    mock_client = MagicMock()
    mock_anthropic_class.return_value = mock_client
    mock_client.messages.create.return_value = MagicMock(
        content=[MagicMock(text="por su trato cercano")]
    )

    client = LLMClient(provider="anthropic", model="claude-3-5-haiku-latest", api_key="test-key")
    result = client.generate(system_prompt="Eres un experto", user_prompt="Negocio: Bar Luna")

    assert result == "por su trato cercano"
    mock_client.messages.create.assert_called_once_with(
        model="claude-3-5-haiku-latest",
        max_tokens=100,
        temperature=0.7,
        system="Eres un experto",
        messages=[{"role": "user", "content": "Negocio: Bar Luna"}],
    )


def test_from_settings():
    """Test the from_settings factory method."""
    with patch("leadflow.llm_client.settings") as mock_settings:
        mock_settings.generation.provider = "anthropic"
        mock_settings.generation.model = "claude-3-5-haiku-latest"
        mock_settings.generation.max_tokens = 120
        mock_settings.generation.temperature = 0.3
        mock_settings.llm_api_key.return_value = "anthropic-key"

        client = LLMClient.from_settings()

    assert client.provider == "anthropic"
    assert client.model == "claude-3-5-haiku-latest"
    assert client.max_tokens == 120
    assert client.temperature == 0.3


@patch("leadflow.llm_client.OpenAI")
def test_sdk_client_is_reused_between_calls(mock_openai_class):
    mock_openai_class.return_value.chat.completions.create.return_value = MagicMock(
        choices=[MagicMock(message=MagicMock(content="por su terraza"))]
    )
    client = LLMClient(provider="openai", model="gpt-4o-mini", api_key="test-key")

    client.generate("s", "u")
    client.generate("s", "u")

    assert mock_openai_class.call_count == 1
    assert mock_openai_class.return_value.chat.completions.create.call_count == 2
