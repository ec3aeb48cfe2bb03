from unittest.mock import Mock, patch

import pytest

from deskbot.config import Settings
from deskbot.services.fsm_states import Reply
from deskbot.services.llm import LLMError, LLMResponse, OpenAIProvider
from deskbot.services.rewrite_service import MAX_REWRITE_CHARS, RewriteService, build_rewriter

ORIGINAL = "Recibido. Cuando termines, escribí LISTO."


def _provider(content=None, error=None):
    provider = Mock()
    if error is not None:
        provider.generate.side_effect = error
    else:
        provider.generate.return_value = LLMResponse(content=content, model="test")
    return provider


class TestCanRewrite:
    def test_disabled_without_provider(self):
        service = RewriteService(provider=None)
        assert service.enabled is False
        assert service.can_rewrite(Reply.of(ORIGINAL)) is False

    def test_text_only(self):
        service = RewriteService(_provider("x"))
        assert service.can_rewrite(Reply.of(ORIGINAL)) is True
        assert service.can_rewrite(Reply.menu({"body": {"text": "Elegí"}})) is False
        assert service.can_rewrite(Reply.of("  ")) is False

    @pytest.mark.parametrize(
        "text",
        [
            "Tus honorarios adeudados son $15.000",
            "Ya te derivamos con el equipo",
            "Mirá https://example.com",
            "El CBU del estudio es 000",
        ],
    )
    def test_protected_texts_are_sent_verbatim(self, text):
        assert RewriteService(_provider("x")).can_rewrite(Reply.of(text)) is False


class TestRewrite:
    def test_returns_reworded_text(self):
        provider = _provider('"Listo, lo recibí. Cuando termines escribí LISTO."')
        result = RewriteService(provider, model="m").rewrite(ORIGINAL, {"state": "SALES_COLLECT"})

        assert result == "Listo, lo recibí. Cuando termines escribí LISTO."
        messages = provider.generate.call_args.args[0]
        assert messages[-1] == {"role": "user", "content": ORIGINAL}
        assert "SALES_COLLECT" in messages[1]["content"]
        assert provider.generate.call_args.kwargs["model"] == "m"

    def test_too_short_or_too_long_is_discarded(self):
        assert RewriteService(_provider("Ok")).rewrite(ORIGINAL) is None
        assert RewriteService(_provider(ORIGINAL * 2)).rewrite(ORIGINAL) is None

    def test_provider_error_keeps_original(self):
        assert RewriteService(_provider(error=LLMError("down"))).rewrite(ORIGINAL) is None

    def test_empty_output(self):
        assert RewriteService(_provider("")).rewrite(ORIGINAL) is None

    def test_output_is_truncated(self):
        long_text = "a" * 800
        result = RewriteService(_provider("b" * 900)).rewrite(long_text)
        assert len(result) == MAX_REWRITE_CHARS


def test_build_rewriter_requires_flag_and_key():
    assert build_rewriter(Settings(rewrite_enabled=True, openai_api_key=None)).enabled is False
    assert build_rewriter(Settings(rewrite_enabled=False, openai_api_key="sk")).enabled is False
    service = build_rewriter(Settings(rewrite_enabled=True, openai_api_key="sk", openai_model="gpt-test"))
    assert service.enabled is True
    assert isinstance(service.provider, OpenAIProvider)
    assert service.model == "gpt-test"


class TestOpenAIProvider:
    def test_parses_first_choice(self):
        with patch("deskbot.services.llm.openai_provider.httpx.Client") as client_cls:
            client = client_cls.return_value.__enter__.return_value
            client.post.return_value = Mock(
                status_code=200,
                json=Mock(return_value={"model": "gpt-4o-mini", "choices": [{"message": {"content": "hola"}}]}),
            )
            response = OpenAIProvider(api_key="sk").generate([{"role": "user", "content": "x"}], max_tokens=50)

        assert response.content == "hola"
        assert response.model == "gpt-4o-mini"
        sent = client.post.call_args.kwargs
        assert sent["headers"]["Authorization"] == "Bearer sk"
        assert sent["json"]["max_completion_tokens"] == 50

    def test_error_status_raises(self):
        with patch("deskbot.services.llm.openai_provider.httpx.Client") as client_cls:
            client = client_cls.return_value.__enter__.return_value
            client.post.return_value = Mock(status_code=500, text="boom")
            with pytest.raises(LLMError):
                OpenAIProvider(api_key="sk").generate([])
