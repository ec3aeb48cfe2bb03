"""Optional LLM rewording of outgoing text replies."""

from typing import Optional

from deskbot.logging_config import get_logger
from deskbot.services.fsm_states import Reply
from deskbot.services.llm import LLMProvider, OpenAIProvider

logger = get_logger("rewrite_service")

MAX_REWRITE_CHARS = 600

# Replies carrying amounts, links or handoff notices are sent verbatim.
PROTECTED_MARKERS = (
    "honorarios",
    "monto",
    "bio libre",
    "deriv",
    "http",
    "$",
    "cbu",
    "alias",
)

SYSTEM_PROMPT = """Sos el asistente de WhatsApp de un estudio contable argentino.
Reescribí el mensaje para que suene natural y cordial, en español rioplatense (vos).
Reglas:
- Mantené exactamente el mismo significado y las mismas instrucciones.
- No agregues ni quites información.
- No cambies números, montos, fechas, links ni nombres.
- Respondé solo con el mensaje reescrito, sin comillas."""


class RewriteService:
    def __init__(self, provider: Optional[LLMProvider], model: Optional[str] = None, enabled: bool = True):
        self.provider = provider
        self.model = model
        self.enabled = enabled and provider is not None

    def can_rewrite(self, reply: Reply) -> bool:
        if not self.enabled or reply.kind != "text":
            return False
        text = (reply.text or "").strip()
        if not text:
            return False
        lowered = text.lower()
        return not any(marker in lowered for marker in PROTECTED_MARKERS)

    def rewrite(self, text: str, context: Optional[dict] = None) -> Optional[str]:
        """Return the reworded text, or None to keep the original."""
        if not self.enabled:
            return None

        messages = [{"role": "system", "content": SYSTEM_PROMPT}]
        if context and context.get("state"):
            messages.append({"role": "system", "content": f"Etapa de la conversación: {context['state']}"})
        messages.append({"role": "user", "content": text})

        try:
            response = self.provider.generate(messages, model=self.model, temperature=0.4, max_tokens=300)
        except Exception as e:
            logger.warning("Rewrite failed", extra={"context": {"error": str(e)}})
            return None

        rewritten = (response.content or "").strip().strip('"').strip()
        if not rewritten:
            return None
        ratio = len(rewritten) / max(len(text), 1)
        if ratio < 0.5 or ratio > 1.5:
            logger.info("Rewrite discarded", extra={"context": {"ratio": round(ratio, 2)}})
            return None
        return rewritten[:MAX_REWRITE_CHARS]


def build_rewriter(settings) -> RewriteService:
    if not settings.rewrite_enabled or not settings.openai_api_key:
        return RewriteService(provider=None, enabled=False)

    provider = OpenAIProvider(api_key=settings.openai_api_key, default_model=settings.openai_model)
    return RewriteService(provider=provider, model=settings.openai_model, enabled=True)
