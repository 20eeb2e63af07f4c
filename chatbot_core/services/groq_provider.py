"""Groq adapter with per-model fallback."""

import logging
import time
from typing import Any, Dict, List, Optional

from groq import AsyncGroq

from ..core.config import ProviderConfig
from ..core.exceptions import ConfigurationException
from ..models.chat import ChatContext, ChatResponse, TokenUsage
from .provider_router import AIProvider

logger = logging.getLogger(__name__)

RATE_LIMIT_MARKERS = ("429", "rate_limit_exceeded", "rate limit")
DECOMMISSIONED_MARKERS = ("decommissioned", "model_decommissioned", "model_not_found")


class GroqProvider(AIProvider):
    """
    Chat completions through the Groq async SDK.

    Tries the configured model first and moves on to each fallback model
    when a model is rate limited or decommissioned. Any other error is
    raised unchanged for the error handler to classify.
    """

    def __init__(self, config: ProviderConfig, client: Optional[Any] = None):
        super().__init__(config)

        if client is None:
            if not config.api_key:
                raise ConfigurationException(
                    "GROQ_API_KEY", "No Groq API key configured. Ensure GROQ_API_KEY is set."
                )
            client = AsyncGroq(api_key=config.api_key, base_url=config.url, timeout=config.timeout)

        self.client = client
        self.models = [config.model] + [m for m in config.fallback_models if m != config.model]

        logger.info(f"✅ Groq primary model: {config.model}")
        if config.fallback_models:
            logger.info(f"✅ Groq fallback models: {config.fallback_models}")

    async def generate_response(
        self,
        message: str,
        context: Optional[ChatContext] = None,
        **options: Any
    ) -> ChatResponse:
        messages = self.build_messages(message, context)
        max_tokens = options.get("max_tokens", self.config.max_tokens)
        temperature = options.get("temperature", self.config.temperature)

        for attempt, model in enumerate(self.models):
            is_last = attempt == len(self.models) - 1
            logger.info(f"🔄 Trying Groq model: {model} (attempt {attempt + 1}/{len(self.models)})")

            start_time = time.time()
            try:
                response = await self.client.chat.completions.create(
                    model=model,
                    messages=messages,
                    max_tokens=max_tokens,
                    temperature=temperature,
                )
            except Exception as e:
                reason = self._fallback_reason(e)
                if reason is None or is_last:
                    logger.error(f"❌ Groq API error on {model}: {e}")
                    raise
                logger.warning(f"⚠️ Model {model} {reason}, trying fallback...")
                continue

            response_time = time.time() - start_time
            content = response.choices[0].message.content or ""
            logger.info(f"✅ Groq {model} response ({response_time:.2f}s): {len(content)} chars")

            return ChatResponse(
                content=content,
                provider=self.name,
                model=model,
                usage=self._usage(response),
                response_time=response_time,
                metadata={"fallback_used": attempt > 0},
            )

        # Only reachable with an empty model list
        raise ConfigurationException("model", "No Groq model configured")

    async def is_available(self) -> bool:
        return self.client is not None and self.config.enabled and bool(self.config.model)

    @staticmethod
    def build_messages(message: str, context: Optional[ChatContext] = None) -> List[Dict[str, str]]:
        """Build the chat completion message list: system prompt, history, new message."""
        messages = []
        if context is not None:
            if context.system_prompt:
                messages.append({"role": "system", "content": context.system_prompt})
            for past in context.messages:
                messages.append({"role": past.role.value, "content": past.content})

        messages.append({"role": "user", "content": message})
        return messages

    @staticmethod
    def _fallback_reason(error: Exception) -> Optional[str]:
        text = str(error).lower()
        if any(marker in text for marker in RATE_LIMIT_MARKERS):
            return "hit a rate limit"
        if any(marker in text for marker in DECOMMISSIONED_MARKERS):
            return "has been decommissioned"
        return None

    @staticmethod
    def _usage(response: Any) -> Optional[TokenUsage]:
        usage = getattr(response, "usage", None)
        if usage is None:
            return None
        return TokenUsage(
            prompt_tokens=getattr(usage, "prompt_tokens", 0) or 0,
            completion_tokens=getattr(usage, "completion_tokens", 0) or 0,
            total_tokens=getattr(usage, "total_tokens", 0) or 0,
        )
