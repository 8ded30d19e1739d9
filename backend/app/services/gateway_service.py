import logging
from collections.abc import AsyncIterator, Sequence
from contextlib import AsyncExitStack, asynccontextmanager
from typing import Any

from openai import APIConnectionError, APIStatusError, AsyncOpenAI, RateLimitError

from app.config import Settings, get_settings
from app.models.think_mode_types import ChatMessage

# Configure logger
logger = logging.getLogger(__name__)

RATE_LIMIT_MESSAGE = "Rate limit exceeded. Please try again in a moment."
CREDITS_DEPLETED_MESSAGE = "AI credits depleted. Please add funds to your workspace."
GATEWAY_ERROR_MESSAGE = "AI gateway error"
NOT_CONFIGURED_MESSAGE = "Gateway API key not configured"

THINK_MODE_SYSTEM_PROMPT = """You are Madison, Editorial Director. You're helping users brainstorm and refine content ideas in Think Mode.

Think Mode is a safe space for exploration before filling out the formal content brief. Your goal is to help users:
- Clarify their ideas through thoughtful questions
- Discover specific angles and hooks
- Understand their target audience better
- Find the unique story their product tells

Voice: measured confidence, warm but professional, sophisticated without pretension.
Avoid marketing cliches, excessive enthusiasm, vague responses and generic advice.
Push vague ideas toward concrete, specific, honest details."""


class GatewayError(Exception):
    """Upstream gateway rejected or failed a chat request"""

    def __init__(self, status_code: int, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.message = message


class GatewayService:
    """
    Streams Think Mode conversations from an OpenAI-compatible gateway.

    The raw SSE body is handed back untouched so the caller can relay it in
    whatever dialect the gateway happens to speak.
    """

    def __init__(self, settings: Settings | None = None):
        self.settings = settings or get_settings()
        self.client = None
        self.model = None
        self.base_url = None
        self.api_key = None

        self._load_configuration()

    def _load_configuration(self):
        """
        Read the gateway endpoint, key and model from settings.
        A missing key is logged; chat requests then fail with a 500.
        """
        self.base_url = self.settings.GATEWAY_BASE_URL
        self.api_key = self.settings.LOVABLE_API_KEY or ""
        self.model = self.settings.GATEWAY_MODEL

        logger.info(f"Gateway configuration: {self.base_url} ({self.model})")
        if self.api_key:
            logger.info(f"   - API key: {self.settings.api_key_preview}")
        else:
            logger.warning("LOVABLE_API_KEY is not set; Think Mode chat is disabled")

        # Rate limits must reach the caller instead of being retried here
        self.client = AsyncOpenAI(
            base_url=self.base_url,
            api_key=self.api_key or "not-configured",
            max_retries=0,
        )

    def build_messages(
        self,
        messages: Sequence[ChatMessage | dict[str, str]],
        user_name: str | None = None,
        mode: str = "strategic",
    ) -> list[dict[str, str]]:
        """Prepend the Think Mode system prompt to the conversation"""
        system_prompt = THINK_MODE_SYSTEM_PROMPT
        if user_name:
            system_prompt += f"\n\nYou are talking with {user_name}. Address them by name when it feels natural."
        if mode and mode != "strategic":
            system_prompt += f"\n\nConversation mode: {mode}."

        conversation = [
            m.model_dump() if isinstance(m, ChatMessage) else dict(m) for m in messages
        ]
        return [{"role": "system", "content": system_prompt}, *conversation]

    @asynccontextmanager
    async def open_chat_stream(
        self,
        messages: Sequence[ChatMessage | dict[str, str]],
        user_name: str | None = None,
        mode: str = "strategic",
    ) -> AsyncIterator[Any]:
        """
        Open a streamed chat completion and yield the raw response.

        The yielded response exposes iter_bytes() over the SSE body.

        Raises:
            GatewayError: If the gateway is not configured or rejects the request
        """
        if not self.api_key:
            raise GatewayError(500, NOT_CONFIGURED_MESSAGE)

        logger.info(
            f"[Gateway] Think Mode chat request, messages: {len(messages)}, "
            f"model: {self.model}"
        )

        async with AsyncExitStack() as stack:
            try:
                response = await stack.enter_async_context(
                    self.client.chat.completions.with_streaming_response.create(
                        model=self.model,
                        messages=self.build_messages(messages, user_name, mode),
                        stream=True,
                    )
                )
            except (APIStatusError, APIConnectionError) as e:
                raise self._to_gateway_error(e) from e

            yield response

    @staticmethod
    def _to_gateway_error(error: Exception) -> GatewayError:
        if isinstance(error, RateLimitError):
            return GatewayError(429, RATE_LIMIT_MESSAGE)
        if isinstance(error, APIStatusError):
            if error.status_code == 402:
                return GatewayError(402, CREDITS_DEPLETED_MESSAGE)
            logger.error(f"[Gateway] AI gateway error: {error.status_code} {error.message}")
            return GatewayError(500, GATEWAY_ERROR_MESSAGE)
        logger.error(f"[Gateway] Could not reach AI gateway: {error}")
        return GatewayError(500, GATEWAY_ERROR_MESSAGE)

    async def test_connection(self) -> dict[str, Any]:
        """
        Test connection to the gateway
        """
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=[{"role": "user", "content": "Hello, are you working?"}],
            )

            return {
                "status": "connected",
                "model": self.model,
                "response": response.choices[0].message.content,
            }

        except Exception as e:
            return {"status": "error", "error": str(e)}


# Global instance shared by the routers so they see the same configuration
gateway_service = GatewayService()
