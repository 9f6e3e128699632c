"""Chat completion relay streaming Server-Sent Events from a remote endpoint."""
import json
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx
import tiktoken

from config import CHAT_API_KEY, CHAT_API_URL, CHAT_MODEL, CHAT_TIMEOUT
from models.chunk import ScoredChunk

logger = logging.getLogger(__name__)

APOLOGY_MESSAGE = (
    "Sorry, I encountered an error while processing your request. Please try again later."
)


@dataclass
class LLMError:
    """Structured error reported inside the event stream."""
    code: str
    message: str
    details: Dict[str, Any]


class LLMClient:
    """Relay chat requests to an OpenAI-compatible completions endpoint."""

    def __init__(
        self,
        api_key: Optional[str] = CHAT_API_KEY,
        api_url: str = CHAT_API_URL,
        model: str = CHAT_MODEL,
        timeout: float = CHAT_TIMEOUT,
        max_tokens: int = 1000,
        temperature: float = 0.7,
        encoder: Optional[tiktoken.Encoding] = None
    ):
        """
        Initialize the relay.

        A missing API key is reported to the caller as an error event when a
        chat is streamed, not at construction time.

        Args:
            api_key: Bearer token for the completions endpoint
            api_url: Completions endpoint URL
            model: Model name sent upstream
            timeout: Request timeout in seconds
            max_tokens: Maximum tokens to generate
            temperature: Sampling temperature
            encoder: tiktoken encoding for prompt size estimates (cl100k_base if omitted)
        """
        self.api_key = api_key
        self.encoder = encoder
        self.api_url = api_url
        self.model = model
        self.timeout = timeout
        self.max_tokens = max_tokens
        self.temperature = temperature
        logger.info(f"LLMClient initialized for {api_url}")

    @staticmethod
    def build_context_message(chunks: List[ScoredChunk]) -> Optional[Dict[str, str]]:
        """
        Format retrieved chunks as a single system message.

        Args:
            chunks: Retrieved chunks, most relevant first

        Returns:
            System message dict, or None when there is nothing to inject
        """
        if not chunks:
            return None

        references = []
        for index, scored in enumerate(chunks, start=1):
            metadata = scored.chunk.metadata
            attribution = metadata.source
            if metadata.page is not None:
                attribution = f"{attribution}, page {metadata.page}"
            references.append(f"**Reference {index} ({attribution}):**\n{scored.chunk.text}")

        context_text = "\n\n".join(references)
        content = f"""You are StudyDesk, a study preparation assistant. Use the following document references to enhance your response when relevant:

{context_text}

Be sure to cite sources when referencing the documents. If the documents don't contain relevant information, provide your general knowledge response."""

        return {"role": "system", "content": content}

    @classmethod
    def build_messages(
        cls,
        messages: List[Dict[str, str]],
        chunks: Optional[List[ScoredChunk]] = None
    ) -> List[Dict[str, str]]:
        """Prepend the context message (if any) to the conversation."""
        context_message = cls.build_context_message(chunks or [])
        if context_message is None:
            return list(messages)
        return [context_message, *messages]

    def count_tokens(self, messages: List[Dict[str, str]]) -> int:
        """Estimate the prompt size of messages in tokens."""
        if self.encoder is None:
            self.encoder = tiktoken.get_encoding("cl100k_base")
        return sum(len(self.encoder.encode(message["content"])) for message in messages)

    async def stream_chat(self, messages: List[Dict[str, str]]) -> AsyncIterator[bytes]:
        """
        Stream a chat completion, relaying upstream SSE bytes unmodified.

        Upstream failures are turned into one error event followed by
        `data: [DONE]`, so the caller always receives a well-formed stream.

        Args:
            messages: Role-tagged chat messages

        Yields:
            Raw SSE bytes
        """
        if not self.api_key:
            logger.error("Chat API key not configured")
            for event in self._error_events(LLMError(
                code="CONFIGURATION_ERROR",
                message="Chat API key not configured",
                details={}
            )):
                yield event
            return

        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json"
        }
        payload = {
            "model": self.model,
            "messages": messages,
            "stream": True,  # upstream only supports streaming mode
            "max_tokens": self.max_tokens,
            "temperature": self.temperature
        }

        error: Optional[LLMError] = None
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                async with client.stream("POST", self.api_url, headers=headers, json=payload) as response:
                    if response.status_code != 200:
                        body = (await response.aread()).decode("utf-8", errors="replace")
                        error = LLMError(
                            code="API_ERROR",
                            message=f"API request failed: {response.status_code}",
                            details={"status_code": response.status_code, "body": body[:500]}
                        )
                    else:
                        async for chunk in response.aiter_raw():
                            yield chunk
        except httpx.TimeoutException as e:
            error = LLMError(
                code="TIMEOUT_ERROR",
                message="Request timed out. Please try again.",
                details={"original_error": str(e)}
            )
        except httpx.RequestError as e:
            error = LLMError(
                code="NETWORK_ERROR",
                message=f"Network error: {str(e)}",
                details={"original_error": str(e)}
            )

        if error is not None:
            logger.error(
                f"Chat relay error: {error.message}",
                extra={"extra": {"error_code": error.code, "error_details": error.details}}
            )
            for event in self._error_events(error):
                yield event

    @staticmethod
    def _error_events(error: LLMError) -> List[bytes]:
        data = {
            "choices": [{"delta": {"content": APOLOGY_MESSAGE}}],
            "error": {"code": error.code, "message": error.message}
        }
        return [
            f"data: {json.dumps(data)}\n\n".encode("utf-8"),
            b"data: [DONE]\n\n"
        ]
