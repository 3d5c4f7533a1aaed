"""AI stylist chat turns with a client-side abort."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional

from gent_client.config import CHAT_TIMEOUT_SECONDS, logger
from gent_client.core.backend import BackendClient
from gent_client.core.errors import BackendError, RequestTimeoutError

TIMEOUT_REPLY = (
    "The request took too long. The AI service may be temporarily unavailable. "
    "Please try again."
)
UNAVAILABLE_REPLY = (
    "I apologize, but I'm having trouble connecting right now. "
    "Please try again in a moment."
)


@dataclass
class ChatMessage:
    role: str
    content: str
    is_error: bool = False
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class ChatSession:
    """Conversation history for one stylist chat; the backend is stateless."""

    def __init__(
        self,
        backend: BackendClient,
        phone: Optional[str] = None,
        timeout: float = CHAT_TIMEOUT_SECONDS,
    ):
        self.backend = backend
        self.phone = phone
        self.timeout = timeout
        self.messages: List[ChatMessage] = []

    def history(self) -> List[dict]:
        return [{"role": m.role, "content": m.content} for m in self.messages]

    async def send(self, text: str) -> Optional[ChatMessage]:
        """Send one user turn. Returns the assistant reply, or None for empty input."""
        text = text.strip()
        if not text:
            return None

        history = self.history()
        self.messages.append(ChatMessage(role="user", content=text))

        try:
            content = await self.backend.chat(text, history, self.phone, timeout=self.timeout)
            reply = ChatMessage(role="assistant", content=content)
        except RequestTimeoutError:
            logger.warning("Stylist chat timed out")
            reply = ChatMessage(role="assistant", content=TIMEOUT_REPLY, is_error=True)
        except BackendError as e:
            logger.warning(f"Stylist chat failed: {e}")
            reply = ChatMessage(role="assistant", content=UNAVAILABLE_REPLY, is_error=True)

        self.messages.append(reply)
        return reply
