from __future__ import annotations

import asyncio
import time
import uuid
from typing import Callable, List, Optional, Tuple

from .errors import ChatBusy, recovered
from .inference import CHAT_UNAVAILABLE, InferenceClient
from .models import SENDER_AI, SENDER_USER, ChatMessage

GREETING = "FactoryBridge Central Online. How can I assist with the inspection today?"
AI_ROLE = "System"

ROLE_FIELD_ENGINEER = "Field Engineer"
ROLE_DATA_SCIENTIST = "Data Scientist"


class ChatCoordinator:
    """Conversation with Central, one request at a time.

    The history sent with each turn is the log as it stood before the new user
    message, so a second send while a reply is pending would race on that
    snapshot. Such sends are rejected with ``ChatBusy``.
    """

    def __init__(
        self,
        client: InferenceClient,
        log,
        *,
        greeting: Optional[str] = GREETING,
        clock: Callable[[], float] = time.time,
        id_factory: Callable[[], str] = lambda: str(uuid.uuid4()),
    ):
        self._client = client
        self._logger = log
        self._clock = clock
        self._new_id = id_factory
        self._messages: List[ChatMessage] = []
        self._awaiting_reply = False
        if greeting:
            self._append(SENDER_AI, AI_ROLE, greeting)

    @property
    def awaiting_reply(self) -> bool:
        return self._awaiting_reply

    @property
    def messages(self) -> Tuple[ChatMessage, ...]:
        return tuple(self._messages)

    async def send(self, text: str, role: str = ROLE_FIELD_ENGINEER) -> Optional[ChatMessage]:
        if not text.strip():
            return None
        if self._awaiting_reply:
            raise ChatBusy("Central is still replying to the previous message")

        history = self.messages
        self._append(SENDER_USER, role, text)
        self._awaiting_reply = True
        self._logger.info("Chat message from %s (%s chars)", role, len(text))
        try:
            reply = await recovered(
                lambda: self._client.chat_turn(history, text),
                CHAT_UNAVAILABLE,
                self._logger,
                "Chat turn",
            )
        except asyncio.CancelledError:
            # Keep every user message paired with a reply.
            self._append(SENDER_AI, AI_ROLE, CHAT_UNAVAILABLE)
            raise
        finally:
            self._awaiting_reply = False
        return self._append(SENDER_AI, AI_ROLE, reply or CHAT_UNAVAILABLE)

    def _append(self, sender: str, role: str, text: str) -> ChatMessage:
        message = ChatMessage(id=self._new_id(), sender=sender, role=role, text=text, timestamp=self._clock())
        self._messages.append(message)
        return message
