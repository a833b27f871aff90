"""
Chat shim - where chat messages meet the scheduler.

Every inbound message is stored and broadcast right away. Tenant messages
additionally start a background task that runs the scheduling orchestrator,
asks the response composer for the landlord's reply, and posts that reply
into the same chat.

The sender never waits for the assistant. Whatever goes wrong in the
background task is logged and dropped.
"""

from typing import Optional, Set, Union
import asyncio
import logging

from viewing_scheduler.core.config import settings
from viewing_scheduler.core.logging import with_context
from viewing_scheduler.db.models import Chat, Message, SenderType
from viewing_scheduler.schemas.chat import MessageResponse
from viewing_scheduler.schemas.scheduling import ConversationContext
from viewing_scheduler.services.chat_service import ConnectionManager, MessageRepository
from viewing_scheduler.services.response_composer import ResponseComposer
from viewing_scheduler.services.scheduling_orchestrator import SchedulingOrchestrator

logger = logging.getLogger(__name__)

DEAD_LETTER_EVENT = "assistant.reply_dead_letter"


class ChatSchedulingShim:
    """
    Persists, broadcasts and (for tenants) hands messages to the assistant.
    """

    def __init__(
        self,
        repository: MessageRepository,
        manager: ConnectionManager,
        orchestrator: SchedulingOrchestrator,
        composer: ResponseComposer,
        enabled: Optional[bool] = None,
        max_attempts: Optional[int] = None,
        retry_delay: Optional[float] = None,
    ):
        self.repository = repository
        self.manager = manager
        self.orchestrator = orchestrator
        self.composer = composer
        self.enabled = settings.assistant_enabled if enabled is None else enabled
        self.max_attempts = max_attempts or settings.assistant_max_attempts
        self.retry_delay = settings.assistant_retry_delay_seconds if retry_delay is None else retry_delay

        # Strong references so running tasks aren't garbage collected
        self._tasks: Set[asyncio.Task] = set()

    async def handle_incoming(
        self,
        chat_id: str,
        sender_id: str,
        content: str,
        sender_type: Union[SenderType, str],
    ) -> Message:
        """
        Store and broadcast a message, then kick off the assistant for tenants.

        A failed persist propagates: the message was not sent.
        """
        sender_type = SenderType(sender_type)
        message = await asyncio.to_thread(self.repository.persist, chat_id, sender_id, content, sender_type)
        await self.manager.broadcast(chat_id, MessageResponse.model_validate(message).to_event())

        if sender_type == SenderType.TENANT and self.enabled:
            task = asyncio.create_task(self._assist(chat_id, message))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

        return message

    async def drain(self) -> None:
        """Wait for every in-flight assistant task, including ones they spawn."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def _assist(self, chat_id: str, message: Message) -> None:
        log = with_context(logger, chat_id=chat_id, message_id=message.id)
        try:
            chat = await asyncio.to_thread(self.repository.get_chat, chat_id)
            log = with_context(logger, chat_id=chat_id, landlord_id=chat.landlord_id)

            outcome = await self.orchestrator.handle(
                message.content,
                landlord_id=chat.landlord_id,
                tenant_id=message.sender_id,
                property_id=chat.property_id,
                chat_id=chat_id,
            )
            context = ConversationContext(
                tenant_name=chat.tenant_name or "there",
                landlord_name=chat.landlord_name or "the landlord",
                property_title=chat.property_name or "the property",
            )

            reply = await asyncio.to_thread(self.composer.compose, outcome, context)
            if reply is None:
                history = await asyncio.to_thread(self.repository.recent_messages, chat_id)
                earlier = [m for m in history if m.id != message.id]
                reply = await asyncio.to_thread(
                    self.composer.compose_general_reply, message.content, context, earlier
                )

            if not reply:
                log.info("No assistant reply for this message")
                return

            await self._deliver(chat, reply, log)
        except Exception:
            log.exception("Assistant task failed")

    async def _deliver(self, chat: Chat, reply: str, log) -> None:
        """Post the reply as the landlord, retrying the write a bounded number of times."""
        for attempt in range(1, self.max_attempts + 1):
            try:
                stored = await asyncio.to_thread(
                    self.repository.persist, chat.id, chat.landlord_id, reply, SenderType.LANDLORD
                )
            except Exception as e:
                log.warning(f"Reply delivery attempt {attempt}/{self.max_attempts} failed: {e}")
                if attempt < self.max_attempts:
                    await asyncio.sleep(self.retry_delay)
                continue

            await self.manager.broadcast(chat.id, MessageResponse.model_validate(stored).to_event())
            log.info(f"Assistant reply {stored.id} delivered")
            return

        log.error(
            f"{DEAD_LETTER_EVENT}: giving up after {self.max_attempts} attempts; reply was: {reply!r}",
            extra={"event": DEAD_LETTER_EVENT},
        )
