from abc import ABC, abstractmethod
from typing import Optional
from datetime import datetime, timezone
import time

from thinking_relay.domain.models.delivery_state import (
    DeliveryOutcome, DeliveryState, MessageId, MessageOptions
)
from thinking_relay.infrastructure.observability.logging import (
    DiagnosticsRecorder, MetricsCollector, StructlogDiagnostics, metrics as global_metrics
)


class TransportError(Exception):
    """Raised by a transport when a message operation fails"""


class MessageTransport(ABC):
    """Create/edit/remove primitives of the hosting messaging service"""

    @abstractmethod
    async def create(self, target: str, text: str, options: MessageOptions) -> MessageId:
        """Post a new message and return its identifier"""
        pass

    @abstractmethod
    async def edit(self, target: str, message_id: MessageId, text: str, options: MessageOptions) -> bool:
        """Replace the text of an existing message"""
        pass

    @abstractmethod
    async def remove(self, target: str, message_id: MessageId) -> bool:
        """Delete an existing message"""
        pass


class MessageSink:
    """Delivers rendered content to a single remote message.

    Identical content is never sent twice in a row. Transport failures are
    recorded and swallowed, leaving the delivery state as it was so the next
    cycle retries.
    """

    def __init__(
        self,
        transport: MessageTransport,
        target: str,
        options: Optional[MessageOptions] = None,
        diagnostics: Optional[DiagnosticsRecorder] = None,
        metrics: Optional[MetricsCollector] = None
    ):
        self.transport = transport
        self.target = target
        self.options = options or MessageOptions()
        self.diagnostics = diagnostics or StructlogDiagnostics(__name__, target=target)
        self.metrics = metrics or global_metrics
        self.delivery = DeliveryState()

    @property
    def message_id(self) -> Optional[MessageId]:
        return self.delivery.message_id

    async def send(self, content: str) -> DeliveryOutcome:
        """Create the message on first delivery, edit it afterwards"""

        if content == self.delivery.last_sent_content:
            self.metrics.increment_counter("delivery.skipped")
            return DeliveryOutcome.SKIPPED

        if self.delivery.message_id is None:
            return await self._call("create", content)
        return await self._call("edit", content)

    async def replace(self, content: str) -> DeliveryOutcome:
        """Edit the existing message only; nothing to do if none was created"""

        if self.delivery.message_id is None:
            return DeliveryOutcome.SKIPPED
        if content == self.delivery.last_sent_content:
            self.metrics.increment_counter("delivery.skipped")
            return DeliveryOutcome.SKIPPED
        return await self._call("edit", content, failure_event="collapse_failed")

    async def remove(self) -> DeliveryOutcome:
        """Delete the remote message if there is one and forget its identifier"""

        message_id = self.delivery.message_id
        if message_id is None:
            return DeliveryOutcome.SKIPPED

        started = time.perf_counter()
        try:
            removed = await self.transport.remove(self.target, message_id)
            if removed is False:
                raise TransportError("transport rejected delete")
            outcome = DeliveryOutcome.DELIVERED
        except Exception as e:
            self.diagnostics.record(
                "delete_failed",
                level="warning",
                message_id=message_id,
                error=str(e)
            )
            outcome = DeliveryOutcome.FAILED
        finally:
            self.metrics.record_latency("transport.remove", (time.perf_counter() - started) * 1000)

        self.delivery.message_id = None
        self.metrics.increment_counter(f"delivery.{outcome.value}")
        return outcome

    async def _call(self, operation: str, content: str, failure_event: str = "delivery_failed") -> DeliveryOutcome:
        started = time.perf_counter()
        try:
            if operation == "create":
                message_id = await self.transport.create(self.target, content, self.options)
                if message_id is None:
                    raise TransportError("transport returned no message id")
                self.delivery.message_id = message_id
            else:
                edited = await self.transport.edit(
                    self.target, self.delivery.message_id, content, self.options
                )
                if edited is False:
                    raise TransportError("transport rejected edit")

        except Exception as e:
            self.diagnostics.record(
                failure_event,
                level="warning",
                operation=operation,
                message_id=self.delivery.message_id,
                error=str(e)
            )
            self.metrics.increment_counter("delivery.failed")
            return DeliveryOutcome.FAILED

        finally:
            self.metrics.record_latency(f"transport.{operation}", (time.perf_counter() - started) * 1000)

        self.delivery.last_sent_content = content
        self.delivery.last_sent_at = datetime.now(timezone.utc)
        self.metrics.increment_counter("delivery.delivered")
        return DeliveryOutcome.DELIVERED
