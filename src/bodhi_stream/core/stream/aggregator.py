from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field

from bodhi_stream.core.stream.protocol import decode_inbound
from bodhi_stream.domain.models import InboundMessage, TranscriptEvent, TranscriptResult

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class TranscriptAggregator:
    """Collects complete segments in receipt order until end-of-stream."""

    transaction_id: str = ""

    _segments: list[str] = field(init=False, default_factory=list)
    _final: bool = field(init=False, default=False)
    _done: asyncio.Event = field(init=False, default_factory=asyncio.Event)
    _late_events: int = field(init=False, default=0)

    @property
    def is_final(self) -> bool:
        return self._final

    @property
    def late_events(self) -> int:
        return self._late_events

    @property
    def result(self) -> TranscriptResult:
        return TranscriptResult(
            transaction_id=self.transaction_id,
            segments=tuple(self._segments),
            final=self._final,
        )

    def consume(self, raw: str | bytes) -> InboundMessage:
        """Decode one inbound payload and fold it in if it is a transcript.

        Raises DecodeError for malformed payloads; the caller decides whether
        that is fatal.
        """
        message = decode_inbound(raw)
        if isinstance(message, TranscriptEvent):
            self.accept(message)
        return message

    def accept(self, event: TranscriptEvent) -> bool:
        """Returns True if the event's text was added to the transcript."""
        if self._final:
            self._late_events += 1
            logger.warning(
                "Event received after end-of-stream (segment_id=%s, type=%s); ignoring",
                event.segment_id,
                event.type,
            )
            return False

        added = event.contributes
        if added:
            self._segments.append(event.text)

        if event.eos:
            self._final = True
            self._done.set()
        return added

    async def wait_final(self) -> TranscriptResult:
        await self._done.wait()
        return self.result
