from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from .models import TranscriptEvent


class SessionState(str, Enum):
    IDLE = "IDLE"
    CONNECTING = "CONNECTING"
    CONFIGURING = "CONFIGURING"
    STREAMING = "STREAMING"
    DRAINING = "DRAINING"
    CLOSED = "CLOSED"
    ERRORED = "ERRORED"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionState.CLOSED, SessionState.ERRORED)


class SessionEventType(str, Enum):
    STATE = "SESSION_STATE"
    TRANSCRIPT = "TRANSCRIPT"


@dataclass(frozen=True, slots=True)
class SessionStateEvent:
    state: SessionState
    previous: SessionState
    type: SessionEventType = SessionEventType.STATE


@dataclass(frozen=True, slots=True)
class SessionTranscriptEvent:
    event: TranscriptEvent
    type: SessionEventType = SessionEventType.TRANSCRIPT


SessionEvent = SessionStateEvent | SessionTranscriptEvent
