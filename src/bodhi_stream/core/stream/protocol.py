"""JSON wire messages exchanged with the recognizer."""

from __future__ import annotations

import json
from typing import Any

from bodhi_stream.domain.models import (
    ConfigAck,
    InboundMessage,
    ServiceErrorMessage,
    TranscriptEvent,
)
from bodhi_stream.errors import DecodeError

EOF_SENTINEL = '{"eof": 1}'

_TRANSCRIPT_KEYS = ("type", "text", "eos")
_ACK_KEYS = ("status", "config")


def encode_config(*, sample_rate_hz: int, transaction_id: str, model: str) -> str:
    return json.dumps(
        {
            "config": {
                "sample_rate": sample_rate_hz,
                "transaction_id": transaction_id,
                "model": model,
            }
        }
    )


def decode_inbound(raw: str | bytes) -> InboundMessage:
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = bytes(raw).decode("utf-8")
        except UnicodeDecodeError as exc:
            raise DecodeError("inbound message is not valid UTF-8") from exc

    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise DecodeError(f"non-JSON message: {raw[:200]!r}") from exc

    if not isinstance(data, dict):
        raise DecodeError(f"expected a JSON object, got {type(data).__name__}")

    if "error" in data or "error_code" in data:
        message = data.get("error") or data.get("error_code") or "unknown error"
        return ServiceErrorMessage(message=str(message), payload=data)

    if any(key in data for key in _TRANSCRIPT_KEYS):
        return _decode_transcript(data)

    if any(key in data for key in _ACK_KEYS):
        return ConfigAck(payload=data)

    raise DecodeError(f"unrecognized message shape: keys={sorted(data)}")


def _decode_transcript(data: dict[str, Any]) -> TranscriptEvent:
    kind = data.get("type", "")
    text = data.get("text", "")
    eos = data.get("eos", False)
    call_id = data.get("call_id")

    if not isinstance(kind, str):
        raise DecodeError("transcript 'type' must be a string")
    if text is None:
        text = ""
    if not isinstance(text, str):
        raise DecodeError("transcript 'text' must be a string")
    if eos is None:
        eos = False
    if not isinstance(eos, (bool, int)):
        raise DecodeError("transcript 'eos' must be a boolean")
    if call_id is not None and not isinstance(call_id, str):
        call_id = str(call_id)

    return TranscriptEvent(
        type=kind,
        text=text,
        eos=bool(eos),
        call_id=call_id,
        segment_id=data.get("segment_id"),
    )
