"""JSON wire format.

A message is one UTF-8 JSON object: ``type``, ``sender_id``,
``sender_type``, ``timestamp``, optional ``target_id`` and the payload
fields flattened alongside them.
"""

from __future__ import annotations

import json

from ..errors import MalformedMessage
from ..models import Message, NodeType

HEADER_FIELDS = ("type", "sender_id", "sender_type", "timestamp", "target_id")


def encode(message: Message) -> bytes:
    data = {k: v for k, v in message.payload.items() if k not in HEADER_FIELDS}
    data["type"] = message.type
    data["sender_id"] = message.sender_id
    data["sender_type"] = message.sender_type
    data["timestamp"] = message.timestamp
    if message.target_id is not None:
        data["target_id"] = message.target_id
    return json.dumps(data, separators=(",", ":")).encode("utf-8")


def decode(raw: bytes | str) -> Message:
    """Parse a wire payload, raising :class:`MalformedMessage` on any defect."""
    try:
        data = json.loads(raw)
    except (UnicodeDecodeError, ValueError) as exc:
        raise MalformedMessage(f"Undecodable payload: {exc}") from exc
    if not isinstance(data, dict):
        raise MalformedMessage("Payload is not an object")

    msg_type = data.pop("type", None)
    if not isinstance(msg_type, str) or not msg_type:
        raise MalformedMessage("Missing message type")
    sender_id = data.pop("sender_id", "")
    if not isinstance(sender_id, str):
        raise MalformedMessage("sender_id must be a string")
    target_id = data.pop("target_id", None)
    if target_id is not None and not isinstance(target_id, str):
        raise MalformedMessage("target_id must be a string")
    timestamp = data.pop("timestamp", 0)
    try:
        timestamp = int(timestamp)
    except (TypeError, ValueError, OverflowError) as exc:
        raise MalformedMessage("timestamp must be numeric") from exc

    return Message(
        type=msg_type,
        sender_id=sender_id,
        sender_type=str(data.pop("sender_type", NodeType.UNKNOWN.value)),
        timestamp=timestamp,
        target_id=target_id,
        payload=data,
    )
