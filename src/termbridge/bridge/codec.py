"""Wire codec for the browser terminal protocol.

Inbound frames are JSON objects discriminated by ``type``::

    {"type": "command", "payload": "ls -la\\n"}
    {"type": "resize", "cols": 100, "rows": 30}

Outbound frames are the raw bytes the shell wrote, passed through
untouched since the client terminal owns rendering.
"""

from __future__ import annotations

import json
import logging

from pydantic import TypeAdapter, ValidationError

from termbridge.bridge.errors import ProtocolError
from termbridge.domain.models import Message

logger = logging.getLogger(__name__)

_message_adapter: TypeAdapter[Message] = TypeAdapter(Message)


def decode_frame(raw: str | bytes) -> Message:
    """Decode one inbound frame into a CommandMessage or ResizeMessage.

    Args:
        raw: Frame body as received on the connection. Binary frames
             are decoded as UTF-8 JSON as well.

    Raises:
        ProtocolError: If the frame is not a JSON object, the ``type``
            discriminator is missing or unknown, or the fields for a
            known type are missing or invalid.
    """
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = bytes(raw).decode("utf-8")
        except UnicodeDecodeError as e:
            raise ProtocolError(f"Frame is not valid UTF-8: {e}") from e

    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ProtocolError(f"Frame is not valid JSON: {e.msg}") from e

    if not isinstance(data, dict):
        raise ProtocolError(f"Frame must be a JSON object, got {type(data).__name__}")

    try:
        return _message_adapter.validate_python(data)
    except ValidationError as e:
        errors = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'frame'}: {err['msg']}"
            for err in e.errors()
        )
        raise ProtocolError(f"Invalid {data.get('type', 'untyped')!r} frame: {errors}") from e


def encode_output(data: bytes) -> bytes:
    """Wrap process output as an outbound data frame (pass-through)."""
    return bytes(data)
