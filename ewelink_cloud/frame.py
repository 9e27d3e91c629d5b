"""Frame codec for the real-time channel (RFC 6455 / hybi-10 framing).

Byte structure:
    Byte 0:     FIN (always set, messages are never fragmented) and opcode
    Byte 1:     MASK bit and 7-bit length (126 and 127 select extended forms)
    Bytes 2-3:  16-bit big-endian length when the 7-bit length is 126
    Bytes 2-9:  64-bit big-endian length when the 7-bit length is 127
    Next 4:     masking key, present only when the MASK bit is set
    Remainder:  payload, XORed with mask[i % 4] when masked
"""

from __future__ import annotations

import base64
import hashlib
import os
import struct
from collections.abc import Callable

from .const import WS_GUID, WS_KEY_BYTES
from .errors import FrameError
from .models import Opcode, WireFrame

FIN_BIT = 0x80
MASK_BIT = 0x80
OPCODE_MASK = 0x0F
LENGTH_MASK = 0x7F

MAX_SHORT_LENGTH = 125
LENGTH_16_MARKER = 126
LENGTH_64_MARKER = 127
MAX_16_LENGTH = 0xFFFF
MAX_64_LENGTH = 0x7FFFFFFFFFFFFFFF
MASK_KEY_LENGTH = 4

FRAME_TYPES = {
    "text": Opcode.TEXT,
    "close": Opcode.CLOSE,
    "ping": Opcode.PING,
    "pong": Opcode.PONG,
}


def generate_key() -> str:
    """Generate a random base64 ``Sec-WebSocket-Key``."""
    return base64.b64encode(os.urandom(WS_KEY_BYTES)).decode("ascii")


def compute_accept_key(key: str) -> str:
    """Return the ``Sec-WebSocket-Accept`` value expected for a key."""
    digest = hashlib.sha1(f"{key}{WS_GUID}".encode("ascii")).digest()  # noqa: S324
    return base64.b64encode(digest).decode("ascii")


def opcode_for(frame_type: str | Opcode) -> Opcode:
    """Resolve a frame type name to its opcode.

    Raises:
        FrameError: If the frame type is not text, close, ping or pong.

    """
    if isinstance(frame_type, Opcode):
        return frame_type
    try:
        return FRAME_TYPES[frame_type]
    except KeyError as err:
        error_msg = f"Unsupported frame type: {frame_type}"
        raise FrameError(error_msg) from err


def apply_mask(payload: bytes, mask: bytes) -> bytes:
    """XOR every payload byte with ``mask[i % 4]``; masking is its own inverse."""
    return bytes(byte ^ mask[index % MASK_KEY_LENGTH] for index, byte in enumerate(payload))


def encode_length(length: int, *, masked: bool) -> bytes:
    """Encode byte 1 and any extended length bytes.

    Raises:
        FrameError: If the length is negative or needs the top bit of the
            64-bit form.

    """
    mask_bit = MASK_BIT if masked else 0
    if length < 0 or length > MAX_64_LENGTH:
        error_msg = f"Payload length {length} cannot be encoded"
        raise FrameError(error_msg)
    if length <= MAX_SHORT_LENGTH:
        return bytes([mask_bit | length])
    if length <= MAX_16_LENGTH:
        return bytes([mask_bit | LENGTH_16_MARKER]) + struct.pack("!H", length)
    return bytes([mask_bit | LENGTH_64_MARKER]) + struct.pack("!Q", length)


def encode_frame(
    payload: bytes | str,
    frame_type: str | Opcode = Opcode.TEXT,
    *,
    masked: bool = True,
    mask_key: bytes | None = None,
) -> bytes:
    """Encode one complete frame.

    Args:
        payload: Frame payload; text is encoded as UTF-8.
        frame_type: ``text``, ``close``, ``ping``, ``pong`` or an Opcode.
        masked: Whether to mask the payload (required client to server).
        mask_key: Four mask bytes; random when omitted.

    Returns:
        The encoded frame.

    """
    if isinstance(payload, str):
        payload = payload.encode("utf-8")
    opcode = opcode_for(frame_type)

    frame = bytearray([FIN_BIT | opcode])
    frame += encode_length(len(payload), masked=masked)
    if masked:
        if mask_key is None:
            mask_key = os.urandom(MASK_KEY_LENGTH)
        if len(mask_key) != MASK_KEY_LENGTH:
            error_msg = "Mask key must be 4 bytes"
            raise FrameError(error_msg)
        frame += mask_key
        frame += apply_mask(payload, mask_key)
    else:
        frame += payload
    return bytes(frame)


def _parse_opcode(first_byte: int) -> Opcode:
    try:
        return Opcode(first_byte & OPCODE_MASK)
    except ValueError as err:
        error_msg = f"Unsupported opcode: 0x{first_byte & OPCODE_MASK:X}"
        raise FrameError(error_msg) from err


def _extended_length_size(length_field: int) -> int:
    if length_field == LENGTH_16_MARKER:
        return 2
    if length_field == LENGTH_64_MARKER:
        return 8
    return 0


def _parse_extended_length(length_field: int, extended: bytes) -> int:
    if length_field == LENGTH_16_MARKER:
        return struct.unpack("!H", extended)[0]
    if length_field == LENGTH_64_MARKER:
        length = struct.unpack("!Q", extended)[0]
        if length > MAX_64_LENGTH:
            error_msg = "64-bit payload length has the most significant bit set"
            raise FrameError(error_msg)
        return length
    return length_field


def decode_frame(data: bytes) -> WireFrame:
    """Decode one complete frame held in ``data``.

    Raises:
        FrameError: If the frame is truncated or malformed.

    """
    offset = 0

    def take(count: int) -> bytes:
        nonlocal offset
        chunk = data[offset : offset + count]
        if len(chunk) != count:
            error_msg = "Truncated frame"
            raise FrameError(error_msg)
        offset += count
        return chunk

    return read_frame(take)


def read_frame(read_exact: Callable[[int], bytes]) -> WireFrame:
    """Read one frame using a callable returning exactly ``n`` bytes.

    Raises:
        FrameError: If the frame is malformed.

    """
    first, second = read_exact(2)
    opcode = _parse_opcode(first)
    masked = bool(second & MASK_BIT)
    length_field = second & LENGTH_MASK

    extended_size = _extended_length_size(length_field)
    extended = read_exact(extended_size) if extended_size else b""
    length = _parse_extended_length(length_field, extended)

    mask_key = read_exact(MASK_KEY_LENGTH) if masked else b""
    payload = read_exact(length) if length else b""
    if masked:
        payload = apply_mask(payload, mask_key)
    return WireFrame(opcode=opcode, payload=payload, masked=masked)
