"""MessagePack codec for WebSocket frames.

Every frame is a single map. Decoding enforces size limits so a hostile
client cannot make the server allocate large buffers.
"""

from typing import Any

import msgpack

MAX_BUFFER_LEN = 16 * 1024
MAX_STR_LEN = 4 * 1024
MAX_BIN_LEN = 1024
MAX_ARRAY_LEN = 128
MAX_MAP_LEN = 32
MAX_EXT_LEN = 0


class DecodeError(Exception):
    """Raised when an inbound frame is not a valid, bounded MessagePack map."""


def encode(data: dict[str, Any]) -> bytes:
    return msgpack.packb(data)


def decode(data: bytes) -> dict[str, Any]:
    if len(data) > MAX_BUFFER_LEN:
        raise DecodeError(f"payload too large: {len(data)} bytes (max {MAX_BUFFER_LEN})")
    try:
        result = msgpack.unpackb(
            data,
            raw=False,
            max_str_len=MAX_STR_LEN,
            max_bin_len=MAX_BIN_LEN,
            max_array_len=MAX_ARRAY_LEN,
            max_map_len=MAX_MAP_LEN,
            max_ext_len=MAX_EXT_LEN,
        )
    except (msgpack.UnpackException, ValueError) as e:
        raise DecodeError(f"failed to decode MessagePack data: {e}") from e

    if not isinstance(result, dict):
        raise DecodeError(f"expected map, got {type(result).__name__}")
    return result
