"""
Downloaded Payload Normalization

Object storage clients hand back blobs in several in-memory shapes:
raw bytes, bytearray/memoryview, already-decoded text, file-like
responses, or an iterable of chunks. This module turns all of them into
one owned byte buffer, so nothing past the storage boundary ever
branches on the payload's runtime shape.
"""

from collections.abc import Iterable
from typing import Any

from budgetwise.services.storage.interface import PayloadDecodeError


def normalize_payload(payload: Any) -> bytes:
    """
    Convert a downloaded payload into bytes.

    Text is encoded as UTF-8. Chunks are concatenated in order.

    Raises:
        PayloadDecodeError: If the payload (or one of its chunks) has an
            unsupported type
    """
    if payload is None:
        raise PayloadDecodeError("Downloaded payload is empty")

    if isinstance(payload, bytes):
        return payload
    if isinstance(payload, (bytearray, memoryview)):
        return bytes(payload)
    if isinstance(payload, str):
        return payload.encode("utf-8")

    # File-like objects (HTTP responses, BytesIO, open files)
    read = getattr(payload, "read", None)
    if callable(read):
        return normalize_payload(read())

    if isinstance(payload, Iterable):
        buffer = bytearray()
        for chunk in payload:
            if isinstance(chunk, int):
                # An iterable of byte values, e.g. list(b"...")
                if not 0 <= chunk <= 255:
                    raise PayloadDecodeError(f"Byte value out of range: {chunk}")
                buffer.append(chunk)
            else:
                buffer.extend(normalize_payload(chunk))
        return bytes(buffer)

    raise PayloadDecodeError(
        f"Unsupported payload type: {type(payload).__name__}"
    )


def payload_to_text(payload: Any) -> str:
    """
    Normalize a payload and decode it as strict UTF-8.

    Raises:
        PayloadDecodeError: If the bytes are not valid UTF-8
    """
    data = normalize_payload(payload)
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError as e:
        raise PayloadDecodeError(f"Payload is not valid UTF-8 text: {e}")
