from __future__ import annotations

import json
import logging
from typing import Any, Iterable

from src.domain.errors import PayloadDecodeError

logger = logging.getLogger(__name__)

# Field names the feed has used for the token mint, in priority order.
DEFAULT_IDENTIFIER_FIELDS: tuple[str, ...] = ("coinMint", "mint", "token_address", "address")


def decode_payload(raw: bytes | str) -> Any:
    """
    Decode a data frame payload.

    Some publishers on the feed JSON-encode an already JSON-encoded string, so a first pass
    that yields a `str` gets exactly one more pass. This is a quirk of the upstream service.
    """
    try:
        text = raw.decode("utf-8") if isinstance(raw, (bytes, bytearray)) else str(raw)
    except UnicodeDecodeError as exc:
        raise PayloadDecodeError(f"Payload is not valid UTF-8: {exc}") from exc

    try:
        obj = json.loads(text)
    except ValueError as exc:
        raise PayloadDecodeError(f"Payload is not valid JSON: {exc}") from exc

    if isinstance(obj, str):
        logger.debug("Payload decoded to a string; decoding a second time")
        try:
            obj = json.loads(obj)
        except ValueError as exc:
            raise PayloadDecodeError(f"Double-encoded payload is not valid JSON: {exc}") from exc
        if isinstance(obj, str):
            raise PayloadDecodeError("Payload is still a string after two decode passes")
    return obj


def extract_identifier(obj: Any, fields: Iterable[str] = DEFAULT_IDENTIFIER_FIELDS) -> str | None:
    if not isinstance(obj, dict):
        return None
    for name in fields:
        value = obj.get(name)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None
