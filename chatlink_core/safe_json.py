"""Safe JSON detection and wire serialization.

The API host returns JSON, images, empty bodies and HTML error pages under the
same envelope. Before decoding, a body is run through a conservative
token-stripping check that is cheap on arbitrary bytes and never raises:

1. every valid escape sequence is masked,
2. strings, ``true``/``false``/``null`` and numbers collapse to ``]``,
3. runs of ``[`` following start-of-input, ``:`` or ``,`` are dropped,

and what remains must consist solely of ``]``, ``,``, ``:``, braces and JSON
whitespace. This is a heuristic, not a grammar: it rejects barewords,
unterminated strings and stray control characters, but can accept some
structurally unbalanced documents. ``decode_or_raw`` covers that gap.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any

_LOGGER = logging.getLogger(__name__)

# Explicit ASCII classes: str patterns would otherwise match Unicode digits
# and whitespace that the JSON grammar does not allow.
_BLANK = re.compile(r"[ \t\n\r]*")
_ESCAPE = re.compile(r'\\(?:["\\/bfnrt]|u[0-9a-fA-F]{4})')
_TOKEN = re.compile(
    r'"[^"\\\n\r]*"|true|false|null|-?[0-9]+(?:\.[0-9]*)?(?:[eE][+\-]?[0-9]+)?'
)
_OPEN_BRACKETS = re.compile(r"(?:^|:|,)(?:[ \t\n\r]*\[)+")
_STRUCTURAL = re.compile(r"[\],:{} \t\n\r]*")


def _as_text(data: bytes | bytearray | str) -> str | None:
    if isinstance(data, str):
        return data
    try:
        return bytes(data).decode("utf-8")
    except UnicodeDecodeError:
        return None


def is_structured_text(data: bytes | bytearray | str | None) -> bool:
    """Return True when ``data`` looks like a JSON document."""
    if data is None:
        return False
    text = _as_text(data)
    if text is None or _BLANK.fullmatch(text):
        return False

    text = _ESCAPE.sub("@", text)
    text = _TOKEN.sub("]", text)
    text = _OPEN_BRACKETS.sub("", text)

    return _STRUCTURAL.fullmatch(text) is not None


def decode(data: bytes | bytearray | str) -> Any:
    """Decode a JSON document previously accepted by ``is_structured_text``."""
    if isinstance(data, (bytes, bytearray)):
        data = bytes(data).decode("utf-8")
    return json.loads(data)


def decode_or_raw(data: bytes) -> Any:
    """Decode ``data`` when it is structured text, else return it unchanged.

    Documents that pass the heuristic but still fail a full parse are
    returned raw as well.
    """
    if not is_structured_text(data):
        return data
    try:
        return decode(data)
    except ValueError as err:
        _LOGGER.debug("Body passed structure check but failed to decode: %s", err)
        return data


def format_json(value: Any) -> str | None:
    """Serialize ``value`` as compact JSON with non-ASCII escaped as ``\\uXXXX``.

    Returns None when there is nothing to send.
    """
    if value is None:
        return None
    return json.dumps(value, separators=(",", ":"), ensure_ascii=True)
