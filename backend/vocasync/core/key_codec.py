"""Reversible escaping of record ids into store-safe path segments.

Store paths are ``/``-separated and reserve ``. $ # [ ]`` as well, so every
record id goes through :func:`encode_key` before it becomes a path segment
and through :func:`decode_key` on the way back out.
"""

import re

# "%" must come first so already-escaped looking input survives a round trip
_ESCAPES = {
    "%": "%25",
    ".": "%2E",
    "$": "%24",
    "#": "%23",
    "[": "%5B",
    "]": "%5D",
    "/": "%2F",
}
_UNESCAPES = {token: char for char, token in _ESCAPES.items()}

_ENCODE_RE = re.compile("[" + re.escape("".join(_ESCAPES)) + "]")
_DECODE_RE = re.compile("|".join(re.escape(token) for token in _UNESCAPES))


def encode_key(key: str) -> str:
    return _ENCODE_RE.sub(lambda m: _ESCAPES[m.group(0)], key)


def decode_key(key: str) -> str:
    return _DECODE_RE.sub(lambda m: _UNESCAPES[m.group(0)], key)
