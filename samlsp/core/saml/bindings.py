"""Binding codecs for HTTP-Redirect and HTTP-POST.

HTTP-Redirect carries a raw-deflated, base64-encoded, percent-encoded
message in a query parameter. HTTP-POST carries a base64-encoded message
in a form field.
"""

from __future__ import annotations

import base64
import binascii
import zlib
from collections.abc import Mapping
from urllib.parse import quote, unquote

from markupsafe import escape

from samlsp.core.saml.errors import DecodeError

# Upper bound for an inflated HTTP-Redirect message
MAX_INFLATED_SIZE = 1024 * 1024


def deflate(data: bytes) -> bytes:
    """Raw DEFLATE (RFC 1951), no zlib header or checksum."""
    compressor = zlib.compressobj(zlib.Z_DEFAULT_COMPRESSION, zlib.DEFLATED, -15)
    return compressor.compress(data) + compressor.flush()


def inflate(data: bytes, max_size: int = MAX_INFLATED_SIZE) -> bytes:
    """Inverse of :func:`deflate`.

    Raises:
        DecodeError: If the payload inflates past ``max_size`` bytes or
            ends before the final block.
    """
    decompressor = zlib.decompressobj(-15)
    inflated = decompressor.decompress(data, max_size)
    if decompressor.unconsumed_tail:
        raise DecodeError(f"Inflated payload exceeds {max_size} bytes")
    if not decompressor.eof:
        raise DecodeError("Truncated DEFLATE payload")
    return inflated


def _b64decode(value: str) -> bytes:
    # Browsers and IdPs may wrap base64 form values across lines
    compact = "".join(value.split())
    try:
        return base64.b64decode(compact, validate=True)
    except (binascii.Error, ValueError) as e:
        raise DecodeError(f"Invalid base64 payload: {e}") from e


def _to_text(data: bytes) -> str:
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError as e:
        raise DecodeError(f"Payload is not valid UTF-8: {e}") from e


def encode_redirect(text: str) -> str:
    """Encode a message for the HTTP-Redirect binding.

    Args:
        text: The XML document.

    Returns:
        Percent-encoded base64 of the raw-deflated document, ready to be
        placed in a query string.
    """
    compressed = deflate(text.encode("utf-8"))
    return quote(base64.b64encode(compressed).decode("ascii"), safe="")


def decode_redirect(value: str) -> str:
    """Decode an HTTP-Redirect binding value back into the XML document.

    Accepts both the percent-encoded form produced by :func:`encode_redirect`
    and an already percent-decoded value (as web frameworks hand out).

    Raises:
        DecodeError: On malformed base64, a failed inflate or non UTF-8 bytes.
    """
    raw = _b64decode(unquote(value))
    try:
        inflated = inflate(raw)
    except zlib.error as e:
        raise DecodeError(f"Failed to inflate payload: {e}") from e
    return _to_text(inflated)


def encode_post(text: str) -> str:
    """Encode a message for the HTTP-POST binding (base64 only)."""
    return base64.b64encode(text.encode("utf-8")).decode("ascii")


def decode_post(value: str) -> str:
    """Decode an HTTP-POST binding value.

    Raises:
        DecodeError: On malformed base64 or non UTF-8 bytes.
    """
    return _to_text(_b64decode(value))


def redirect_url(destination: str, parameter: str, xml: str, relay_state: str = "") -> str:
    """Build an HTTP-Redirect binding URL.

    Args:
        destination: Endpoint URL, possibly with its own query string.
        parameter: ``SAMLRequest`` or ``SAMLResponse``.
        xml: The message to carry.
        relay_state: Optional RelayState, appended when non-empty.
    """
    separator = "&" if "?" in destination else "?"
    url = f"{destination}{separator}{parameter}={encode_redirect(xml)}"
    if relay_state:
        url += f"&RelayState={quote(relay_state, safe='')}"
    return url


def post_form(destination: str, parameter: str, xml: str, relay_state: str = "") -> str:
    """Render an auto-submitting HTML form for the HTTP-POST binding.

    All values are HTML-escaped. Without JavaScript the user gets a
    button to continue.
    """
    relay_field = ""
    if relay_state:
        relay_field = (
            f'\n            <input type="hidden" name="RelayState" value="{escape(relay_state)}" />'
        )

    return f"""<!DOCTYPE html>
<html>
    <head>
        <meta charset="utf-8" />
        <title>SAML {escape(parameter)}</title>
    </head>
    <body onload="document.forms[0].submit()">
        <form method="post" action="{escape(destination)}">
            <input type="hidden" name="{escape(parameter)}" value="{escape(encode_post(xml))}" />{relay_field}
            <noscript>
                <button type="submit">Click here to continue</button>
            </noscript>
        </form>
    </body>
</html>
"""


def raw_query_parameters(query_string: str) -> dict[str, str]:
    """Split a query string without percent-decoding the values.

    The first occurrence of a parameter wins.
    """
    params: dict[str, str] = {}
    for pair in query_string.split("&"):
        name, _, value = pair.partition("=")
        if name and name not in params:
            params[name] = value
    return params


def redirect_signed_content(parameter: str, query_data: Mapping[str, str], query_string: str = "") -> bytes:
    """The octets an HTTP-Redirect binding signature covers.

    ``parameter=...&RelayState=...&SigAlg=...`` in that order, RelayState
    only when present. Values are taken exactly as received when the raw
    query string is known and re-encoded like :func:`redirect_url` otherwise.

    Args:
        parameter: ``SAMLRequest`` or ``SAMLResponse``.
        query_data: Percent-decoded query parameters.
        query_string: The raw query string of the request, if available.
    """
    raw = raw_query_parameters(query_string) if query_string else {}
    parts = []
    for name in (parameter, "RelayState", "SigAlg"):
        if name in raw:
            parts.append(f"{name}={raw[name]}")
        elif name in query_data:
            parts.append(f"{name}={quote(query_data[name], safe='')}")
    return "&".join(parts).encode("utf-8")
