"""Tests for the HTTP-Redirect and HTTP-POST binding codec."""

import base64
import zlib
from urllib.parse import parse_qs, unquote, urlparse

import pytest

from samlsp.core.saml.bindings import (
    MAX_INFLATED_SIZE,
    decode_post,
    decode_redirect,
    deflate,
    encode_post,
    encode_redirect,
    inflate,
    post_form,
    raw_query_parameters,
    redirect_signed_content,
    redirect_url,
)
from samlsp.core.saml.errors import DecodeError

SAMPLE = '<samlp:AuthnRequest xmlns:samlp="urn:oasis:names:tc:SAML:2.0:protocol" ID="_abc"/>'

ROUND_TRIP_TEXTS = [
    "",
    SAMPLE,
    "<saml:AttributeValue>Zoë Müller 東京 🔑</saml:AttributeValue>",
    "RelayState=/a?b=1&c=d%20e+f #frag",
    "x" * 100_000,
    "".join(chr(c) for c in range(32, 127)) * 50,
]


class TestRedirectEncoding:
    """Tests for the deflate + base64 + URL encoding."""

    @pytest.mark.parametrize("text", ROUND_TRIP_TEXTS)
    def test_round_trip(self, text: str) -> None:
        assert decode_redirect(encode_redirect(text)) == text

    def test_encoded_value_is_raw_deflate(self) -> None:
        """The payload has no zlib header and inflates with wbits=-15."""
        encoded = encode_redirect(SAMPLE)
        raw = base64.b64decode(unquote(encoded))
        assert zlib.decompress(raw, -15).decode("utf-8") == SAMPLE

    def test_encoded_value_is_url_safe(self) -> None:
        """Characters with meaning in a query string are percent-encoded."""
        encoded = encode_redirect(SAMPLE * 20)
        assert "+" not in encoded
        assert "/" not in encoded
        assert "=" not in encoded

    def test_decode_accepts_percent_decoded_value(self) -> None:
        """Frameworks hand out already-unquoted query values."""
        encoded = encode_redirect(SAMPLE)
        assert decode_redirect(encoded) == SAMPLE
        assert decode_redirect(unquote(encoded)) == SAMPLE

    def test_deflate_inflate(self) -> None:
        data = "é and ü".encode()
        assert inflate(deflate(data)) == data

    def test_decode_redirect_rejects_bad_base64(self) -> None:
        with pytest.raises(DecodeError):
            decode_redirect("not base64!!")

    def test_inflate_is_bounded(self) -> None:
        """A small payload that inflates past the limit is refused."""
        bomb = deflate(b"\0" * (MAX_INFLATED_SIZE + 1))
        assert len(bomb) < MAX_INFLATED_SIZE // 100
        with pytest.raises(DecodeError, match="exceeds"):
            inflate(bomb)
        with pytest.raises(DecodeError):
            decode_redirect(base64.b64encode(bomb).decode("ascii"))

    def test_inflate_within_limit(self) -> None:
        data = b"a" * 1000
        assert inflate(deflate(data), max_size=1000) == data
        with pytest.raises(DecodeError):
            inflate(deflate(data), max_size=999)

    def test_inflate_rejects_truncated_payload(self) -> None:
        with pytest.raises(DecodeError, match="Truncated"):
            inflate(deflate(SAMPLE.encode())[:-4])

    def test_decode_redirect_rejects_non_deflate_payload(self) -> None:
        """Plain base64 XML is not a valid Redirect payload."""
        with pytest.raises(DecodeError):
            decode_redirect(base64.b64encode(b"<xml/>").decode("ascii"))


class TestPostEncoding:
    """Tests for the plain base64 POST encoding."""

    @pytest.mark.parametrize("text", ROUND_TRIP_TEXTS)
    def test_round_trip(self, text: str) -> None:
        assert decode_post(encode_post(text)) == text

    def test_post_is_plain_base64(self) -> None:
        assert base64.b64decode(encode_post(SAMPLE)).decode("utf-8") == SAMPLE

    def test_decode_post_tolerates_whitespace(self) -> None:
        """Some IdPs wrap the base64 value over several lines."""
        encoded = encode_post(SAMPLE)
        wrapped = "\n".join(encoded[i : i + 20] for i in range(0, len(encoded), 20))
        assert decode_post(wrapped) == SAMPLE

    def test_decode_post_rejects_invalid_utf8(self) -> None:
        with pytest.raises(DecodeError):
            decode_post(base64.b64encode(b"\xff\xfe\xfa").decode("ascii"))

    def test_decode_post_rejects_bad_base64(self) -> None:
        with pytest.raises(DecodeError):
            decode_post("%%%")

    def test_decode_error_is_value_error(self) -> None:
        with pytest.raises(ValueError):
            decode_post("%%%")


class TestRedirectUrl:
    """Tests for building Redirect binding URLs."""

    def test_adds_message_and_relay_state(self) -> None:
        url = redirect_url("https://idp.example.com/sso", "SAMLRequest", SAMPLE, "/after login?x=1")
        parsed = urlparse(url)
        query = parse_qs(parsed.query)
        assert parsed.path == "/sso"
        assert decode_redirect(query["SAMLRequest"][0]) == SAMPLE
        assert query["RelayState"] == ["/after login?x=1"]

    def test_omits_empty_relay_state(self) -> None:
        url = redirect_url("https://idp.example.com/sso", "SAMLRequest", SAMPLE)
        assert "RelayState" not in url

    def test_keeps_existing_query_string(self) -> None:
        url = redirect_url("https://idp.example.com/sso?tenant=a", "SAMLRequest", SAMPLE)
        assert url.startswith("https://idp.example.com/sso?tenant=a&SAMLRequest=")


class TestPostForm:
    """Tests for the auto-submitting HTML form."""

    def test_form_carries_encoded_message(self) -> None:
        html = post_form("https://idp.example.com/sso", "SAMLRequest", SAMPLE, "state")
        assert 'action="https://idp.example.com/sso"' in html
        assert f'name="SAMLRequest" value="{encode_post(SAMPLE)}"' in html
        assert 'name="RelayState" value="state"' in html
        assert "document.forms[0].submit()" in html

    def test_values_are_html_escaped(self) -> None:
        html = post_form('https://idp.example.com/sso?a=1&b="2"', "SAMLRequest", SAMPLE, '"><script>')
        assert "<script>" not in html
        assert "&amp;b=&#34;2&#34;" in html

    def test_no_relay_state_field_when_empty(self) -> None:
        html = post_form("https://idp.example.com/sso", "SAMLRequest", SAMPLE)
        assert "RelayState" not in html


class TestRedirectSignedContent:
    """Tests for the octets covered by an HTTP-Redirect signature."""

    def test_raw_query_parameters(self) -> None:
        params = raw_query_parameters("SAMLRequest=a%2Bb&RelayState=%2Fx&SAMLRequest=ignored&flag")
        assert params == {"SAMLRequest": "a%2Bb", "RelayState": "%2Fx", "flag": ""}

    def test_uses_raw_values_in_signing_order(self) -> None:
        query_string = "Signature=sig&SigAlg=alg%3A1&RelayState=r%20s&SAMLRequest=msg%3D"
        content = redirect_signed_content("SAMLRequest", {}, query_string)
        assert content == b"SAMLRequest=msg%3D&RelayState=r%20s&SigAlg=alg%3A1"

    def test_relay_state_only_when_present(self) -> None:
        content = redirect_signed_content("SAMLResponse", {}, "SAMLResponse=m&SigAlg=a&Signature=s")
        assert content == b"SAMLResponse=m&SigAlg=a"

    def test_reencodes_without_raw_query(self) -> None:
        query = {"SAMLRequest": "ab+/=", "RelayState": "/next page", "SigAlg": "urn:alg"}
        content = redirect_signed_content("SAMLRequest", query)
        assert content == b"SAMLRequest=ab%2B%2F%3D&RelayState=%2Fnext%20page&SigAlg=urn%3Aalg"
