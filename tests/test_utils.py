"""Tests for signing and nonce helpers."""

import base64
import hashlib
import hmac
from unittest.mock import patch

from ewelink_cloud import utils


class TestSign:
    """Tests for sign function."""

    def test_sign_is_base64_hmac_sha256(self) -> None:
        """Test that sign returns the base64 HMAC-SHA256 digest."""
        expected = base64.b64encode(
            hmac.new(b"secret", b'{"a":1}', hashlib.sha256).digest()
        ).decode()
        assert utils.sign('{"a":1}', "secret") == expected

    def test_sign_accepts_bytes(self) -> None:
        """Test that bytes and text sign identically."""
        assert utils.sign(b"payload", "secret") == utils.sign("payload", "secret")


class TestNonceAndSequence:
    """Tests for nonce and sequence generation."""

    def test_generate_nonce_is_alphanumeric(self) -> None:
        """Test that nonces have the requested length and alphabet."""
        nonce = utils.generate_nonce()
        assert len(nonce) == 8
        assert nonce.isalnum()
        assert len(utils.generate_nonce(12)) == 12

    @patch("ewelink_cloud.utils.time.time", return_value=1700000000.5)
    def test_sequence_is_milliseconds(self, _mock_time: object) -> None:
        """Test that sequence is the current time in milliseconds."""
        assert utils.sequence() == "1700000000500"


class TestEncodeBody:
    """Tests for encode_body function."""

    def test_encode_body_is_compact(self) -> None:
        """Test that bodies are serialized without whitespace."""
        assert utils.encode_body({"a": 1, "b": [1, 2]}) == '{"a":1,"b":[1,2]}'


class TestMaskToken:
    """Tests for mask_token function."""

    def test_mask_token_shortens(self) -> None:
        """Test that tokens are never logged in full."""
        assert utils.mask_token("abcdefghijkl") == "abcdef..."
        assert utils.mask_token(None) == "<none>"
