"""Tests for the signed token codec (pure, no I/O)."""
import base64
import hashlib
import hmac

import pytest

from arcade.features.tokens import codec


SECRET = "codec-secret"


def test_sign_then_verify_returns_payload():
    token = codec.sign(b"user_alice:abc", SECRET)
    assert codec.verify(token, SECRET) == b"user_alice:abc"


def test_wire_format_is_b64url_dot_hex_hmac():
    payload = b"user_alice:nonce:3:1700000000000"
    token = codec.sign(payload, SECRET)

    encoded, signature = token.rsplit(".", 1)
    assert "=" not in encoded
    assert base64.urlsafe_b64decode(encoded + "=" * (-len(encoded) % 4)) == payload
    assert signature == hmac.new(SECRET.encode(), payload, hashlib.sha256).hexdigest()


def test_wrong_secret_rejected():
    token = codec.sign(b"user_alice:abc", SECRET)
    with pytest.raises(codec.TokenRejected):
        codec.verify(token, "other-secret")


def test_tampered_payload_rejected():
    token = codec.sign(b"user_alice:abc", SECRET)
    _, signature = token.rsplit(".", 1)
    forged = codec._b64url_encode(b"user_bob:abc") + "." + signature
    with pytest.raises(codec.TokenRejected):
        codec.verify(forged, SECRET)


@pytest.mark.parametrize(
    "token",
    [
        "",
        "no-dot-here",
        ".deadbeef",
        "dXNlcg.",
        "***.deadbeef",
        "dXNlcg.nothex",
        "dXNlcg.é",
    ],
)
def test_malformed_tokens_rejected(token):
    with pytest.raises(codec.TokenRejected):
        codec.verify(token, SECRET)


def test_rejections_share_one_message():
    token = codec.sign(b"payload", SECRET)
    messages = set()
    for bad in ["garbage", token + "0", token.replace(".", ".x", 1)]:
        with pytest.raises(codec.TokenRejected) as exc:
            codec.verify(bad, SECRET)
        messages.add(str(exc.value))
    with pytest.raises(codec.TokenRejected) as exc:
        codec.verify(token, "wrong")
    messages.add(str(exc.value))
    assert messages == {"invalid token"}


def test_payload_may_contain_dots():
    token = codec.sign(b"a.b.c", SECRET)
    assert codec.verify(token, SECRET) == b"a.b.c"


def test_empty_secret_is_a_configuration_error():
    with pytest.raises(ValueError):
        codec.sign(b"x", "")


def test_join_and_split_fields():
    payload = codec.join_fields("user_alice", "n1", 4, 1700000000000)
    assert payload == b"user_alice:n1:4:1700000000000"
    assert codec.split_fields(payload) == ["user_alice", "n1", "4", "1700000000000"]


def test_nonces_are_unique():
    assert codec.new_nonce() != codec.new_nonce()


def test_only_canonical_encoding_verifies():
    # 0xfb 0xff encodes to "-_8" canonically
    payload = b"\xfb\xff"
    token = codec.sign(payload, SECRET)
    encoded, signature = token.rsplit(".", 1)
    assert encoded == "-_8"

    for variant in ["+/8", "-_8=", "-_9"]:
        with pytest.raises(codec.TokenRejected):
            codec.verify(f"{variant}.{signature}", SECRET)
    assert codec.verify(token, SECRET) == payload
