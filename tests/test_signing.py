"""HMAC body signing shared by outbound webhooks and inbound collaborator callbacks."""

import hashlib
import hmac

from homechef.core import signing


def test_sign_is_hex_hmac_sha256():
    body = b'{"event":"order.created"}'

    expected = hmac.new(b"whsec_abc", body, hashlib.sha256).hexdigest()
    assert signing.sign("whsec_abc", body) == expected


def test_verify_accepts_matching_signature():
    body = b'{"order_id":"42"}'
    signature = signing.sign("whsec_abc", body)

    assert signing.verify("whsec_abc", body, signature)
    assert signing.verify("whsec_abc", body, f" {signature.upper()} ")


def test_verify_rejects_tampering():
    body = b'{"amount":100}'
    signature = signing.sign("whsec_abc", body)

    assert not signing.verify("whsec_abc", b'{"amount":1000}', signature)
    assert not signing.verify("whsec_other", body, signature)


def test_verify_rejects_missing_inputs():
    body = b"{}"

    assert not signing.verify("", body, signing.sign("", body))
    assert not signing.verify("whsec_abc", body, None)
    assert not signing.verify("whsec_abc", body, "")


def test_generated_secrets_are_prefixed_and_unique():
    first, second = signing.generate_secret(), signing.generate_secret()

    assert first.startswith(signing.SECRET_PREFIX)
    assert len(first) == len(signing.SECRET_PREFIX) + 64
    assert first != second
