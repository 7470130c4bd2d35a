from types import SimpleNamespace

import pytest

from spotcheck.auth import (
    InboundRequest,
    authenticate,
    bearer_secret,
    mint_session_jwt,
    sign,
    signatures_match,
    signed_timestamp,
    verify_session_jwt,
)
from spotcheck.errors import AuthenticationFailure

NOW = 1_704_150_000_000
DEVICE = SimpleNamespace(id="dev-1", device_token="tok-1", device_secret="s" * 64)


class FakeLookup:
    def __init__(self, *devices):
        self.devices = devices
        self.calls = []

    async def by_secret(self, device_secret):
        self.calls.append(("secret", device_secret))
        return next((d for d in self.devices if d.device_secret == device_secret), None)

    async def by_token(self, device_token):
        self.calls.append(("token", device_token))
        return next((d for d in self.devices if d.device_token == device_token), None)


def _request(headers, method="GET", path="/policy", body=b"", at=NOW):
    return InboundRequest(method=method, path=path, body=body, headers=headers, received_at_ms=at)


def _signed_headers(ts=NOW, method="GET", path="/policy", body=b"", secret=DEVICE.device_secret):
    return {
        "X-Device-Token": DEVICE.device_token,
        "X-TS": str(ts),
        "X-Signature": sign(secret, str(ts), method, path, body),
    }


@pytest.mark.asyncio
async def test_bearer_secret_authenticates():
    device = await authenticate(_request({"Authorization": f"Bearer {DEVICE.device_secret}"}), FakeLookup(DEVICE))
    assert device is DEVICE


@pytest.mark.asyncio
async def test_bearer_with_matching_device_token():
    headers = {"Authorization": f"bearer {DEVICE.device_secret}", "X-Device-Token": "tok-1"}
    assert await authenticate(_request(headers), FakeLookup(DEVICE)) is DEVICE


@pytest.mark.asyncio
async def test_bearer_with_mismatched_device_token_is_rejected():
    headers = {"Authorization": f"Bearer {DEVICE.device_secret}", "X-Device-Token": "someone-else"}
    result = await bearer_secret(_request(headers), FakeLookup(DEVICE))
    assert result.scheme == "bearer" and not result.ok
    with pytest.raises(AuthenticationFailure):
        await authenticate(_request(headers), FakeLookup(DEVICE))


@pytest.mark.asyncio
async def test_unknown_bearer_secret_is_rejected():
    with pytest.raises(AuthenticationFailure):
        await authenticate(_request({"Authorization": "Bearer nope"}), FakeLookup(DEVICE))


@pytest.mark.asyncio
async def test_non_bearer_authorization_is_not_applicable():
    assert await bearer_secret(_request({"Authorization": "Basic abc"}), FakeLookup(DEVICE)) is None


@pytest.mark.asyncio
async def test_signed_request_authenticates():
    body = b'{"ts":1,"trigger":"automation"}'
    headers = _signed_headers(method="POST", path="/events", body=body)
    request = _request(headers, method="POST", path="/events", body=body, at=NOW + 1000)
    assert await authenticate(request, FakeLookup(DEVICE)) is DEVICE


@pytest.mark.asyncio
async def test_stale_signed_request_is_rejected_before_lookup():
    lookup = FakeLookup(DEVICE)
    ten_minutes_ago = NOW - 10 * 60_000
    result = await signed_timestamp(_request(_signed_headers(ts=ten_minutes_ago)), lookup)
    assert not result.ok
    assert lookup.calls == []


@pytest.mark.asyncio
async def test_skew_limit_is_inclusive():
    headers = _signed_headers(ts=NOW + 300_000)
    assert await authenticate(_request(headers), FakeLookup(DEVICE)) is DEVICE


@pytest.mark.asyncio
async def test_tampered_body_is_rejected():
    headers = _signed_headers(method="POST", path="/events", body=b'{"a":1}')
    request = _request(headers, method="POST", path="/events", body=b'{"a":2}')
    with pytest.raises(AuthenticationFailure):
        await authenticate(request, FakeLookup(DEVICE))


@pytest.mark.asyncio
async def test_wrong_secret_signature_is_rejected():
    headers = _signed_headers(secret="not-the-secret")
    with pytest.raises(AuthenticationFailure):
        await authenticate(_request(headers), FakeLookup(DEVICE))


@pytest.mark.asyncio
async def test_non_hex_signature_is_rejected():
    headers = dict(_signed_headers(), **{"X-Signature": "zz-not-hex"})
    result = await signed_timestamp(_request(headers), FakeLookup(DEVICE))
    assert not result.ok


@pytest.mark.asyncio
@pytest.mark.parametrize("missing", ["X-Device-Token", "X-TS", "X-Signature"])
async def test_partial_signed_headers_are_rejected(missing):
    headers = _signed_headers()
    del headers[missing]
    result = await signed_timestamp(_request(headers), FakeLookup(DEVICE))
    assert result is not None and not result.ok


@pytest.mark.asyncio
async def test_no_credentials_is_rejected():
    with pytest.raises(AuthenticationFailure):
        await authenticate(_request({}), FakeLookup(DEVICE))


@pytest.mark.asyncio
async def test_bad_bearer_does_not_fall_through_to_signature():
    headers = dict(_signed_headers(), Authorization="Bearer wrong")
    with pytest.raises(AuthenticationFailure):
        await authenticate(_request(headers), FakeLookup(DEVICE))


def test_signatures_match_is_hex_aware():
    digest = sign("k", "1", "GET", "/policy", b"")
    assert signatures_match(digest, digest.upper())
    assert not signatures_match(digest, digest[:-2])
    assert not signatures_match(digest, "xyz")


def test_session_jwt_round_trip():
    token = mint_session_jwt("parent-1", "apple-sub-1")
    payload = verify_session_jwt(token)
    assert payload["sub"] == "apple-sub-1"
    assert payload["parentId"] == "parent-1"


def test_expired_or_garbage_session_jwt_is_none():
    assert verify_session_jwt(mint_session_jwt("parent-1", "sub", expires_days=-1)) is None
    assert verify_session_jwt("not.a.jwt") is None
