"""
NOWPayments client tests.

HTTP is faked with httpx.MockTransport so every failure class can be
produced without touching the network.
"""
import json

import httpx
import pytest

from nassrcards.errors import (
    ConfigurationError, GatewayError, InvalidInput, NetworkError,
    ProtocolError, SignatureMismatch,
)
from nassrcards.nowpayments import (
    LIVE_BASE, SANDBOX_BASE, SIG_HEADER, NowPayments, sign_ipn,
    sorted_payload, verify_ipn_signature,
)

SECRET = "test-ipn-secret"
PAYLOAD = {
    "payment_status": "finished",
    "order_id": "NASSR-1718000000000-1",
    "payment_id": 5524759814,
    "actually_paid": 0.75,
}


def _client(handler, api_key="key-123", **kw) -> NowPayments:
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return NowPayments(api_key, http=http, **kw)


class TestSignature:

    def test_sorted_payload_is_compact_and_sorted(self) -> None:
        assert sorted_payload({"b": 1, "a": {"d": 2, "c": "ر"}}) == \
            '{"a":{"c":"ر","d":2},"b":1}'

    def test_nested_objects_are_sorted_too(self) -> None:
        # IPNs carry a nested `fee` object; the gateway signs it key-sorted
        payload = {
            "payment_id": 1,
            "fee": {"withdrawalFee": 0, "currency": "btc", "depositFee": 1e-7},
        }
        assert sorted_payload(payload) == (
            '{"fee":{"currency":"btc","depositFee":1e-07,"withdrawalFee":0},'
            '"payment_id":1}'
        )
        reordered = {"fee": dict(reversed(list(payload["fee"].items()))),
                     "payment_id": 1}
        assert sign_ipn(reordered, SECRET) == sign_ipn(payload, SECRET)

    def test_valid_signature(self) -> None:
        sig = sign_ipn(PAYLOAD, SECRET)
        assert len(sig) == 128
        assert verify_ipn_signature(PAYLOAD, sig, SECRET) is True

    def test_key_order_does_not_matter(self) -> None:
        reordered = dict(reversed(list(PAYLOAD.items())))
        assert verify_ipn_signature(reordered, sign_ipn(PAYLOAD, SECRET),
                                    SECRET) is True

    def test_tampered_payload(self) -> None:
        sig = sign_ipn(PAYLOAD, SECRET)
        tampered = dict(PAYLOAD, actually_paid=7.5)
        assert verify_ipn_signature(tampered, sig, SECRET) is False

    def test_flipped_signature_char(self) -> None:
        sig = sign_ipn(PAYLOAD, SECRET)
        flipped = ("1" if sig[0] == "0" else "0") + sig[1:]
        assert verify_ipn_signature(PAYLOAD, flipped, SECRET) is False

    def test_wrong_secret(self) -> None:
        assert verify_ipn_signature(
            PAYLOAD, sign_ipn(PAYLOAD, "other"), SECRET
        ) is False

    def test_missing_signature(self) -> None:
        assert verify_ipn_signature(PAYLOAD, None, SECRET) is False
        assert verify_ipn_signature(PAYLOAD, "", SECRET) is False

    @pytest.mark.parametrize("secret", [None, ""])
    def test_no_secret_accepts_everything(self, secret) -> None:
        assert verify_ipn_signature(PAYLOAD, None, secret) is True
        assert verify_ipn_signature(PAYLOAD, "garbage", secret) is True


class TestVerifyIpn:

    def _gw(self, secret=SECRET) -> NowPayments:
        return NowPayments("key", ipn_secret=secret,
                           http=httpx.AsyncClient())

    def test_returns_payload(self) -> None:
        raw = json.dumps(PAYLOAD).encode()
        headers = {SIG_HEADER: sign_ipn(PAYLOAD, SECRET)}
        assert self._gw().verify_ipn(raw, headers) == PAYLOAD

    def test_bad_signature(self) -> None:
        raw = json.dumps(PAYLOAD).encode()
        with pytest.raises(SignatureMismatch):
            self._gw().verify_ipn(raw, {SIG_HEADER: "00" * 64})

    @pytest.mark.parametrize("raw", [b"{not json", b"", b"[1, 2]", b"\xff"])
    def test_malformed_body(self, raw) -> None:
        with pytest.raises(InvalidInput):
            self._gw().verify_ipn(raw, {})


class TestCall:

    @pytest.mark.asyncio
    async def test_missing_api_key_makes_no_request(self) -> None:
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={})

        gw = _client(handler, api_key=None)
        with pytest.raises(ConfigurationError):
            await gw.status()
        assert seen == []

    @pytest.mark.asyncio
    async def test_success_sends_api_key(self) -> None:
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"message": "OK"})

        gw = _client(handler)
        assert await gw.status() == {"message": "OK"}
        assert seen[0].headers["x-api-key"] == "key-123"
        assert str(seen[0].url) == f"{SANDBOX_BASE}/status"

    @pytest.mark.asyncio
    async def test_production_base_url(self) -> None:
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"currencies": ["btc"]})

        gw = _client(handler, production=True)
        await gw.currencies()
        assert str(seen[0].url) == f"{LIVE_BASE}/currencies"

    @pytest.mark.asyncio
    async def test_post_body_and_query_params(self) -> None:
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(201, json={"payment_id": 1})

        gw = _client(handler)
        await gw.create_payment({"price_amount": 189999, "pay_currency": "btc"})
        await gw.min_amount("btc")

        post, get = seen
        assert post.method == "POST"
        assert json.loads(post.content) == {
            "price_amount": 189999, "pay_currency": "btc",
        }
        assert get.url.params["currency_from"] == "btc"
        assert get.url.params["currency_to"] == "sar"

    @pytest.mark.asyncio
    async def test_transport_failure(self) -> None:
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(NetworkError):
            await _client(handler).status()

    @pytest.mark.asyncio
    async def test_non_json_body(self) -> None:
        def handler(request):
            return httpx.Response(502, text="<html>Bad Gateway</html>")

        with pytest.raises(ProtocolError) as exc_info:
            await _client(handler).status()
        assert "502" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_api_error_carries_gateway_message(self) -> None:
        def handler(request):
            return httpx.Response(400, json={
                "statusCode": 400, "message": "amountTo is too small",
            })

        with pytest.raises(GatewayError) as exc_info:
            await _client(handler).create_payment({})
        err = exc_info.value
        assert err.status == 400
        assert err.http_status == 400
        assert err.message == "amountTo is too small"

    @pytest.mark.asyncio
    async def test_api_error_default_message(self) -> None:
        def handler(request):
            return httpx.Response(503, json={})

        with pytest.raises(GatewayError) as exc_info:
            await _client(handler).status()
        assert exc_info.value.message == "NOWPayments API error: 503"
        assert exc_info.value.http_status == 502
