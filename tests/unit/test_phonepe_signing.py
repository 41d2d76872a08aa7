"""Unit tests for PhonePe request signing, callback verification and decoding."""

import base64
import hashlib
import json
from decimal import Decimal

import httpx
import pytest
from services.payments_service.phonepe_client import (
    PAY_ENDPOINT,
    PhonePeClient,
    PhonePeError,
    decode_callback_payload,
    encode_payload,
    map_gateway_state,
    sign,
)

SALT_KEY = "test-salt-key"


def _client(handler) -> PhonePeClient:
    return PhonePeClient(
        merchant_id="TESTMERCHANT",
        salt_key=SALT_KEY,
        salt_index="1",
        base_url="https://phonepe.test",
        callback_url="http://test/payments/webhook",
        transport=httpx.MockTransport(handler),
    )


@pytest.mark.unit
def test_sign_matches_sha256_with_salt_index():
    expected = hashlib.sha256(f"abc{PAY_ENDPOINT}{SALT_KEY}".encode()).hexdigest()
    assert sign("abc", PAY_ENDPOINT, SALT_KEY, "1") == f"{expected}###1"


@pytest.mark.unit
def test_verify_callback_accepts_only_matching_signature():
    client = _client(lambda request: httpx.Response(200))
    payload_b64 = encode_payload({"data": {"merchantTransactionId": "TXN1"}})
    header = sign(payload_b64, "", SALT_KEY, "1")

    assert client.verify_callback(payload_b64, header) is True
    assert client.verify_callback(payload_b64, header.replace("###1", "###2")) is False
    assert client.verify_callback(payload_b64, None) is False


@pytest.mark.unit
@pytest.mark.parametrize(
    "state, expected",
    [
        ("COMPLETED", "success"),
        ("completed", "success"),
        ("PENDING", "pending"),
        ("FAILED", "failed"),
        ("PAYMENT_ERROR", "failed"),
        (None, "failed"),
    ],
)
def test_map_gateway_state(state, expected):
    assert map_gateway_state(state) == expected


@pytest.mark.unit
def test_decode_callback_payload_reads_data_block():
    payload_b64 = encode_payload(
        {
            "success": True,
            "code": "PAYMENT_SUCCESS",
            "data": {
                "merchantTransactionId": "TXN1",
                "transactionId": "T2401",
                "amount": 10550,
                "state": "COMPLETED",
                "responseCode": "SUCCESS",
            },
        }
    )

    callback = decode_callback_payload(payload_b64)

    assert callback.merchant_transaction_id == "TXN1"
    assert callback.provider_reference == "T2401"
    assert callback.amount_paise == 10550
    assert callback.state == "COMPLETED"


@pytest.mark.unit
@pytest.mark.parametrize(
    "payload_b64",
    [
        "not base64!!",
        base64.b64encode(b"{not json").decode(),
        base64.b64encode(b"[1, 2]").decode(),
        base64.b64encode(b'{"success": true, "data": "oops"}').decode(),
        base64.b64encode(b'{"data": [1, 2]}').decode(),
    ],
)
def test_decode_callback_payload_rejects_malformed_input(payload_b64):
    with pytest.raises(ValueError):
        decode_callback_payload(payload_b64)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_initiate_payment_signs_request_and_sends_paise():
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["request"] = request
        return httpx.Response(
            200,
            json={
                "success": True,
                "data": {
                    "instrumentResponse": {"redirectInfo": {"url": "https://pay.test/x"}}
                },
            },
        )

    initiation = await _client(handler).initiate_payment(
        order_id="order-1",
        amount=Decimal("105.50"),
        transaction_id="TXN123",
        phone="9999999999",
    )

    request = captured["request"]
    body = json.loads(request.content)
    payload = json.loads(base64.b64decode(body["request"]))
    assert request.url.path == PAY_ENDPOINT
    assert request.headers["X-VERIFY"] == sign(
        body["request"], PAY_ENDPOINT, SALT_KEY, "1"
    )
    assert payload["amount"] == 10550
    assert payload["merchantTransactionId"] == "TXN123"
    assert initiation.redirect_url == "https://pay.test/x"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_initiate_payment_raises_on_gateway_rejection():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, json={"success": False, "message": "Bad amount"})

    with pytest.raises(PhonePeError) as exc_info:
        await _client(handler).initiate_payment(
            order_id="order-1", amount=Decimal("1.00"), transaction_id="TXN1"
        )

    assert exc_info.value.status_code == 400
    assert exc_info.value.message == "Bad amount"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_check_status_parses_state():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.headers["X-MERCHANT-ID"] == "TESTMERCHANT"
        return httpx.Response(
            200,
            json={
                "success": True,
                "code": "PAYMENT_PENDING",
                "data": {"merchantTransactionId": "TXN9", "state": "PENDING"},
            },
        )

    callback = await _client(handler).check_status("TXN9")

    assert callback.merchant_transaction_id == "TXN9"
    assert map_gateway_state(callback.state) == "pending"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_check_status_rejects_non_object_data():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200, json={"success": True, "code": "PAYMENT_PENDING", "data": "oops"}
        )

    with pytest.raises(PhonePeError) as exc_info:
        await _client(handler).check_status("TXN9")

    assert exc_info.value.message == "PhonePe status response malformed"
