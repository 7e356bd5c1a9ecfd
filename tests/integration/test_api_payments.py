"""
결제 웹훅 / 수익 API 테스트 (TestClient).
"""

import uuid
from decimal import Decimal
from urllib.parse import urlencode

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from openaero.api.endpoints import payments as payments_endpoint
from openaero.models import PaymentEvent, PaymentEventType, PaymentProvider, PaymentStatus, RevenueShare
from openaero.services.payment.alipay import generate_alipay_signature
from openaero.services.payment.wechat import build_wechat_xml, generate_wechat_signature, parse_wechat_xml
from openaero.settings import settings

WECHAT_KEY = "8934e7d15453e97507ef794cf7b0519d"


@pytest.fixture(scope="module")
def alipay_keys():
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    private_pem = key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    ).decode()
    public_pem = key.public_key().public_bytes(
        serialization.Encoding.PEM,
        serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode()
    return private_pem, public_pem


@pytest.fixture(autouse=True)
def payment_keys(monkeypatch, alipay_keys):
    monkeypatch.setattr(settings, "environment", "production")
    monkeypatch.setattr(settings, "alipay_public_key", alipay_keys[1])
    monkeypatch.setattr(settings, "wechat_pay_key", WECHAT_KEY)
    monkeypatch.setattr(settings, "platform_fee_rate", 0.5)


def signed_alipay(tx, private_pem, **overrides):
    params = {
        "out_trade_no": tx.external_id,
        "trade_no": "2026101922001400000000000009",
        "trade_status": "TRADE_SUCCESS",
        "total_amount": f"{tx.amount:.2f}",
        "sign_type": "RSA2",
    }
    params.update(overrides)
    params["sign"] = generate_alipay_signature(params, private_pem)
    return params


def signed_wechat_xml(tx, **overrides):
    params = {
        "return_code": "SUCCESS",
        "result_code": "SUCCESS",
        "out_trade_no": tx.external_id,
        "transaction_id": "4200000000000001",
        "total_fee": str(int(tx.amount * 100)),
        "nonce_str": "abc123",
    }
    params.update(overrides)
    params["sign"] = generate_wechat_signature(params, WECHAT_KEY)
    return build_wechat_xml(params)


@pytest.mark.integration
class TestAlipayWebhookApi:

    def test_form_encoded_success_and_redelivery(self, client, make_transaction, alipay_keys, db_session):
        tx = make_transaction(Decimal("100.00"))
        body = urlencode(signed_alipay(tx, alipay_keys[0]))
        headers = {"Content-Type": "application/x-www-form-urlencoded"}

        resp = client.post("/api/payments/webhook/alipay", content=body, headers=headers)
        assert resp.status_code == 200
        assert resp.json()["success"] is True
        assert resp.json()["message"] == "支付成功处理"
        assert tx.status == PaymentStatus.COMPLETED.value

        resp = client.post("/api/payments/webhook/alipay", content=body, headers=headers)
        assert resp.status_code == 200
        assert resp.json()["message"] == "重复通知已忽略"
        assert db_session.query(RevenueShare).count() == 1

    def test_json_body(self, client, make_transaction, alipay_keys):
        tx = make_transaction(Decimal("100.00"))
        resp = client.post("/api/payments/webhook/alipay", json=signed_alipay(tx, alipay_keys[0]))
        assert resp.status_code == 200

    def test_tampered_signature_returns_400_and_records_event(self, client, make_transaction, alipay_keys, db_session):
        tx = make_transaction(Decimal("100.00"))
        params = signed_alipay(tx, alipay_keys[0])
        params["total_amount"] = "0.01"

        resp = client.post("/api/payments/webhook/alipay", data=params)

        assert resp.status_code == 400
        assert resp.json() == {"success": False, "error": "签名验证失败", "code": "SIGNATURE_INVALID"}
        assert tx.status == PaymentStatus.PENDING.value
        event_types = {e.event_type for e in db_session.query(PaymentEvent).all()}
        assert PaymentEventType.SIGNATURE_INVALID.value in event_types

    def test_amount_mismatch(self, client, make_transaction, alipay_keys):
        tx = make_transaction(Decimal("100.00"))
        resp = client.post("/api/payments/webhook/alipay", data=signed_alipay(tx, alipay_keys[0], total_amount="50.00"))

        assert resp.status_code == 400
        assert resp.json()["code"] == "AMOUNT_MISMATCH"

    def test_unknown_transaction(self, client, alipay_keys, make_transaction):
        tx = make_transaction()
        resp = client.post(
            "/api/payments/webhook/alipay",
            data=signed_alipay(tx, alipay_keys[0], out_trade_no="OA-UNKNOWN"),
        )
        assert resp.status_code == 404

    def test_malformed_json(self, client):
        resp = client.post("/api/payments/webhook/alipay", content=b"[1, 2]",
                           headers={"Content-Type": "application/json"})
        assert resp.status_code == 400


@pytest.mark.integration
class TestWechatWebhookApi:

    def test_success_returns_xml(self, client, make_transaction):
        tx = make_transaction(Decimal("100.00"), provider=PaymentProvider.WECHAT.value)
        resp = client.post("/api/payments/webhook/wechat", content=signed_wechat_xml(tx).encode(),
                           headers={"Content-Type": "text/xml"})

        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("application/xml")
        assert parse_wechat_xml(resp.content) == {"return_code": "SUCCESS", "return_msg": "OK"}
        assert tx.status == PaymentStatus.COMPLETED.value

    def test_bad_signature_fail_envelope(self, client, make_transaction):
        tx = make_transaction(provider=PaymentProvider.WECHAT.value)
        xml = signed_wechat_xml(tx).replace("<total_fee><![CDATA[10000]]></total_fee>",
                                           "<total_fee><![CDATA[1]]></total_fee>")
        resp = client.post("/api/payments/webhook/wechat", content=xml.encode())

        assert resp.status_code == 400
        assert parse_wechat_xml(resp.content) == {"return_code": "FAIL", "return_msg": "签名验证失败"}

    def test_invalid_xml(self, client):
        resp = client.post("/api/payments/webhook/wechat", content=b"<xml><broken></xml>")
        assert resp.status_code == 400
        assert parse_wechat_xml(resp.content)["return_msg"] == "回调数据错误"

    def test_unexpected_error_returns_fail_xml(self, client, make_transaction, monkeypatch):
        tx = make_transaction(provider=PaymentProvider.WECHAT.value)

        def boom(self, params):
            raise RuntimeError("db down")

        monkeypatch.setattr(payments_endpoint.PaymentWebhookService, "handle_wechat", boom)
        resp = client.post("/api/payments/webhook/wechat", content=signed_wechat_xml(tx).encode())

        assert resp.status_code == 500
        assert resp.headers["content-type"].startswith("application/xml")
        assert parse_wechat_xml(resp.content) == {"return_code": "FAIL", "return_msg": "处理失败"}


@pytest.mark.integration
class TestSyncAndRevenueApi:

    def test_sync_requires_admin(self, client, auth, creator_user):
        auth.user = creator_user
        assert client.post(f"/api/payments/{uuid.uuid4()}/sync").status_code == 403

    def test_sync_missing_transaction(self, client, auth, admin_user):
        auth.user = admin_user
        resp = client.post(f"/api/payments/{uuid.uuid4()}/sync")
        assert resp.status_code == 404

    def test_creator_revenue_and_settle(self, client, auth, creator_user, admin_user, make_transaction, alipay_keys):
        tx = make_transaction(Decimal("100.00"))
        client.post("/api/payments/webhook/alipay", data=signed_alipay(tx, alipay_keys[0]))

        auth.user = creator_user
        resp = client.get("/api/creators/revenue")
        assert resp.status_code == 200
        data = resp.json()["data"]
        assert data["stats"]["pendingRevenue"] == 50.0
        share_id = data["revenueShares"][0]["id"]

        auth.user = admin_user
        resp = client.post(f"/api/admin/revenue/{share_id}/settle")
        assert resp.status_code == 200
        assert resp.json()["data"]["status"] == "AVAILABLE"

        resp = client.post(f"/api/admin/revenue/{share_id}/settle")
        assert resp.status_code == 400

    def test_revenue_requires_creator_profile(self, client, auth, plain_user):
        auth.user = plain_user
        resp = client.get("/api/creators/revenue")
        assert resp.status_code == 403


@pytest.mark.integration
def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}
    resp = client.get("/api/health/system")
    assert resp.status_code == 200
    assert resp.json()["data"]["database"] is True
