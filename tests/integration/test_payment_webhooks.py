"""
결제 웹훅 대사 통합 테스트.

실제 RSA 키 / MD5 키로 서명한 통지를 만들어 서명 위조, 금액 불일치, 중복 통지,
결제 실패 처리와 감사 이벤트 기록을 검증합니다.
"""

from decimal import Decimal
from unittest.mock import Mock

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from openaero.models import (
    Order,
    OrderStatus,
    PaymentEvent,
    PaymentEventType,
    PaymentProvider,
    PaymentStatus,
    RevenueShare,
)
from openaero.services.payment.alipay import generate_alipay_signature
from openaero.services.payment.webhook_service import PaymentWebhookService
from openaero.services.payment.wechat import generate_wechat_signature
from openaero.services.revenue_service import RevenueService

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


@pytest.fixture
def revenue_mock():
    return Mock(spec=RevenueService)


@pytest.fixture
def service(db_session, alipay_keys, revenue_mock):
    return PaymentWebhookService(
        db_session,
        revenue_service=revenue_mock,
        alipay_public_key=alipay_keys[1],
        wechat_api_key=WECHAT_KEY,
    )


def alipay_notify(tx, private_pem, trade_status="TRADE_SUCCESS", total_amount=None, **extra):
    params = {
        "app_id": "2021000000000000",
        "notify_type": "trade_status_sync",
        "out_trade_no": tx.external_id,
        "trade_no": "2026101922001400000000000001",
        "trade_status": trade_status,
        "total_amount": total_amount or f"{tx.amount:.2f}",
        "sign_type": "RSA2",
    }
    params.update(extra)
    params["sign"] = generate_alipay_signature(params, private_pem)
    return params


def wechat_notify(tx, result_code="SUCCESS", total_fee=None, **extra):
    params = {
        "return_code": "SUCCESS",
        "appid": "wx2421b1c4370ec43b",
        "mch_id": "10000100",
        "nonce_str": "5K8264ILTKCH16CQ",
        "out_trade_no": tx.external_id,
        "transaction_id": "4200001234202610190000000001",
        "result_code": result_code,
        "total_fee": total_fee or str(int(tx.amount * 100)),
    }
    params.update(extra)
    params["sign"] = generate_wechat_signature(params, WECHAT_KEY)
    return params


def _events(db_session, tx):
    return [
        e.event_type for e in
        db_session.query(PaymentEvent).filter(PaymentEvent.transaction_id == tx.id).order_by(PaymentEvent.created_at).all()
    ]


@pytest.mark.integration
class TestAlipayWebhook:

    def test_success_completes_payment(self, service, make_transaction, alipay_keys, revenue_mock, db_session):
        tx = make_transaction(Decimal("100.00"))
        result = service.handle_alipay(alipay_notify(tx, alipay_keys[0]))

        assert result.success and result.http_status == 200
        assert result.message == "支付成功处理"
        assert tx.status == PaymentStatus.COMPLETED.value
        assert tx.paid_at is not None
        assert tx.external_transaction_id == "2026101922001400000000000001"
        assert db_session.get(Order, tx.order_id).status == OrderStatus.CONFIRMED.value
        revenue_mock.process_revenue_share.assert_called_once_with(tx.order_id, tx.id)

        events = _events(db_session, tx)
        assert PaymentEventType.WEBHOOK_RECEIVED.value in events
        assert PaymentEventType.PAYMENT_COMPLETED.value in events

    def test_redelivery_is_idempotent(self, service, make_transaction, alipay_keys, revenue_mock, db_session):
        tx = make_transaction(Decimal("100.00"))
        notify = alipay_notify(tx, alipay_keys[0])

        first = service.handle_alipay(notify)
        second = service.handle_alipay(dict(notify))

        assert first.success and second.success
        assert second.message == "重复通知已忽略"
        assert second.data["duplicate"] is True
        assert tx.status == PaymentStatus.COMPLETED.value
        revenue_mock.process_revenue_share.assert_called_once()
        assert PaymentEventType.DUPLICATE_IGNORED.value in _events(db_session, tx)

    def test_trade_finished_also_completes(self, service, make_transaction, alipay_keys):
        tx = make_transaction()
        assert service.handle_alipay(alipay_notify(tx, alipay_keys[0], trade_status="TRADE_FINISHED")).success
        assert tx.status == PaymentStatus.COMPLETED.value

    def test_tampered_signature(self, service, make_transaction, alipay_keys, revenue_mock, db_session):
        tx = make_transaction(Decimal("100.00"))
        notify = alipay_notify(tx, alipay_keys[0])
        notify["total_amount"] = "1.00"

        result = service.handle_alipay(notify)

        assert not result.success
        assert result.http_status == 400
        assert result.message == "签名验证失败"
        assert tx.status == PaymentStatus.PENDING.value
        revenue_mock.process_revenue_share.assert_not_called()
        assert PaymentEventType.SIGNATURE_INVALID.value in _events(db_session, tx)

    def test_amount_mismatch(self, service, make_transaction, alipay_keys, revenue_mock, db_session):
        tx = make_transaction(Decimal("100.00"))
        result = service.handle_alipay(alipay_notify(tx, alipay_keys[0], total_amount="50.00"))

        assert not result.success
        assert result.http_status == 400
        assert result.code == "AMOUNT_MISMATCH"
        assert "支付金额不匹配" in result.message
        assert tx.status == PaymentStatus.PENDING.value
        revenue_mock.process_revenue_share.assert_not_called()
        assert PaymentEventType.AMOUNT_MISMATCH.value in _events(db_session, tx)

    @pytest.mark.parametrize("reported", ["NaN", "sNaN", "Infinity"])
    def test_non_finite_amount_rejected(self, service, make_transaction, alipay_keys, revenue_mock, db_session, reported):
        tx = make_transaction(Decimal("100.00"))
        result = service.handle_alipay(alipay_notify(tx, alipay_keys[0], total_amount=reported))

        assert result.http_status == 400
        assert result.code == "AMOUNT_MISMATCH"
        assert tx.status == PaymentStatus.PENDING.value
        revenue_mock.process_revenue_share.assert_not_called()
        assert PaymentEventType.AMOUNT_MISMATCH.value in _events(db_session, tx)

    def test_amount_within_tolerance(self, service, make_transaction, alipay_keys):
        tx = make_transaction(Decimal("100.00"))
        assert service.handle_alipay(alipay_notify(tx, alipay_keys[0], total_amount="100.01")).success

    def test_trade_closed_fails_payment(self, service, make_transaction, alipay_keys, revenue_mock, db_session):
        tx = make_transaction()
        result = service.handle_alipay(alipay_notify(tx, alipay_keys[0], trade_status="TRADE_CLOSED"))

        assert result.success
        assert result.message == "支付失败已记录"
        assert tx.status == PaymentStatus.FAILED.value
        assert tx.failure_reason == "支付被关闭"
        revenue_mock.process_revenue_share.assert_not_called()
        assert PaymentEventType.PAYMENT_FAILED.value in _events(db_session, tx)

    def test_wait_buyer_pay_only_recorded(self, service, make_transaction, alipay_keys, db_session):
        tx = make_transaction()
        result = service.handle_alipay(alipay_notify(tx, alipay_keys[0], trade_status="WAIT_BUYER_PAY"))

        assert result.success
        assert result.message == "通知已记录"
        assert tx.status == PaymentStatus.PENDING.value
        assert _events(db_session, tx) == [PaymentEventType.WEBHOOK_RECEIVED.value]

    def test_completed_then_closed_notice_ignored(self, service, make_transaction, alipay_keys):
        tx = make_transaction()
        service.handle_alipay(alipay_notify(tx, alipay_keys[0]))
        result = service.handle_alipay(alipay_notify(tx, alipay_keys[0], trade_status="TRADE_CLOSED"))

        assert result.message == "重复通知已忽略"
        assert tx.status == PaymentStatus.COMPLETED.value

    @pytest.mark.parametrize("drop,status,message", [
        ("sign", 400, "缺少签名"),
        ("out_trade_no", 400, "缺少外部订单号"),
    ])
    def test_missing_fields(self, service, make_transaction, alipay_keys, drop, status, message):
        tx = make_transaction()
        notify = alipay_notify(tx, alipay_keys[0])
        notify.pop(drop)
        result = service.handle_alipay(notify)
        assert (result.http_status, result.message) == (status, message)

    def test_unknown_transaction(self, service, make_transaction, alipay_keys, db_session):
        tx = make_transaction()
        notify = alipay_notify(tx, alipay_keys[0], out_trade_no="OA-DOES-NOT-EXIST")
        result = service.handle_alipay(notify)

        assert result.http_status == 404
        assert result.message == "支付记录不存在"
        assert db_session.query(PaymentEvent).count() == 0


@pytest.mark.integration
class TestWechatWebhook:

    def test_success(self, service, make_transaction, revenue_mock):
        tx = make_transaction(Decimal("100.00"), provider=PaymentProvider.WECHAT.value)
        result = service.handle_wechat(wechat_notify(tx))

        assert result.success
        assert tx.status == PaymentStatus.COMPLETED.value
        assert tx.external_transaction_id == "4200001234202610190000000001"
        revenue_mock.process_revenue_share.assert_called_once_with(tx.order_id, tx.id)

    def test_redelivery(self, service, make_transaction, revenue_mock):
        tx = make_transaction(provider=PaymentProvider.WECHAT.value)
        notify = wechat_notify(tx)
        service.handle_wechat(notify)
        result = service.handle_wechat(notify)

        assert result.success and result.data["duplicate"] is True
        revenue_mock.process_revenue_share.assert_called_once()

    def test_fee_mismatch(self, service, make_transaction):
        tx = make_transaction(Decimal("100.00"), provider=PaymentProvider.WECHAT.value)
        result = service.handle_wechat(wechat_notify(tx, total_fee="5000"))

        assert not result.success
        assert result.code == "AMOUNT_MISMATCH"
        assert tx.status == PaymentStatus.PENDING.value

    def test_bad_signature(self, service, make_transaction):
        tx = make_transaction(provider=PaymentProvider.WECHAT.value)
        notify = wechat_notify(tx)
        notify["sign"] = "0" * 32
        result = service.handle_wechat(notify)

        assert result.http_status == 400
        assert result.message == "签名验证失败"

    def test_non_ascii_signature_recorded_as_invalid(self, service, make_transaction, db_session):
        tx = make_transaction(provider=PaymentProvider.WECHAT.value)
        notify = wechat_notify(tx)
        notify["sign"] = "签名伪造"
        result = service.handle_wechat(notify)

        assert result.http_status == 400
        assert result.code == "SIGNATURE_INVALID"
        assert tx.status == PaymentStatus.PENDING.value
        assert PaymentEventType.SIGNATURE_INVALID.value in _events(db_session, tx)

    def test_non_finite_fee_rejected(self, service, make_transaction, revenue_mock):
        tx = make_transaction(provider=PaymentProvider.WECHAT.value)
        result = service.handle_wechat(wechat_notify(tx, total_fee="sNaN"))

        assert result.code == "AMOUNT_MISMATCH"
        assert tx.status == PaymentStatus.PENDING.value
        revenue_mock.process_revenue_share.assert_not_called()

    def test_return_code_fail(self, service, make_transaction, db_session):
        tx = make_transaction(provider=PaymentProvider.WECHAT.value)
        result = service.handle_wechat(wechat_notify(tx, return_code="FAIL", return_msg="签名失败"))

        assert result.http_status == 400
        assert result.message == "回调数据错误"
        assert db_session.query(PaymentEvent).count() == 0

    def test_result_fail_marks_failed(self, service, make_transaction, revenue_mock):
        tx = make_transaction(provider=PaymentProvider.WECHAT.value)
        result = service.handle_wechat(wechat_notify(tx, result_code="FAIL", err_code="NOTENOUGH",
                                                     err_code_des="余额不足"))

        assert result.success
        assert tx.status == PaymentStatus.FAILED.value
        assert tx.failure_reason == "余额不足"
        revenue_mock.process_revenue_share.assert_not_called()


@pytest.mark.integration
def test_completion_runs_real_revenue_share(db_session, make_transaction, alipay_keys):
    """실제 RevenueService 로 수익 분배까지 한 번만 일어나는지 확인"""
    service = PaymentWebhookService(db_session, alipay_public_key=alipay_keys[1], wechat_api_key=WECHAT_KEY)
    tx = make_transaction(Decimal("100.00"))
    notify = alipay_notify(tx, alipay_keys[0])

    service.handle_alipay(notify)
    service.handle_alipay(notify)

    shares = db_session.query(RevenueShare).filter(RevenueShare.order_id == tx.order_id).all()
    assert len(shares) == 1
    assert shares[0].transaction_id == tx.id
