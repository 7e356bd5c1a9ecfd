"""
Alipay(支付宝) 서명/금액 검증과 거래 조회 클라이언트

서명 문자열: sign, sign_type, 빈 값을 제외한 파라미터를 키 순으로 정렬해 "k=v" 를 "&" 로 연결.
서명 방식: RSA2 (SHA256withRSA, PKCS#1 v1.5), base64 인코딩.
"""
from __future__ import annotations

import base64
import binascii
import json
import logging
from datetime import datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Mapping

import httpx
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from openaero.exceptions import PaymentGatewayError
from openaero.settings import settings

logger = logging.getLogger(__name__)

EXCLUDED_SIGN_KEYS = ("sign", "sign_type")
BEIJING_TZ = timezone(timedelta(hours=8))


def build_sign_content(params: Mapping[str, Any]) -> str:
    keys = sorted(
        k for k, v in params.items()
        if k not in EXCLUDED_SIGN_KEYS and v is not None and v != ""
    )
    return "&".join(f"{k}={params[k]}" for k in keys)


def _pem_body(key: str) -> str:
    return "".join(
        line.strip() for line in key.strip().splitlines()
        if line.strip() and not line.startswith("-----")
    )


def _load_public_key(key: str):
    # PEM 헤더가 있든 없든 본문만 꺼내 DER 로 읽음
    return serialization.load_der_public_key(base64.b64decode(_pem_body(key)))


def _load_private_key(key: str):
    # PKCS#8 / PKCS#1 모두 허용
    return serialization.load_der_private_key(base64.b64decode(_pem_body(key)), password=None)


def verify_alipay_signature(
    params: Mapping[str, Any],
    sign: str | None,
    public_key: str | None,
    environment: str | None = None,
) -> bool:
    """
    Alipay 비동기 통지 서명 검증

    공개키가 없으면 development 환경에서만 검증을 건너뛰고(True), 그 외에는 거부합니다.
    """
    env = environment or settings.environment
    if not public_key:
        if env == "development":
            logger.warning("Alipay 공개키 미설정: development 환경이므로 서명 검증을 건너뜀")
            return True
        logger.error("Alipay 공개키 미설정: 서명 검증 불가")
        return False

    if not sign:
        return False

    content = build_sign_content(params)
    try:
        key = _load_public_key(public_key)
        signature = base64.b64decode(sign, validate=True)
    except (ValueError, binascii.Error) as e:
        logger.warning(f"Alipay 서명/키 디코딩 실패: {e}")
        return False

    try:
        key.verify(signature, content.encode("utf-8"), padding.PKCS1v15(), hashes.SHA256())
    except InvalidSignature:
        return False
    return True


def generate_alipay_signature(params: Mapping[str, Any], private_key: str) -> str:
    """RSA2 서명 생성 (거래 조회 요청용)"""
    key = _load_private_key(private_key)
    signature = key.sign(build_sign_content(params).encode("utf-8"), padding.PKCS1v15(), hashes.SHA256())
    return base64.b64encode(signature).decode("ascii")


def verify_payment_amount(expected: Any, reported: Any, tolerance: float | None = None) -> bool:
    """Alipay total_amount(元) 와 저장 금액 비교, 허용 오차 기본 0.01"""
    tol = Decimal(str(settings.payment_amount_tolerance if tolerance is None else tolerance))
    try:
        reported_dec = Decimal(str(reported).strip())
        expected_dec = Decimal(str(expected))
    except (InvalidOperation, ValueError):
        return False
    # NaN, Infinity
    if not reported_dec.is_finite():
        return False
    return abs(expected_dec - reported_dec) <= tol


def _is_recoverable(exc: BaseException) -> bool:
    return isinstance(exc, PaymentGatewayError) and exc.recoverable


class AlipayClient:
    """alipay.trade.query 호출 클라이언트"""

    def __init__(
        self,
        app_id: str | None = None,
        private_key: str | None = None,
        public_key: str | None = None,
        gateway_url: str | None = None,
        timeout: httpx.Timeout | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._app_id = app_id if app_id is not None else settings.alipay_app_id
        self._private_key = private_key if private_key is not None else settings.alipay_private_key
        self._public_key = public_key if public_key is not None else settings.alipay_public_key
        self._gateway_url = gateway_url or settings.alipay_gateway_url
        self._timeout = timeout or httpx.Timeout(30.0, connect=10.0)
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(self._app_id and self._private_key)

    def _build_query_params(self, out_trade_no: str) -> dict[str, str]:
        params = {
            "app_id": self._app_id,
            "method": "alipay.trade.query",
            "format": "JSON",
            "charset": "utf-8",
            "sign_type": "RSA2",
            "timestamp": datetime.now(BEIJING_TZ).strftime("%Y-%m-%d %H:%M:%S"),
            "version": "1.0",
            "biz_content": json.dumps({"out_trade_no": out_trade_no}, separators=(",", ":")),
        }
        params["sign"] = generate_alipay_signature(params, self._private_key)
        return params

    @retry(
        stop=stop_after_attempt(settings.payment_sync_retry_count),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception(_is_recoverable),
        reraise=True,
        before_sleep=lambda retry_state: logger.warning(
            f"Alipay 조회 재시도 중... ({retry_state.attempt_number}회째): {retry_state.outcome.exception()}"
        ),
    )
    def query_trade(self, out_trade_no: str) -> dict[str, Any]:
        """
        거래 조회

        Returns:
            alipay_trade_query_response 본문 (code, trade_status, total_amount, trade_no ...)

        Raises:
            PaymentGatewayError: 네트워크/5xx (재시도 대상) 또는 응답 형식 오류
        """
        if not self.configured:
            raise PaymentGatewayError("Alipay 조회 설정이 없습니다.", provider="ALIPAY", recoverable=False)

        params = self._build_query_params(out_trade_no)
        try:
            with httpx.Client(timeout=self._timeout, transport=self._transport) as client:
                resp = client.post(self._gateway_url, data=params)
        except httpx.RequestError as e:
            raise PaymentGatewayError(f"Alipay 네트워크 오류: {e}", provider="ALIPAY") from e

        if resp.status_code >= 500:
            raise PaymentGatewayError(
                f"Alipay 서버 오류: HTTP {resp.status_code}", provider="ALIPAY", http_status=resp.status_code
            )
        if resp.status_code >= 400:
            raise PaymentGatewayError(
                f"Alipay 요청 오류: HTTP {resp.status_code}",
                provider="ALIPAY",
                http_status=resp.status_code,
                recoverable=False,
            )

        try:
            data = resp.json()
        except ValueError as e:
            raise PaymentGatewayError("Alipay 응답 파싱 실패", provider="ALIPAY", recoverable=False) from e

        body = data.get("alipay_trade_query_response") if isinstance(data, dict) else None
        if not isinstance(body, dict):
            raise PaymentGatewayError("Alipay 응답 형식 오류", provider="ALIPAY", recoverable=False)

        logger.debug(f"Alipay 조회: out_trade_no={out_trade_no}, code={body.get('code')}, status={body.get('trade_status')}")
        return body
