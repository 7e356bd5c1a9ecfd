"""
WeChat Pay(微信支付 v2) 서명/XML/금액 검증과 주문 조회 클라이언트

서명: sign 과 빈 값을 제외한 파라미터를 키 순으로 "k=v&..." 연결 후 "&key=API_KEY" 를 붙여
MD5, 대문자 16진수.
"""
from __future__ import annotations

import hashlib
import hmac
import logging
import uuid
import xml.etree.ElementTree as ET
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Mapping

import httpx
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from openaero.exceptions import PaymentGatewayError
from openaero.settings import settings

logger = logging.getLogger(__name__)


def build_sign_content(params: Mapping[str, Any]) -> str:
    keys = sorted(k for k, v in params.items() if k != "sign" and v is not None and v != "")
    return "&".join(f"{k}={params[k]}" for k in keys)


def generate_wechat_signature(params: Mapping[str, Any], api_key: str) -> str:
    string_sign_temp = f"{build_sign_content(params)}&key={api_key}"
    return hashlib.md5(string_sign_temp.encode("utf-8")).hexdigest().upper()


def verify_wechat_signature(
    params: Mapping[str, Any],
    sign: str | None,
    api_key: str | None,
    environment: str | None = None,
) -> bool:
    """API 키가 없으면 development 환경에서만 통과"""
    env = environment or settings.environment
    if not api_key:
        if env == "development":
            logger.warning("WeChat API 키 미설정: development 환경이므로 서명 검증을 건너뜀")
            return True
        logger.error("WeChat API 키 미설정: 서명 검증 불가")
        return False

    if not sign:
        return False
    expected = generate_wechat_signature(params, api_key)
    # 비ASCII 서명도 불일치로 끝나도록 바이트 비교
    return hmac.compare_digest(expected.encode("ascii"), str(sign).upper().encode("utf-8"))


def verify_wechat_payment_amount(expected_yuan: Any, total_fee: Any) -> bool:
    """total_fee(分) == 저장 금액(元) x 100"""
    try:
        expected_fen = (Decimal(str(expected_yuan)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
        reported_fen = Decimal(str(total_fee).strip())
    except (InvalidOperation, ValueError):
        return False
    if not reported_fen.is_finite():
        return False
    return reported_fen == expected_fen


def parse_wechat_xml(xml_text: str | bytes) -> dict[str, str]:
    """
    <xml><k><![CDATA[v]]></k>...</xml> 를 평면 dict 로 변환

    Raises:
        ValueError: XML 형식 오류
    """
    try:
        root = ET.fromstring(xml_text)
    except ET.ParseError as e:
        raise ValueError(f"잘못된 XML: {e}") from e

    result: dict[str, str] = {}
    for child in root:
        result[child.tag] = (child.text or "").strip()
    return result


def build_wechat_xml(params: Mapping[str, Any]) -> str:
    parts = ["<xml>"]
    for k, v in params.items():
        if v is None:
            continue
        parts.append(f"<{k}><![CDATA[{v}]]></{k}>")
    parts.append("</xml>")
    return "".join(parts)


def wechat_response(return_code: str, return_msg: str) -> str:
    """WeChat 통지 응답 봉투"""
    return (
        f"<xml><return_code><![CDATA[{return_code}]]></return_code>"
        f"<return_msg><![CDATA[{return_msg}]]></return_msg></xml>"
    )


def _is_recoverable(exc: BaseException) -> bool:
    return isinstance(exc, PaymentGatewayError) and exc.recoverable


class WechatPayClient:
    """pay/orderquery 호출 클라이언트"""

    def __init__(
        self,
        app_id: str | None = None,
        mch_id: str | None = None,
        api_key: str | None = None,
        query_url: str | None = None,
        timeout: httpx.Timeout | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._app_id = app_id if app_id is not None else settings.wechat_app_id
        self._mch_id = mch_id if mch_id is not None else settings.wechat_mch_id
        self._api_key = api_key if api_key is not None else settings.wechat_pay_key
        self._query_url = query_url or settings.wechat_query_url
        self._timeout = timeout or httpx.Timeout(30.0, connect=10.0)
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(self._app_id and self._mch_id and self._api_key)

    @retry(
        stop=stop_after_attempt(settings.payment_sync_retry_count),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception(_is_recoverable),
        reraise=True,
        before_sleep=lambda retry_state: logger.warning(
            f"WeChat 조회 재시도 중... ({retry_state.attempt_number}회째): {retry_state.outcome.exception()}"
        ),
    )
    def query_order(self, out_trade_no: str) -> dict[str, str]:
        """
        주문 조회. 응답 서명까지 검증한 dict 를 돌려줌

        Raises:
            PaymentGatewayError: 네트워크/5xx (재시도 대상), 응답 서명 불일치 등
        """
        if not self.configured:
            raise PaymentGatewayError("WeChat 조회 설정이 없습니다.", provider="WECHAT", recoverable=False)

        params = {
            "appid": self._app_id,
            "mch_id": self._mch_id,
            "out_trade_no": out_trade_no,
            "nonce_str": uuid.uuid4().hex,
        }
        params["sign"] = generate_wechat_signature(params, self._api_key)

        try:
            with httpx.Client(timeout=self._timeout, transport=self._transport) as client:
                resp = client.post(
                    self._query_url,
                    content=build_wechat_xml(params).encode("utf-8"),
                    headers={"Content-Type": "text/xml; charset=utf-8"},
                )
        except httpx.RequestError as e:
            raise PaymentGatewayError(f"WeChat 네트워크 오류: {e}", provider="WECHAT") from e

        if resp.status_code >= 500:
            raise PaymentGatewayError(
                f"WeChat 서버 오류: HTTP {resp.status_code}", provider="WECHAT", http_status=resp.status_code
            )
        if resp.status_code >= 400:
            raise PaymentGatewayError(
                f"WeChat 요청 오류: HTTP {resp.status_code}",
                provider="WECHAT",
                http_status=resp.status_code,
                recoverable=False,
            )

        try:
            data = parse_wechat_xml(resp.content)
        except ValueError as e:
            raise PaymentGatewayError("WeChat 응답 파싱 실패", provider="WECHAT", recoverable=False) from e

        if data.get("return_code") != "SUCCESS":
            raise PaymentGatewayError(
                f"WeChat 조회 실패: {data.get('return_msg') or 'unknown'}", provider="WECHAT", recoverable=False
            )
        if not verify_wechat_signature(data, data.get("sign"), self._api_key):
            raise PaymentGatewayError("WeChat 응답 서명 불일치", provider="WECHAT", recoverable=False)

        return data
