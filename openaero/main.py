import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response

from openaero.api.endpoints import admin_solutions, health, payments, revenue, solutions
from openaero.db import engine
from openaero.exceptions import OpenAeroError, WebhookProcessingError
from openaero.models import Base, PaymentProvider
from openaero.services.payment.wechat import wechat_response
from openaero.settings import settings

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="OpenAero Marketplace")

app.include_router(solutions.router, prefix="/api/solutions", tags=["Solutions"])
app.include_router(admin_solutions.router, prefix="/api/admin", tags=["Admin Review"])
app.include_router(payments.router, prefix="/api/payments", tags=["Payments"])
app.include_router(revenue.router, prefix="/api", tags=["Revenue"])
app.include_router(health.router, prefix="/api/health", tags=["Health"])


@app.exception_handler(OpenAeroError)
async def openaero_error_handler(request: Request, exc: OpenAeroError) -> Response:
    if isinstance(exc, WebhookProcessingError) and exc.provider == PaymentProvider.WECHAT.value:
        return Response(
            wechat_response("FAIL", "处理失败"),
            status_code=exc.status_code,
            media_type="application/xml",
        )

    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} 실패: {exc.error_code}: {exc.message}")
    else:
        logger.info(f"{request.method} {request.url.path} 거절: {exc.error_code}: {exc.message}")
    return JSONResponse(exc.to_dict(), status_code=exc.status_code)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    details = [
        {"field": ".".join(str(p) for p in err.get("loc", ())[1:]), "message": err.get("msg")}
        for err in exc.errors()
    ]
    return JSONResponse(
        {"success": False, "error": "请求参数错误", "code": "VALIDATION_ERROR", "details": details},
        status_code=400,
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"{request.method} {request.url.path} 처리 중 예기치 못한 오류")
    return JSONResponse(
        {"success": False, "error": "服务器内部错误", "code": "INTERNAL_ERROR"},
        status_code=500,
    )


@app.on_event("startup")
def on_startup() -> None:
    # 운영은 Alembic 마이그레이션 기준
    if settings.db_auto_create_tables:
        Base.metadata.create_all(bind=engine)


@app.get("/health")
def health_check() -> dict:
    return {"status": "ok"}
