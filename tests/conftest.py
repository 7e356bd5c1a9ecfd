"""Pytest configuration and fixtures."""

import uuid
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import JSON, create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from openaero.auth import AuthUser, get_optional_user
from openaero.db import get_session
from openaero.models import (
    Base,
    CreatorProfile,
    Order,
    OrderSolution,
    PaymentProvider,
    PaymentTransaction,
    Solution,
    SolutionStatus,
    UserProfile,
)


# 테스트용 메모리 SQLite 엔진 (연결 1개 공유)
TEST_DATABASE_URL = "sqlite:///:memory:"

test_engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
    echo=False,
)

TestSessionLocal = sessionmaker(
    bind=test_engine,
    autoflush=False,
    expire_on_commit=False,
)


def _patch_jsonb_to_json(base):
    """
    SQLite에서 JSONB를 JSON으로 변경하여 컴파일 오류 방지.
    none_as_null 설정은 유지 (Solution.bom IS NULL 판정에 필요).
    """
    from sqlalchemy.dialects.postgresql import JSONB

    for table in base.metadata.sorted_tables:
        for column in table.columns:
            if isinstance(column.type, JSONB):
                column.type = JSON(none_as_null=getattr(column.type, "none_as_null", False))


@pytest.fixture(scope="function")
def db_session() -> Session:
    """
    테스트용 데이터베이스 세션 fixture.
    각 테스트마다 테이블을 새로 만들고 끝나면 삭제.
    """
    _patch_jsonb_to_json(Base)
    Base.metadata.create_all(bind=test_engine)

    session = TestSessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()
        Base.metadata.drop_all(bind=test_engine)


# ----- 데이터 팩토리 -----

@pytest.fixture
def make_creator(db_session: Session):
    def _make(display_name: str = "测试创作者", roles=("USER", "CREATOR")) -> CreatorProfile:
        user_id = uuid.uuid4()
        db_session.add(UserProfile(user_id=user_id, email=f"{user_id.hex[:8]}@example.com",
                                   first_name="创作", last_name="者", roles=list(roles)))
        creator = CreatorProfile(user_id=user_id, display_name=display_name, revenue=Decimal("0"))
        db_session.add(creator)
        db_session.flush()
        return creator
    return _make


@pytest.fixture
def creator(make_creator) -> CreatorProfile:
    return make_creator()


@pytest.fixture
def make_solution(db_session: Session, creator: CreatorProfile):
    def _make(
        status: str = SolutionStatus.DRAFT.value,
        owner: CreatorProfile | None = None,
        title: str = "六轴植保无人机方案",
        description: str = "适用于大田喷洒作业的六轴植保无人机完整方案",
        price: Decimal = Decimal("100.00"),
        bom=None,
        submitted_at=None,
    ) -> Solution:
        solution = Solution(
            creator_id=(owner or creator).id,
            title=title,
            description=description,
            price=price,
            status=status,
            bom=bom,
            submitted_at=submitted_at,
        )
        db_session.add(solution)
        db_session.flush()
        return solution
    return _make


@pytest.fixture
def make_transaction(db_session: Session, make_solution):
    """주문(라인 1개) + 결제 거래 생성"""
    def _make(
        amount: Decimal = Decimal("100.00"),
        provider: str = PaymentProvider.ALIPAY.value,
        external_id: str | None = None,
        solution: Solution | None = None,
        quantity: int = 1,
    ) -> PaymentTransaction:
        solution = solution or make_solution(status=SolutionStatus.PUBLISHED.value, price=amount)
        order = Order(user_id=uuid.uuid4(), total_amount=amount)
        order.lines.append(OrderSolution(solution_id=solution.id, price=amount / quantity, quantity=quantity))
        db_session.add(order)
        db_session.flush()

        tx = PaymentTransaction(
            order_id=order.id,
            provider=provider,
            amount=amount,
            external_id=external_id or f"OA{uuid.uuid4().hex[:16].upper()}",
        )
        db_session.add(tx)
        db_session.flush()
        return tx
    return _make


# ----- 인증 사용자 -----

@pytest.fixture
def admin_user() -> AuthUser:
    return AuthUser(id=uuid.uuid4(), email="admin@openaero.cn", roles=["USER", "ADMIN"])


@pytest.fixture
def creator_user(creator: CreatorProfile) -> AuthUser:
    return AuthUser(id=creator.user_id, email="creator@openaero.cn", roles=["USER", "CREATOR"],
                    creator_profile_id=creator.id)


@pytest.fixture
def plain_user() -> AuthUser:
    return AuthUser(id=uuid.uuid4(), email="user@openaero.cn", roles=["USER"])


# ----- API -----

class AuthState:
    """요청마다 get_optional_user 가 돌려줄 사용자"""

    def __init__(self):
        self.user: AuthUser | None = None


@pytest.fixture
def auth() -> AuthState:
    return AuthState()


@pytest.fixture
def client(db_session: Session, auth: AuthState):
    from openaero.main import app

    def _override_get_session():
        yield db_session
        db_session.flush()

    app.dependency_overrides[get_session] = _override_get_session
    app.dependency_overrides[get_optional_user] = lambda: auth.user
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


# 테스트 마커 정의
def pytest_configure(config):
    """Pytest 마커 등록."""
    config.addinivalue_line("markers", "unit: 단위 테스트 (DB 불필요)")
    config.addinivalue_line("markers", "integration: 통합 테스트 (메모리 SQLite / TestClient)")
