import os
import tempfile
import uuid
from decimal import Decimal

# Settings are read at import time, so the environment must be ready first
_TEST_DB_DIR = tempfile.mkdtemp(prefix="affiliate-api-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_TEST_DB_DIR}/test.db"
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["WEBHOOK_SECRET"] = "test-webhook-secret"
os.environ["RESEND_API_KEY"] = ""
os.environ["MINIMUM_PAYOUT"] = "5000"
os.environ["SITE_URL"] = "https://shop.example.com"

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from affiliate_api.api.deps import get_notification_service
from affiliate_api.core.security import create_access_token
from affiliate_api.database import Base, async_session_factory, engine
from affiliate_api.main import app
from affiliate_api.models import (
    AffiliateLink,
    AffiliateProfile,
    AffiliateStatus,
    Product,
)
from affiliate_api.services.notification_service import NotificationService


class RecordingNotifier(NotificationService):
    """Captures outgoing emails instead of calling Resend."""

    def __init__(self):
        super().__init__(api_key="test-key")
        self.sent = []
        self.keys = []

    async def send(self, message, idempotency_key=None):
        self.sent.append(message)
        self.keys.append(idempotency_key)
        return True

    @property
    def subjects(self):
        return [m.subject for m in self.sent]


@pytest_asyncio.fixture
async def db_engine():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session(db_engine):
    async with async_session_factory() as s:
        yield s


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest_asyncio.fixture
async def client(db_engine, notifier):
    app.dependency_overrides[get_notification_service] = lambda: notifier
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


def auth_headers(user_id: str, is_admin: bool = False, email: str = None, name: str = None) -> dict:
    claims = {"is_admin": is_admin}
    if email:
        claims["email"] = email
    if name:
        claims["name"] = name
    token = create_access_token(user_id, additional_claims=claims)
    return {"Authorization": f"Bearer {token}"}


# ==================== FACTORIES ====================

async def make_product(session, name: str = "Water Purifier", slug: str = None) -> Product:
    product = Product(name=name, slug=slug)
    session.add(product)
    await session.commit()
    return product


async def make_affiliate(
    session,
    status: AffiliateStatus = AffiliateStatus.APPROVED,
    pending_earnings: int = 0,
    commission_rate: str = "5",
    user_id: str = None,
) -> AffiliateProfile:
    approved = status == AffiliateStatus.APPROVED
    profile = AffiliateProfile(
        user_id=user_id or f"user-{uuid.uuid4().hex[:8]}",
        full_name="Asha Rao",
        email="asha@example.com",
        status=status.value,
        affiliate_code=f"AFF{uuid.uuid4().hex[:8].upper()}" if approved else None,
        commission_rate=Decimal(commission_rate),
        pending_earnings=pending_earnings,
        total_earnings=pending_earnings,
    )
    session.add(profile)
    await session.commit()
    return profile


async def make_link(session, affiliate: AffiliateProfile, product: Product, active: bool = True) -> AffiliateLink:
    link = AffiliateLink(
        affiliate_id=affiliate.id,
        product_id=product.id,
        link_code=uuid.uuid4().hex[:12].upper(),
        original_url=f"https://shop.example.com/store/product/{product.id}?ref={affiliate.affiliate_code}",
        is_active=active,
    )
    session.add(link)
    await session.commit()
    return link
