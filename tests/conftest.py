"""Shared fixtures: in-memory SQLite database, API client and tokens."""
import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("SECRET_KEY", "test-secret-key-not-for-production")

import uuid
from decimal import Decimal

import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from erp_receiving.core.security import create_access_token
from erp_receiving.database import Base, custom_json_dumps, get_db
from erp_receiving.main import app
from erp_receiving.models import PurchaseOrder, POStatus, Vendor


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
        json_serializer=custom_json_dumps,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
async def client(session_factory):
    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


def auth_headers(department: str, user_id: uuid.UUID | None = None) -> dict:
    token = create_access_token(
        user_id or uuid.uuid4(),
        additional_claims={"name": f"{department.title()} User", "department": department},
    )
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def inventory_headers():
    return auth_headers("inventory")


@pytest.fixture
def procurement_headers():
    return auth_headers("procurement")


@pytest.fixture
def admin_headers():
    return auth_headers("admin")


@pytest.fixture
def user_id():
    return uuid.uuid4()


@pytest.fixture
async def vendor(db):
    vendor = Vendor(name="Shree Textiles", vendor_code="VEN-001", email="orders@shreetextiles.test")
    db.add(vendor)
    await db.commit()
    return vendor


async def make_po(db, vendor, items, status=POStatus.GRN_APPROVED.value, number="PO-20261019-00001"):
    total = sum(Decimal(str(i["quantity"])) * Decimal(str(i.get("rate", 0))) for i in items)
    po = PurchaseOrder(
        po_number=number,
        vendor_id=vendor.id,
        status=status,
        items=items,
        total_amount=total,
    )
    db.add(po)
    await db.commit()
    return po


@pytest.fixture
async def purchase_order(db, vendor):
    """PO approved for receipt: 100 m of cotton poplin at 10."""
    return await make_po(db, vendor, [
        {"product_name": "Cotton Poplin", "product_code": "FAB-CP-01", "quantity": 100, "rate": 10, "uom": "Meters", "color": "White"},
    ])


@pytest.fixture
async def multi_item_po(db, vendor):
    return await make_po(db, vendor, [
        {"product_name": "Cotton Poplin", "quantity": 100, "rate": 10, "uom": "Meters", "color": "White"},
        {"product_name": "Polyester Thread", "quantity": 50, "rate": 4, "uom": "Pcs"},
        {"product_name": "Metal Buttons", "quantity": 20, "rate": 2.5, "uom": "Dozen"},
    ], number="PO-20261019-00002")
