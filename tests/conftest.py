"""Shared test fixtures — async DB, client, API-key headers, seed helpers.

Reusable across all test modules (eligibility, renewal, orders, import, …).
Uses SQLite + aiosqlite for fast isolated tests without PostgreSQL.
"""

from __future__ import annotations

import os

# Set test secrets before any other import touches pydantic-settings
os.environ.setdefault("ADMIN_API_KEY", "test-admin-key-do-not-use-in-production")
os.environ.setdefault("ENCRYPTION_KEY", "test-encryption-key-for-ci-only")

import uuid
from datetime import date, datetime, timezone
from typing import AsyncGenerator, Optional

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from backend.catalog.models import Product, ProductCategory, Subcategory
from backend.common.constants import (
    DEFAULT_CYCLE_DURATIONS,
    LEGACY_CATEGORIES,
    GenderType,
    RecordStatus,
    RenewalUnit,
    RuleSchemaVersion,
)
from backend.config import settings
from backend.core.models import Company, Employee
from backend.database import Base, get_db
from backend.eligibility.models import DesignationEligibilityRule
from backend.eligibility.normalizer import normalize_designation
from backend.main import create_app

# ── SQLite compat: compile PG-specific types to TEXT/CHAR ───────────

from sqlalchemy.dialects.postgresql import JSONB, UUID as PG_UUID
from sqlalchemy.ext.compiler import compiles


@compiles(JSONB, "sqlite")
def _jsonb_sqlite(element, compiler, **kw):
    return "TEXT"


@compiles(PG_UUID, "sqlite")
def _uuid_sqlite(element, compiler, **kw):
    return "CHAR(36)"


# ── Test database (SQLite in-memory) ────────────────────────────────

TEST_DATABASE_URL = "sqlite+aiosqlite://"

engine = create_async_engine(
    TEST_DATABASE_URL,
    echo=False,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)


# Register PG-compatible functions for SQLite
@event.listens_for(engine.sync_engine, "connect")
def _register_sqlite_functions(dbapi_conn, connection_record):
    """Register NOW() and uuid_generate_v4() as SQLite custom functions."""
    dbapi_conn.create_function(
        "NOW", 0, lambda: datetime.now(timezone.utc).isoformat(),
    )
    dbapi_conn.create_function(
        "uuid_generate_v4", 0, lambda: str(uuid.uuid4()),
    )


TestSessionFactory = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False,
)


@pytest.fixture(autouse=True)
async def _setup_db():
    """Create all tables before each test, drop after."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


async def _override_get_db() -> AsyncGenerator[AsyncSession, None]:
    """Same unit of work as ``get_db``, bound to the in-memory engine."""
    async with TestSessionFactory() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
        await session.commit()


# ── FastAPI test client ─────────────────────────────────────────────

@pytest.fixture
async def app():
    """Create a fresh app instance with DB dependency overridden."""
    application = create_app()
    application.dependency_overrides[get_db] = _override_get_db
    yield application
    application.dependency_overrides.clear()


@pytest.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client wired to the test app."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


@pytest.fixture
def api_headers() -> dict[str, str]:
    return {settings.API_KEY_HEADER: settings.ADMIN_API_KEY, "X-Actor": "pytest"}


# ── Database session (for direct DB operations in tests) ────────────

@pytest.fixture
async def db() -> AsyncGenerator[AsyncSession, None]:
    async with TestSessionFactory() as session:
        yield session
        await session.commit()


# ── Seed helpers ────────────────────────────────────────────────────

async def _seed_company(
    db: AsyncSession,
    *,
    name: str = "IndiGo",
    require_company_admin_po_approval: bool = False,
) -> Company:
    company = Company(
        id=uuid.uuid4(),
        name=name,
        require_company_admin_po_approval=require_company_admin_po_approval,
        is_active=True,
    )
    db.add(company)
    await db.flush()
    return company


async def _seed_category(
    db: AsyncSession,
    name: str,
    *,
    company_id: Optional[uuid.UUID] = None,
) -> ProductCategory:
    category = ProductCategory(id=uuid.uuid4(), name=name, company_id=company_id)
    db.add(category)
    await db.flush()
    return category


async def _seed_subcategory(
    db: AsyncSession,
    company_id: uuid.UUID,
    parent: ProductCategory,
    name: str,
    *,
    status: RecordStatus = RecordStatus.active,
) -> Subcategory:
    sub = Subcategory(
        id=uuid.uuid4(),
        company_id=company_id,
        parent_category_id=parent.id,
        name=name,
        status=status,
    )
    db.add(sub)
    await db.flush()
    return sub


async def _seed_product(
    db: AsyncSession,
    *,
    name: str = "Formal Shirt",
    company_id: Optional[uuid.UUID] = None,
    category: Optional[ProductCategory] = None,
    subcategory: Optional[Subcategory] = None,
    legacy_category: Optional[str] = None,
    is_active: bool = True,
) -> Product:
    product = Product(
        id=uuid.uuid4(),
        name=name,
        company_id=company_id,
        category_id=category.id if category else None,
        subcategory_id=subcategory.id if subcategory else None,
        legacy_category=legacy_category,
        is_active=is_active,
    )
    db.add(product)
    await db.flush()
    return product


async def _seed_employee(
    db: AsyncSession,
    company_id: Optional[uuid.UUID],
    *,
    designation: Optional[str] = "Pilot",
    gender: Optional[GenderType] = GenderType.male,
    date_of_joining: Optional[date] = date(2024, 1, 15),
    eligibility: Optional[dict[str, int]] = None,
    cycle_duration: Optional[dict[str, int]] = None,
    eligibility_reset_dates: Optional[dict[str, str]] = None,
    status: RecordStatus = RecordStatus.active,
) -> Employee:
    emp = Employee(
        id=uuid.uuid4(),
        employee_code=f"EMP-{uuid.uuid4().hex[:6].upper()}",
        first_name="Test",
        last_name="Employee",
        designation=designation,
        gender=gender,
        company_id=company_id,
        status=status,
        date_of_joining=date_of_joining,
        eligibility=eligibility if eligibility is not None
        else {cat: 0 for cat in LEGACY_CATEGORIES},
        cycle_duration=cycle_duration if cycle_duration is not None
        else dict(DEFAULT_CYCLE_DURATIONS),
        eligibility_reset_dates=eligibility_reset_dates or {},
    )
    db.add(emp)
    await db.flush()
    return emp


async def _seed_rule(
    db: AsyncSession,
    company_id: uuid.UUID,
    *,
    designation: str = "Pilot",
    gender: GenderType = GenderType.unisex,
    subcategory: Optional[Subcategory] = None,
    category_name: Optional[str] = None,
    quantity: int = 1,
    renewal_frequency: Optional[int] = 6,
    renewal_unit: Optional[RenewalUnit] = RenewalUnit.months,
    status: RecordStatus = RecordStatus.active,
    created_at: Optional[datetime] = None,
) -> DesignationEligibilityRule:
    rule = DesignationEligibilityRule(
        id=uuid.uuid4(),
        schema_version=(
            RuleSchemaVersion.subcategory_level.value
            if subcategory is not None
            else RuleSchemaVersion.category_level.value
        ),
        company_id=company_id,
        designation=designation,
        designation_key=normalize_designation(designation),
        gender=gender,
        subcategory_id=subcategory.id if subcategory else None,
        category_name=category_name,
        quantity=quantity,
        renewal_frequency=renewal_frequency,
        renewal_unit=renewal_unit,
        status=status,
        created_at=created_at or datetime.now(timezone.utc),
    )
    db.add(rule)
    await db.flush()
    return rule


@pytest.fixture
async def company(db) -> Company:
    return await _seed_company(db)


@pytest.fixture
async def catalog(db, company) -> dict:
    """Shirt/Trouser/Shoe/Blazer categories with one subcategory and product each."""
    data: dict = {"categories": {}, "subcategories": {}, "products": {}}
    for name, tag in (("Shirt", "shirt"), ("Trouser", "pant"), ("Shoe", "shoe"), ("Blazer", "jacket")):
        category = await _seed_category(db, name)
        sub = await _seed_subcategory(db, company.id, category, f"{name} - Crew")
        product = await _seed_product(
            db, name=f"Crew {name}", company_id=company.id, subcategory=sub,
        )
        data["categories"][tag] = category
        data["subcategories"][tag] = sub
        data["products"][tag] = product
    return data
