"""
ServiceDesk Workflow Test Configuration

Provides shared fixtures for async testing with:
- In-memory SQLite database
- A file-backed SQLite database for racing concurrent sessions
- Test client with async support
- Actors and bearer headers for each role (admin, service persons, customer owner)
- Sample data factories for customers, assets, users, tickets and purchase orders
- A recording notification queue and fake delivery channels
"""
import asyncio
import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("ENABLE_STRUCTURED_LOGGING", "false")

from decimal import Decimal
from typing import Any, AsyncGenerator, Awaitable, Callable, Dict, List, Optional
import uuid

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool

from servicedesk.core.database import Base, get_db
from servicedesk.core.exceptions import DeliveryError
from servicedesk.core.security import create_access_token
from servicedesk.main import app
from servicedesk.models.customer import Asset, Customer
from servicedesk.models.purchase_order import PurchaseOrder, PurchaseOrderItem, PurchaseOrderStatus
from servicedesk.models.ticket import Ticket, TicketPriority, TicketStatus
from servicedesk.models.user import User, UserRole
from servicedesk.services.access_policy import Actor
from servicedesk.services.notification_dispatcher import NotificationDispatcher
from servicedesk.services.notification_queue import NotificationQueue


# Test database URL - SQLite in-memory with async support
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest_asyncio.fixture(scope="function")
async def async_engine():
    """Create an async engine for testing with in-memory SQLite."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False}
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def session_maker(async_engine):
    return async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture(scope="function")
async def db_session(session_maker) -> AsyncGenerator[AsyncSession, None]:
    """Create a fresh database session for each test."""
    async with session_maker() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture(scope="function")
async def file_engine(tmp_path):
    """
    File-backed SQLite engine for tests that race two sessions.

    Every transaction opens with BEGIN IMMEDIATE, so a second writer waits
    for the first to commit, the way a row lock does on PostgreSQL.
    """
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'workflow.db'}", echo=False)

    @event.listens_for(engine.sync_engine, "connect")
    def disable_driver_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def file_session_maker(file_engine):
    return async_sessionmaker(
        file_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


# -----------------------------------------------------------------------------
# Delivery fakes
# -----------------------------------------------------------------------------

class RecordingQueue:
    """Stands in for NotificationQueue in service tests; keeps every job."""

    def __init__(self):
        self.jobs: List[Any] = []

    def enqueue(self, job) -> bool:
        if job is None:
            return False
        self.jobs.append(job)
        return True

    def types(self) -> List[str]:
        return [job.type.value for job in self.jobs]


class RecordingRegistry:
    """Live publisher that records pushes instead of writing to sockets."""

    def __init__(self, fail: bool = False):
        self.published: List[Dict[str, Any]] = []
        self.fail = fail

    async def publish(self, user_id: int, payload: Dict[str, Any], event_type: str = "notification") -> int:
        if self.fail:
            raise RuntimeError("socket closed")
        self.published.append({"user_id": user_id, "payload": payload, "event_type": event_type})
        return 1

    def get_stats(self) -> Dict[str, Any]:
        return {"total_connections": 0, "users": 0}


class FakeEmailSender:
    """Email transport that records sends, or fails every one of them."""

    def __init__(self, configured: bool = True, fail: bool = False):
        self.configured = configured
        self.fail = fail
        self.sent: List[Dict[str, Any]] = []

    def is_configured(self) -> bool:
        return self.configured

    async def send(self, to, subject: str, template_name: str, context: Dict[str, Any]) -> Optional[str]:
        if self.fail:
            raise DeliveryError("SMTP error: connection refused")
        self.sent.append({"to": to, "subject": subject, "template": template_name, "context": context})
        return "<message-id@test>"


@pytest.fixture
def recording_queue() -> RecordingQueue:
    return RecordingQueue()


@pytest.fixture
def registry() -> RecordingRegistry:
    return RecordingRegistry()


@pytest.fixture
def email_sender() -> FakeEmailSender:
    return FakeEmailSender()


@pytest.fixture
def dispatcher(session_maker, registry, email_sender) -> NotificationDispatcher:
    return NotificationDispatcher(session_maker, registry, email_sender)


@pytest.fixture
def notification_queue(dispatcher) -> NotificationQueue:
    """A queue that is never started; tests call ``drain()`` explicitly."""
    return NotificationQueue(dispatcher, workers=1, maxsize=100, max_attempts=3)


@pytest_asyncio.fixture(scope="function")
async def client(db_session: AsyncSession, notification_queue, registry) -> AsyncGenerator[AsyncClient, None]:
    """Create an async test client with database override."""

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    # ASGITransport does not run the lifespan
    app.state.notification_queue = notification_queue
    app.state.connection_registry = registry

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
    app.state.notification_queue = None
    app.state.connection_registry = None


# -----------------------------------------------------------------------------
# Data Factories
# -----------------------------------------------------------------------------

class CustomerFactory:
    """Factory for creating test customers."""

    @staticmethod
    async def create(
        db: AsyncSession,
        company_name: str = "Test Customer",
        is_active: bool = True
    ) -> Customer:
        customer = Customer(company_name=company_name, address="1 Test Street", is_active=is_active)
        db.add(customer)
        await db.commit()
        await db.refresh(customer)
        return customer


class AssetFactory:
    """Factory for creating test assets."""

    @staticmethod
    async def create(db: AsyncSession, customer_id: int, machine_id: str = None) -> Asset:
        asset = Asset(
            customer_id=customer_id,
            machine_id=machine_id or f"M-{uuid.uuid4().hex[:6].upper()}",
            model="Test Model",
            serial_number=f"SN-{uuid.uuid4().hex[:8].upper()}",
            location="Hall 1",
        )
        db.add(asset)
        await db.commit()
        await db.refresh(asset)
        return asset


class UserFactory:
    """Factory for creating test users."""

    @staticmethod
    async def create(
        db: AsyncSession,
        role: UserRole = UserRole.SERVICE_PERSON,
        customer_id: int = None,
        email: str = None,
        full_name: str = None,
        is_active: bool = True
    ) -> User:
        user = User(
            email=email or f"user-{uuid.uuid4().hex[:8]}@test.com",
            full_name=full_name or f"Test {role.value.replace('_', ' ').title()}",
            role=role,
            customer_id=customer_id,
            is_active=is_active,
        )
        db.add(user)
        await db.commit()
        await db.refresh(user)
        return user


class TicketFactory:
    """Factory for creating test tickets directly, bypassing the workflow."""

    @staticmethod
    async def create(
        db: AsyncSession,
        customer_id: int,
        created_by_id: int,
        status: TicketStatus = TicketStatus.OPEN,
        assigned_to_id: int = None,
        title: str = "Test Ticket",
        priority: TicketPriority = TicketPriority.MEDIUM,
        asset_id: int = None
    ) -> Ticket:
        ticket = Ticket(
            customer_id=customer_id,
            asset_id=asset_id,
            title=title,
            description="Test ticket description",
            priority=priority,
            status=status,
            assigned_to_id=assigned_to_id,
            created_by_id=created_by_id,
        )
        db.add(ticket)
        await db.commit()
        await db.refresh(ticket)
        return ticket


class PurchaseOrderFactory:
    """Factory for creating test purchase orders with a single item."""

    @staticmethod
    async def create(
        db: AsyncSession,
        ticket_id: int,
        created_by_id: int,
        status: PurchaseOrderStatus = PurchaseOrderStatus.PENDING_APPROVAL,
        quantity: int = 2,
        unit_price: Decimal = Decimal("25.00")
    ) -> PurchaseOrder:
        total = (unit_price * quantity).quantize(Decimal("0.01"))
        po = PurchaseOrder(
            po_number=f"PO-TEST-{uuid.uuid4().hex[:8].upper()}",
            ticket_id=ticket_id,
            status=status,
            total_amount=total,
            created_by_id=created_by_id,
            items=[
                PurchaseOrderItem(
                    description="Test part",
                    quantity=quantity,
                    unit_price=unit_price,
                    total_price=total,
                )
            ],
        )
        db.add(po)
        await db.commit()
        await db.refresh(po)
        return po


# -----------------------------------------------------------------------------
# Pre-configured Test Data Fixtures
# -----------------------------------------------------------------------------

def actor_for(user: User) -> Actor:
    return Actor(id=user.id, role=user.role, customer_id=user.customer_id)


def headers_for(user: User) -> Dict[str, str]:
    claims = {"sub": str(user.id), "role": user.role.value}
    if user.customer_id is not None:
        claims["customer_id"] = user.customer_id
    return {"Authorization": f"Bearer {create_access_token(claims)}"}


async def race(
    session_maker,
    model,
    entity_id: int,
    *requests: Callable[[AsyncSession], Awaitable[Any]],
) -> List[Any]:
    """
    Run each request on its own session, concurrently.

    Every session loads the entity and ends its read before any request
    starts, so all of them begin from the same committed row. Each session
    is closed when its request finishes, as a request-scoped one would be.
    Results come back in order, exceptions included.
    """
    sessions = [session_maker() for _ in requests]
    for session in sessions:
        await session.get(model, entity_id)
        await session.commit()

    async def run(session: AsyncSession, request):
        try:
            return await request(session)
        finally:
            await session.close()

    return await asyncio.gather(
        *(run(session, request) for session, request in zip(sessions, requests)),
        return_exceptions=True,
    )


@pytest_asyncio.fixture
async def test_customer(db_session: AsyncSession) -> Customer:
    return await CustomerFactory.create(db_session, company_name="Acme Test Works")


@pytest_asyncio.fixture
async def other_customer(db_session: AsyncSession) -> Customer:
    return await CustomerFactory.create(db_session, company_name="Other Co")


@pytest_asyncio.fixture
async def test_asset(db_session: AsyncSession, test_customer: Customer) -> Asset:
    return await AssetFactory.create(db_session, customer_id=test_customer.id)


@pytest_asyncio.fixture
async def admin_user(db_session: AsyncSession) -> User:
    return await UserFactory.create(db_session, role=UserRole.ADMIN, full_name="Ada Admin")


@pytest_asyncio.fixture
async def service_user(db_session: AsyncSession) -> User:
    return await UserFactory.create(db_session, role=UserRole.SERVICE_PERSON, full_name="Sam Service")


@pytest_asyncio.fixture
async def other_service_user(db_session: AsyncSession) -> User:
    return await UserFactory.create(db_session, role=UserRole.SERVICE_PERSON, full_name="Oscar Other")


@pytest_asyncio.fixture
async def owner_user(db_session: AsyncSession, test_customer: Customer) -> User:
    return await UserFactory.create(
        db_session,
        role=UserRole.CUSTOMER_ACCOUNT_OWNER,
        customer_id=test_customer.id,
        full_name="Olive Owner",
    )


@pytest.fixture
def admin(admin_user: User) -> Actor:
    return actor_for(admin_user)


@pytest.fixture
def service_person(service_user: User) -> Actor:
    return actor_for(service_user)


@pytest.fixture
def other_service_person(other_service_user: User) -> Actor:
    return actor_for(other_service_user)


@pytest.fixture
def owner(owner_user: User) -> Actor:
    return actor_for(owner_user)


@pytest.fixture
def auth_headers_admin(admin_user: User) -> Dict[str, str]:
    return headers_for(admin_user)


@pytest.fixture
def auth_headers_service(service_user: User) -> Dict[str, str]:
    return headers_for(service_user)


@pytest.fixture
def auth_headers_other_service(other_service_user: User) -> Dict[str, str]:
    return headers_for(other_service_user)


@pytest.fixture
def auth_headers_owner(owner_user: User) -> Dict[str, str]:
    return headers_for(owner_user)


@pytest_asyncio.fixture
async def open_ticket(db_session: AsyncSession, test_customer: Customer, owner_user: User) -> Ticket:
    """Unassigned OPEN ticket."""
    return await TicketFactory.create(
        db_session,
        customer_id=test_customer.id,
        created_by_id=owner_user.id,
        status=TicketStatus.OPEN,
    )


@pytest_asyncio.fixture
async def in_progress_ticket(
    db_session: AsyncSession,
    test_customer: Customer,
    owner_user: User,
    service_user: User
) -> Ticket:
    """IN_PROGRESS ticket assigned to ``service_user``."""
    return await TicketFactory.create(
        db_session,
        customer_id=test_customer.id,
        created_by_id=owner_user.id,
        status=TicketStatus.IN_PROGRESS,
        assigned_to_id=service_user.id,
    )


@pytest_asyncio.fixture
async def pending_po(db_session: AsyncSession, in_progress_ticket: Ticket, service_user: User) -> PurchaseOrder:
    """PENDING_APPROVAL order raised by the assignee; ticket moved to WAITING_FOR_PO."""
    in_progress_ticket.status = TicketStatus.WAITING_FOR_PO
    await db_session.commit()
    return await PurchaseOrderFactory.create(
        db_session,
        ticket_id=in_progress_ticket.id,
        created_by_id=service_user.id,
    )
