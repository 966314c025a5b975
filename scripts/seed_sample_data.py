"""
Sample data seeding script.

Creates a demo customer with assets, an admin, two service persons, a
customer account owner, and a handful of tickets walked through the
workflow (including one purchase order) so every status shows up.
Prints a bearer token per user for trying the API.
"""
import asyncio
from decimal import Decimal

from sqlalchemy import select

from servicedesk.core.database import AsyncSessionLocal, Base, engine
from servicedesk.core.security import create_access_token
from servicedesk.models.customer import Asset, Customer
from servicedesk.models.ticket import TicketPriority, TicketStatus
from servicedesk.models.user import User, UserRole
from servicedesk.services.access_policy import Actor
from servicedesk.services.purchase_order_workflow import PurchaseOrderWorkflowService
from servicedesk.services.ticket_workflow import TicketWorkflowService


CUSTOMER_NAME = "Acme Manufacturing"

USERS_DATA = [
    {"email": "admin@servicedesk.local", "full_name": "Dana Admin", "role": UserRole.ADMIN},
    {"email": "field1@servicedesk.local", "full_name": "Sam Field", "role": UserRole.SERVICE_PERSON},
    {"email": "field2@servicedesk.local", "full_name": "Alex Bench", "role": UserRole.SERVICE_PERSON},
    {"email": "owner@acme.local", "full_name": "Robin Owner", "role": UserRole.CUSTOMER_ACCOUNT_OWNER},
]

ASSETS_DATA = [
    {"machine_id": "CNC-001", "model": "Haas VF-2", "serial_number": "HV2-1001"},
    {"machine_id": "CNC-002", "model": "Haas VF-4", "serial_number": "HV4-2002"},
    {"machine_id": "PRS-010", "model": "Amada HG-1303", "serial_number": "AM-3010"},
]

TICKETS_DATA = [
    ("Spindle vibration above tolerance", TicketPriority.HIGH, 0),
    ("Coolant pump leaking", TicketPriority.MEDIUM, 1),
    ("Hydraulic pressure drops under load", TicketPriority.CRITICAL, 2),
    ("Operator panel requests", TicketPriority.LOW, None),
]


def actor_for(user: User) -> Actor:
    return Actor(id=user.id, role=user.role, customer_id=user.customer_id)


async def create_customer_and_users(db):
    result = await db.execute(select(Customer).where(Customer.company_name == CUSTOMER_NAME))
    if result.scalar_one_or_none():
        print(f"Customer {CUSTOMER_NAME} already exists, skipping seed")
        return None

    customer = Customer(company_name=CUSTOMER_NAME, address="1 Industrial Way")
    db.add(customer)
    await db.flush()

    assets = [Asset(customer_id=customer.id, **data) for data in ASSETS_DATA]
    db.add_all(assets)

    users = {}
    for data in USERS_DATA:
        user = User(
            customer_id=customer.id if data["role"] == UserRole.CUSTOMER_ACCOUNT_OWNER else None,
            **data,
        )
        db.add(user)
        users[data["email"]] = user

    await db.commit()
    print(f"Created customer {customer.company_name} with {len(assets)} assets and {len(users)} users")
    return customer, assets, users


async def walk_tickets(db, assets, users):
    admin = actor_for(users["admin@servicedesk.local"])
    field = actor_for(users["field1@servicedesk.local"])
    owner = actor_for(users["owner@acme.local"])

    tickets = TicketWorkflowService(db)
    orders = PurchaseOrderWorkflowService(db)

    created = []
    for title, priority, asset_index in TICKETS_DATA:
        ticket = await tickets.create_ticket(
            owner,
            title=title,
            priority=priority,
            asset_id=assets[asset_index].id if asset_index is not None else None,
        )
        created.append(ticket)

    # Spindle: claimed, fixed, closed
    first = created[0]
    await tickets.transition(first.id, TicketStatus.IN_PROGRESS, field, "On site, replacing bearings")
    await tickets.transition(first.id, TicketStatus.FIXED_PENDING_CLOSURE, field, "Bearings replaced")
    await tickets.transition(first.id, TicketStatus.CLOSED, admin, "Customer confirmed")

    # Coolant pump: needs a part, PO approved and ordered
    second = created[1]
    await tickets.transition(second.id, TicketStatus.IN_PROGRESS, field)
    await tickets.transition(second.id, TicketStatus.SPARE_NEEDED, field, "Pump seal kit required")
    po = await orders.create_po(
        second.id,
        [{"description": "Pump seal kit", "quantity": 2, "unit_price": Decimal("48.50")}],
        field,
        notes="Urgent, line is down",
    )
    await orders.approve_po(po.id, "APPROVED", admin, "OK to order")
    await orders.update_po_status(po.id, "ORDERED", admin)

    # Hydraulics: assigned by admin, not started yet
    await tickets.assign(created[2].id, users["field2@servicedesk.local"].id, admin)

    print(f"Created {len(created)} tickets and PO {po.po_number}")


async def main():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with AsyncSessionLocal() as db:
        seeded = await create_customer_and_users(db)
        if seeded is None:
            return
        _, assets, users = seeded
        await walk_tickets(db, assets, users)

        print("\nBearer tokens:")
        for user in users.values():
            claims = {"sub": str(user.id), "role": user.role.value}
            if user.customer_id:
                claims["customer_id"] = user.customer_id
            print(f"  {user.email:32} {create_access_token(claims)}")

    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
