"""
Tests for the HTTP layer.

Tests cover:
- Authentication
- Error-to-status mapping and error bodies
- Ticket and purchase-order endpoints
- Notification listing, counting, read marking and deletion
"""
import pytest
from httpx import AsyncClient
from sqlalchemy import select

from servicedesk.models.notification import Notification, NotificationStatus, NotificationType
from servicedesk.models.purchase_order import PurchaseOrder, PurchaseOrderStatus
from servicedesk.models.ticket import Ticket, TicketStatus


# -----------------------------------------------------------------------------
# Authentication
# -----------------------------------------------------------------------------

class TestAuthentication:

    @pytest.mark.asyncio
    async def test_missing_token(self, client: AsyncClient, open_ticket):
        response = await client.get(f"/api/v1/tickets/{open_ticket.id}")
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_garbage_token(self, client: AsyncClient, open_ticket):
        response = await client.get(
            f"/api/v1/tickets/{open_ticket.id}",
            headers={"Authorization": "Bearer not-a-token"},
        )
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_health(self, client: AsyncClient):
        response = await client.get("/health")
        assert response.status_code == 200
        assert response.json()["notifications"]["pending"] == 0


# -----------------------------------------------------------------------------
# Tickets
# -----------------------------------------------------------------------------

class TestTicketEndpoints:

    @pytest.mark.asyncio
    async def test_create_ticket(self, client: AsyncClient, auth_headers_owner, test_asset):
        response = await client.post(
            "/api/v1/tickets",
            json={"title": "Spindle noise", "priority": "HIGH", "asset_id": test_asset.id},
            headers=auth_headers_owner,
        )

        assert response.status_code == 201
        data = response.json()
        assert data["status"] == "OPEN"
        assert data["priority"] == "HIGH"
        assert data["customer"]["company_name"] == "Acme Test Works"
        assert "X-Request-ID" in response.headers

    @pytest.mark.asyncio
    async def test_claim_ticket(self, client: AsyncClient, auth_headers_service, open_ticket, service_user):
        response = await client.post(
            f"/api/v1/tickets/{open_ticket.id}/status",
            json={"status": "IN_PROGRESS", "note": "Heading over"},
            headers=auth_headers_service,
        )

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "IN_PROGRESS"
        assert data["assigned_to"]["id"] == service_user.id

    @pytest.mark.asyncio
    async def test_invalid_transition_body(self, client: AsyncClient, auth_headers_admin, open_ticket):
        ticket_id = open_ticket.id

        response = await client.post(
            f"/api/v1/tickets/{ticket_id}/status",
            json={"status": "CLOSED"},
            headers=auth_headers_admin,
        )

        assert response.status_code == 400
        assert response.json() == {
            "error": "InvalidTransition",
            "detail": "Cannot change status from OPEN to CLOSED",
            "from_status": "OPEN",
            "to_status": "CLOSED",
        }

    @pytest.mark.asyncio
    async def test_invalid_status(self, client: AsyncClient, auth_headers_admin, open_ticket):
        response = await client.post(
            f"/api/v1/tickets/{open_ticket.id}/status",
            json={"status": "FINISHED"},
            headers=auth_headers_admin,
        )

        assert response.status_code == 400
        assert response.json() == {"error": "InvalidStatus", "detail": "Invalid status: FINISHED"}

    @pytest.mark.asyncio
    async def test_not_found(self, client: AsyncClient, auth_headers_admin):
        response = await client.get("/api/v1/tickets/12345", headers=auth_headers_admin)

        assert response.status_code == 404
        assert response.json()["error"] == "NotFound"

    @pytest.mark.asyncio
    async def test_forbidden(self, client: AsyncClient, auth_headers_other_service, in_progress_ticket):
        response = await client.get(
            f"/api/v1/tickets/{in_progress_ticket.id}",
            headers=auth_headers_other_service,
        )

        assert response.status_code == 403
        assert response.json() == {"error": "Forbidden", "detail": "Access denied"}

    @pytest.mark.asyncio
    async def test_assign_conflict(self, client: AsyncClient, auth_headers_admin, in_progress_ticket, service_user):
        response = await client.post(
            f"/api/v1/tickets/{in_progress_ticket.id}/assign",
            json={"assigned_to_id": service_user.id},
            headers=auth_headers_admin,
        )

        assert response.status_code == 409
        assert response.json()["error"] == "ConflictError"

    @pytest.mark.asyncio
    async def test_assign_queues_notification(
        self, client: AsyncClient, auth_headers_admin, open_ticket, service_user, notification_queue
    ):
        response = await client.post(
            f"/api/v1/tickets/{open_ticket.id}/assign",
            json={"assigned_to_id": service_user.id},
            headers=auth_headers_admin,
        )

        assert response.status_code == 200
        assert notification_queue.pending() == 1


# -----------------------------------------------------------------------------
# Purchase Orders
# -----------------------------------------------------------------------------

class TestPurchaseOrderEndpoints:

    @pytest.mark.asyncio
    async def test_create_and_approve(
        self, client: AsyncClient, db_session, auth_headers_service, auth_headers_admin, in_progress_ticket
    ):
        ticket_id = in_progress_ticket.id

        created = await client.post(
            "/api/v1/purchase-orders",
            json={
                "ticket_id": ticket_id,
                "items": [{"description": "Bearing", "quantity": 2, "unit_price": "19.99"}],
            },
            headers=auth_headers_service,
        )
        assert created.status_code == 201
        po = created.json()
        assert po["status"] == "PENDING_APPROVAL"
        assert float(po["total_amount"]) == pytest.approx(39.98)

        approved = await client.post(
            f"/api/v1/purchase-orders/{po['id']}/approve",
            json={"status": "APPROVED"},
            headers=auth_headers_admin,
        )
        assert approved.status_code == 200
        assert approved.json()["status"] == "APPROVED"

        ticket = await db_session.get(Ticket, ticket_id, populate_existing=True)
        assert ticket.status == TicketStatus.SPARE_NEEDED

    @pytest.mark.asyncio
    async def test_empty_items(self, client: AsyncClient, auth_headers_service, in_progress_ticket):
        response = await client.post(
            "/api/v1/purchase-orders",
            json={"ticket_id": in_progress_ticket.id, "items": []},
            headers=auth_headers_service,
        )

        assert response.status_code == 400
        assert response.json() == {"error": "ValidationError", "detail": "At least one item is required"}

    @pytest.mark.asyncio
    async def test_malformed_item_is_a_validation_error(
        self, client: AsyncClient, auth_headers_service, in_progress_ticket
    ):
        response = await client.post(
            "/api/v1/purchase-orders",
            json={"ticket_id": in_progress_ticket.id, "items": [{"description": "Bearing", "unit_price": "1.00"}]},
            headers=auth_headers_service,
        )

        assert response.status_code == 400
        assert response.json() == {"error": "ValidationError", "detail": "items.0.quantity: Field required"}

    @pytest.mark.asyncio
    async def test_malformed_path_is_a_validation_error(self, client: AsyncClient, auth_headers_admin):
        response = await client.get("/api/v1/purchase-orders/not-a-number", headers=auth_headers_admin)

        assert response.status_code == 400
        body = response.json()
        assert body["error"] == "ValidationError"
        assert body["detail"].startswith("path.po_id: ")

    @pytest.mark.asyncio
    async def test_approve_requires_admin(self, client: AsyncClient, db_session, auth_headers_service, pending_po):
        po_id = pending_po.id

        response = await client.post(
            f"/api/v1/purchase-orders/{po_id}/approve",
            json={"status": "APPROVED"},
            headers=auth_headers_service,
        )

        assert response.status_code == 403
        po = await db_session.get(PurchaseOrder, po_id, populate_existing=True)
        assert po.status == PurchaseOrderStatus.PENDING_APPROVAL

    @pytest.mark.asyncio
    async def test_status_change_and_items(self, client: AsyncClient, auth_headers_service, pending_po):
        po_id = pending_po.id

        skipped = await client.patch(
            f"/api/v1/purchase-orders/{po_id}/status",
            json={"status": "RECEIVED"},
            headers=auth_headers_service,
        )
        assert skipped.status_code == 400
        assert skipped.json()["from_status"] == "PENDING_APPROVAL"

        added = await client.post(
            f"/api/v1/purchase-orders/{po_id}/items",
            json={"description": "Seal", "quantity": 1, "unit_price": "5.00"},
            headers=auth_headers_service,
        )
        assert added.status_code == 201
        assert len(added.json()["items"]) == 2

    @pytest.mark.asyncio
    async def test_owner_reads_order(self, client: AsyncClient, auth_headers_owner, pending_po):
        response = await client.get(f"/api/v1/purchase-orders/{pending_po.id}", headers=auth_headers_owner)

        assert response.status_code == 200
        assert response.json()["po_number"] == pending_po.po_number


# -----------------------------------------------------------------------------
# Notifications
# -----------------------------------------------------------------------------

class TestNotificationEndpoints:

    @pytest.mark.asyncio
    async def test_list_and_mark_read(
        self,
        client: AsyncClient,
        db_session,
        auth_headers_owner,
        auth_headers_service,
        auth_headers_admin,
        in_progress_ticket,
        notification_queue,
        owner_user,
    ):
        response = await client.post(
            f"/api/v1/tickets/{in_progress_ticket.id}/status",
            json={"status": "FIXED_PENDING_CLOSURE"},
            headers=auth_headers_service,
        )
        assert response.status_code == 200
        await notification_queue.drain()

        listed = await client.get("/api/v1/notifications", headers=auth_headers_owner)
        assert listed.status_code == 200
        items = listed.json()
        assert len(items) == 1
        assert items[0]["type"] == NotificationType.TICKET_UPDATE.value
        assert items[0]["status"] == "UNREAD"

        # Someone else's notification is invisible
        foreign = await client.patch(f"/api/v1/notifications/{items[0]['id']}/read", headers=auth_headers_admin)
        assert foreign.status_code == 404

        marked = await client.patch(f"/api/v1/notifications/{items[0]['id']}/read", headers=auth_headers_owner)
        assert marked.status_code == 200
        assert marked.json()["status"] == "READ"
        assert marked.json()["read_at"] is not None

        unread = await client.get("/api/v1/notifications?unread_only=true", headers=auth_headers_owner)
        assert unread.json() == []

        row = (await db_session.execute(
            select(Notification).where(Notification.user_id == owner_user.id)
        )).scalar_one()
        assert row.status == NotificationStatus.READ

    @pytest.mark.asyncio
    async def test_unread_count_read_all_and_delete(
        self,
        client: AsyncClient,
        db_session,
        auth_headers_owner,
        auth_headers_admin,
        owner_user,
        admin_user,
    ):
        for user, title in ((owner_user, "One"), (owner_user, "Two"), (admin_user, "Admin")):
            db_session.add(Notification(
                user_id=user.id,
                type=NotificationType.TICKET_UPDATE,
                title=title,
                message=f"{title} message",
            ))
        await db_session.commit()

        counted = await client.get("/api/v1/notifications/unread-count", headers=auth_headers_owner)
        assert counted.status_code == 200
        assert counted.json() == {"count": 2}

        marked = await client.patch("/api/v1/notifications/read-all", headers=auth_headers_owner)
        assert marked.status_code == 200
        assert marked.json() == {"updated": 2}

        counted = await client.get("/api/v1/notifications/unread-count", headers=auth_headers_owner)
        assert counted.json() == {"count": 0}
        # Other recipients keep their unread notifications
        counted = await client.get("/api/v1/notifications/unread-count", headers=auth_headers_admin)
        assert counted.json() == {"count": 1}

        listed = (await client.get("/api/v1/notifications", headers=auth_headers_owner)).json()
        assert {item["status"] for item in listed} == {"READ"}
        target, kept = listed[0]["id"], listed[1]["id"]

        foreign = await client.delete(f"/api/v1/notifications/{target}", headers=auth_headers_admin)
        assert foreign.status_code == 404

        deleted = await client.delete(f"/api/v1/notifications/{target}", headers=auth_headers_owner)
        assert deleted.status_code == 204

        remaining = await client.get("/api/v1/notifications", headers=auth_headers_owner)
        assert [item["id"] for item in remaining.json()] == [kept]
