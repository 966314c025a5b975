"""
Workflow services.

Business logic for ticket and purchase-order lifecycles plus the
notification fan-out that follows them.
"""

from servicedesk.services.ticket_workflow import TicketWorkflowService
from servicedesk.services.purchase_order_workflow import PurchaseOrderWorkflowService
from servicedesk.services.notification_dispatcher import NotificationDispatcher
from servicedesk.services.notification_queue import NotificationQueue
from servicedesk.services.email_service import EmailSender

__all__ = [
    "TicketWorkflowService",
    "PurchaseOrderWorkflowService",
    "NotificationDispatcher",
    "NotificationQueue",
    "EmailSender",
]
