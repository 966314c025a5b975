from servicedesk.core.database import Base
from servicedesk.models.customer import Customer, Asset
from servicedesk.models.user import User, UserRole
from servicedesk.models.ticket import Ticket, TicketHistory, TicketNote, TicketStatus, TicketPriority
from servicedesk.models.purchase_order import PurchaseOrder, PurchaseOrderItem, PurchaseOrderStatus
from servicedesk.models.audit import AuditLog
from servicedesk.models.notification import Notification, NotificationType, NotificationStatus

__all__ = [
    "Base",
    "Customer",
    "Asset",
    "User",
    "UserRole",
    "Ticket",
    "TicketHistory",
    "TicketNote",
    "TicketStatus",
    "TicketPriority",
    "PurchaseOrder",
    "PurchaseOrderItem",
    "PurchaseOrderStatus",
    "AuditLog",
    "Notification",
    "NotificationType",
    "NotificationStatus",
]
