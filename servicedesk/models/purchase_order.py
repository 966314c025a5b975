from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Enum as SQLEnum, Text, Numeric
from sqlalchemy.orm import relationship
from datetime import datetime
from decimal import Decimal
import enum
from servicedesk.core.database import Base


class PurchaseOrderStatus(str, enum.Enum):
    DRAFT = "DRAFT"
    PENDING_APPROVAL = "PENDING_APPROVAL"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    ORDERED = "ORDERED"
    RECEIVED = "RECEIVED"
    CANCELLED = "CANCELLED"


class PurchaseOrder(Base):
    __tablename__ = "purchase_orders"

    id = Column(Integer, primary_key=True, autoincrement=True)
    po_number = Column(String, unique=True, nullable=False, index=True)  # PO-YYYYMMDD-XXXXXXXX
    ticket_id = Column(Integer, ForeignKey("tickets.id"), nullable=False, index=True)

    status = Column(SQLEnum(PurchaseOrderStatus), nullable=False, default=PurchaseOrderStatus.PENDING_APPROVAL, index=True)
    total_amount = Column(Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    notes = Column(Text)

    created_by_id = Column(Integer, ForeignKey("users.id"), nullable=False)

    # Decision fields, each group only set on its own status
    approved_by_id = Column(Integer, ForeignKey("users.id"))
    approved_at = Column(DateTime)
    rejected_by_id = Column(Integer, ForeignKey("users.id"))
    rejected_at = Column(DateTime)
    rejection_reason = Column(Text)
    cancelled_by_id = Column(Integer, ForeignKey("users.id"))
    cancelled_at = Column(DateTime)
    cancellation_reason = Column(Text)

    ordered_at = Column(DateTime)
    received_at = Column(DateTime)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    version = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    # Relationships
    ticket = relationship("Ticket", back_populates="purchase_orders")
    items = relationship("PurchaseOrderItem", back_populates="purchase_order", order_by="PurchaseOrderItem.id")
    created_by_user = relationship("User", foreign_keys=[created_by_id])


class PurchaseOrderItem(Base):
    __tablename__ = "purchase_order_items"

    id = Column(Integer, primary_key=True, autoincrement=True)
    purchase_order_id = Column(Integer, ForeignKey("purchase_orders.id"), nullable=False, index=True)

    description = Column(String, nullable=False)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(12, 2), nullable=False)
    total_price = Column(Numeric(12, 2), nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    # Relationships
    purchase_order = relationship("PurchaseOrder", back_populates="items")
