from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Enum as SQLEnum, Text
from sqlalchemy.orm import relationship
from datetime import datetime
import enum
from servicedesk.core.database import Base


class TicketPriority(str, enum.Enum):
    CRITICAL = "CRITICAL"  # Machine down
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


class TicketStatus(str, enum.Enum):
    WAITING_FOR_RESPONSE = "WAITING_FOR_RESPONSE"
    OPEN = "OPEN"
    IN_PROGRESS = "IN_PROGRESS"
    SPARE_NEEDED = "SPARE_NEEDED"
    WAITING_FOR_PO = "WAITING_FOR_PO"
    FIXED_PENDING_CLOSURE = "FIXED_PENDING_CLOSURE"
    CLOSED = "CLOSED"


class Ticket(Base):
    __tablename__ = "tickets"

    id = Column(Integer, primary_key=True, autoincrement=True)
    customer_id = Column(Integer, ForeignKey("customers.id"), nullable=False, index=True)
    asset_id = Column(Integer, ForeignKey("assets.id"), index=True)

    title = Column(String, nullable=False)
    description = Column(Text)
    priority = Column(SQLEnum(TicketPriority), nullable=False, default=TicketPriority.MEDIUM)
    status = Column(SQLEnum(TicketStatus), nullable=False, default=TicketStatus.WAITING_FOR_RESPONSE, index=True)

    assigned_to_id = Column(Integer, ForeignKey("users.id"), index=True)
    created_by_id = Column(Integer, ForeignKey("users.id"), nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
    resolved_at = Column(DateTime)
    closed_at = Column(DateTime, index=True)

    # Bumped on every UPDATE; a stale writer fails with StaleDataError
    version = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    # Relationships
    customer = relationship("Customer", back_populates="tickets")
    asset = relationship("Asset", back_populates="tickets")
    assigned_to = relationship("User", foreign_keys=[assigned_to_id])
    created_by_user = relationship("User", foreign_keys=[created_by_id])

    history = relationship("TicketHistory", back_populates="ticket", order_by="TicketHistory.id")
    notes = relationship("TicketNote", back_populates="ticket", order_by="TicketNote.id")
    purchase_orders = relationship("PurchaseOrder", back_populates="ticket")


class TicketHistory(Base):
    """Append-only record of every status change of a ticket."""
    __tablename__ = "ticket_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    ticket_id = Column(Integer, ForeignKey("tickets.id"), nullable=False, index=True)

    from_status = Column(SQLEnum(TicketStatus))
    status = Column(SQLEnum(TicketStatus), nullable=False)
    note = Column(Text)

    changed_by_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    changed_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)

    # Relationships
    ticket = relationship("Ticket", back_populates="history")
    changed_by = relationship("User")


class TicketNote(Base):
    __tablename__ = "ticket_notes"

    id = Column(Integer, primary_key=True, autoincrement=True)
    ticket_id = Column(Integer, ForeignKey("tickets.id"), nullable=False, index=True)
    author_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    content = Column(Text, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    # Relationships
    ticket = relationship("Ticket", back_populates="notes")
    author = relationship("User")
