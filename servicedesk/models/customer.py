from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from datetime import datetime
from servicedesk.core.database import Base


class Customer(Base):
    """A customer company. Tickets and users are scoped to one customer."""
    __tablename__ = "customers"

    id = Column(Integer, primary_key=True, autoincrement=True)
    company_name = Column(String, nullable=False)
    address = Column(String)
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    # Relationships
    users = relationship("User", back_populates="customer")
    assets = relationship("Asset", back_populates="customer")
    tickets = relationship("Ticket", back_populates="customer")


class Asset(Base):
    """A serviced machine installed at a customer."""
    __tablename__ = "assets"

    id = Column(Integer, primary_key=True, autoincrement=True)
    customer_id = Column(Integer, ForeignKey("customers.id"), nullable=False, index=True)

    machine_id = Column(String, nullable=False, index=True)
    model = Column(String)
    serial_number = Column(String, unique=True)
    location = Column(String)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    # Relationships
    customer = relationship("Customer", back_populates="assets")
    tickets = relationship("Ticket", back_populates="asset")
