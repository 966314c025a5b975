from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, Enum as SQLEnum
from sqlalchemy.orm import relationship
from datetime import datetime
import enum
from servicedesk.core.database import Base


class UserRole(str, enum.Enum):
    ADMIN = "ADMIN"  # Back-office administrator
    CUSTOMER_ACCOUNT_OWNER = "CUSTOMER_ACCOUNT_OWNER"  # Customer-side contact
    SERVICE_PERSON = "SERVICE_PERSON"  # Field engineer


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    email = Column(String, unique=True, nullable=False, index=True)
    full_name = Column(String, nullable=False)
    phone = Column(String)
    role = Column(SQLEnum(UserRole), nullable=False, index=True)

    # Only set for customer account owners
    customer_id = Column(Integer, ForeignKey("customers.id"), index=True)

    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    # Relationships
    customer = relationship("Customer", back_populates="users")
