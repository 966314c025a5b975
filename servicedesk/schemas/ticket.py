from pydantic import BaseModel
from datetime import datetime
from typing import Optional
from servicedesk.models.ticket import TicketPriority, TicketStatus


class TicketCreate(BaseModel):
    title: str
    description: Optional[str] = None
    priority: TicketPriority = TicketPriority.MEDIUM
    customer_id: Optional[int] = None  # Taken from the caller for customer account owners
    asset_id: Optional[int] = None


class TicketStatusChange(BaseModel):
    # Plain string so unknown values surface as InvalidStatus, not a schema error
    status: str
    note: Optional[str] = None


class TicketAssign(BaseModel):
    assigned_to_id: int
    note: Optional[str] = None


class CustomerSummary(BaseModel):
    id: int
    company_name: str

    class Config:
        from_attributes = True


class UserSummary(BaseModel):
    id: int
    full_name: str
    email: str

    class Config:
        from_attributes = True


class TicketResponse(BaseModel):
    id: int
    title: str
    description: Optional[str]
    priority: TicketPriority
    status: TicketStatus
    customer_id: int
    asset_id: Optional[int]
    assigned_to_id: Optional[int]
    created_by_id: int
    created_at: datetime
    updated_at: datetime
    resolved_at: Optional[datetime]
    closed_at: Optional[datetime]
    customer: Optional[CustomerSummary] = None
    assigned_to: Optional[UserSummary] = None

    class Config:
        from_attributes = True
