from pydantic import BaseModel, Field
from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from servicedesk.models.purchase_order import PurchaseOrderStatus


class PurchaseOrderItemCreate(BaseModel):
    description: str
    quantity: int
    unit_price: Decimal


class PurchaseOrderCreate(BaseModel):
    ticket_id: int
    items: List[PurchaseOrderItemCreate] = Field(default_factory=list)
    notes: Optional[str] = None
    submit: bool = True  # False keeps the order as DRAFT


class PurchaseOrderDecision(BaseModel):
    status: str  # APPROVED or REJECTED
    notes: Optional[str] = None


class PurchaseOrderStatusChange(BaseModel):
    status: str
    notes: Optional[str] = None


class PurchaseOrderItemResponse(BaseModel):
    id: int
    description: str
    quantity: int
    unit_price: Decimal
    total_price: Decimal

    class Config:
        from_attributes = True


class PurchaseOrderResponse(BaseModel):
    id: int
    po_number: str
    ticket_id: int
    status: PurchaseOrderStatus
    total_amount: Decimal
    notes: Optional[str]
    created_by_id: int
    approved_by_id: Optional[int]
    approved_at: Optional[datetime]
    rejected_by_id: Optional[int]
    rejected_at: Optional[datetime]
    rejection_reason: Optional[str]
    cancelled_by_id: Optional[int]
    cancelled_at: Optional[datetime]
    cancellation_reason: Optional[str]
    ordered_at: Optional[datetime]
    received_at: Optional[datetime]
    created_at: datetime
    updated_at: datetime
    items: List[PurchaseOrderItemResponse] = []

    class Config:
        from_attributes = True
