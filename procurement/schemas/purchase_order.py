from datetime import date
from typing import List, Optional
from pydantic import BaseModel, Field, model_validator


class PoLineItemIn(BaseModel):
    description: str = Field(..., min_length=1, max_length=2000)
    quantity: int = Field(..., gt=0)
    unit_price_cents: int = Field(..., gt=0)


class PoLineItemResponse(BaseModel):
    id: str
    line_number: int
    description: str
    quantity: int
    unit_price_cents: int

    model_config = {"from_attributes": True}


class PurchaseOrderCreate(BaseModel):
    vendor_id: str
    department_id: str
    contract_id: Optional[str] = None
    items: List[PoLineItemIn] = Field(..., min_length=1)
    total_cents: int = Field(..., gt=0)
    delivery_date: Optional[date] = None
    delivery_address: Optional[str] = None
    special_instructions: Optional[str] = None

    @model_validator(mode="after")
    def total_matches_items(self):
        computed = sum(i.quantity * i.unit_price_cents for i in self.items)
        if computed != self.total_cents:
            raise ValueError(
                f"total_cents ({self.total_cents}) must equal the sum of line items ({computed})"
            )
        return self


class PurchaseOrderUpdate(PurchaseOrderCreate):
    pass


class PurchaseOrderActionRequest(BaseModel):
    comments: Optional[str] = Field(None, max_length=2000)


class PurchaseOrderResponse(BaseModel):
    id: str
    po_number: str
    vendor_id: str
    contract_id: Optional[str] = None
    department_id: str
    status: str
    total_cents: int
    delivery_date: Optional[str] = None
    delivery_address: Optional[str] = None
    special_instructions: Optional[str] = None
    approved_by: Optional[str] = None
    approved_at: Optional[str] = None
    approval_comments: Optional[str] = None
    rejected_by: Optional[str] = None
    rejected_at: Optional[str] = None
    rejection_comments: Optional[str] = None
    completed_at: Optional[str] = None
    line_items: List[PoLineItemResponse] = []
    created_at: str
    updated_at: str

    model_config = {"from_attributes": True}
