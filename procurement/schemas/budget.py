from typing import Optional
from pydantic import BaseModel, Field


class BudgetCreate(BaseModel):
    department_id: str
    fiscal_year: int = Field(..., ge=2000, le=2100)
    total_cents: int = Field(..., gt=0)
    notes: Optional[str] = None


class BudgetUpdate(BaseModel):
    total_cents: Optional[int] = Field(None, gt=0)
    notes: Optional[str] = None


class BudgetAllocateRequest(BaseModel):
    department_id: str
    amount_cents: int = Field(..., gt=0)
    notes: Optional[str] = None


class BudgetTransferRequest(BaseModel):
    from_department_id: str
    to_department_id: str
    amount_cents: int = Field(..., gt=0)
    reason: Optional[str] = None


class BudgetResponse(BaseModel):
    id: str
    department_id: str
    fiscal_year: int
    total_cents: int
    allocated_cents: int
    remaining_cents: int
    status: str
    notes: Optional[str] = None
    created_at: str
    updated_at: str

    model_config = {"from_attributes": True}


class BudgetTransferResponse(BaseModel):
    id: str
    from_department_id: str
    to_department_id: str
    fiscal_year: int
    amount_cents: int
    reason: Optional[str] = None
    created_at: str


class BudgetUtilizationResponse(BaseModel):
    budget_id: str
    department_id: str
    fiscal_year: int
    status: str
    total_cents: int
    allocated_cents: int
    remaining_cents: int
    utilization_percentage: float
    total_purchase_orders: int
    draft_cents: int
    pending_cents: int
    approved_cents: int
    completed_cents: int


class FiscalYearReportResponse(BaseModel):
    fiscal_year: int
    departments: list[BudgetUtilizationResponse]


class BudgetHistoryEntryResponse(BaseModel):
    entry_type: str
    id: str
    fiscal_year: int
    amount_cents: int
    counterpart_department_id: Optional[str] = None
    note: Optional[str] = None
    created_by: Optional[str] = None
    created_at: str


class BudgetHistoryResponse(BaseModel):
    department_id: str
    fiscal_year: int
    entries: list[BudgetHistoryEntryResponse]
