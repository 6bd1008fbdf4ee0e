from datetime import date
from typing import Optional
from pydantic import BaseModel, Field, model_validator


class ContractCreate(BaseModel):
    vendor_id: str
    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    start_date: date
    end_date: date
    value_cents: Optional[int] = Field(None, ge=0)
    terms_conditions: Optional[str] = None
    renewal_terms: Optional[str] = None

    @model_validator(mode="after")
    def start_before_end(self):
        if self.start_date >= self.end_date:
            raise ValueError("start_date must be before end_date")
        return self


class ContractUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    value_cents: Optional[int] = Field(None, ge=0)
    terms_conditions: Optional[str] = None
    renewal_terms: Optional[str] = None


class ContractApproveRequest(BaseModel):
    comments: str = Field(..., min_length=1, max_length=2000)


class ContractRejectRequest(BaseModel):
    comments: Optional[str] = Field(None, max_length=2000)


class ContractTerminateRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=1000)


class ContractRenewRequest(BaseModel):
    renewal_terms: Optional[str] = None
    new_end_date: Optional[date] = None


class ContractResponse(BaseModel):
    id: str
    contract_number: str
    vendor_id: str
    title: str
    description: Optional[str] = None
    status: str
    value_cents: Optional[int] = None
    start_date: str
    end_date: str
    terms_conditions: Optional[str] = None
    renewal_terms: Optional[str] = None
    approved_by: Optional[str] = None
    approved_at: Optional[str] = None
    terminated_at: Optional[str] = None
    termination_reason: Optional[str] = None
    renewed_at: Optional[str] = None
    created_at: str
    updated_at: str

    model_config = {"from_attributes": True}
