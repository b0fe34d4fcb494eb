from pydantic import BaseModel, Field
from datetime import datetime
from decimal import Decimal
from typing import Optional
from boxoffice.models.discount import DiscountKind


class DiscountCreate(BaseModel):
    code: str = Field(min_length=1, max_length=64)
    kind: DiscountKind = DiscountKind.PERCENTAGE
    value: Decimal
    enabled: bool = True
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None
    description: Optional[str] = None


class DiscountUpdate(BaseModel):
    code: Optional[str] = Field(default=None, min_length=1, max_length=64)
    kind: Optional[DiscountKind] = None
    value: Optional[Decimal] = None
    enabled: Optional[bool] = None
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None
    description: Optional[str] = None


class DiscountResponse(BaseModel):
    id: int
    code: str
    kind: DiscountKind
    value: Decimal
    enabled: bool
    valid_from: Optional[datetime]
    valid_until: Optional[datetime]
    description: Optional[str]
    redemption_count: int = 0
    created_at: Optional[datetime]

    class Config:
        from_attributes = True


class QuoteRequest(BaseModel):
    code: str
    subtotal: Decimal


class QuoteResponse(BaseModel):
    code: str
    kind: DiscountKind
    value: Decimal
    subtotal: Decimal
    discount_amount: Decimal
    final_amount: Decimal
