from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import date
from pdv.models.core import CashMovementType

class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"

class CustomerResolveIn(BaseModel):
    phone: str
    name: Optional[str] = None
    cpf: Optional[str] = None

class CustomerOut(BaseModel):
    id: str
    phone: str
    name: Optional[str] = None
    cpf: Optional[str] = None
    loyalty_points: int
    is_suspicious: bool
    suspicious_reason: Optional[str] = None
    warnings: List[str] = []

class SuspiciousIn(BaseModel):
    is_suspicious: bool
    reason: Optional[str] = None

class RedeemIn(BaseModel):
    points: int = Field(..., gt=0)
    description: Optional[str] = None

class CashMovementIn(BaseModel):
    type: CashMovementType
    category: str
    amount: float = Field(..., gt=0)
    payment_method: Optional[str] = None
    description: Optional[str] = None
    movement_date: Optional[date] = None
