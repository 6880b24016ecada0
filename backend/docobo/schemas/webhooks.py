"""Pydantic schemas for inbound webhook payloads"""
from decimal import Decimal
from pydantic import BaseModel, ConfigDict, Field
from typing import Optional


class PolarEventData(BaseModel):
    """Polar resource object (subscription or order). Only the id is required."""
    model_config = ConfigDict(extra="allow")

    id: str = Field(..., min_length=1)
    subscription_id: Optional[str] = None


class PolarWebhookEvent(BaseModel):
    """Polar event envelope: {id, type, data: {id, ...}}"""
    model_config = ConfigDict(extra="allow")

    id: str = Field(..., min_length=1)
    type: str = Field(..., min_length=1)
    data: PolarEventData


class SepayTransaction(BaseModel):
    """SePay bank transaction notification"""
    model_config = ConfigDict(extra="allow")

    id: int  # Transaction ID, the dedup key
    gateway: Optional[str] = None
    transactionDate: Optional[str] = None
    accountNumber: Optional[str] = None
    subAccount: Optional[str] = None
    code: Optional[str] = None
    content: Optional[str] = None
    transferType: str  # 'in' or 'out'
    transferAmount: Decimal = Decimal("0")
    accumulated: Optional[Decimal] = None
    referenceCode: Optional[str] = None
    description: Optional[str] = None
