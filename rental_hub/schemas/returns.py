from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict


class ReturnRequestItemDto(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    productId: int
    productName: Optional[str] = None
    quantity: Optional[int] = None
    returnQuantity: int
    condition: Literal["excellent", "good", "fair", "damaged"] = "good"


class CreateReturnRequestDto(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    orderId: int
    items: List[ReturnRequestItemDto] = []
    reason: Literal["no_longer_needed", "project_completed", "equipment_issue", "other"]
    reasonDetails: Optional[str] = None
    preferredDate: Optional[datetime] = None
    customerNotes: Optional[str] = None


class UpdateReturnRequestStatusDto(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    status: Optional[Literal["pending", "approved", "scheduled", "completed", "rejected"]] = None
    scheduledDate: Optional[datetime] = None
    vendorNotes: Optional[str] = None
    refundAmount: Optional[float] = None
