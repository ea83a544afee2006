from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict


class OrderItemDto(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    productId: int
    productName: Optional[str] = None
    quantity: int = 1
    dailyRate: Optional[float] = None
    rentalDays: Optional[int] = None
    startDate: Optional[datetime] = None
    endDate: Optional[datetime] = None
    subtotal: Optional[float] = None


class CreateOrderDto(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    quotationId: Optional[str] = None
    items: List[OrderItemDto] = []
    subtotal: Optional[float] = None
    taxAmount: Optional[float] = None
    depositAmount: Optional[float] = None
    totalAmount: Optional[float] = None
    pickupDate: Optional[datetime] = None
    returnDate: Optional[datetime] = None
    notes: Optional[str] = None


class UpdateOrderStatusDto(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    status: str
    actualReturnDate: Optional[datetime] = None


class SchedulePickupDto(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    pickupDate: Optional[datetime] = None
    pickupTime: Optional[str] = None


class PickupItemDto(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    productId: int
    pickedUpQuantity: int


class ProcessPickupDto(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    items: Optional[List[PickupItemDto]] = None


class ReturnItemDto(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    productId: int
    returnedQuantity: int
    damageNotes: Optional[str] = None


class ProcessReturnDto(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    items: Optional[List[ReturnItemDto]] = None
    lateFee: Optional[float] = None
    damageCharges: Optional[float] = None
    damageNotes: Optional[str] = None
