from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict


class PayInvoiceDto(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    method: Literal["cash", "card", "bank_transfer", "upi"] = "card"
    reference: Optional[str] = None
    notes: Optional[str] = None
