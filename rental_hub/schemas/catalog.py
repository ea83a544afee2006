from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict


class ProductCreateDto(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: str
    description: Optional[str] = None
    category: Optional[str] = None
    dailyRate: Optional[float] = None
    weeklyRate: Optional[float] = None
    monthlyRate: Optional[float] = None
    deposit: Optional[float] = None
    stock: int = 0
    status: Literal["active", "inactive"] = "active"
