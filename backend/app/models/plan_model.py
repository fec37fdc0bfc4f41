# models/plan_model.py
from pydantic import BaseModel
from typing import Literal, Optional

Category = Literal["gaming", "gym", "movies", "sports"]


class Plan(BaseModel):
    """A purchasable pass. Exactly one of the two durations is set."""
    category: Category
    plan: str
    amount: int
    duration_hours: Optional[int] = None
    duration_days: Optional[int] = None
    description: str = ""

    class Config:
        frozen = True
