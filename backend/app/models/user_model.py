from pydantic import BaseModel
from typing import Optional


class AuthUser(BaseModel):
    """The caller, as proven by their Firebase ID token."""
    uid: str
    email: Optional[str] = None
    phone_number: Optional[str] = None
