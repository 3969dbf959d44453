# File: app/schemas/ward.py

from pydantic import BaseModel
from typing import Optional


class WardOut(BaseModel):
    id: int
    name: str
    zone: Optional[str] = None
    officer_name: Optional[str] = None
    officer_email: Optional[str] = None
    officer_phone: Optional[str] = None

    class Config:
        from_attributes = True


class WardResolveOut(BaseModel):
    lat: float
    lon: float
    routed: bool
    ward: Optional[WardOut] = None
