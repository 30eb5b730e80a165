"""
Database Schemas for the Diagnostic Center API

Each Pydantic model corresponds to a MongoDB collection (plural, lowercased
class name).
"""
import re
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from slots import parse_booking_date, parse_slot_start

UserRole = Literal["patient", "admin"]
AppointmentStatus = Literal["pending", "confirmed", "completed", "cancelled"]

SLUG_PATTERN = r"^[a-z0-9]+(?:-[a-z0-9]+)*$"
SLUG_RE = re.compile(SLUG_PATTERN)


class User(BaseModel):
    email: EmailStr = Field(..., description="Unique key")
    name: Optional[str] = None
    image: Optional[str] = Field(None, description="Avatar URL")
    role: UserRole = "patient"
    status: bool = Field(True, description="Active flag; inactive accounts lose admin rights")
    district_id: Optional[str] = None
    upazila_id: Optional[str] = None


class LabTest(BaseModel):
    slug: str = Field(..., min_length=1, pattern=SLUG_PATTERN)
    title: str
    description: Optional[str] = None
    image: Optional[str] = None
    price: float = Field(..., ge=0)
    discount_percent: float = Field(0, ge=0, le=100)
    promo_code: Optional[str] = None
    slots: List[str] = Field(default_factory=list, description="Bookable windows, e.g. '10.00 - 11.00 AM'")

    @field_validator("slots")
    @classmethod
    def check_slots(cls, v):
        return validate_slot_catalog(v)


class Appointment(BaseModel):
    user_email: EmailStr
    test_slug: str
    booking_date: str = Field(..., description="dd-mm-yyyy")
    booking_slot: str
    start_appointment: datetime = Field(..., description="UTC start derived from date and slot")
    status: AppointmentStatus = "pending"
    payment_status: bool = False
    payment_id: Optional[str] = None
    test_result: Optional[str] = Field(None, description="Report URL or summary")
    user_name: Optional[str] = None
    test_title: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)


class Payment(BaseModel):
    model_config = ConfigDict(extra="allow")

    appointment_id: str
    transactionId: str = Field(..., min_length=1)
    price: float = Field(..., ge=0)
    email: Optional[EmailStr] = None


class Banner(BaseModel):
    title: str
    description: Optional[str] = None
    image: Optional[str] = None
    coupon_code: Optional[str] = None
    discount_rate: Optional[float] = Field(None, ge=0, le=100)
    isActive: bool = False


def validate_slot_catalog(slots):
    if slots is None:
        return slots
    if len(set(slots)) != len(slots):
        raise ValueError("slots must not repeat")
    for slot in slots:
        parse_slot_start(slot)
    return slots


def validate_booking_date(value: str) -> str:
    parse_booking_date(value)
    return value
