from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from pymongo import ASCENDING
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError, PyMongoError

import config
from auth import ensure_owner_or_admin, is_admin, issue_token, verify_admin, verify_token
from database import (
    APPOINTMENTS,
    BANNERS,
    PAYMENTS,
    TESTS,
    USERS,
    create_document,
    ensure_indexes,
    get_db,
    get_documents,
    object_id,
    serialize,
    utcnow,
    write_result,
)
from errors import ApiError, Conflict, NotFound, StoreFailure, ValidationFailed
from logging_config import get_logger
from payments import create_payment_intent
from schemas import (
    SLUG_RE,
    Appointment,
    AppointmentStatus,
    Banner,
    LabTest,
    Payment,
    User,
    UserRole,
    validate_booking_date,
    validate_slot_catalog,
)
from slots import (
    CANCELLED,
    available_slots_pipeline,
    booked_filter,
    parse_booking_date,
    parse_slot_start,
    remaining_slots,
    resolve_start,
)

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    db = app.dependency_overrides.get(get_db, get_db)()
    try:
        ensure_indexes(db)
    except PyMongoError as e:
        logger.error("index_setup_failed", error=str(e))
    yield


app = FastAPI(title="Diagnostic Center API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ========= Envelope & error mapping =========
def envelope(result=None, message: Optional[str] = None, status_code: int = 200, status: str = "success", **extra):
    body = {"status": status}
    if message:
        body["message"] = message
    if result is not None:
        body["result"] = serialize(result)
    body.update(extra)
    return JSONResponse(status_code=status_code, content=jsonable_encoder(body))


def fail(status_code: int, message: str, result=None):
    return envelope(result=result, message=message, status_code=status_code, status="fail")


@app.exception_handler(ApiError)
async def api_error_handler(request: Request, exc: ApiError):
    return fail(exc.status_code, exc.message)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    problems = [
        {"field": ".".join(str(p) for p in err["loc"][1:]) or str(err["loc"][0]), "message": err["msg"]}
        for err in exc.errors()
    ]
    return fail(400, "Invalid request payload", problems)


@app.exception_handler(PyMongoError)
async def store_error_handler(request: Request, exc: PyMongoError):
    logger.error("store_failure", path=request.url.path, error=str(exc))
    return fail(StoreFailure.status_code, StoreFailure.message)


def _set_fields(payload: BaseModel, clearable=()) -> dict:
    """Fields the client sent. Only names in clearable may be set back to null."""
    fields = {
        k: v for k, v in payload.model_dump(exclude_unset=True).items()
        if v is not None or k in clearable
    }
    if not fields:
        raise ValidationFailed("Nothing to update")
    fields["updated_at"] = utcnow()
    return fields


# ========= Models for requests =========
class TokenRequest(BaseModel):
    model_config = ConfigDict(extra="allow")

    email: EmailStr


class CreateUser(BaseModel):
    email: EmailStr
    name: Optional[str] = None
    image: Optional[str] = None
    district_id: Optional[str] = None
    upazila_id: Optional[str] = None


class AdminUpdateUser(BaseModel):
    status: Optional[bool] = None
    role: Optional[UserRole] = None


class UpdateProfile(BaseModel):
    district_id: Optional[str] = None
    upazila_id: Optional[str] = None


class UpdateTest(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    image: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    discount_percent: Optional[float] = Field(None, ge=0, le=100)
    promo_code: Optional[str] = None
    slots: Optional[list[str]] = None

    @field_validator("slots")
    @classmethod
    def check_slots(cls, v):
        return validate_slot_catalog(v)


class CreateAppointment(BaseModel):
    user_email: EmailStr
    test_slug: str
    booking_date: str
    booking_slot: str
    user_name: Optional[str] = None
    test_title: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)

    @field_validator("booking_date")
    @classmethod
    def check_date(cls, v):
        return validate_booking_date(v)

    @field_validator("booking_slot")
    @classmethod
    def check_slot(cls, v):
        parse_slot_start(v)
        return v


class AdminUpdateAppointment(BaseModel):
    status: Optional[AppointmentStatus] = None
    test_result: Optional[str] = None


class PaymentIntentRequest(BaseModel):
    price: float


@app.get("/")
def read_root():
    return {"message": "Diagnostic Center API is running"}


# ========= Auth =========
@app.post("/jwt")
def create_token(payload: TokenRequest):
    token = issue_token(payload.model_dump())
    return envelope({"token": token}, token=token)


@app.get("/is_admin/{email}")
def check_admin(email: str, db: Database = Depends(get_db)):
    admin = is_admin(db, email)
    return envelope({"admin": admin}, admin=admin)


# ========= Users =========
def _user_exists():
    return envelope({"acknowledged": True, "inserted_id": None}, "User already exists")


@app.post("/users")
def create_user(payload: CreateUser, db: Database = Depends(get_db)):
    if db[USERS].find_one({"email": payload.email}):
        return _user_exists()
    data = payload.model_dump()
    data.update({"role": "patient", "status": True})
    try:
        _id = create_document(db, USERS, data)
    except DuplicateKeyError:
        return _user_exists()
    logger.info("user_created", email=payload.email)
    return envelope({"acknowledged": True, "inserted_id": _id}, "Account created successfully", 201)


@app.get("/admin/users")
def list_users(db: Database = Depends(get_db), _admin: dict = Depends(verify_admin)):
    return envelope(get_documents(db, USERS))


@app.get("/users/{email}")
def get_user(email: str, db: Database = Depends(get_db)):
    user = db[USERS].find_one({"email": email})
    if not user:
        raise NotFound("User not found")
    return envelope(user, "User found successfully")


@app.patch("/admin/users/{email}")
def admin_update_user(email: str, payload: AdminUpdateUser, db: Database = Depends(get_db),
                      _admin: dict = Depends(verify_admin)):
    res = db[USERS].update_one({"email": email}, {"$set": _set_fields(payload)})
    if res.matched_count == 0:
        raise NotFound("User not found")
    return envelope(write_result(res), "User updated successfully")


@app.patch("/users/{email}")
def update_profile(email: str, payload: UpdateProfile, db: Database = Depends(get_db)):
    res = db[USERS].update_one(
        {"email": email},
        {"$set": _set_fields(payload, clearable=("district_id", "upazila_id"))},
    )
    if res.matched_count == 0:
        raise NotFound("User not found")
    return envelope(write_result(res), "User updated successfully")


# ========= Tests =========
@app.post("/tests")
def create_test(payload: LabTest, db: Database = Depends(get_db), _admin: dict = Depends(verify_admin)):
    if db[TESTS].find_one({"slug": payload.slug}):
        raise Conflict(f"A test already exists with the slug {payload.slug}")
    try:
        _id = create_document(db, TESTS, payload.model_dump())
    except DuplicateKeyError:
        raise Conflict(f"A test already exists with the slug {payload.slug}") from None
    return envelope({"acknowledged": True, "inserted_id": _id}, "Test added successfully", 201)


@app.get("/tests")
def list_tests(date: str = Query(..., description="dd-mm-yyyy"), db: Database = Depends(get_db)):
    parse_booking_date(date)
    items = list(db[TESTS].aggregate(available_slots_pipeline(date)))
    return envelope(items)


@app.get("/tests/{slug}/{date}")
def get_test_for_date(slug: str, date: str, db: Database = Depends(get_db)):
    parse_booking_date(date)
    test = db[TESTS].find_one({"slug": slug})
    if not test:
        raise NotFound("Test not found")
    booked = [a["booking_slot"] for a in db[APPOINTMENTS].find(booked_filter(date, slug), {"booking_slot": 1})]
    test["slots"] = remaining_slots(test.get("slots"), booked)
    test["available_slots"] = len(test["slots"])
    return envelope(test)


@app.patch("/admin/tests/{slug}")
def upsert_test(slug: str, payload: UpdateTest, db: Database = Depends(get_db), _admin: dict = Depends(verify_admin)):
    if not SLUG_RE.match(slug):
        raise ValidationFailed(f"Invalid slug: {slug}")
    res = db[TESTS].update_one(
        {"slug": slug},
        {"$set": _set_fields(payload, clearable=("description", "image", "promo_code")),
         "$setOnInsert": {"created_at": utcnow()}},
        upsert=True,
    )
    return envelope(write_result(res), "Test updated successfully")


@app.delete("/admin/tests/{slug}")
def delete_test(slug: str, db: Database = Depends(get_db), _admin: dict = Depends(verify_admin)):
    res = db[TESTS].delete_one({"slug": slug})
    if res.deleted_count == 0:
        raise NotFound("Test not found")
    return envelope(write_result(res), "Test deleted successfully")


# ========= Appointments =========
@app.post("/appointments")
def book_appointment(payload: CreateAppointment, db: Database = Depends(get_db)):
    triple = {
        "user_email": payload.user_email,
        "booking_date": payload.booking_date,
        "booking_slot": payload.booking_slot,
    }
    if db[APPOINTMENTS].find_one(dict(triple, status={"$ne": CANCELLED})):
        # Reported as success so clients treat a repeat booking like a confirmation
        logger.info("booking_duplicate", **triple)
        return envelope(message=f"You already have a booking on {payload.booking_date} at {payload.booking_slot}")

    test = db[TESTS].find_one({"slug": payload.test_slug})
    if not test:
        raise NotFound("Test not found")
    if payload.booking_slot not in (test.get("slots") or []):
        raise ValidationFailed(f"{payload.booking_slot} is not offered for {payload.test_slug}")
    taken = dict(booked_filter(payload.booking_date, payload.test_slug), booking_slot=payload.booking_slot)
    if db[APPOINTMENTS].find_one(taken):
        raise Conflict(f"{payload.booking_slot} on {payload.booking_date} is already booked")

    data = payload.model_dump()
    if data["test_title"] is None:
        data["test_title"] = test.get("title")
    if data["price"] is None:
        data["price"] = test.get("price")
    data.update({
        "status": "pending",
        "payment_status": False,
        "start_appointment": resolve_start(payload.booking_slot, payload.booking_date, config.SERVER_TIMEZONE),
    })
    _id = create_document(db, APPOINTMENTS, data)
    logger.info("booking_created", appointment_id=_id, test_slug=payload.test_slug, **triple)
    return envelope({"acknowledged": True, "inserted_id": _id}, "Appointment booked successfully", 201)


@app.get("/admin/appointments")
def list_appointments(db: Database = Depends(get_db), _admin: dict = Depends(verify_admin)):
    return envelope(get_documents(db, APPOINTMENTS, sort=[("start_appointment", ASCENDING)]))


@app.get("/appointments/{email}")
def upcoming_appointments(email: str, db: Database = Depends(get_db), identity: dict = Depends(verify_token)):
    ensure_owner_or_admin(db, identity, email)
    items = get_documents(
        db,
        APPOINTMENTS,
        {"user_email": email, "start_appointment": {"$gte": utcnow()}},
        sort=[("start_appointment", ASCENDING)],
    )
    return envelope(items)


@app.patch("/admin/appointments/{appointment_id}")
def admin_update_appointment(appointment_id: str, payload: AdminUpdateAppointment, db: Database = Depends(get_db),
                             _admin: dict = Depends(verify_admin)):
    res = db[APPOINTMENTS].update_one(
        {"_id": object_id(appointment_id)},
        {"$set": _set_fields(payload, clearable=("test_result",))},
        upsert=True,
    )
    return envelope(write_result(res), "Appointment updated successfully")


@app.delete("/appointments/{appointment_id}")
def cancel_appointment(appointment_id: str, db: Database = Depends(get_db), identity: dict = Depends(verify_token)):
    oid = object_id(appointment_id)
    appointment = db[APPOINTMENTS].find_one({"_id": oid}, {"user_email": 1})
    if not appointment:
        raise NotFound("Appointment not found")
    ensure_owner_or_admin(db, identity, appointment.get("user_email"))
    res = db[APPOINTMENTS].delete_one({"_id": oid})
    return envelope(write_result(res), "Appointment deleted successfully")


# ========= Payments =========
@app.post("/create-payment-intent")
def payment_intent(payload: PaymentIntentRequest):
    client_secret = create_payment_intent(payload.price)
    return envelope({"clientSecret": client_secret}, clientSecret=client_secret)


@app.post("/payments")
def record_payment(payload: Payment, db: Database = Depends(get_db)):
    oid = object_id(payload.appointment_id)
    # Two sequential writes without a transaction: a failure after the first
    # leaves the appointment paid with no payment log entry.
    marked = db[APPOINTMENTS].update_one(
        {"_id": oid},
        {"$set": {"payment_status": True, "payment_id": payload.transactionId, "updated_at": utcnow()}},
        upsert=True,
    )
    _id = create_document(db, PAYMENTS, payload.model_dump())
    logger.info("payment_recorded", payment_id=_id, appointment_id=payload.appointment_id,
                transaction_id=payload.transactionId)
    return envelope(
        {"acknowledged": True, "inserted_id": _id, "appointment": write_result(marked)},
        "Payment successful",
        201,
    )


# ========= Banners =========
@app.post("/banners")
def create_banner(payload: Banner, db: Database = Depends(get_db), _admin: dict = Depends(verify_admin)):
    data = payload.model_dump()
    data["isActive"] = False
    _id = create_document(db, BANNERS, data)
    return envelope({"acknowledged": True, "inserted_id": _id}, "New banner added successfully", 201)


@app.get("/banners")
def list_banners(db: Database = Depends(get_db)):
    return envelope(get_documents(db, BANNERS), "All banners fetched successfully")


@app.get("/banners/active")
def active_banner(db: Database = Depends(get_db)):
    return envelope(db[BANNERS].find_one({"isActive": True}))


@app.patch("/banners/{banner_id}")
def activate_banner(banner_id: str, db: Database = Depends(get_db), _admin: dict = Depends(verify_admin)):
    oid = object_id(banner_id)
    if not db[BANNERS].find_one({"_id": oid}, {"_id": 1}):
        raise NotFound("Banner not found")
    # Activate, then deactivate banners activated before this one. A banner
    # activated later by a concurrent request is left for that request to settle.
    activated_at = utcnow()
    activated = db[BANNERS].update_one(
        {"_id": oid},
        {"$set": {"isActive": True, "activated_at": activated_at, "updated_at": activated_at}},
    )
    others = db[BANNERS].update_many(
        {
            "_id": {"$ne": oid},
            "isActive": True,
            "$or": [{"activated_at": {"$lt": activated_at}}, {"activated_at": {"$exists": False}}],
        },
        {"$set": {"isActive": False}},
    )
    logger.info("banner_activated", banner_id=banner_id, deactivated=others.modified_count)
    return envelope(
        dict(write_result(activated), deactivated_count=others.modified_count),
        "Banner activated successfully",
    )


@app.delete("/banners/{banner_id}")
def delete_banner(banner_id: str, db: Database = Depends(get_db), _admin: dict = Depends(verify_admin)):
    res = db[BANNERS].delete_one({"_id": object_id(banner_id)})
    if res.deleted_count == 0:
        raise NotFound("Banner not found")
    return envelope(write_result(res), "Banner deleted successfully")


# ========= Schema endpoint (for viewers/tools) =========
@app.get("/schema")
def get_schema():
    return {
        "collections": [
            {"name": USERS, "schema": User.model_json_schema()},
            {"name": TESTS, "schema": LabTest.model_json_schema()},
            {"name": APPOINTMENTS, "schema": Appointment.model_json_schema()},
            {"name": PAYMENTS, "schema": Payment.model_json_schema()},
            {"name": BANNERS, "schema": Banner.model_json_schema()},
        ]
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=config.PORT)
