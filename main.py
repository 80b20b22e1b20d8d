import os
import json
import asyncio
import logging
from io import BytesIO
from datetime import datetime, timezone
from typing import Dict, Any, Optional, Callable

from fastapi import FastAPI, HTTPException, Depends, Request, UploadFile
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse, StreamingResponse
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from pydantic import BaseModel, Field, EmailStr, ValidationError
from authlib.integrations.starlette_client import OAuth
from starlette.config import Config as StarletteConfig
from starlette.middleware.sessions import SessionMiddleware

import applications
import database
import favorites
import identity
import orders
import settings
import storage
from errors import (
    ApplicationLocked,
    AuthError,
    DatabaseNotConfigured,
    DocumentNotFound,
    InvalidStatusTransition,
    OrderRejected,
    PreconditionFailed,
    SubmissionIncomplete,
    UploadRejected,
)
from indexes import ensure_indexes
from notifications import AdminNotificationSessions
from schemas import (
    COLLECTIONS,
    AdminUserUpdate,
    ApplicationType,
    DeliveryApplicationIn,
    Driver,
    MenuItem,
    OrderIn,
    OrderStatusChange,
    ProfileUpdate,
    Restaurant,
    RestaurantApplicationIn,
    ReviewDecision,
    StatusChange,
)

logging.basicConfig(level=settings.LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

app = FastAPI(title="Food Delivery API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
# authlib keeps the OAuth state in the session cookie
app.add_middleware(SessionMiddleware, secret_key=settings.SESSION_SECRET)

notification_sessions = AdminNotificationSessions()


# ---------------------- Errors ----------------------
AUTH_ERROR_STATUS = {
    "auth/invalid-credential": 401,
    "auth/invalid-token": 401,
    "auth/user-not-found": 401,
    "auth/email-already-in-use": 400,
    "auth/already-verified": 400,
    "auth/email-not-verified": 403,
    "auth/user-disabled": 403,
    "auth/too-many-requests": 429,
}


def _error(status_code: int, detail: str, code: Optional[str] = None) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": detail, "code": code})


@app.exception_handler(AuthError)
def auth_error_handler(request: Request, exc: AuthError):
    return _error(AUTH_ERROR_STATUS.get(exc.code, 400), exc.message, exc.code)


@app.exception_handler(DocumentNotFound)
def not_found_handler(request: Request, exc: DocumentNotFound):
    return _error(404, str(exc), "not-found")


@app.exception_handler(InvalidStatusTransition)
def transition_handler(request: Request, exc: InvalidStatusTransition):
    return _error(409, str(exc), "invalid-transition")


@app.exception_handler(PreconditionFailed)
def precondition_handler(request: Request, exc: PreconditionFailed):
    return _error(409, str(exc), "precondition-failed")


@app.exception_handler(ApplicationLocked)
def locked_handler(request: Request, exc: ApplicationLocked):
    return _error(409, str(exc), "application-locked")


@app.exception_handler(SubmissionIncomplete)
def incomplete_handler(request: Request, exc: SubmissionIncomplete):
    return _error(502, f"{exc}; resubmit or resume the application", "submission-incomplete")


@app.exception_handler(UploadRejected)
def upload_handler(request: Request, exc: UploadRejected):
    return _error(400, str(exc), "upload-rejected")


@app.exception_handler(OrderRejected)
def order_rejected_handler(request: Request, exc: OrderRejected):
    return _error(400, str(exc), "order-rejected")


@app.exception_handler(DatabaseNotConfigured)
def no_database_handler(request: Request, exc: DatabaseNotConfigured):
    return _error(500, "Database not configured", "unavailable")


# ---------------------- Auth ----------------------
bearer_scheme = HTTPBearer(auto_error=False)


def _user_from_token(raw: Optional[str]) -> Dict[str, Any]:
    if not raw:
        raise HTTPException(status_code=401, detail="Authorization required")
    claims, profile = identity.authenticate(raw)
    user = dict(profile)
    user["session_id"] = claims["sid"]
    return user


def get_current_user(creds: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme)) -> Dict[str, Any]:
    return _user_from_token(creds.credentials if creds else None)


def get_stream_user(
    creds: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    token: Optional[str] = None,
) -> Dict[str, Any]:
    """Caller of a /stream route. EventSource can't set headers, so ?token= works here only."""
    return _user_from_token(creds.credentials if creds else token)


def require_role(*roles: str, stream: bool = False):
    def dep(user: Dict[str, Any] = Depends(get_stream_user if stream else get_current_user)):
        if user.get("role") not in roles:
            raise HTTPException(status_code=403, detail="Insufficient permissions")
        return user
    return dep


require_admin = require_role("admin")
require_admin_stream = require_role("admin", stream=True)


def _admin_session_alive(session_id: str) -> bool:
    profile = identity.session_user(session_id)
    return profile is not None and profile.get("role") == "admin"


class SignupBody(BaseModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    password: str = Field(..., min_length=6)
    phone: str = ""
    address: str = ""


class LoginBody(BaseModel):
    email: EmailStr
    password: str


class EmailBody(BaseModel):
    email: EmailStr


class PasswordResetBody(BaseModel):
    token: str
    new_password: str = Field(..., min_length=6)


class TokenBody(BaseModel):
    token: str


@app.post("/auth/signup")
def signup(body: SignupBody):
    profile, verification_token = identity.sign_up(
        body.email, body.password, body.name, phone=body.phone, address=body.address
    )
    # In a real deployment the token goes out by email
    return {"user": profile, "verification_token": verification_token}


@app.post("/auth/login")
def login(body: LoginBody):
    result = identity.sign_in(body.email, body.password)
    if result["user"].get("role") == "admin":
        notification_sessions.sweep(_admin_session_alive)
        notification_sessions.open(result["session_id"], result["user"]["id"])
    return result


@app.post("/auth/logout")
def logout(user=Depends(get_current_user)):
    identity.sign_out(user["session_id"])
    notification_sessions.close(user["session_id"])
    return {"ok": True}


@app.post("/auth/password-reset")
def request_password_reset(body: EmailBody):
    token = identity.send_password_reset(str(body.email))
    if token is None:
        return {"ok": True}  # avoid user enumeration
    return {"ok": True, "reset_token": token}


@app.post("/auth/password-reset/confirm")
def confirm_password_reset(body: PasswordResetBody):
    identity.reset_password(body.token, body.new_password)
    return {"ok": True}


@app.post("/auth/verification/resend")
def resend_verification(user=Depends(get_current_user)):
    return {"ok": True, "verification_token": identity.resend_verification(user["id"])}


@app.post("/auth/verify-email")
def verify_email(body: TokenBody):
    identity.verify_email(body.token)
    return {"ok": True}


# Google OAuth, only registered when configured
oauth = OAuth(StarletteConfig(environ=os.environ))
if settings.GOOGLE_CLIENT_ID and settings.GOOGLE_CLIENT_SECRET:
    oauth.register(
        name='google',
        client_id=settings.GOOGLE_CLIENT_ID,
        client_secret=settings.GOOGLE_CLIENT_SECRET,
        server_metadata_url='https://accounts.google.com/.well-known/openid-configuration',
        client_kwargs={'scope': 'openid email profile'},
    )


@app.get("/auth/providers")
def auth_providers():
    providers = ["password"]
    if oauth.create_client('google') is not None:
        providers.append("google")
    return {"providers": providers}


@app.get('/auth/login/google')
async def login_via_google(request: Request):
    google = oauth.create_client('google')
    if google is None:
        raise HTTPException(status_code=400, detail='Google OAuth not configured')
    redirect_uri = request.url_for('auth_google_callback')
    return await google.authorize_redirect(request, redirect_uri)


@app.get('/auth/callback/google')
async def auth_google_callback(request: Request):
    google = oauth.create_client('google')
    if google is None:
        raise HTTPException(status_code=400, detail='Google OAuth not configured')
    token = await google.authorize_access_token(request)
    userinfo = token.get('userinfo')
    if not userinfo:
        raise HTTPException(status_code=400, detail='No userinfo from Google')
    result = identity.sign_in_federated(
        userinfo['email'],
        userinfo.get('name') or userinfo['email'],
        'google',
        userinfo.get('sub'),
        userinfo.get('picture'),
    )
    # redirect back to frontend with token
    return RedirectResponse(url=f"{settings.FRONTEND_URL}/auth/callback?token={result['token']}")


# ---------------------- Realtime streams ----------------------
def sse_response(open_subscription: Callable[[Callable[[Any], None]], Any]) -> StreamingResponse:
    """Server-Sent Events bridge for a store listener.

    Listener callbacks fire on whatever thread did the write, so they hop onto
    the event loop before touching the queue. The listener is dropped when the
    client goes away.
    """
    loop = asyncio.get_running_loop()
    queue: asyncio.Queue = asyncio.Queue()

    def push(payload):
        loop.call_soon_threadsafe(queue.put_nowait, payload)

    subscription = open_subscription(push)

    async def event_gen():
        try:
            # On connect, send a ping
            yield f"data: {json.dumps({'type': 'ping', 'ts': datetime.now(timezone.utc).isoformat()})}\n\n"
            while True:
                payload = await queue.get()
                yield f"data: {json.dumps(jsonable_encoder(payload))}\n\n"
        finally:
            subscription.unsubscribe()

    return StreamingResponse(event_gen(), media_type="text/event-stream")


# ---------------------- Profile ----------------------
@app.get("/me")
def me(user=Depends(get_current_user)):
    return user


@app.patch("/me")
def update_me(body: ProfileUpdate, user=Depends(get_current_user)):
    return identity.update_profile(user["id"], body.model_dump(exclude_none=True))


@app.get("/me/stream")
async def stream_me(user=Depends(get_stream_user)):
    return sse_response(lambda push: identity.subscribe_profile(user["id"], push))


# ---------------------- Collections ----------------------
# orders and favorites reach their parties through /orders and /favorites
ADMIN_ONLY_COLLECTIONS = {
    "users", "restaurantApplications", "deliveryApplications", "partnerRequests", "orders", "favorites",
}
# collections non-admins may write, and the field naming the record's owner
OWNER_FIELDS = {"restaurants": "owner_id", "drivers": "user_id", "menuItems": "restaurant_id"}
# records owners may also create and delete; the others come from the approval workflow
OWNER_MANAGED = {"menuItems"}
PROTECTED_FIELDS = {
    "restaurants": {
        "owner_id", "status", "rating", "total_orders", "total_reviews",
        "original_application", "admin_notes", "processed_by", "processed_at",
    },
    "drivers": {
        "user_id", "is_active", "license_number",
        "original_application", "admin_notes", "processed_by", "processed_at",
    },
    "menuItems": set(),
}


def _check_collection(name: str, user: Dict[str, Any]) -> None:
    if name not in COLLECTIONS:
        raise HTTPException(status_code=404, detail=f"Unknown collection {name}")
    if name in ADMIN_ONLY_COLLECTIONS and user.get("role") != "admin":
        raise HTTPException(status_code=403, detail="Insufficient permissions")


def _owns(name: str, record: Dict[str, Any], user: Dict[str, Any]) -> bool:
    if name == "menuItems":
        restaurant = database.get_document("restaurants", record.get("restaurant_id") or "")
        return restaurant is not None and restaurant.get("owner_id") == user["id"]
    return record.get(OWNER_FIELDS[name]) == user["id"]


def _check_write(name: str, user: Dict[str, Any], record: Optional[Dict[str, Any]], changes: Dict[str, Any]) -> None:
    """Admins write anything; everyone else only edits records they own, minus the protected fields.

    ``record`` is the stored record, None when creating.
    """
    _check_collection(name, user)
    if user.get("role") == "admin":
        return
    if name not in OWNER_FIELDS:
        raise HTTPException(status_code=403, detail=f"{name} is read-only")
    if record is None:
        if name not in OWNER_MANAGED:
            raise HTTPException(status_code=403, detail=f"{name} records are created on approval")
        record = changes
    elif OWNER_FIELDS[name] in changes:
        raise HTTPException(status_code=403, detail=f"{OWNER_FIELDS[name]} cannot be changed")
    if not _owns(name, record, user):
        raise HTTPException(status_code=403, detail="Not your record")
    blocked = PROTECTED_FIELDS[name] & set(changes)
    if blocked:
        raise HTTPException(status_code=403, detail=f"Protected fields: {', '.join(sorted(blocked))}")


def _stored(name: str, record_id: str) -> Dict[str, Any]:
    record = database.get_document(name, record_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Record not found")
    return record


RECORD_MODELS = {"restaurants": Restaurant, "drivers": Driver, "menuItems": MenuItem}


@app.post("/collections/{name}")
def create_record(name: str, body: Dict[str, Any], user=Depends(get_current_user)):
    _check_write(name, user, None, body)
    model = RECORD_MODELS.get(name)
    if model is not None:
        try:
            body = model.model_validate(body).model_dump()
        except ValidationError as e:
            raise HTTPException(status_code=422, detail=e.errors(include_url=False, include_context=False))
    return database.create_document(name, body)


@app.get("/collections/{name}")
def read_records(name: str, order_by: Optional[str] = None, descending: bool = False,
                 limit: Optional[int] = None, user=Depends(get_current_user)):
    _check_collection(name, user)
    return database.query_documents(name, database.Query(order_by=order_by, descending=descending, limit=limit))


@app.post("/collections/{name}/query")
def query_records(name: str, query: database.Query, user=Depends(get_current_user)):
    _check_collection(name, user)
    return database.query_documents(name, query)


@app.get("/collections/{name}/stream")
async def stream_records(name: str, user=Depends(get_stream_user)):
    _check_collection(name, user)
    return sse_response(lambda push: database.subscribe(name, push))


@app.get("/collections/{name}/{record_id}")
def read_record(name: str, record_id: str, user=Depends(get_current_user)):
    _check_collection(name, user)
    record = database.get_document(name, record_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Record not found")
    return record


@app.patch("/collections/{name}/{record_id}")
def update_record(name: str, record_id: str, body: Dict[str, Any], user=Depends(get_current_user)):
    _check_collection(name, user)
    _check_write(name, user, _stored(name, record_id), body)
    return database.update_document(name, record_id, body)


@app.delete("/collections/{name}/{record_id}")
def delete_record(name: str, record_id: str, user=Depends(get_current_user)):
    _check_collection(name, user)
    _check_write(name, user, _stored(name, record_id), {})
    if user.get("role") != "admin" and name not in OWNER_MANAGED:
        raise HTTPException(status_code=403, detail=f"{name} records are removed by an admin")
    database.delete_document(name, record_id)
    return {"ok": True}


# ---------------------- Applications ----------------------
def _applicant_fields(payload: Dict[str, Any], user: Dict[str, Any]) -> Dict[str, Any]:
    payload.setdefault("full_name", None)
    payload.setdefault("email", None)
    payload["full_name"] = payload["full_name"] or user.get("name")
    payload["email"] = payload["email"] or user.get("email")
    return payload


@app.post("/applications/restaurant")
def submit_restaurant_application(body: RestaurantApplicationIn, user=Depends(get_current_user)):
    payload = _applicant_fields(body.model_dump(), user)
    return applications.submit("restaurant", user["id"], payload)


@app.post("/applications/delivery")
def submit_delivery_application(body: DeliveryApplicationIn, user=Depends(get_current_user)):
    payload = _applicant_fields(body.model_dump(), user)
    return applications.submit("delivery", user["id"], payload)


@app.get("/applications/{app_type}/me")
def my_application(app_type: ApplicationType, user=Depends(get_current_user)):
    return {"application": applications.get(app_type, user["id"])}


@app.get("/applications/{app_type}/me/stream")
async def stream_my_application(app_type: ApplicationType, user=Depends(get_stream_user)):
    return sse_response(lambda push: applications.subscribe(app_type, user["id"], push))


@app.post("/applications/{app_type}/me/resume")
def resume_my_application(app_type: ApplicationType, user=Depends(get_current_user)):
    return applications.resume_submission(app_type, user["id"])


# ---------------------- Admin: applications ----------------------
@app.get("/admin/applications/{app_type}")
def admin_list_applications(app_type: ApplicationType, status: Optional[str] = None, _=Depends(require_admin)):
    return applications.list_applications(app_type, status)


@app.get("/admin/applications/{app_type}/incomplete")
def admin_incomplete_applications(app_type: ApplicationType, _=Depends(require_admin)):
    return applications.incomplete_submissions(app_type)


@app.get("/admin/applications/{app_type}/pending/stream")
async def admin_stream_pending(app_type: ApplicationType, _=Depends(require_admin_stream)):
    return sse_response(lambda push: applications.subscribe_pending(app_type, push))


@app.patch("/admin/applications/{app_type}/{user_id}/status")
def admin_set_status(app_type: ApplicationType, user_id: str, body: StatusChange, admin=Depends(require_admin)):
    return applications.set_status(app_type, user_id, body.status, admin["id"])


@app.post("/admin/applications/{app_type}/{user_id}/approve")
def admin_approve(app_type: ApplicationType, user_id: str, body: ReviewDecision, admin=Depends(require_admin)):
    return applications.approve(app_type, user_id, admin["id"], body.notes)


@app.post("/admin/applications/{app_type}/{user_id}/reject")
def admin_reject(app_type: ApplicationType, user_id: str, body: ReviewDecision, admin=Depends(require_admin)):
    return applications.reject(app_type, user_id, admin["id"], body.reason or body.notes)


@app.post("/admin/applications/{app_type}/{user_id}/resume")
def admin_resume(app_type: ApplicationType, user_id: str, _=Depends(require_admin)):
    return applications.resume_submission(app_type, user_id)


@app.post("/admin/applications/{app_type}/{user_id}/publish")
def admin_publish(app_type: ApplicationType, user_id: str, _=Depends(require_admin)):
    return applications.publish_partner(app_type, user_id)


# ---------------------- Admin: users ----------------------
@app.get("/admin/users")
def admin_list_users(_=Depends(require_admin)):
    return identity.list_users()


@app.patch("/admin/users/{user_id}")
def admin_update_user(user_id: str, body: AdminUserUpdate, _=Depends(require_admin)):
    profile = identity.set_role_and_status(user_id, body.role, body.status)
    if profile.get("role") != "admin" or profile.get("status") == "suspended":
        notification_sessions.close_user(user_id)
    return profile


@app.delete("/admin/users/{user_id}")
def admin_delete_user(user_id: str, _=Depends(require_admin)):
    deleted = identity.delete_user(user_id)
    notification_sessions.close_user(user_id)
    return {"ok": True, "deleted_user": deleted}


# ---------------------- Admin: notifications ----------------------
def _notification_store(admin: Dict[str, Any]):
    return notification_sessions.open(admin["session_id"], admin["id"]).store


@app.get("/admin/notifications")
def admin_notifications(admin=Depends(require_admin)):
    return _notification_store(admin).snapshot()


@app.get("/admin/notifications/stream")
async def admin_stream_notifications(admin=Depends(require_admin_stream)):
    store = _notification_store(admin)
    return sse_response(store.subscribe)


@app.post("/admin/notifications/read-all")
def admin_mark_all_read(admin=Depends(require_admin)):
    store = _notification_store(admin)
    store.mark_all_as_read()
    return store.snapshot()


@app.post("/admin/notifications/{notification_id}/read")
def admin_mark_read(notification_id: str, admin=Depends(require_admin)):
    store = _notification_store(admin)
    if not store.mark_as_read(notification_id):
        raise HTTPException(status_code=404, detail="Notification not found")
    return store.snapshot()


@app.delete("/admin/notifications/{notification_id}")
def admin_remove_notification(notification_id: str, admin=Depends(require_admin)):
    store = _notification_store(admin)
    if not store.remove(notification_id):
        raise HTTPException(status_code=404, detail="Notification not found")
    return store.snapshot()


@app.delete("/admin/notifications")
def admin_clear_notifications(admin=Depends(require_admin)):
    store = _notification_store(admin)
    store.clear_all()
    return store.snapshot()


# ---------------------- Orders ----------------------
require_rider = require_role("delivery_rider", "admin")


def _order(order_id: str) -> Dict[str, Any]:
    order = orders.get(order_id)
    if order is None:
        raise HTTPException(status_code=404, detail="Order not found")
    return order


def _can_view_order(order: Dict[str, Any], user: Dict[str, Any]) -> bool:
    if user.get("role") == "admin" or user["id"] in (order.get("customer_id"), order.get("driver_id")):
        return True
    if user.get("role") == "delivery_rider" and order.get("status") == "readyForPickup" and not order.get("driver_id"):
        return True
    restaurant = database.get_document("restaurants", order.get("restaurant_id") or "")
    return restaurant is not None and restaurant.get("owner_id") == user["id"]


def _check_restaurant_owner(restaurant_id: str, user: Dict[str, Any]) -> None:
    restaurant = database.get_document("restaurants", restaurant_id)
    if restaurant is None:
        raise HTTPException(status_code=404, detail="Restaurant not found")
    if user.get("role") != "admin" and restaurant.get("owner_id") != user["id"]:
        raise HTTPException(status_code=403, detail="Not your restaurant")


@app.post("/orders")
def place_order(body: OrderIn, user=Depends(require_role("customer", "admin"))):
    return orders.create(user, body)


@app.get("/orders/mine")
def my_orders(user=Depends(get_current_user)):
    return orders.customer_orders(user["id"])


@app.get("/orders/mine/stream")
async def stream_my_orders(user=Depends(get_stream_user)):
    return sse_response(lambda push: orders.subscribe_customer(user["id"], push))


@app.get("/orders/available")
def available_orders(_=Depends(require_rider)):
    return orders.available_orders()


@app.get("/orders/available/stream")
async def stream_available_orders(_=Depends(require_role("delivery_rider", "admin", stream=True))):
    return sse_response(orders.subscribe_available)


@app.get("/orders/assigned")
def assigned_orders(user=Depends(require_rider)):
    return orders.driver_orders(user["id"])


@app.post("/orders/{order_id}/claim")
def claim_order(order_id: str, user=Depends(require_role("delivery_rider"))):
    return orders.claim(order_id, user)


@app.patch("/orders/{order_id}/status")
def update_order_status(order_id: str, body: OrderStatusChange, user=Depends(get_current_user)):
    order = _order(order_id)
    if body.status not in orders.permitted_statuses(order, user):
        raise HTTPException(status_code=403, detail=f"Not allowed to set {body.status}")
    return orders.update_status(order_id, body.status, user["id"], body.notes)


@app.get("/orders/{order_id}")
def get_order(order_id: str, user=Depends(get_current_user)):
    order = _order(order_id)
    if not _can_view_order(order, user):
        raise HTTPException(status_code=403, detail="Not your order")
    return order


@app.get("/restaurants/{restaurant_id}/orders")
def restaurant_orders(restaurant_id: str, user=Depends(get_current_user)):
    _check_restaurant_owner(restaurant_id, user)
    return orders.restaurant_orders(restaurant_id)


@app.get("/restaurants/{restaurant_id}/orders/stream")
async def stream_restaurant_orders(restaurant_id: str, user=Depends(get_stream_user)):
    _check_restaurant_owner(restaurant_id, user)
    return sse_response(lambda push: orders.subscribe_restaurant(restaurant_id, push))


# ---------------------- Favorites ----------------------
@app.get("/favorites")
def my_favorites(user=Depends(get_current_user)):
    return favorites.list_favorites(user["id"])


@app.get("/favorites/stream")
async def stream_favorites(user=Depends(get_stream_user)):
    return sse_response(lambda push: favorites.subscribe(user["id"], push))


@app.get("/favorites/{restaurant_id}")
def is_favorite(restaurant_id: str, user=Depends(get_current_user)):
    return {"favorite": favorites.is_favorite(user["id"], restaurant_id)}


@app.put("/favorites/{restaurant_id}")
def add_favorite(restaurant_id: str, user=Depends(get_current_user)):
    return favorites.add(user["id"], restaurant_id)


@app.delete("/favorites/{restaurant_id}")
def remove_favorite(restaurant_id: str, user=Depends(get_current_user)):
    if not favorites.remove(user["id"], restaurant_id):
        raise HTTPException(status_code=404, detail="Not a favorite")
    return {"ok": True}


@app.post("/favorites/{restaurant_id}/toggle")
def toggle_favorite(restaurant_id: str, user=Depends(get_current_user)):
    return {"favorite": favorites.toggle(user["id"], restaurant_id)}


# ---------------------- Files ----------------------
@app.post("/uploads/{kind}")
def upload_file(kind: str, file: UploadFile, user=Depends(get_current_user)):
    def progress(transferred: int, total: int):
        logger.debug("Upload progress %s: %.2f%%", file.filename, transferred / max(total, 1) * 100)

    return storage.upload(
        user["id"],
        kind,
        file.filename or "upload",
        file.content_type,
        file.file,
        size=file.size,
        on_progress=progress,
    )


@app.get("/files/{file_id}")
def get_file(file_id: str):
    doc = storage.fetch(file_id)
    return StreamingResponse(BytesIO(bytes(doc["data"])), media_type=doc["content_type"])


@app.delete("/files/{file_id}")
def delete_file(file_id: str, user=Depends(get_current_user)):
    doc = storage.fetch(file_id)
    if doc.get("owner_id") != user["id"] and user.get("role") != "admin":
        raise HTTPException(status_code=403, detail="Not your file")
    storage.delete(file_id)
    return {"ok": True}


# ---------------------- Lifecycle ----------------------
@app.on_event("startup")
def startup():
    if database.db is None:
        logger.warning("DATABASE_URL/DATABASE_NAME not set, store unavailable")
        return
    ensure_indexes()
    if settings.ADMIN_EMAIL and settings.ADMIN_PASSWORD:
        identity.ensure_admin(settings.ADMIN_EMAIL, settings.ADMIN_PASSWORD)
    notification_sessions.start_sweeper(_admin_session_alive, settings.SESSION_SWEEP_INTERVAL)


@app.on_event("shutdown")
def shutdown():
    notification_sessions.close_all()


# ---------------------- Misc ----------------------
@app.get("/")
def read_root():
    return {"message": "Food Delivery API"}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if settings.DATABASE_URL else "❌ Not Set",
        "database_name": settings.DATABASE_NAME or "❌ Not Set",
        "collections": [],
        "listeners": database.hub.count(),
    }
    db = database.db
    if db is not None:
        response["database"] = "✅ Available"
        try:
            response["collections"] = db.list_collection_names()[:10]
            response["database"] = "✅ Connected & Working"
        except Exception as e:
            logger.exception("Database health check failed")
            response["database"] = f"⚠️ Connected but Error: {str(e)[:80]}"
    return response


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
