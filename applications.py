"""
Partner application workflow

One application document per applicant and type, stored under the applicant's
user id in ``restaurantApplications`` or ``deliveryApplications``.

Submitting is a two step saga: the application is saved with
``submission_state = "application_saved"``, then the applicant profile is
promoted and the state moves to ``"profile_promoted"``. A submission stuck in
the first state can be finished later with ``resume_submission``.

Review follows a fixed transition table: only ``pending`` applications can be
approved or rejected, and the write is conditional on the status read, so of
two concurrent reviewers only the first one wins.
"""

import logging
from typing import Any, Callable, Dict, List, Optional

import database
from database import Query, Where
from errors import (
    ApplicationLocked,
    DocumentNotFound,
    InvalidStatusTransition,
    PreconditionFailed,
    SubmissionIncomplete,
)
from schemas import Driver, Restaurant

logger = logging.getLogger(__name__)

APPLICATION_COLLECTIONS = {
    "restaurant": "restaurantApplications",
    "delivery": "deliveryApplications",
}
APPLICANT_ROLES = {
    "restaurant": "restaurant_owner",
    "delivery": "delivery_rider",
}
TRANSITIONS = {
    "pending": {"approved", "rejected"},
    "approved": set(),
    "rejected": set(),
}

APPLICATION_SAVED = "application_saved"
PROFILE_PROMOTED = "profile_promoted"

_TIMESTAMP_FIELDS = ("submitted_at", "processed_at", "created_at", "updated_at")

# profile fields copied from the application when the applicant is promoted
_PROFILE_FIELDS = {
    "restaurant": ("phone", "address", "restaurant_name"),
    "delivery": ("phone", "address", "vehicle_type"),
}


def collection_for(app_type: str) -> str:
    try:
        return APPLICATION_COLLECTIONS[app_type]
    except KeyError:
        raise ValueError(f"Unknown application type: {app_type}") from None


def _project(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if doc is None:
        return None
    doc = dict(doc)
    for name in _TIMESTAMP_FIELDS:
        if name in doc:
            doc[name] = database.to_datetime(doc[name])
    return doc


def get(app_type: str, user_id: str) -> Optional[Dict[str, Any]]:
    return _project(database.get_document(collection_for(app_type), user_id))


def submit(app_type: str, user_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
    """Save (or overwrite) the applicant's application, then promote their profile.

    The stored document is replaced as a whole, nothing of an earlier
    submission survives. Approved applications cannot be resubmitted.
    """
    collection = collection_for(app_type)
    existing = database.get_document(collection, user_id)
    if existing is not None and existing.get("status") == "approved":
        raise ApplicationLocked(f"{app_type} application for {user_id} is already approved")

    doc = dict(payload)
    doc.update(
        type=app_type,
        user_id=user_id,
        status="pending",
        submitted_at=database.now(),
        admin_notes="",
        processed_at=None,
        processed_by=None,
        submission_state=APPLICATION_SAVED,
    )
    try:
        database.set_document(collection, user_id, doc)
    except Exception:
        logger.exception("Error submitting %s application for %s", app_type, user_id)
        raise
    logger.info("%s application saved for %s", app_type, user_id)

    try:
        _promote_profile(app_type, user_id, doc)
    except Exception as e:
        logger.exception("%s application for %s saved but profile promotion failed", app_type, user_id)
        raise SubmissionIncomplete(app_type, user_id) from e
    return get(app_type, user_id)


def _promote_profile(app_type: str, user_id: str, application: Dict[str, Any]) -> None:
    changes = {"role": APPLICANT_ROLES[app_type], "has_applied": True}
    for name in _PROFILE_FIELDS[app_type]:
        if application.get(name):
            changes[name] = application[name]
    database.update_document("users", user_id, changes)
    database.update_document(collection_for(app_type), user_id, {"submission_state": PROFILE_PROMOTED})


def resume_submission(app_type: str, user_id: str) -> Dict[str, Any]:
    """Finish a submission whose profile promotion never happened."""
    app = get(app_type, user_id)
    if app is None:
        raise DocumentNotFound(collection_for(app_type), user_id)
    if app.get("submission_state") == PROFILE_PROMOTED:
        return app
    logger.info("Resuming %s submission for %s", app_type, user_id)
    try:
        _promote_profile(app_type, user_id, app)
    except Exception as e:
        logger.exception("Resuming %s submission for %s failed", app_type, user_id)
        raise SubmissionIncomplete(app_type, user_id) from e
    return get(app_type, user_id)


def incomplete_submissions(app_type: str) -> List[Dict[str, Any]]:
    query = Query(where=[Where(field="submission_state", value=APPLICATION_SAVED)])
    return [_project(d) for d in database.query_documents(collection_for(app_type), query)]


def subscribe(app_type: str, user_id: str, callback: Callable[[Optional[Dict[str, Any]]], None]):
    """Realtime listener on one applicant's application, None while absent.

    A failed read is logged by the hub and skipped; the applicant keeps the
    last delivered state until the next write.
    """
    return database.subscribe_document(
        collection_for(app_type),
        user_id,
        lambda doc: callback(_project(doc)),
    )


def list_applications(app_type: str, status: Optional[str] = None) -> List[Dict[str, Any]]:
    query = Query(order_by="submitted_at", descending=True)
    if status:
        query.where.append(Where(field="status", value=status))
    return [_project(d) for d in database.query_documents(collection_for(app_type), query)]


def subscribe_pending(app_type: str, callback: Callable[[List[Dict[str, Any]]], None]):
    query = Query(where=[Where(field="status", value="pending")])
    return database.subscribe(
        collection_for(app_type),
        lambda docs: callback([_project(d) for d in docs]),
        query,
    )


def set_status(
    app_type: str,
    user_id: str,
    status: str,
    reviewer_id: str,
    extra: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    collection = collection_for(app_type)
    current = database.get_document(collection, user_id)
    if current is None:
        raise DocumentNotFound(collection, user_id)
    current_status = current.get("status")
    if status not in TRANSITIONS.get(current_status, ()):
        raise InvalidStatusTransition(current_status, status)

    changes = dict(extra or {})
    changes.update(status=status, processed_at=database.now(), processed_by=reviewer_id)
    try:
        database.update_document(collection, user_id, changes, expected={"status": current_status})
    except PreconditionFailed:
        latest = database.get_document(collection, user_id) or {}
        raise InvalidStatusTransition(latest.get("status"), status) from None
    logger.info("%s application for %s marked %s by %s", app_type, user_id, status, reviewer_id)
    return get(app_type, user_id)


def approve(app_type: str, user_id: str, reviewer_id: str, notes: str = "") -> Dict[str, Any]:
    app = set_status(app_type, user_id, "approved", reviewer_id, {"admin_notes": notes})
    publish_partner(app_type, user_id, app)
    return app


def reject(app_type: str, user_id: str, reviewer_id: str, reason: str = "") -> Dict[str, Any]:
    return set_status(
        app_type,
        user_id,
        "rejected",
        reviewer_id,
        {"admin_notes": reason, "rejection_reason": reason},
    )


def publish_partner(app_type: str, user_id: str, app: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Promote an approved applicant and publish their restaurant or driver record."""
    app = app or get(app_type, user_id)
    if app is None:
        raise DocumentNotFound(collection_for(app_type), user_id)
    if app.get("status") != "approved":
        raise InvalidStatusTransition(app.get("status"), "approved")

    try:
        database.update_document("users", user_id, {"role": APPLICANT_ROLES[app_type], "role_updated_at": database.now()})
        original = {k: v for k, v in app.items() if k != "id"}
        if app_type == "restaurant":
            record = Restaurant(
                name=app.get("restaurant_name") or "",
                owner_id=user_id,
                description=app.get("description", ""),
                address=app.get("address", ""),
                phone=app.get("phone", ""),
                email=app.get("email") or "",
                website=app.get("website", ""),
                cuisine=app.get("cuisine", ""),
                category=app.get("category", ""),
            ).model_dump()
            collection = "restaurants"
        else:
            record = Driver(
                user_id=user_id,
                name=app.get("full_name") or "",
                email=app.get("email") or "",
                phone=app.get("phone", ""),
                vehicle_type=app.get("vehicle_type", ""),
                license_number=app.get("license_number", ""),
            ).model_dump()
            collection = "drivers"
        record.update(
            admin_notes=app.get("admin_notes", ""),
            processed_by=app.get("processed_by"),
            processed_at=app.get("processed_at"),
            original_application=original,
        )
        published = database.set_document(collection, user_id, record)
    except Exception:
        logger.exception("Error publishing approved %s partner %s", app_type, user_id)
        raise
    logger.info("Published %s/%s", collection, user_id)
    return published
