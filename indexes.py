"""
Query indexes for the collections the dashboards and listeners filter on.

Applied on app startup; can also be run by hand:  python indexes.py
"""

import logging

from pymongo import ASCENDING, DESCENDING

import database

logger = logging.getLogger(__name__)


def _index(*keys, **options):
    return list(keys), options


INDEXES = {
    "users": [_index(("email", ASCENDING)), _index(("role", ASCENDING), ("created_at", DESCENDING))],
    "accounts": [_index(("email", ASCENDING), unique=True)],
    "sessions": [_index(("user_id", ASCENDING))],
    "restaurantApplications": [
        _index(("status", ASCENDING), ("submitted_at", DESCENDING)),
        _index(("submission_state", ASCENDING)),
    ],
    "deliveryApplications": [
        _index(("status", ASCENDING), ("submitted_at", DESCENDING)),
        _index(("submission_state", ASCENDING)),
    ],
    "partnerRequests": [_index(("status", ASCENDING), ("submitted_at", DESCENDING))],
    "restaurants": [_index(("status", ASCENDING)), _index(("owner_id", ASCENDING))],
    "orders": [
        _index(("customer_id", ASCENDING), ("created_at", DESCENDING)),
        _index(("restaurant_id", ASCENDING), ("created_at", DESCENDING)),
        _index(("driver_id", ASCENDING), ("created_at", DESCENDING)),
        _index(("status", ASCENDING), ("ready_at", DESCENDING)),
        _index(("order_number", ASCENDING), unique=True),
    ],
    "favorites": [_index(("user_id", ASCENDING), ("added_at", DESCENDING))],
    "drivers": [_index(("status", ASCENDING))],
    "menuItems": [_index(("restaurant_id", ASCENDING))],
}


def ensure_indexes() -> int:
    db = database.get_db()
    created = 0
    for collection, indexes in INDEXES.items():
        for keys, options in indexes:
            name = db[collection].create_index(keys, **options)
            logger.debug("Index %s.%s ready", collection, name)
            created += 1
    logger.info("Ensured %d indexes", created)
    return created


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    ensure_indexes()
