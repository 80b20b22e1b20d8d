"""
Favorite restaurants

One record per (user, restaurant) pair under the id ``{user_id}_{restaurant_id}``,
carrying a snapshot of the restaurant card. The profile's
``favorite_restaurants`` counter follows adds and removes.
"""

import logging
from typing import Any, Callable, Dict, List

from pymongo.errors import DuplicateKeyError

import database
from database import Query, Where
from errors import DocumentNotFound
from schemas import FavoriteRestaurant

logger = logging.getLogger(__name__)

FAVORITES = "favorites"


def favorite_id(user_id: str, restaurant_id: str) -> str:
    return f"{user_id}_{restaurant_id}"


def _project(doc):
    if doc is None:
        return None
    doc = dict(doc)
    for name in ("added_at", "created_at", "updated_at"):
        if doc.get(name) is not None:
            doc[name] = database.to_datetime(doc[name])
    return doc


def is_favorite(user_id: str, restaurant_id: str) -> bool:
    return database.get_document(FAVORITES, favorite_id(user_id, restaurant_id)) is not None


def add(user_id: str, restaurant_id: str) -> Dict[str, Any]:
    """Favorite a restaurant. Adding one twice returns the existing record and leaves the counter alone."""
    restaurant = database.get_document("restaurants", restaurant_id)
    if restaurant is None:
        raise DocumentNotFound("restaurants", restaurant_id)
    key = favorite_id(user_id, restaurant_id)
    favorite = FavoriteRestaurant(
        user_id=user_id,
        restaurant_id=restaurant_id,
        restaurant_name=restaurant.get("name", ""),
        restaurant_cuisine=restaurant.get("cuisine", ""),
        restaurant_rating=restaurant.get("rating", 0),
        restaurant_address=restaurant.get("address", ""),
        added_at=database.now(),
    )
    try:
        created = database.create_document(FAVORITES, favorite, doc_id=key)
    except DuplicateKeyError:
        return _project(database.get_document(FAVORITES, key))
    database.increment_document("users", user_id, "favorite_restaurants", 1)
    logger.info("%s favorited %s", user_id, restaurant_id)
    return _project(created)


def remove(user_id: str, restaurant_id: str) -> bool:
    try:
        database.delete_document(FAVORITES, favorite_id(user_id, restaurant_id))
    except DocumentNotFound:
        return False
    database.increment_document("users", user_id, "favorite_restaurants", -1)
    logger.info("%s unfavorited %s", user_id, restaurant_id)
    return True


def toggle(user_id: str, restaurant_id: str) -> bool:
    """Flip the favorite; returns True when the restaurant is now a favorite."""
    if remove(user_id, restaurant_id):
        return False
    add(user_id, restaurant_id)
    return True


def _mine(user_id: str) -> Query:
    return Query(where=[Where(field="user_id", value=user_id)], order_by="added_at", descending=True)


def list_favorites(user_id: str) -> List[Dict[str, Any]]:
    return [_project(d) for d in database.query_documents(FAVORITES, _mine(user_id))]


def subscribe(user_id: str, callback: Callable[[List[Dict[str, Any]]], None]):
    return database.subscribe(FAVORITES, lambda docs: callback([_project(d) for d in docs]), _mine(user_id))
