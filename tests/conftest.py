import mongomock
import pytest

import database
import identity
import indexes


@pytest.fixture(autouse=True)
def store():
    db = database.use_database(mongomock.MongoClient()["food_delivery_test"])
    indexes.ensure_indexes()
    yield db
    database.hub.clear()
    database.use_database(None)


@pytest.fixture
def make_user():
    def _make(email, name="Test User", password="secret123", role="customer"):
        profile, _ = identity.sign_up(email, password, name)
        if role != "customer":
            profile = identity.set_role_and_status(profile["id"], role=role)
        return profile
    return _make
