import pytest

import database
import orders
import settings
from errors import DocumentNotFound, InvalidStatusTransition, OrderRejected
from schemas import DeliveryAddress, MenuItem, OrderIn, OrderItemIn, Restaurant

ADDRESS = DeliveryAddress(street="1 Main St", city="Springfield")


@pytest.fixture
def restaurant(make_user):
    owner = make_user("owner@example.com", name="Olivia", role="restaurant_owner")
    return database.set_document(
        "restaurants", owner["id"], Restaurant(name="Burger Heaven", owner_id=owner["id"], phone="555-0101")
    )


@pytest.fixture
def menu(restaurant):
    burger = database.create_document("menuItems", MenuItem(
        restaurant_id=restaurant["id"], name="Smash burger", price_cents=1250, category="Burgers"
    ))
    fries = database.create_document("menuItems", MenuItem(
        restaurant_id=restaurant["id"], name="Fries", price_cents=399, preparation_time=5
    ))
    return {"burger": burger, "fries": fries}


@pytest.fixture
def customer(make_user):
    return make_user("ana@example.com", name="Ana")


@pytest.fixture
def driver(make_user):
    return make_user("rider@example.com", name="Rick", role="delivery_rider")


def place(customer, restaurant, *lines):
    body = OrderIn(
        restaurant_id=restaurant["id"],
        items=[OrderItemIn(item_id=item["id"], quantity=qty) for item, qty in lines],
        delivery_address=ADDRESS,
    )
    return orders.create(customer, body)


def advance(order, *statuses, actor="owner"):
    for status in statuses:
        order = orders.update_status(order["id"], status, actor)
    return order


def test_totals_are_computed_from_the_menu(customer, restaurant, menu):
    order = place(customer, restaurant, (menu["burger"], 2), (menu["fries"], 1))

    subtotal = 1250 * 2 + 399
    assert order["subtotal_cents"] == subtotal
    assert order["delivery_fee_cents"] == settings.DELIVERY_FEE_CENTS
    assert order["tax_cents"] == round(subtotal * settings.TAX_RATE)
    assert order["total_cents"] == subtotal + order["delivery_fee_cents"] + order["tax_cents"]
    assert [i["name"] for i in order["items"]] == ["Smash burger", "Fries"]
    assert order["items"][0]["unit_price_cents"] == 1250


def test_new_order_snapshot(customer, restaurant, menu):
    order = place(customer, restaurant, (menu["fries"], 1))

    assert order["status"] == "pending"
    assert order["payment_status"] == "pending"
    assert order["order_number"].startswith("ORD") and len(order["order_number"]) == 12
    assert order["customer_name"] == "Ana"
    assert order["restaurant_name"] == "Burger Heaven"
    assert order["driver_id"] is None
    assert order["estimated_delivery_time"] > order["created_at"]
    assert orders.get(order["id"])["delivery_address"]["city"] == "Springfield"


def test_price_changes_do_not_touch_placed_orders(customer, restaurant, menu):
    order = place(customer, restaurant, (menu["burger"], 1))
    database.update_document("menuItems", menu["burger"]["id"], {"price_cents": 9999})

    assert orders.get(order["id"])["subtotal_cents"] == 1250


def test_unavailable_item_is_rejected(customer, restaurant, menu):
    database.update_document("menuItems", menu["fries"]["id"], {"is_available": False})

    with pytest.raises(OrderRejected):
        place(customer, restaurant, (menu["fries"], 1))
    assert orders.customer_orders(customer["id"]) == []


def test_item_from_another_restaurant_is_rejected(customer, restaurant, make_user):
    other = make_user("other@example.com", role="restaurant_owner")
    sushi = database.create_document("menuItems", MenuItem(restaurant_id=other["id"], name="Sushi", price_cents=900))

    with pytest.raises(OrderRejected):
        place(customer, restaurant, (sushi, 1))


def test_closed_or_missing_restaurant(customer, restaurant, menu):
    database.update_document("restaurants", restaurant["id"], {"status": "suspended"})
    with pytest.raises(OrderRejected):
        place(customer, restaurant, (menu["fries"], 1))

    with pytest.raises(DocumentNotFound):
        place(customer, {"id": "ghost"}, (menu["fries"], 1))


def test_status_moves_stamp_their_timestamps(customer, restaurant, menu):
    order = place(customer, restaurant, (menu["burger"], 1))

    accepted = advance(order, "accepted")
    assert accepted["accepted_at"] is not None
    assert accepted.get("ready_at") is None

    ready = advance(accepted, "preparing", "readyForPickup")
    assert ready["ready_at"] >= accepted["accepted_at"]
    assert ready["status_updated_by"] == "owner"


def test_illegal_transitions_are_refused(customer, restaurant, menu):
    order = place(customer, restaurant, (menu["burger"], 1))

    with pytest.raises(InvalidStatusTransition):
        orders.update_status(order["id"], "delivered", "owner")
    with pytest.raises(InvalidStatusTransition):
        orders.update_status(order["id"], "assigned", "owner")

    advance(order, "rejected")
    with pytest.raises(InvalidStatusTransition):
        orders.update_status(order["id"], "accepted", "owner")
    assert orders.get(order["id"])["rejected_at"] is not None


def test_status_write_is_conditional_on_what_was_read(customer, restaurant, menu, monkeypatch):
    order = place(customer, restaurant, (menu["burger"], 1))
    real_update = database.update_document

    def racing_update(collection, doc_id, changes, expected=None):
        # a concurrent cancel lands first
        real_update(collection, doc_id, {"status": "cancelled"})
        return real_update(collection, doc_id, changes, expected=expected)

    monkeypatch.setattr(database, "update_document", racing_update)
    with pytest.raises(InvalidStatusTransition) as exc:
        orders.update_status(order["id"], "accepted", "owner")

    assert exc.value.current == "cancelled"
    monkeypatch.undo()
    assert orders.get(order["id"])["status"] == "cancelled"


def test_claim_assigns_a_ready_order(customer, restaurant, menu, driver):
    order = advance(place(customer, restaurant, (menu["burger"], 1)), "accepted", "preparing", "readyForPickup")
    assert [o["id"] for o in orders.available_orders()] == [order["id"]]

    claimed = orders.claim(order["id"], driver)

    assert claimed["status"] == "assigned"
    assert claimed["driver_id"] == driver["id"]
    assert claimed["driver_name"] == "Rick"
    assert claimed["assigned_at"] is not None
    assert orders.available_orders() == []
    assert [o["id"] for o in orders.driver_orders(driver["id"])] == [order["id"]]


def test_claim_needs_ready_status(customer, restaurant, menu, driver):
    order = place(customer, restaurant, (menu["burger"], 1))

    with pytest.raises(InvalidStatusTransition) as exc:
        orders.claim(order["id"], driver)
    assert exc.value.current == "pending"
    assert orders.get(order["id"])["driver_id"] is None


def test_second_claim_loses(customer, restaurant, menu, driver, make_user):
    other = make_user("rider2@example.com", name="Rita", role="delivery_rider")
    order = advance(place(customer, restaurant, (menu["burger"], 1)), "accepted", "readyForPickup")

    orders.claim(order["id"], driver)
    with pytest.raises(InvalidStatusTransition) as exc:
        orders.claim(order["id"], other)

    assert exc.value.current == "assigned"
    assert orders.get(order["id"])["driver_id"] == driver["id"]


def test_claim_refuses_a_ready_order_that_already_has_a_driver(customer, restaurant, menu, driver):
    order = advance(place(customer, restaurant, (menu["burger"], 1)), "accepted", "readyForPickup")
    database.update_document("orders", order["id"], {"driver_id": "someone-else"})

    with pytest.raises(InvalidStatusTransition):
        orders.claim(order["id"], driver)
    assert orders.get(order["id"])["status"] == "readyForPickup"


def test_delivery_completes_and_counts(customer, restaurant, menu, driver):
    order = advance(place(customer, restaurant, (menu["burger"], 1)), "accepted", "readyForPickup")
    orders.claim(order["id"], driver)

    done = advance(order, "out_for_delivery", "delivered", actor=driver["id"])

    assert done["picked_up_at"] is not None
    assert done["delivered_at"] == done["actual_delivery_time"]
    assert database.get_document("restaurants", restaurant["id"])["total_orders"] == 1


def test_permitted_statuses_by_party(customer, restaurant, menu, driver, make_user):
    order = place(customer, restaurant, (menu["burger"], 1))
    owner = database.get_document("users", restaurant["owner_id"])
    stranger = make_user("mallory@example.com")

    assert orders.permitted_statuses(order, owner) == orders.RESTAURANT_STATUSES
    assert orders.permitted_statuses(order, customer) == {"cancelled"}
    assert orders.permitted_statuses(order, stranger) == set()
    assert orders.permitted_statuses(order, driver) == set()

    accepted = advance(order, "accepted")
    assert orders.permitted_statuses(accepted, customer) == set()

    ready = advance(accepted, "readyForPickup")
    assigned = orders.claim(ready["id"], driver)
    assert orders.permitted_statuses(assigned, driver) == orders.DRIVER_STATUSES


def test_listing_and_subscriptions(customer, restaurant, menu, driver):
    seen = []
    orders.subscribe_restaurant(restaurant["id"], seen.append)
    ready = []
    orders.subscribe_available(ready.append)

    first = place(customer, restaurant, (menu["burger"], 1))
    second = place(customer, restaurant, (menu["fries"], 1))
    advance(first, "accepted", "readyForPickup")

    assert [len(s) for s in seen][:3] == [0, 1, 2]
    assert [o["id"] for o in ready[-1]] == [first["id"]]
    assert {o["id"] for o in orders.restaurant_orders(restaurant["id"])} == {first["id"], second["id"]}
    assert len(orders.customer_orders(customer["id"])) == 2

    orders.claim(first["id"], driver)
    assert ready[-1] == []
