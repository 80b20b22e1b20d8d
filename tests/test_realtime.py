import threading

import database
from realtime import SubscriptionHub


def test_deliveries_leave_in_fetch_order():
    hub = SubscriptionHub()
    state = {"n": 0}
    seen = []
    in_callback = threading.Event()
    release = threading.Event()

    def callback(value):
        if value == 1:
            in_callback.set()
            release.wait(5)
        seen.append(value)

    hub.subscribe("orders", lambda: state["n"], callback)

    state["n"] = 1
    slow = threading.Thread(target=hub.publish, args=("orders",), name="slow")
    slow.start()
    assert in_callback.wait(5)

    state["n"] = 2
    fast = threading.Thread(target=hub.publish, args=("orders",), name="fast")
    fast.start()
    fast.join(0.2)
    assert fast.is_alive()  # waits for the slow delivery

    release.set()
    slow.join(5)
    fast.join(5)
    assert seen == [0, 1, 2]


def test_callback_may_write_to_the_collection_it_watches():
    seen = []

    def callback(docs):
        seen.append(len(docs))
        if len(docs) == 1:
            database.create_document("orders", {"status": "pending"})

    database.subscribe("orders", callback)
    database.create_document("orders", {"status": "pending"})

    assert seen == [0, 1, 2]


def test_unsubscribed_listener_gets_nothing():
    hub = SubscriptionHub()
    seen = []
    sub = hub.subscribe("orders", lambda: len(seen), seen.append)
    sub.unsubscribe()
    hub.publish("orders")

    assert seen == [0]
    assert hub.count("orders") == 0
