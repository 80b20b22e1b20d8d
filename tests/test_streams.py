import asyncio
import json

from fastapi.testclient import TestClient

import applications
import database
import identity
import main

DRIVER = {
    "full_name": "Alice",
    "phone": "555-0100",
    "address": "2 Side St",
    "license_number": "D123",
    "vehicle_type": "bicycle",
}


def payload(chunk):
    assert chunk.startswith("data: ") and chunk.endswith("\n\n")
    return json.loads(chunk[len("data: "):])


async def next_event(body):
    return payload(await asyncio.wait_for(body.__anext__(), 5))


async def read_until(body, predicate):
    while True:
        event = await next_event(body)
        if predicate(event):
            return event


async def in_thread(fn, *args):
    # writes come from worker threads, like sync routes do
    return await asyncio.get_running_loop().run_in_executor(None, fn, *args)


def test_application_stream_follows_submission_and_review(make_user):
    user = make_user("rider@example.com")
    before = database.hub.count("deliveryApplications")

    async def scenario():
        response = await main.stream_my_application("delivery", user=user)
        assert response.media_type == "text/event-stream"
        body = response.body_iterator
        assert (await next_event(body))["type"] == "ping"
        assert await next_event(body) is None
        assert database.hub.count("deliveryApplications") == before + 1

        await in_thread(applications.submit, "delivery", user["id"], DRIVER)
        pending = await read_until(body, lambda e: e and e["status"] == "pending")
        assert pending["license_number"] == "D123"

        await in_thread(applications.reject, "delivery", user["id"], "admin", "Expired license")
        rejected = await read_until(body, lambda e: e["status"] == "rejected")
        assert rejected["rejection_reason"] == "Expired license"
        await body.aclose()

    asyncio.run(scenario())
    assert database.hub.count("deliveryApplications") == before


def test_pending_stream_for_admins(make_user):
    admin = make_user("admin@example.com", role="admin")
    applicant = make_user("rider@example.com")
    before = database.hub.count("deliveryApplications")

    async def scenario():
        body = (await main.admin_stream_pending("delivery", _=admin)).body_iterator
        await next_event(body)
        assert await next_event(body) == []

        await in_thread(applications.submit, "delivery", applicant["id"], DRIVER)
        pending = await read_until(body, lambda e: len(e) == 1)
        assert pending[0]["id"] == applicant["id"]
        await body.aclose()

    asyncio.run(scenario())
    assert database.hub.count("deliveryApplications") == before


def test_notification_stream_reports_new_applications(make_user):
    admin = dict(make_user("admin@example.com", role="admin"), session_id="sid-stream")
    riders = [make_user(f"rider{i}@example.com", name=f"Rider {i}") for i in range(2)]

    async def scenario():
        body = (await main.admin_stream_notifications(admin=admin)).body_iterator
        await next_event(body)
        assert (await next_event(body))["unread_count"] == 0

        for rider in riders:
            await in_thread(applications.submit, "delivery", rider["id"], dict(DRIVER, full_name=rider["name"]))
        snapshot = await read_until(body, lambda e: e["unread_count"] == 1)
        assert snapshot["notifications"][0]["type"] == "driver_approval"
        await body.aclose()

    try:
        asyncio.run(scenario())
        session = main.notification_sessions.get("sid-stream")
        assert session is not None
        assert session.store._hub.count() == 0
    finally:
        main.notification_sessions.close_all()


def test_profile_stream(make_user):
    user = make_user("ana@example.com")
    before = database.hub.count("users")

    async def scenario():
        body = (await main.stream_me(user=user)).body_iterator
        await next_event(body)
        assert (await next_event(body))["email"] == "ana@example.com"

        await in_thread(identity.update_profile, user["id"], {"phone": "555-0199"})
        updated = await read_until(body, lambda e: e["phone"] == "555-0199")
        assert updated["id"] == user["id"]
        await body.aclose()

    asyncio.run(scenario())
    assert database.hub.count("users") == before


def test_stream_routes_check_the_caller(make_user):
    make_user("ana@example.com")
    token = identity.sign_in("ana@example.com", "secret123")["token"]
    client = TestClient(main.app)

    assert client.get("/applications/delivery/me/stream").status_code == 401
    assert client.get("/applications/delivery/me/stream?token=junk").status_code == 401
    assert client.get(f"/admin/notifications/stream?token={token}").status_code == 403
    assert client.get(f"/admin/applications/delivery/pending/stream?token={token}").status_code == 403
    assert client.get(f"/orders/available/stream?token={token}").status_code == 403
    assert database.hub.count() == 0
