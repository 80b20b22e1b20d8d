"""
Admin notifications

Alerts live in memory for the lifetime of an admin session and are never
written to the store. Each admin session owns one AdminNotificationStore plus
the pending-application watchers that feed it; closing the session drops the
store and unsubscribes the watchers.
"""

import logging
import random
import threading
import uuid
from datetime import timedelta
from typing import Any, Callable, Dict, List, Optional

import applications
import database
import settings
from realtime import Subscription, SubscriptionHub
from schemas import AdminNotification

logger = logging.getLogger(__name__)

_TOPIC = "notifications"


class AdminNotificationStore:
    def __init__(self):
        self._items: List[AdminNotification] = []
        self._lock = threading.Lock()
        self._hub = SubscriptionHub()

    @property
    def notifications(self) -> List[AdminNotification]:
        with self._lock:
            return [n.model_copy() for n in self._items]

    @property
    def unread_count(self) -> int:
        with self._lock:
            return sum(1 for n in self._items if not n.read)

    def add(
        self,
        type: str,
        title: str,
        message: str,
        priority: str = "medium",
        action_url: Optional[str] = None,
        action_label: Optional[str] = None,
        data: Optional[Dict[str, Any]] = None,
        timestamp=None,
        read: bool = False,
    ) -> AdminNotification:
        notification = AdminNotification(
            id=uuid.uuid4().hex,
            type=type,
            title=title,
            message=message,
            timestamp=timestamp or database.now(),
            read=read,
            priority=priority,
            action_url=action_url,
            action_label=action_label,
            data=data,
        )
        with self._lock:
            self._items.insert(0, notification)
        logger.info("Admin notification [%s] %s", priority, title)
        self._changed()
        return notification

    def mark_as_read(self, notification_id: str) -> bool:
        found = False
        with self._lock:
            for n in self._items:
                if n.id == notification_id:
                    n.read = True
                    found = True
        if found:
            self._changed()
        return found

    def mark_all_as_read(self) -> None:
        with self._lock:
            for n in self._items:
                n.read = True
        self._changed()

    def remove(self, notification_id: str) -> bool:
        with self._lock:
            before = len(self._items)
            self._items = [n for n in self._items if n.id != notification_id]
            removed = len(self._items) != before
        if removed:
            self._changed()
        return removed

    def clear_all(self) -> None:
        with self._lock:
            self._items = []
        self._changed()

    def snapshot(self) -> Dict[str, Any]:
        items = self.notifications
        return {
            "notifications": [n.model_dump() for n in items],
            "unread_count": sum(1 for n in items if not n.read),
        }

    def subscribe(self, callback: Callable[[Dict[str, Any]], None]) -> Subscription:
        return self._hub.subscribe(_TOPIC, self.snapshot, callback)

    def close(self) -> None:
        self._hub.clear()

    def _changed(self) -> None:
        self._hub.publish(_TOPIC)


_WATCHED = {
    "restaurant": {
        "type": "restaurant_approval",
        "label": "Restaurant",
        "action_url": "/admin/partner-requests",
    },
    "delivery": {
        "type": "driver_approval",
        "label": "Driver",
        "action_url": "/admin/partner-requests",
    },
}


class PendingApplicationWatcher:
    """Turns growth of the pending-applications result set into notifications.

    The first delivery only records the count, and so does any delivery that
    follows an empty result. When the count grows by N, the N most recently
    submitted pending applications each produce one notification.
    """

    def __init__(self, store: AdminNotificationStore, app_type: str):
        self.store = store
        self.app_type = app_type
        self.previous_count = 0
        self._first = True
        self._subscription: Optional[Subscription] = None

    def handle_snapshot(self, docs: List[Dict[str, Any]]) -> List[AdminNotification]:
        count = len(docs)
        emitted = []
        if not self._first and self.previous_count != 0 and count > self.previous_count:
            delta = count - self.previous_count
            latest = sorted(
                docs,
                key=lambda d: d.get("submitted_at") or database.to_datetime(0),
                reverse=True,
            )[:delta]
            for doc in latest:
                emitted.append(self._notify(doc))
        self._first = False
        self.previous_count = count
        return emitted

    def _notify(self, doc: Dict[str, Any]) -> AdminNotification:
        meta = _WATCHED[self.app_type]
        label = meta["label"]
        if self.app_type == "restaurant":
            applicant = doc.get("full_name") or doc.get("restaurant_name")
        else:
            applicant = doc.get("full_name")
        return self.store.add(
            type=meta["type"],
            title=f"New {label} Application",
            message=(
                f"{applicant or 'New applicant'} has submitted a {label.lower()} "
                "partnership application and is awaiting approval."
            ),
            priority="high",
            action_url=meta["action_url"],
            action_label="Review Application",
            data={"request_id": doc.get("id"), "request_type": self.app_type},
        )

    def start(self) -> "PendingApplicationWatcher":
        self._subscription = applications.subscribe_pending(self.app_type, self.handle_snapshot)
        return self

    def stop(self) -> None:
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None


_DEMO_TEMPLATES = [
    lambda rng: {
        "type": "restaurant_approval",
        "title": "New Restaurant Application",
        "message": f"{rng.choice(['Pizza Corner', 'Sushi World', 'Taco Bell', 'Burger King'])} has submitted an application",
        "priority": "high",
        "action_url": "/admin/restaurants",
        "action_label": "Review Application",
    },
    lambda rng: {
        "type": "system_alert",
        "title": "System Performance Alert",
        "message": "Database response time has increased by 20%",
        "priority": "medium",
        "action_url": "/admin/settings",
        "action_label": "Check System",
    },
    lambda rng: {
        "type": "user_report",
        "title": "Customer Complaint",
        "message": f"Order #{rng.randint(1000, 9999)} has received a complaint",
        "priority": "medium",
        "action_url": "/admin/users",
        "action_label": "View Details",
    },
]

_DEMO_SEED = [
    (10, False, {
        "type": "restaurant_approval", "title": "New Restaurant Application",
        "message": "Burger Express has submitted an application for approval",
        "priority": "high", "action_url": "/admin/restaurants", "action_label": "Review Application",
    }),
    (25, False, {
        "type": "driver_approval", "title": "Driver Application Pending",
        "message": "John Smith has applied to become a delivery driver",
        "priority": "medium", "action_url": "/admin/deliveries", "action_label": "Review Driver",
    }),
    (45, False, {
        "type": "system_alert", "title": "High Server Load Detected",
        "message": "Server CPU usage has exceeded 85% for the past 15 minutes",
        "priority": "critical", "action_url": "/admin/settings", "action_label": "View System Status",
    }),
    (120, True, {
        "type": "revenue_milestone", "title": "Revenue Milestone Reached",
        "message": "Platform has reached $100K in monthly revenue!",
        "priority": "medium", "action_url": "/admin/analytics", "action_label": "View Analytics",
    }),
    (240, True, {
        "type": "security_alert", "title": "Multiple Failed Login Attempts",
        "message": "Detected 5 failed login attempts from IP 192.168.1.100",
        "priority": "high", "action_url": "/admin/settings", "action_label": "Security Settings",
    }),
]


def seed_demo(store: AdminNotificationStore) -> None:
    now = database.now()
    # oldest first so the newest ends on top
    for minutes, read, fields in reversed(_DEMO_SEED):
        store.add(timestamp=now - timedelta(minutes=minutes), read=read, **fields)


class DemoNotificationFeed:
    """Randomly injects synthetic alerts. Only started when DEMO_NOTIFICATIONS is on."""

    def __init__(self, store: AdminNotificationStore, interval: float, probability: float, rng=None):
        self.store = store
        self.interval = interval
        self.probability = probability
        self.rng = rng or random.Random()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def tick(self) -> Optional[AdminNotification]:
        if self.rng.random() >= self.probability:
            return None
        template = self.rng.choice(_DEMO_TEMPLATES)
        return self.store.add(**template(self.rng))

    def _run(self) -> None:
        while not self._stop.wait(self.interval):
            self.tick()

    def start(self) -> "DemoNotificationFeed":
        self._thread = threading.Thread(target=self._run, name="demo-notifications", daemon=True)
        self._thread.start()
        return self

    def stop(self) -> None:
        self._stop.set()


class AdminSession:
    def __init__(self, session_id: str, user_id: Optional[str] = None, demo: bool = False):
        self.session_id = session_id
        self.user_id = user_id
        self.store = AdminNotificationStore()
        self.watchers = [PendingApplicationWatcher(self.store, t) for t in applications.APPLICATION_COLLECTIONS]
        self.demo_feed: Optional[DemoNotificationFeed] = None
        if demo:
            seed_demo(self.store)
            self.demo_feed = DemoNotificationFeed(
                self.store,
                settings.DEMO_NOTIFICATION_INTERVAL,
                settings.DEMO_NOTIFICATION_PROBABILITY,
            )

    def start(self) -> "AdminSession":
        for watcher in self.watchers:
            watcher.start()
        if self.demo_feed is not None:
            self.demo_feed.start()
        return self

    def close(self) -> None:
        for watcher in self.watchers:
            watcher.stop()
        if self.demo_feed is not None:
            self.demo_feed.stop()
        self.store.close()


class AdminNotificationSessions:
    """Registry of live admin sessions, keyed by auth session id.

    A registered session outlives nothing it depends on: sign-out, account
    deletion and demotion close it directly, and ``sweep`` closes whatever
    an ``is_alive`` check no longer accepts (expired or deleted sessions).
    """

    def __init__(self, demo: Optional[bool] = None):
        self.demo = settings.DEMO_NOTIFICATIONS if demo is None else demo
        self._sessions: Dict[str, AdminSession] = {}
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._sweeper: Optional[threading.Thread] = None

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def open(self, session_id: str, user_id: Optional[str] = None) -> AdminSession:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                session = AdminSession(session_id, user_id=user_id, demo=self.demo)
                self._sessions[session_id] = session
                created = True
            else:
                created = False
        if created:
            session.start()
            logger.info("Opened admin notification session %s", session_id)
        return session

    def get(self, session_id: str) -> Optional[AdminSession]:
        with self._lock:
            return self._sessions.get(session_id)

    def close(self, session_id: str) -> None:
        with self._lock:
            session = self._sessions.pop(session_id, None)
        if session is not None:
            session.close()
            logger.info("Closed admin notification session %s", session_id)

    def close_user(self, user_id: str) -> int:
        with self._lock:
            ids = [sid for sid, s in self._sessions.items() if s.user_id == user_id]
        for sid in ids:
            self.close(sid)
        return len(ids)

    def sweep(self, is_alive: Callable[[str], bool]) -> int:
        """Close every session ``is_alive`` rejects. Returns how many were closed."""
        with self._lock:
            ids = list(self._sessions)
        closed = 0
        for sid in ids:
            try:
                alive = is_alive(sid)
            except Exception:
                logger.exception("Liveness check for admin session %s failed", sid)
                continue
            if not alive:
                self.close(sid)
                closed += 1
        if closed:
            logger.info("Swept %d stale admin notification sessions", closed)
        return closed

    def _run_sweeper(self, is_alive: Callable[[str], bool], interval: float) -> None:
        while not self._stop.wait(interval):
            self.sweep(is_alive)

    def start_sweeper(self, is_alive: Callable[[str], bool], interval: float) -> None:
        if self._sweeper is not None:
            return
        self._stop.clear()
        self._sweeper = threading.Thread(
            target=self._run_sweeper, args=(is_alive, interval), name="admin-session-sweeper", daemon=True
        )
        self._sweeper.start()

    def close_all(self) -> None:
        self._stop.set()
        self._sweeper = None
        with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
        for session in sessions:
            session.close()
