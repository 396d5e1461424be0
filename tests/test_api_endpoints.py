"""Tests for API endpoints."""

import pytest
from datetime import datetime, timedelta
from fastapi import WebSocketDisconnect

from focusgrid.auth.jwt import create_access_token
from focusgrid.local.actions import create_task, update_task
from focusgrid.models.timestamps import utcnow
from focusgrid.sync.change_feed import ChangeFeed, ChangeFeedSubscriber
from focusgrid.sync.coordinator import SyncCoordinator
from focusgrid.sync.remote import HttpRemoteStore, RemoteChangeStream, RemoteStoreError


class TestHealthEndpoint:
    """Test health check endpoint."""

    def test_health_check(self, test_client):
        response = test_client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"


class TestSyncEndpoints:
    """Remote store contract over HTTP."""

    def test_requires_auth(self, test_client):
        assert test_client.get("/sync/tasks").status_code == 401
        assert test_client.put("/sync/tasks/t1", json={"title": "x"}).status_code == 401

    def test_invalid_token_rejected(self, test_client):
        response = test_client.get("/sync/tasks", headers={"Authorization": "Bearer not-a-jwt"})
        assert response.status_code == 401

    def test_upsert_and_list(self, test_client, auth_headers, test_user_id):
        response = test_client.put(
            "/sync/tasks/task-1",
            json={"title": "Buy milk", "status": "todo", "updated_at": "2020-01-01T00:00:00Z"},
            headers=auth_headers,
        )
        assert response.status_code == 200
        row = response.json()["task"]
        assert row["id"] == "task-1"
        assert row["user_id"] == test_user_id
        # Server stamps updated_at itself
        assert row["updated_at"] > "2020-01-01T00:00:00"

        listed = test_client.get("/sync/tasks", headers=auth_headers).json()["tasks"]
        assert [r["id"] for r in listed] == ["task-1"]

        after = test_client.get("/sync/tasks", params={"since": row["updated_at"]}, headers=auth_headers)
        assert after.json()["tasks"] == []

    def test_body_owner_is_ignored(self, test_client, auth_headers, test_user_id):
        response = test_client.put(
            "/sync/tasks/task-1",
            json={"title": "Sneaky", "user_id": "someone-else"},
            headers=auth_headers,
        )
        assert response.json()["task"]["user_id"] == test_user_id

    def test_foreign_id_forbidden(self, test_client, auth_headers, other_user_id):
        other_headers = {"Authorization": f"Bearer {create_access_token(other_user_id)}"}
        test_client.put("/sync/tasks/shared", json={"title": "mine"}, headers=auth_headers)

        response = test_client.put("/sync/tasks/shared", json={"title": "theirs"}, headers=other_headers)
        assert response.status_code == 403

    def test_list_is_owner_scoped(self, test_client, auth_headers, other_user_id):
        test_client.put("/sync/tasks/task-1", json={"title": "mine"}, headers=auth_headers)
        other_headers = {"Authorization": f"Bearer {create_access_token(other_user_id)}"}

        assert test_client.get("/sync/tasks", headers=other_headers).json()["tasks"] == []

    def test_delete(self, test_client, auth_headers):
        test_client.put("/sync/tasks/task-1", json={"title": "bye"}, headers=auth_headers)

        first = test_client.delete("/sync/tasks/task-1", headers=auth_headers)
        second = test_client.delete("/sync/tasks/task-1", headers=auth_headers)

        assert first.json() == {"deleted": True}
        assert second.json() == {"deleted": False}

    def test_limit_bounds(self, test_client, auth_headers):
        assert test_client.get("/sync/tasks", params={"limit": 0}, headers=auth_headers).status_code == 422
        assert test_client.get("/sync/tasks", params={"limit": 1001}, headers=auth_headers).status_code == 422

    def test_writes_publish_change_events(self, test_client, auth_headers, change_feed, test_user_id):
        events = []
        change_feed.subscribe(test_user_id, events.append)

        test_client.put("/sync/tasks/task-1", json={"title": "live"}, headers=auth_headers)
        test_client.delete("/sync/tasks/task-1", headers=auth_headers)

        assert [e.event_type for e in events] == ["insert", "delete"]


class TestChangeStreamEndpoint:
    """Owner-scoped change events over WebSocket."""

    def test_streams_own_writes_only(self, test_client, auth_headers, other_user_id):
        other_headers = {"Authorization": f"Bearer {create_access_token(other_user_id)}"}
        with test_client.websocket_connect("/sync/changes", headers=auth_headers) as websocket:
            test_client.put("/sync/tasks/theirs", json={"title": "Not mine"}, headers=other_headers)
            test_client.put("/sync/tasks/mine", json={"title": "Mine"}, headers=auth_headers)
            event = websocket.receive_json()

        assert event["event_type"] == "insert"
        assert event["new"]["id"] == "mine"
        assert event["new"]["title"] == "Mine"

    def test_streams_deletes(self, test_client, auth_headers, test_user_id):
        test_client.put("/sync/tasks/gone", json={"title": "Short-lived"}, headers=auth_headers)
        with test_client.websocket_connect("/sync/changes", headers=auth_headers) as websocket:
            test_client.delete("/sync/tasks/gone", headers=auth_headers)
            event = websocket.receive_json()

        assert event["event_type"] == "delete"
        assert event["old"] == {"id": "gone", "user_id": test_user_id}

    def test_token_query_parameter(self, test_client, auth_headers, test_user_id):
        token = create_access_token(test_user_id)
        with test_client.websocket_connect(f"/sync/changes?token={token}") as websocket:
            test_client.put("/sync/tasks/browser", json={"title": "From a browser tab"}, headers=auth_headers)
            assert websocket.receive_json()["new"]["id"] == "browser"

    def test_rejects_missing_token(self, test_client):
        with pytest.raises(WebSocketDisconnect) as exc_info:
            with test_client.websocket_connect("/sync/changes"):
                pass
        assert exc_info.value.code == 1008

    def test_rejects_invalid_token(self, test_client, change_feed, test_user_id):
        with pytest.raises(WebSocketDisconnect) as exc_info:
            with test_client.websocket_connect("/sync/changes", headers={"Authorization": "Bearer not-a-jwt"}):
                pass
        assert exc_info.value.code == 1008
        assert change_feed.subscriber_count(test_user_id) == 0

    def test_disconnect_unsubscribes(self, test_client, auth_headers, change_feed, test_user_id):
        with test_client.websocket_connect("/sync/changes", headers=auth_headers):
            assert change_feed.subscriber_count(test_user_id) == 1
        assert change_feed.subscriber_count(test_user_id) == 0

    def test_frames_merge_into_device_store(self, test_client, auth_headers, local_store, test_user_id):
        subscriber = ChangeFeedSubscriber(local_store, ChangeFeed(), test_user_id)
        stream = RemoteChangeStream("http://testserver", create_access_token(test_user_id), subscriber.handle_event)
        with test_client.websocket_connect("/sync/changes", headers=auth_headers) as websocket:
            test_client.put("/sync/tasks/live-1", json={"title": "Live"}, headers=auth_headers)
            stream.handle_message(websocket.receive_text())

        assert local_store.get(test_user_id, "live-1").title == "Live"
        assert local_store.outbox.pending_count(test_user_id) == 0


class TestHttpRemoteStore:
    """The HTTP client against the real app."""

    def test_sync_through_http(self, test_client, local_store, test_user_id):
        remote = HttpRemoteStore("http://testserver", create_access_token(test_user_id), session=test_client)
        coordinator = SyncCoordinator(local_store, remote)
        task = create_task(local_store, test_user_id, "over http")

        result = coordinator.sync_now(test_user_id)

        assert result.flushed == 1
        assert result.pulled == 1
        assert local_store.outbox.pending_count(test_user_id) == 0
        assert local_store.get(test_user_id, task.id).title == "over http"

    def test_two_devices_over_http(self, test_client, make_local_store, test_user_id):
        token = create_access_token(test_user_id)
        device1, device2 = make_local_store(), make_local_store()
        sync1 = SyncCoordinator(device1, HttpRemoteStore("http://testserver", token, session=test_client))
        sync2 = SyncCoordinator(device2, HttpRemoteStore("http://testserver", token, session=test_client))

        task = create_task(device1, test_user_id, "Task A")
        sync1.sync_now(test_user_id)
        sync2.sync_now(test_user_id)
        update_task(device2, test_user_id, task.id, {"title": "Task A (edited on device 2)"})
        sync2.sync_now(test_user_id)
        sync1.sync_now(test_user_id)

        assert device1.get(test_user_id, task.id).title == "Task A (edited on device 2)"

    def test_rejected_request_raises(self, test_client, test_user_id):
        remote = HttpRemoteStore("http://testserver", "bad-token", session=test_client)
        with pytest.raises(RemoteStoreError) as exc_info:
            remote.fetch_changes(test_user_id, datetime(1970, 1, 1), 10)
        assert exc_info.value.status_code == 401

    def test_token_required(self):
        with pytest.raises(ValueError):
            HttpRemoteStore("http://testserver", "")


class TestPushSubscriptionEndpoints:
    """Registering and removing push endpoints."""

    def test_subscribe_and_unsubscribe(self, test_client, auth_headers, push_repository, test_user_id):
        body = {"endpoint": "https://push.example/a", "p256dh": "key", "auth": "secret"}

        created = test_client.post("/push/subscriptions", json=body, headers=auth_headers)
        assert created.status_code == 201
        assert created.json()["user_id"] == test_user_id

        # Re-subscribing refreshes keys instead of duplicating
        test_client.post("/push/subscriptions", json={**body, "p256dh": "new-key"}, headers=auth_headers)
        endpoints = push_repository.list_for_users([test_user_id])[test_user_id]
        assert [e.p256dh for e in endpoints] == ["new-key"]

        removed = test_client.request(
            "DELETE", "/push/subscriptions", json={"endpoint": body["endpoint"]}, headers=auth_headers
        )
        assert removed.json() == {"deleted": True}
        assert push_repository.list_for_users([test_user_id]) == {}

    def test_subscribe_requires_auth(self, test_client):
        response = test_client.post(
            "/push/subscriptions", json={"endpoint": "https://push.example/a", "p256dh": "k", "auth": "a"}
        )
        assert response.status_code == 401


class TestPushSend:
    """Internal direct push endpoint."""

    BODY = {
        "subscription": {"endpoint": "https://push.example/a", "p256dh": "k", "auth": "a"},
        "payload": {"title": "Hi", "body": "There", "url": "/"},
    }

    def test_rejected_without_configured_secret(self, test_client, monkeypatch):
        monkeypatch.delenv("INTERNAL_API_SECRET", raising=False)
        response = test_client.post("/push/send", json=self.BODY, headers={"X-API-Key": "anything"})
        assert response.status_code == 401

    def test_rejected_with_wrong_secret(self, test_client, monkeypatch):
        monkeypatch.setenv("INTERNAL_API_SECRET", "s3cret")
        response = test_client.post("/push/send", json=self.BODY, headers={"X-API-Key": "wrong"})
        assert response.status_code == 401

    def test_accepts_api_key_or_bearer(self, test_client, monkeypatch, push_transport):
        monkeypatch.setenv("INTERNAL_API_SECRET", "s3cret")

        by_key = test_client.post("/push/send", json=self.BODY, headers={"X-API-Key": "s3cret"})
        by_bearer = test_client.post("/push/send", json=self.BODY, headers={"Authorization": "Bearer s3cret"})

        assert by_key.status_code == 200
        assert by_bearer.status_code == 200
        assert len(push_transport.sent) == 2

    def test_delivery_failure_is_bad_gateway(self, test_client, monkeypatch, push_transport):
        monkeypatch.setenv("INTERNAL_API_SECRET", "s3cret")
        push_transport.failures["https://push.example/a"] = 500

        response = test_client.post("/push/send", json=self.BODY, headers={"X-API-Key": "s3cret"})
        assert response.status_code == 502


class TestCronDispatch:
    """Scheduled due-task trigger."""

    def test_rejected_without_credentials(self, test_client, monkeypatch):
        monkeypatch.setenv("CRON_SECRET", "cron")
        assert test_client.post("/cron/dispatch-due").status_code == 401

    def test_rejected_when_secret_unset(self, test_client, monkeypatch):
        monkeypatch.delenv("CRON_SECRET", raising=False)
        response = test_client.post("/cron/dispatch-due", headers={"Authorization": "Bearer "})
        assert response.status_code == 401

    def test_accepts_scheduler_marker(self, test_client, monkeypatch):
        monkeypatch.delenv("CRON_SECRET", raising=False)
        response = test_client.post("/cron/dispatch-due", headers={"X-Scheduler-Cron": "true"})
        assert response.status_code == 200
        assert response.json()["scanned"] == 0

    def test_accepts_bearer_secret(self, test_client, monkeypatch):
        monkeypatch.setenv("CRON_SECRET", "cron")
        response = test_client.post("/cron/dispatch-due", headers={"Authorization": "Bearer cron"})
        assert response.status_code == 200

    def test_dispatches_due_task(
        self, test_client, monkeypatch, auth_headers, push_repository, push_transport, test_user_id
    ):
        monkeypatch.setenv("CRON_SECRET", "cron")
        due_at = utcnow() + timedelta(minutes=2)
        test_client.put(
            "/sync/tasks/due-1",
            json={
                "title": "Stand-up",
                "scheduled_date": due_at.date().isoformat(),
                "due_time": due_at.time().replace(microsecond=0).isoformat(),
                "timezone": "UTC",
            },
            headers=auth_headers,
        )
        push_repository.upsert(test_user_id, "https://push.example/phone", "k", "a")

        response = test_client.post(
            "/cron/dispatch-due", params={"window": "10"}, headers={"Authorization": "Bearer cron"}
        )

        assert response.status_code == 200
        assert response.json()["notified_tasks"] == 1
        endpoint, payload = push_transport.sent[0]
        assert endpoint == "https://push.example/phone"
        assert payload.tag == "task-due-1"

    def test_non_numeric_window_falls_back(self, test_client):
        response = test_client.post(
            "/cron/dispatch-due", params={"window": "soon"}, headers={"X-Scheduler-Cron": "1"}
        )
        assert response.status_code == 200
