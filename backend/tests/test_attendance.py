"""
Tests for join/leave endpoints and the attendee_changed broadcast.
"""

import time

import pytest
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from eventhub.core.security import create_access_token
from eventhub.models.user import User


async def _user_headers(db: AsyncSession, username: str) -> dict:
    user = User(email=f"{username}@example.com", username=username, hashed_password="x")
    db.add(user)
    await db.commit()
    await db.refresh(user)
    return {"Authorization": f"Bearer {create_access_token(user.id, user.username)}"}


def _usernames(event: dict) -> list[str]:
    return [a["username"] for a in event["attendees"]]


@pytest.mark.asyncio
async def test_join_event(client: AsyncClient, other_headers, test_event):
    response = await client.post(f"/api/v1/events/{test_event.id}/attend", headers=other_headers)
    assert response.status_code == 200
    data = response.json()
    assert data["message"] == "You have joined the event!"
    assert _usernames(data["event"]) == ["bob"]
    assert data["event"]["attendees_count"] == 1


@pytest.mark.asyncio
async def test_creator_can_attend_own_event(client: AsyncClient, auth_headers, test_event):
    response = await client.post(f"/api/v1/events/{test_event.id}/attend", headers=auth_headers)
    assert response.status_code == 200
    assert _usernames(response.json()["event"]) == ["testuser"]


@pytest.mark.asyncio
async def test_join_twice_rejected(client: AsyncClient, other_headers, test_event):
    """Second join returns 400 and leaves the attendee list unchanged."""
    first = await client.post(f"/api/v1/events/{test_event.id}/attend", headers=other_headers)
    assert first.status_code == 200

    second = await client.post(f"/api/v1/events/{test_event.id}/attend", headers=other_headers)
    assert second.status_code == 400

    event = (await client.get(f"/api/v1/events/{test_event.id}")).json()
    assert _usernames(event) == ["bob"]


@pytest.mark.asyncio
async def test_leave_event(client: AsyncClient, other_headers, test_event):
    await client.post(f"/api/v1/events/{test_event.id}/attend", headers=other_headers)

    response = await client.delete(f"/api/v1/events/{test_event.id}/attend", headers=other_headers)
    assert response.status_code == 200
    data = response.json()
    assert data["message"] == "You have left the event!"
    assert data["event"]["attendees"] == []
    assert data["event"]["attendees_count"] == 0


@pytest.mark.asyncio
async def test_leave_when_not_attending(client: AsyncClient, other_headers, test_event):
    response = await client.delete(f"/api/v1/events/{test_event.id}/attend", headers=other_headers)
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_leave_twice_rejected(client: AsyncClient, other_headers, test_event):
    await client.post(f"/api/v1/events/{test_event.id}/attend", headers=other_headers)
    first = await client.delete(f"/api/v1/events/{test_event.id}/attend", headers=other_headers)
    assert first.status_code == 200

    second = await client.delete(f"/api/v1/events/{test_event.id}/attend", headers=other_headers)
    assert second.status_code == 400


@pytest.mark.asyncio
async def test_join_leave_join(client: AsyncClient, other_headers, test_event):
    url = f"/api/v1/events/{test_event.id}/attend"
    await client.post(url, headers=other_headers)
    await client.delete(url, headers=other_headers)
    final = await client.post(url, headers=other_headers)

    assert final.status_code == 200
    assert _usernames(final.json()["event"]) == ["bob"]
    assert final.json()["event"]["attendees_count"] == 1


@pytest.mark.asyncio
async def test_attendance_scenario(client: AsyncClient, db_session, test_event):
    """alice joins, alice again, bob joins, alice leaves."""
    url = f"/api/v1/events/{test_event.id}/attend"
    alice = await _user_headers(db_session, "alice")
    bob = await _user_headers(db_session, "bob")

    r = await client.post(url, headers=alice)
    assert _usernames(r.json()["event"]) == ["alice"]
    assert r.json()["event"]["attendees_count"] == 1

    r = await client.post(url, headers=alice)
    assert r.status_code == 400

    r = await client.post(url, headers=bob)
    assert _usernames(r.json()["event"]) == ["alice", "bob"]
    assert r.json()["event"]["attendees_count"] == 2

    r = await client.delete(url, headers=alice)
    assert _usernames(r.json()["event"]) == ["bob"]
    assert r.json()["event"]["attendees_count"] == 1


@pytest.mark.asyncio
async def test_join_broadcasts_to_event_room(client: AsyncClient, other_headers, test_event, make_socket):
    watcher = await make_socket(room=test_event.id)
    elsewhere = await make_socket(room=test_event.id + 1)
    lobby = await make_socket()

    await client.post(f"/api/v1/events/{test_event.id}/attend", headers=other_headers)

    changes = watcher.of_type("attendee_changed")
    assert len(changes) == 1
    data = changes[0]["data"]
    assert data["event_id"] == test_event.id
    assert [a["username"] for a in data["attendees"]] == ["bob"]
    assert data["attendees_count"] == 1

    assert elsewhere.sent == []
    assert lobby.sent == []


@pytest.mark.asyncio
async def test_leave_broadcasts_same_shape(client: AsyncClient, other_headers, test_event, make_socket):
    watcher = await make_socket(room=test_event.id)
    url = f"/api/v1/events/{test_event.id}/attend"
    await client.post(url, headers=other_headers)
    await client.delete(url, headers=other_headers)

    joined, left = watcher.of_type("attendee_changed")
    assert set(joined["data"]) == set(left["data"])
    assert left["data"]["attendees"] == []
    assert left["data"]["attendees_count"] == 0


@pytest.mark.asyncio
async def test_unauthenticated_join_no_change_no_broadcast(client: AsyncClient, test_event, make_socket):
    watcher = await make_socket(room=test_event.id)

    response = await client.post(f"/api/v1/events/{test_event.id}/attend")
    assert response.status_code == 401

    assert watcher.sent == []
    event = (await client.get(f"/api/v1/events/{test_event.id}")).json()
    assert event["attendees_count"] == 0


@pytest.mark.asyncio
async def test_join_nonexistent_event(client: AsyncClient, other_headers, make_socket):
    watcher = await make_socket(room=99999)
    lobby = await make_socket()

    response = await client.post("/api/v1/events/99999/attend", headers=other_headers)
    assert response.status_code == 404
    assert watcher.sent == []
    assert lobby.sent == []


@pytest.mark.asyncio
async def test_leave_nonexistent_event(client: AsyncClient, other_headers):
    response = await client.delete("/api/v1/events/99999/attend", headers=other_headers)
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_rejected_join_no_broadcast(client: AsyncClient, other_headers, test_event, make_socket):
    await client.post(f"/api/v1/events/{test_event.id}/attend", headers=other_headers)
    watcher = await make_socket(room=test_event.id)

    response = await client.post(f"/api/v1/events/{test_event.id}/attend", headers=other_headers)
    assert response.status_code == 400
    assert watcher.sent == []


@pytest.mark.asyncio
async def test_dead_socket_does_not_fail_join(client: AsyncClient, other_headers, test_event, make_socket, broadcaster):
    dead = await make_socket(room=test_event.id, fail=True)
    alive = await make_socket(room=test_event.id)

    response = await client.post(f"/api/v1/events/{test_event.id}/attend", headers=other_headers)
    assert response.status_code == 200
    assert len(alive.of_type("attendee_changed")) == 1
    assert dead.connection_id not in broadcaster.active_connections


@pytest.mark.asyncio
async def test_joins_on_missing_events_leave_no_locks(client: AsyncClient, other_headers, event_locks):
    for event_id in range(100000, 100020):
        response = await client.post(f"/api/v1/events/{event_id}/attend", headers=other_headers)
        assert response.status_code == 404

    assert len(event_locks) == 0


@pytest.mark.asyncio
async def test_stalled_socket_does_not_hold_up_join(
    client: AsyncClient, other_headers, test_event, make_socket, broadcaster
):
    broadcaster.send_timeout = 0.05
    event_id = test_event.id
    stalled = await make_socket(room=event_id, delay=30)
    watcher = await make_socket(room=event_id)

    started = time.perf_counter()
    response = await client.post(f"/api/v1/events/{event_id}/attend", headers=other_headers)
    elapsed = time.perf_counter() - started

    assert response.status_code == 200
    assert elapsed < 5
    assert len(watcher.of_type("attendee_changed")) == 1
    assert stalled.connection_id not in broadcaster.active_connections
