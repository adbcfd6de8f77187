"""Integration tests: the HTTP API end to end."""

from __future__ import annotations

import pytest
from httpx import AsyncClient


async def _create_chart(client: AsyncClient, headers: dict, **overrides) -> dict:
    body = {"title": "Speed Chess", "game": "chess", "entry_fee": 20, "max_participants": 2}
    body.update(overrides)
    response = await client.post("/api/v1/charts", json=body, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()


class TestHealth:
    @pytest.mark.asyncio
    async def test_health(self, client: AsyncClient):
        response = await client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy", "connections": 0}

    @pytest.mark.asyncio
    async def test_ready_without_redis(self, client: AsyncClient):
        response = await client.get("/ready")
        data = response.json()
        assert data["status"] == "ready"
        assert data["checks"] == {"database": "ok", "redis": "disabled"}

    @pytest.mark.asyncio
    async def test_version(self, client: AsyncClient):
        response = await client.get("/version")
        assert response.json()["version"] == "0.1.0"

    @pytest.mark.asyncio
    async def test_request_id_echoed(self, client: AsyncClient):
        response = await client.get("/health", headers={"X-Request-Id": "abc-123"})
        assert response.headers["X-Request-Id"] == "abc-123"

    @pytest.mark.asyncio
    async def test_malformed_request_id_replaced(self, client: AsyncClient):
        response = await client.get("/health", headers={"X-Request-Id": "x" * 65})
        request_id = response.headers["X-Request-Id"]
        assert request_id != "x" * 65
        assert len(request_id) == 32

    @pytest.mark.asyncio
    async def test_generated_request_id(self, client: AsyncClient):
        first = await client.get("/health")
        second = await client.get("/health")
        assert first.headers["X-Request-Id"] != second.headers["X-Request-Id"]

    @pytest.mark.asyncio
    async def test_cors_preflight(self, client: AsyncClient):
        response = await client.options(
            "/api/v1/charts",
            headers={"Origin": "http://localhost:5173", "Access-Control-Request-Method": "POST"},
        )
        assert response.status_code == 200
        assert response.headers["access-control-allow-origin"] == "http://localhost:5173"


class TestAuthGuard:
    @pytest.mark.asyncio
    async def test_missing_token(self, client: AsyncClient):
        response = await client.get("/api/v1/users/me")
        assert response.status_code == 401
        assert response.json()["code"] == "NO_TOKEN"

    @pytest.mark.asyncio
    async def test_bad_token(self, client: AsyncClient):
        response = await client.get("/api/v1/users/me", headers={"Authorization": "Bearer nope"})
        assert response.status_code == 401
        assert response.json()["code"] == "INVALID_TOKEN"

    @pytest.mark.asyncio
    async def test_me(self, client: AsyncClient, make_user, headers_for):
        alice = await make_user("alice", balance=100)
        response = await client.get("/api/v1/users/me", headers=headers_for(alice))
        assert response.status_code == 200
        data = response.json()
        assert data["username"] == "alice"
        assert data["balance"] == 100


class TestMatchFlow:
    @pytest.mark.asyncio
    async def test_create_join_complete(self, client: AsyncClient, make_user, headers_for):
        alice = await make_user("alice", balance=100)
        bob = await make_user("bob", balance=100)
        carol = await make_user("carol", balance=100)

        chart = await _create_chart(client, headers_for(alice))
        assert chart["participant_count"] == 1
        assert chart["arena_id"] is None

        joined = await client.post(f"/api/v1/charts/{chart['id']}/join", headers=headers_for(bob))
        assert joined.status_code == 200
        data = joined.json()
        assert data["message"] == "Match started"
        assert data["chart"]["status"] == "in-progress"
        arena_id = data["arena_id"]
        assert data["chart"]["arena_id"] == arena_id

        full = await client.post(f"/api/v1/charts/{chart['id']}/join", headers=headers_for(carol))
        assert full.status_code == 409
        assert full.json() == {"detail": "Chart is full", "code": "CHART_FULL"}

        live = await client.get("/api/v1/arenas/live")
        assert [a["id"] for a in live.json()["arenas"]] == [arena_id]

        detail = await client.get(f"/api/v1/arenas/{arena_id}")
        assert detail.status_code == 200
        assert [p["user_id"] for p in detail.json()["players"]] == [alice.id, bob.id]

        forbidden = await client.post(
            f"/api/v1/arenas/{arena_id}/complete", json={"winner_id": carol.id}, headers=headers_for(carol),
        )
        assert forbidden.status_code == 403

        done = await client.post(
            f"/api/v1/arenas/{arena_id}/complete", json={"winner_id": alice.id}, headers=headers_for(bob),
        )
        assert done.status_code == 200
        assert done.json() == {"arena_id": arena_id, "winner_id": alice.id, "prize": 40, "already_settled": False}

        again = await client.post(
            f"/api/v1/arenas/{arena_id}/complete", json={"winner_id": bob.id}, headers=headers_for(alice),
        )
        assert again.status_code == 200
        assert again.json()["already_settled"] is True
        assert again.json()["winner_id"] == alice.id

        me = await client.get("/api/v1/users/me", headers=headers_for(alice))
        assert me.json()["balance"] == 120
        assert me.json()["charts_won"] == 1

        history = await client.get("/api/v1/transactions", headers=headers_for(alice))
        assert [t["type"] for t in history.json()["transactions"]] == ["prize", "entry_fee", "bonus"]

    @pytest.mark.asyncio
    async def test_pause_and_resume(self, client: AsyncClient, make_user, headers_for):
        alice = await make_user("alice", balance=100)
        bob = await make_user("bob", balance=100)
        chart = await _create_chart(client, headers_for(alice), entry_fee=0)
        arena_id = (await client.post(f"/api/v1/charts/{chart['id']}/join", headers=headers_for(bob))).json()["arena_id"]

        paused = await client.post(f"/api/v1/arenas/{arena_id}/pause", headers=headers_for(alice))
        assert paused.json() == {"arena_id": arena_id, "status": "paused"}
        twice = await client.post(f"/api/v1/arenas/{arena_id}/pause", headers=headers_for(bob))
        assert twice.status_code == 409
        assert twice.json()["code"] == "INVALID_TRANSITION"
        resumed = await client.post(f"/api/v1/arenas/{arena_id}/resume", headers=headers_for(bob))
        assert resumed.json()["status"] == "live"

    @pytest.mark.asyncio
    async def test_unknown_arena(self, client: AsyncClient):
        response = await client.get("/api/v1/arenas/404")
        assert response.status_code == 404
        assert response.json()["code"] == "ARENA_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_schema_validation(self, client: AsyncClient, make_user, headers_for):
        alice = await make_user("alice", balance=100)
        response = await client.post(
            "/api/v1/charts", json={"title": "No fee", "game": "chess"}, headers=headers_for(alice),
        )
        assert response.status_code == 422
        assert response.json()["code"] == "VALIDATION_ERROR"

    @pytest.mark.asyncio
    async def test_business_validation(self, client: AsyncClient, make_user, headers_for):
        alice = await make_user("alice", balance=100)
        response = await client.post(
            "/api/v1/charts",
            json={"title": "Crowd", "game": "chess", "entry_fee": 0, "max_participants": 50},
            headers=headers_for(alice),
        )
        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_PARTICIPANTS"


class TestSupport:
    @pytest.mark.asyncio
    async def test_donation_and_shoutout(self, client: AsyncClient, make_user, headers_for):
        host = await make_user("host")
        alice = await make_user("alice", balance=100)
        bob = await make_user("bob", balance=50)
        chart = await _create_chart(client, headers_for(host), entry_fee=0)

        donation = await client.post(
            "/api/v1/donations",
            json={"chart_id": chart["id"], "recipient_id": bob.id, "amount": 30, "message": "gl"},
            headers=headers_for(alice),
        )
        assert donation.status_code == 201
        assert donation.json()["status"] == "completed"

        shout = await client.post(
            "/api/v1/shoutouts",
            json={"chart_id": chart["id"], "recipient_id": bob.id, "message": "nice"},
            headers=headers_for(alice),
        )
        assert shout.status_code == 201
        assert shout.json()["recipient_reputation"] == 4.75

        assert (await client.get("/api/v1/users/me", headers=headers_for(alice))).json()["balance"] == 70
        assert (await client.get("/api/v1/users/me", headers=headers_for(bob))).json()["balance"] == 80

        detail = await client.get(f"/api/v1/charts/{chart['id']}")
        assert detail.json()["total_donations"] == 30
        assert detail.json()["total_shoutouts"] == 1

    @pytest.mark.asyncio
    async def test_insufficient_balance(self, client: AsyncClient, make_user, headers_for):
        host = await make_user("host")
        alice = await make_user("alice", balance=10)
        chart = await _create_chart(client, headers_for(host), entry_fee=0)
        response = await client.post(
            "/api/v1/donations",
            json={"chart_id": chart["id"], "recipient_id": host.id, "amount": 30},
            headers=headers_for(alice),
        )
        assert response.status_code == 409
        assert response.json()["code"] == "INSUFFICIENT_BALANCE"


class TestLedgerApi:
    @pytest.mark.asyncio
    async def test_deposit(self, client: AsyncClient, make_user, headers_for):
        alice = await make_user("alice")
        response = await client.post("/api/v1/transactions/deposit", json={"amount": 250}, headers=headers_for(alice))
        assert response.status_code == 200
        assert response.json()["balance"] == 250

    @pytest.mark.asyncio
    async def test_deposit_above_maximum(self, client: AsyncClient, make_user, headers_for):
        alice = await make_user("alice")
        response = await client.post(
            "/api/v1/transactions/deposit", json={"amount": 1_000_000}, headers=headers_for(alice),
        )
        assert response.status_code == 400
        assert response.json()["code"] == "ABOVE_MAXIMUM"


class TestNotificationsApi:
    @pytest.mark.asyncio
    async def test_read_flow(self, client: AsyncClient, make_user, headers_for):
        alice = await make_user("alice", balance=100)
        bob = await make_user("bob", balance=100)
        chart = await _create_chart(client, headers_for(alice))
        await client.post(f"/api/v1/charts/{chart['id']}/join", headers=headers_for(bob))

        listing = (await client.get("/api/v1/notifications", headers=headers_for(alice))).json()
        assert listing["total"] == 2
        assert listing["unread_count"] == 2
        assert {n["type"] for n in listing["notifications"]} == {"match_start", "chart_joined"}

        first_id = listing["notifications"][0]["id"]
        read = await client.post(f"/api/v1/notifications/{first_id}/read", headers=headers_for(alice))
        assert read.status_code == 200
        again = await client.post(f"/api/v1/notifications/{first_id}/read", headers=headers_for(alice))
        assert again.status_code == 200

        not_mine = await client.post(f"/api/v1/notifications/{first_id}/read", headers=headers_for(bob))
        assert not_mine.status_code == 404
        assert not_mine.json()["code"] == "NOTIFICATION_NOT_FOUND"

        count = await client.get("/api/v1/notifications/unread-count", headers=headers_for(alice))
        assert count.json() == {"unread_count": 1}

        all_read = await client.post("/api/v1/notifications/read-all", headers=headers_for(alice))
        assert all_read.json()["count"] == 1
        unread = await client.get("/api/v1/notifications?unread_only=true", headers=headers_for(alice))
        assert unread.json()["notifications"] == []
