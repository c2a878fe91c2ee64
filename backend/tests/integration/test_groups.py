"""
tests/integration/test_groups.py — Integration tests for groups and memberships.

Endpoints covered:
  POST   /groups
  GET    /groups
  GET    /groups/:id
  PATCH  /groups/:id
  DELETE /groups/:id
  GET    /groups/:id/summary
  POST   /groups/:id/members
  DELETE /groups/:id/members/:uid
"""

from __future__ import annotations

from backend.tests.integration.conftest import add_member, get_balances, make_group, make_payment, make_user


def _error_code(resp) -> str:
    return resp.get_json()["error"]["code"]


class TestCreateGroup:

    def test_creator_becomes_admin(self, client):
        alice = make_user(client, "Alice")

        group = make_group(client, alice["id"], name="Flat 3B")

        assert group["name"] == "Flat 3B"
        assert group["currency"] == "USD"
        assert group["created_by"] == alice["id"]
        assert [(m["id"], m["role"]) for m in group["members"]] == [(alice["id"], "admin")]

    def test_member_ids_are_added_once(self, client):
        alice = make_user(client, "Alice")
        bob = make_user(client, "Bob")

        group = make_group(client, alice["id"], member_ids=[bob["id"], bob["id"], alice["id"]])

        assert [(m["id"], m["role"]) for m in group["members"]] == [
            (alice["id"], "admin"),
            (bob["id"], "member"),
        ]

    def test_unknown_creator(self, client):
        resp = client.post("/api/v1/groups/", json={"name": "Trip", "created_by": 9999})

        assert resp.status_code == 422
        assert _error_code(resp) == "CREATOR_NOT_FOUND"
        assert resp.get_json()["error"]["field"] == "created_by"

    def test_unknown_member_id(self, client):
        alice = make_user(client, "Alice")

        resp = client.post(
            "/api/v1/groups/",
            json={"name": "Trip", "created_by": alice["id"], "member_ids": [9999]},
        )

        assert resp.status_code == 404
        assert _error_code(resp) == "USER_NOT_FOUND"
        assert client.get("/api/v1/groups/").get_json()["data"] == []

    def test_unsupported_currency(self, client):
        alice = make_user(client, "Alice")

        resp = client.post(
            "/api/v1/groups/",
            json={"name": "Trip", "created_by": alice["id"], "currency": "XYZ"},
        )

        assert resp.status_code == 400
        assert _error_code(resp) == "INVALID_CURRENCY"

    def test_missing_name(self, client):
        alice = make_user(client, "Alice")

        resp = client.post("/api/v1/groups/", json={"created_by": alice["id"]})

        assert resp.status_code == 400
        assert _error_code(resp) == "MISSING_FIELD"
        assert resp.get_json()["error"]["field"] == "name"

    def test_creator_starts_with_zero_balance(self, client):
        alice = make_user(client, "Alice")
        group = make_group(client, alice["id"])

        rows = get_balances(client, group["id"]).get_json()["data"]["balances"]

        assert [(r["user_id"], r["balance"]) for r in rows] == [(alice["id"], "0.00")]


class TestReadAndUpdateGroup:

    def test_list_and_get(self, client):
        alice = make_user(client, "Alice")
        first = make_group(client, alice["id"], name="First")
        make_group(client, alice["id"], name="Second")

        listing = client.get("/api/v1/groups/").get_json()["data"]
        detail = client.get(f"/api/v1/groups/{first['id']}").get_json()["data"]

        assert [g["name"] for g in listing] == ["First", "Second"]
        assert "members" not in listing[0]
        assert detail["members"][0]["name"] == "Alice"

    def test_get_unknown_group(self, client):
        resp = client.get("/api/v1/groups/9999")

        assert resp.status_code == 404
        assert _error_code(resp) == "GROUP_NOT_FOUND"

    def test_patch_group(self, client):
        alice = make_user(client, "Alice")
        group = make_group(client, alice["id"])

        resp = client.patch(
            f"/api/v1/groups/{group['id']}",
            json={"name": "Renamed", "currency": "EUR"},
        )

        assert resp.status_code == 200
        data = resp.get_json()["data"]
        assert data["name"] == "Renamed"
        assert data["currency"] == "EUR"
        assert data["updated_at"] is not None

    def test_balances_display_follows_group_currency(self, client):
        alice = make_user(client, "Alice")
        bob = make_user(client, "Bob")
        group = make_group(client, alice["id"], member_ids=[bob["id"]], currency="EUR")
        make_payment(
            client, group["id"], alice["id"], "10.00",
            participants=[
                {"user_id": alice["id"], "share": "5.00"},
                {"user_id": bob["id"], "share": "5.00"},
            ],
        )

        data = get_balances(client, group["id"]).get_json()["data"]

        assert data["currency"] == "EUR"
        assert data["balances"][0]["display_balance"] == "€5.00"


class TestMembership:

    def test_add_member(self, client):
        alice = make_user(client, "Alice")
        bob = make_user(client, "Bob")
        group = make_group(client, alice["id"])

        resp = add_member(client, group["id"], bob["id"], role="admin")

        assert resp.status_code == 201
        data = resp.get_json()["data"]
        assert data["group_id"] == group["id"]
        assert data["id"] == bob["id"]
        assert data["role"] == "admin"

    def test_add_member_twice(self, client):
        alice = make_user(client, "Alice")
        group = make_group(client, alice["id"])

        resp = add_member(client, group["id"], alice["id"])

        assert resp.status_code == 409
        assert _error_code(resp) == "ALREADY_MEMBER"

    def test_add_unknown_user(self, client):
        alice = make_user(client, "Alice")
        group = make_group(client, alice["id"])

        resp = add_member(client, group["id"], 9999)

        assert resp.status_code == 404
        assert _error_code(resp) == "USER_NOT_FOUND"

    def test_add_member_with_unknown_role(self, client):
        alice = make_user(client, "Alice")
        bob = make_user(client, "Bob")
        group = make_group(client, alice["id"])

        resp = add_member(client, group["id"], bob["id"], role="owner")

        assert resp.status_code == 400
        assert _error_code(resp) == "INVALID_ROLE"

    def test_remove_member(self, client):
        alice = make_user(client, "Alice")
        bob = make_user(client, "Bob")
        group = make_group(client, alice["id"], member_ids=[bob["id"]])

        resp = client.delete(f"/api/v1/groups/{group['id']}/members/{bob['id']}")

        assert resp.status_code == 200
        assert resp.get_json()["data"] == {
            "removed": True,
            "group_id": group["id"],
            "user_id": bob["id"],
        }
        members = client.get(f"/api/v1/groups/{group['id']}").get_json()["data"]["members"]
        assert [m["id"] for m in members] == [alice["id"]]

    def test_remove_non_member(self, client):
        alice = make_user(client, "Alice")
        bob = make_user(client, "Bob")
        group = make_group(client, alice["id"])

        resp = client.delete(f"/api/v1/groups/{group['id']}/members/{bob['id']}")

        assert resp.status_code == 404
        assert _error_code(resp) == "MEMBER_NOT_FOUND"

    def test_removed_member_can_rejoin(self, client):
        alice = make_user(client, "Alice")
        bob = make_user(client, "Bob")
        group = make_group(client, alice["id"], member_ids=[bob["id"]])
        client.delete(f"/api/v1/groups/{group['id']}/members/{bob['id']}")

        resp = add_member(client, group["id"], bob["id"])

        assert resp.status_code == 201
        members = client.get(f"/api/v1/groups/{group['id']}").get_json()["data"]["members"]
        assert {m["id"] for m in members} == {alice["id"], bob["id"]}

    def test_removed_member_cannot_pay(self, client):
        alice = make_user(client, "Alice")
        bob = make_user(client, "Bob")
        group = make_group(client, alice["id"], member_ids=[bob["id"]])
        client.delete(f"/api/v1/groups/{group['id']}/members/{bob['id']}")

        resp = make_payment(
            client, group["id"], bob["id"], "10.00",
            participants=[{"user_id": bob["id"], "share": "10.00"}],
        )

        assert resp.status_code == 422
        assert _error_code(resp) == "PAYER_NOT_MEMBER"


class TestSummaryAndDelete:

    def test_summary(self, client):
        alice = make_user(client, "Alice")
        bob = make_user(client, "Bob")
        group = make_group(client, alice["id"], member_ids=[bob["id"]])
        for amount, description in (("10.00", "Coffee"), ("30.50", "Lunch")):
            make_payment(
                client, group["id"], alice["id"], amount,
                participants=[{"user_id": bob["id"], "share": amount}],
                description=description,
            )

        resp = client.get(f"/api/v1/groups/{group['id']}/summary")

        assert resp.status_code == 200
        data = resp.get_json()["data"]
        assert data["group"]["id"] == group["id"]
        assert data["total_payments"] == "40.50"
        assert data["payment_count"] == 2
        assert data["member_count"] == 2
        assert [p["description"] for p in data["recent_payments"]] == ["Lunch", "Coffee"]

    def test_delete_group_removes_its_ledger(self, client):
        alice = make_user(client, "Alice")
        bob = make_user(client, "Bob")
        group = make_group(client, alice["id"], member_ids=[bob["id"]])
        payment = make_payment(
            client, group["id"], alice["id"], "10.00",
            participants=[{"user_id": bob["id"], "share": "10.00"}],
        ).get_json()["data"]

        resp = client.delete(f"/api/v1/groups/{group['id']}")

        assert resp.status_code == 200
        assert resp.get_json()["data"] == {"deleted": True, "group_id": group["id"]}
        assert client.get(f"/api/v1/groups/{group['id']}").status_code == 404
        assert client.get(f"/api/v1/payments/{payment['id']}").status_code == 404
