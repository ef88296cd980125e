from __future__ import annotations

from fastapi.testclient import TestClient

from hottakes.api import create_app
from hottakes.config import Settings


def _auth(user: str) -> dict:
    return {"Authorization": f"Bearer {user}"}


def test_health(client) -> None:
    assert client.get("/health").json() == {"status": "ok"}


def test_preflight_returns_cors_headers(client) -> None:
    response = client.options("/submit-post")
    assert response.status_code == 200
    assert response.headers["access-control-allow-origin"] == "*"
    assert "authorization" in response.headers["access-control-allow-headers"]

    response = client.options(
        "/create-connection",
        headers={"Origin": "https://example.com", "Access-Control-Request-Method": "POST"},
    )
    assert response.status_code == 200


def test_submit_post_returns_post_and_matches(client) -> None:
    response = client.post("/submit-post", json={"text": "I hate mornings"})

    assert response.status_code == 200
    assert response.headers["access-control-allow-origin"] == "*"
    body = response.json()
    assert body["post"]["text"] == "I hate mornings"
    assert body["post"]["owner_id"] is None
    assert set(body["post"]) == {"id", "text", "created_at", "owner_id"}
    assert body["matches"] == []


def test_submit_post_accepts_legacy_field_names(client) -> None:
    response = client.post("/submit-post", json={"secret_text": "I hate mornings", "user_id": "u1"})
    assert response.status_code == 200
    assert response.json()["post"]["owner_id"] == "u1"


def test_submit_post_validation_errors(client, oracle) -> None:
    response = client.post("/submit-post", json={"text": "   "})
    assert response.status_code == 400
    assert "error" in response.json()

    response = client.post("/submit-post", json={"text": "x" * 1501})
    assert response.status_code == 400
    assert oracle.calls == []


def test_submit_post_oracle_failure(client, oracle) -> None:
    oracle.fail = True
    response = client.post("/submit-post", json={"text": "I hate mornings"})
    assert response.status_code == 502
    assert response.json() == {"error": "Failed to generate embedding"}


def test_invalid_json_body_is_a_400(client) -> None:
    response = client.post(
        "/submit-post", content=b"{not json", headers={"Content-Type": "application/json"}
    )
    assert response.status_code == 400
    assert response.json() == {"error": "Invalid request body"}


def test_end_to_end_submit_and_connect(client) -> None:
    first = client.post("/submit-post", json={"text": "I hate mornings", "owner_id": "u1"}).json()
    second = client.post(
        "/submit-post", json={"text": "I can't stand waking up early", "owner_id": "u2"}
    ).json()

    [match] = second["matches"]
    assert match["id"] == first["post"]["id"]
    assert match["similarity"] > 0.5
    assert "embedding" not in match

    body = {"caller_post_id": second["post"]["id"], "target_post_id": match["id"]}
    created = client.post("/create-connection", json=body, headers=_auth("u2"))
    assert created.status_code == 200
    payload = created.json()
    assert payload["success"] is True
    assert payload["message"] == "Match created successfully"

    again = client.post("/create-connection", json=body, headers=_auth("u2")).json()
    assert again["connection_id"] == payload["connection_id"]
    assert again["message"] == "Match already exists"


def test_create_connection_errors_are_400(client) -> None:
    first = client.post("/submit-post", json={"text": "I hate mornings", "owner_id": "u1"}).json()
    anon = client.post("/submit-post", json={"text": "Mornings are rough"}).json()
    body = {"caller_post_id": first["post"]["id"], "target_post_id": anon["post"]["id"]}

    unauthenticated = client.post("/create-connection", json=body)
    assert unauthenticated.status_code == 400
    assert unauthenticated.json() == {"error": "Unauthorized - user not authenticated"}

    not_owner = client.post("/create-connection", json=body, headers=_auth("u9"))
    assert not_owner.status_code == 400

    anonymous_target = client.post("/create-connection", json=body, headers=_auth("u1"))
    assert anonymous_target.status_code == 400
    assert anonymous_target.json() == {"error": "Target post has no associated user"}

    missing = client.post("/create-connection", json={}, headers=_auth("u1"))
    assert missing.status_code == 400


def test_claim_list_and_delete_posts(client) -> None:
    anon = client.post("/submit-post", json={"text": "I hate mornings"}).json()["post"]

    claimed = client.post("/claim-post", json={"post_id": anon["id"]}, headers=_auth("u1"))
    assert claimed.status_code == 200
    assert claimed.json()["post"]["owner_id"] == "u1"

    stolen = client.post("/claim-post", json={"post_id": anon["id"]}, headers=_auth("u2"))
    assert stolen.status_code == 403

    posts = client.get("/posts", headers=_auth("u1")).json()["posts"]
    assert [p["id"] for p in posts] == [anon["id"]]

    assert client.get("/posts").status_code == 403
    assert client.delete(f"/posts/{anon['id']}", headers=_auth("u2")).status_code == 403
    assert client.delete(f"/posts/{anon['id']}", headers=_auth("u1")).json() == {"success": True}
    assert client.delete(f"/posts/{anon['id']}", headers=_auth("u1")).status_code == 404


def test_conversation_endpoints(client) -> None:
    a = client.post("/submit-post", json={"text": "I hate mornings", "owner_id": "u1"}).json()["post"]
    b = client.post("/submit-post", json={"text": "Mornings are rough", "owner_id": "u2"}).json()["post"]
    connection_id = client.post(
        "/create-connection",
        json={"caller_post_id": a["id"], "target_post_id": b["id"]},
        headers=_auth("u1"),
    ).json()["connection_id"]

    sent = client.post(
        f"/connections/{connection_id}/messages", json={"content": "same here"}, headers=_auth("u2")
    )
    assert sent.status_code == 201
    assert sent.json()["message"]["sender_id"] == "u2"

    messages = client.get(f"/connections/{connection_id}/messages", headers=_auth("u1")).json()["messages"]
    assert [m["content"] for m in messages] == ["same here"]

    [summary] = client.get("/connections", headers=_auth("u1")).json()["connections"]
    assert summary["id"] == connection_id
    assert summary["own_post_text"] == "I hate mornings"

    outsider = client.get(f"/connections/{connection_id}/messages", headers=_auth("u3"))
    assert outsider.status_code == 403
    assert client.get("/connections/missing/messages", headers=_auth("u1")).status_code == 404


class ExplodingMatcher:
    def search(self, query, *, exclude_id=None, requester_id=None, k=3):
        raise RuntimeError("boom")


def test_unexpected_errors_keep_the_error_shape(store, oracle) -> None:
    app = create_app(Settings(database_url="sqlite://"), store=store, oracle=oracle, matcher=ExplodingMatcher())
    client = TestClient(app, raise_server_exceptions=False)

    response = client.post("/submit-post", json={"text": "I hate mornings"})

    assert response.status_code == 500
    assert response.json() == {"error": "Internal server error"}
    assert response.headers["access-control-allow-origin"] == "*"
