"""Authentication behavior tests."""

from __future__ import annotations


def test_missing_token_is_rejected(client) -> None:
    response = client.get("/v1/roster")
    assert response.status_code == 401


def test_invalid_token_is_rejected(client) -> None:
    response = client.post("/v1/cleaning-duties/arrange", headers={"x-household-token": "wrong"})
    assert response.status_code == 401


def test_health_needs_no_token(client) -> None:
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"ok": True}
