import pytest

from conftest import PASSWORD, bearer
from services.rate_limit import DEFAULT_POLICIES, BucketPolicy, RateLimitCategory


@pytest.fixture
def policies():
    return {**DEFAULT_POLICIES, RateLimitCategory.AUTH: BucketPolicy(capacity=50, refill_tokens=50, refill_period=60)}


def signup(client, username="carol", email="carol@example.com", password="s3cret-pass"):
    return client.post("/api/auth/signup", json={"username": username, "email": email, "password": password})


def test_signup_returns_a_working_token_pair(client):
    response = signup(client)

    assert response.status_code == 201
    body = response.json()
    assert body["username"] == "carol"
    assert body["email"] == "carol@example.com"
    assert body["tokenType"] == "Bearer"
    assert body["expiresIn"] == 900
    assert body["userId"] >= 1
    assert client.get("/api/notes", headers=bearer(body["accessToken"])).status_code == 200


def test_signup_stores_a_password_hash(client, identity_store):
    signup(client)

    stored = identity_store.principals["carol@example.com"]
    assert stored.password != "s3cret-pass"
    assert identity_store.verify_password(stored, "s3cret-pass")


def test_signup_lowercases_email(client, identity_store):
    assert signup(client, email="Carol@Example.com").status_code == 201

    assert "carol@example.com" in identity_store.principals


def test_duplicate_username_is_rejected(client):
    signup(client)

    response = signup(client, email="other@example.com")

    assert response.status_code == 409
    assert response.json()["code"] == "account_exists"
    assert response.json()["detail"] == "Username already exists"


def test_duplicate_email_is_rejected_case_insensitively(client):
    signup(client)

    response = signup(client, username="carol2", email="CAROL@example.com")

    assert response.status_code == 409
    assert response.json()["detail"] == "Email already exists"


@pytest.mark.parametrize(
    "payload",
    [
        {"username": "ab", "email": "ab@example.com", "password": "s3cret-pass"},
        {"username": "carol", "email": "not-an-email", "password": "s3cret-pass"},
        {"username": "carol", "email": "carol@example.com", "password": "short"},
    ],
)
def test_signup_validation(client, payload):
    assert client.post("/api/auth/signup", json=payload).status_code == 422


def test_login_with_correct_password(client, alice):
    response = client.post("/api/auth/login", json={"email": "alice@example.com", "password": PASSWORD})

    assert response.status_code == 200
    assert response.json()["userId"] == alice.id
    assert client.get("/api/notes", headers=bearer(response.json()["accessToken"])).status_code == 200


def test_login_is_case_insensitive_on_email(client, alice):
    response = client.post("/api/auth/login", json={"email": "Alice@Example.com", "password": PASSWORD})

    assert response.status_code == 200


@pytest.mark.parametrize(
    "email, password",
    [("alice@example.com", "wrong-password"), ("nobody@example.com", PASSWORD)],
)
def test_login_failures_are_indistinguishable(client, alice, email, password):
    response = client.post("/api/auth/login", json={"email": email, "password": password})

    assert response.status_code == 401
    assert response.json()["code"] == "invalid_credentials"
    assert response.json()["detail"] == "Invalid username or password"


def test_refresh_issues_a_new_pair(client, alice):
    tokens = client.post("/api/auth/login", json={"email": "alice@example.com", "password": PASSWORD}).json()

    response = client.post("/api/auth/refresh", json={"refreshToken": tokens["refreshToken"]})

    assert response.status_code == 200
    assert response.json()["accessToken"] != tokens["accessToken"]
    assert client.get("/api/notes", headers=bearer(response.json()["accessToken"])).status_code == 200


def test_refresh_accepts_snake_case_field(client, alice, token_service):
    refresh_token = token_service.issue_pair(alice).refresh_token

    assert client.post("/api/auth/refresh", json={"refresh_token": refresh_token}).status_code == 200


def test_refresh_rejects_access_tokens(client, alice, token_service):
    access_token = token_service.issue_pair(alice).access_token

    response = client.post("/api/auth/refresh", json={"refreshToken": access_token})

    assert response.status_code == 401
    assert response.json()["code"] == "invalid_token"


def test_refresh_rejects_garbage(client):
    response = client.post("/api/auth/refresh", json={"refreshToken": "garbage"})

    assert response.status_code == 401
    assert response.json()["code"] == "invalid_token"
