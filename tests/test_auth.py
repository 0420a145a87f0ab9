import pytest

from auth import (
    INVALID_LOGIN,
    AdminSession,
    AuthenticationError,
    authenticate,
    ensure_admin_credential,
)


@pytest.fixture
def seeded(store):
    store.inner.insert("admin_portal", {"username": "admin", "password": "s3cret-pass"})
    return store


def test_exact_match_logs_in(seeded):
    admin = authenticate(seeded, "admin", "s3cret-pass")
    assert admin.authenticated
    assert admin.username == "admin"
    assert admin.logged_in_at


@pytest.mark.parametrize(
    "username,password",
    [
        ("admin", "wrong"),
        ("Admin", "s3cret-pass"),
        ("admin", "S3CRET-PASS"),
        ("nobody", "s3cret-pass"),
        ("", ""),
    ],
)
def test_any_mismatch_fails_with_same_message(seeded, username, password):
    with pytest.raises(AuthenticationError) as err:
        authenticate(seeded, username, password)
    assert str(err.value) == INVALID_LOGIN


def test_store_failure_reads_as_failed_login(seeded):
    seeded.fail("select", "admin_portal")
    with pytest.raises(AuthenticationError):
        authenticate(seeded, "admin", "s3cret-pass")


def test_session_cookie_round_trip():
    admin = AdminSession(username="admin", authenticated=True, logged_in_at="2024-06-14T10:00:00")
    assert AdminSession.from_cookie(admin.to_cookie()) == admin
    assert AdminSession.from_cookie({}) == AdminSession.anonymous()


def test_anonymous_session_is_refused():
    with pytest.raises(PermissionError):
        AdminSession.anonymous().require()


def test_ensure_admin_credential_is_idempotent(store):
    first = ensure_admin_credential(store, "root", "pw")
    again = ensure_admin_credential(store, "root", "other")
    assert first["id"] == again["id"]
    assert again["password"] == "pw"
    assert ensure_admin_credential(store, "", "pw") is None


def test_non_ascii_password_matches(store):
    store.inner.insert("admin_portal", {"username": "admin", "password": "pässwort"})
    assert authenticate(store, "admin", "pässwort").authenticated


def test_non_ascii_password_mismatch_is_plain_failure(seeded):
    with pytest.raises(AuthenticationError) as err:
        authenticate(seeded, "admin", "ñ")
    assert str(err.value) == INVALID_LOGIN


def test_non_ascii_login_over_http_is_401(client, sqlite_store):
    sqlite_store.insert("admin_portal", {"username": "admin", "password": "s3cret-pass"})
    resp = client.post("/api/admin/login", json={"username": "admin", "password": "ñ"})
    assert resp.status_code == 401
