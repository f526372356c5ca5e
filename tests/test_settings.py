import pytest

from conftest import ADMIN_TOKEN, USER_TOKEN
from main import app
from settings import DEFAULT_CORS_ORIGINS, get_settings


@pytest.fixture
def env_settings(monkeypatch):
    """Read Settings from a controlled environment instead of the test override."""
    for name in ("ADMIN_EMAILS", "CORS_ORIGINS", "LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    yield monkeypatch
    get_settings.cache_clear()


def test_admin_emails_are_trimmed_and_lowercased(env_settings):
    env_settings.setenv("ADMIN_EMAILS", " Boss@Example.com , ,ops@x.io ")

    settings = get_settings()

    assert settings.admin_emails == frozenset({"boss@example.com", "ops@x.io"})
    assert settings.is_admin("BOSS@example.com")
    assert settings.is_admin(" ops@x.io")
    assert not settings.is_admin("intruder@x.io")


def test_empty_admin_emails_denies_everyone(env_settings):
    env_settings.setenv("ADMIN_EMAILS", "")

    settings = get_settings()

    assert settings.admin_emails == frozenset()
    assert not settings.is_admin("boss@example.com")
    assert not settings.is_admin(None)


def test_unset_admin_emails_denies_everyone(env_settings):
    assert get_settings().admin_emails == frozenset()


def test_cors_origins_from_env(env_settings):
    env_settings.setenv("CORS_ORIGINS", "https://a.example, https://b.example")
    assert get_settings().cors_origins == ["https://a.example", "https://b.example"]


def test_empty_cors_origins_uses_defaults(env_settings):
    env_settings.setenv("CORS_ORIGINS", "")
    assert get_settings().cors_origins == DEFAULT_CORS_ORIGINS


def test_log_level_is_uppercased(env_settings):
    env_settings.setenv("LOG_LEVEL", "debug")
    assert get_settings().log_level == "DEBUG"


def test_settings_is_cached(env_settings):
    assert get_settings() is get_settings()


def test_admin_routes_forbidden_with_empty_allowlist(env_settings, client):
    env_settings.setenv("ADMIN_EMAILS", "")
    app.dependency_overrides.pop(get_settings)

    for token in (ADMIN_TOKEN, USER_TOKEN):
        response = client.get("/admin/stats", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 403


def test_admin_routes_follow_env_allowlist(env_settings, client):
    env_settings.setenv("ADMIN_EMAILS", "U1@Example.com")
    app.dependency_overrides.pop(get_settings)

    assert client.get("/admin/stats", headers={"Authorization": f"Bearer {USER_TOKEN}"}).status_code == 200
    assert client.get("/admin/stats", headers={"Authorization": f"Bearer {ADMIN_TOKEN}"}).status_code == 403
