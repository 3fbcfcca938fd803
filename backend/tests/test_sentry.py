from fastapi.testclient import TestClient

from app import main


def test_sentry_init_uses_configured_dsn(monkeypatch):
    calls = []
    monkeypatch.setattr(main, "SENTRY_DSN", "https://key@sentry.example/1")
    monkeypatch.setattr(main.sentry_sdk, "init", lambda **kwargs: calls.append(kwargs))
    monkeypatch.setenv("SENTRY_TRACES_SAMPLE_RATE", "0.25")
    monkeypatch.setenv("SENTRY_ENVIRONMENT", "staging")

    main._init_sentry()

    assert len(calls) == 1
    assert calls[0]["dsn"] == "https://key@sentry.example/1"
    assert calls[0]["traces_sample_rate"] == 0.25
    assert calls[0]["environment"] == "staging"


def test_sentry_init_skipped_without_dsn(monkeypatch):
    calls = []
    monkeypatch.setattr(main, "SENTRY_DSN", None)
    monkeypatch.setattr(main.sentry_sdk, "init", lambda **kwargs: calls.append(kwargs))

    main._init_sentry()

    assert calls == []


def test_sentry_self_test_requires_dsn(monkeypatch):
    monkeypatch.setattr(main, "SENTRY_DSN", None)
    client = TestClient(main.app)

    response = client.post(f"{main.API_PREFIX}/sentry-test")

    assert response.status_code == 400
    assert response.json()["code"] == "http_400"
