import logging

from fastapi import FastAPI
from fastapi.testclient import TestClient

from app.exceptions import ConvocationRequired, DomainException
from app.main import domain_exception_handler, unhandled_exception_handler


def _app():
    app = FastAPI()
    app.add_exception_handler(DomainException, domain_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    @app.get("/boom")
    def boom():
        raise ValueError("boom")

    @app.get("/empty-roster")
    def empty_roster():
        raise ConvocationRequired("m1")

    return app


def test_unhandled_exception_logs_traceback_and_returns_problem(caplog):
    client = TestClient(_app(), raise_server_exceptions=False)
    with caplog.at_level(logging.ERROR):
        response = client.get("/boom")

    assert response.status_code == 500
    assert response.headers["content-type"].startswith("application/problem+json")
    body = response.json()
    assert body["code"] == "internal_server_error"
    assert body["title"] == "Internal Server Error"
    assert body["status"] == 500
    assert body["detail"] == "boom"

    record = next((r for r in caplog.records if r.message == "Unhandled exception"), None)
    assert record is not None
    assert record.exc_info[0] is ValueError


def test_domain_errors_are_not_logged_as_unhandled(caplog):
    client = TestClient(_app(), raise_server_exceptions=False)
    with caplog.at_level(logging.ERROR):
        response = client.get("/empty-roster")

    assert response.status_code == 409
    assert response.headers["content-type"].startswith("application/problem+json")
    assert response.json()["code"] == "convocation_required"
    assert not any(r.message == "Unhandled exception" for r in caplog.records)
