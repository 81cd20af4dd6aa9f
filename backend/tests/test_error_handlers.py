import logging
import os
import sys

from fastapi import FastAPI, HTTPException
from fastapi.testclient import TestClient

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from app.exceptions import DomainException, MatchBusy, http_problem
from app.main import (
    domain_exception_handler,
    http_exception_handler,
    unhandled_exception_handler,
)


def _app() -> FastAPI:
    app = FastAPI()
    app.add_exception_handler(DomainException, domain_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    @app.get("/busy")
    def busy():
        raise MatchBusy("m1")

    @app.get("/invalid-ball")
    def invalid_ball():
        raise http_problem(
            status_code=400,
            detail="wide cannot carry runs off the bat",
            code="ball_invalid",
            headers={"Retry-After": "1"},
        )

    @app.get("/boom")
    def boom():
        raise ValueError("scorecard exploded")

    return app


def test_domain_exception_is_problem_json():
    client = TestClient(_app())
    resp = client.get("/busy")

    assert resp.status_code == 409
    assert resp.headers["content-type"].startswith("application/problem+json")
    body = resp.json()
    assert body["code"] == "match_busy"
    assert body["title"] == "Match busy"
    assert body["status"] == 409
    assert "m1" in body["detail"]


def test_http_problem_keeps_code_and_headers():
    client = TestClient(_app())
    resp = client.get("/invalid-ball")

    assert resp.status_code == 400
    assert resp.headers["Retry-After"] == "1"
    assert resp.json()["code"] == "ball_invalid"
    assert resp.json()["detail"] == "wide cannot carry runs off the bat"


def test_unhandled_exception_logs_traceback(caplog):
    client = TestClient(_app(), raise_server_exceptions=False)
    with caplog.at_level(logging.ERROR):
        resp = client.get("/boom")

    assert resp.status_code == 500
    assert resp.json()["code"] == "internal_server_error"
    record = next((r for r in caplog.records if r.message == "Unhandled exception"), None)
    assert record is not None
    assert record.exc_info[0] is ValueError
    assert "ValueError: scorecard exploded" in caplog.text
