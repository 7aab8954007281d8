from fastapi.testclient import TestClient

from backend.app.main import (
    LOCAL_DEVELOPMENT_ORIGIN,
    _resolve_allowed_origins,
    _split_raw_origins,
    app,
)


def test_split_raw_origins_accepts_commas_and_whitespace():
    raw = "http://localhost:5173, http://127.0.0.1:5173 http://0.0.0.0:5173"
    assert _split_raw_origins(raw) == [
        "http://localhost:5173",
        "http://127.0.0.1:5173",
        "http://0.0.0.0:5173",
    ]


def test_allowed_origins_from_env_are_normalized(monkeypatch):
    monkeypatch.setenv(
        "BACKEND_ALLOWED_ORIGINS",
        "https://backoffice.example.cl/ http://localhost:5173",
    )

    assert _resolve_allowed_origins() == [
        "http://localhost:5173",
        "https://backoffice.example.cl",
    ]


def test_blank_env_falls_back_to_local_defaults(monkeypatch):
    monkeypatch.setenv("BACKEND_ALLOWED_ORIGINS", " , ")

    assert LOCAL_DEVELOPMENT_ORIGIN in _resolve_allowed_origins()


def test_services_endpoint_includes_cors_headers_for_local_dev_origin():
    client = TestClient(app)

    response = client.options(
        "/services/",
        headers={
            "Origin": LOCAL_DEVELOPMENT_ORIGIN,
            "Access-Control-Request-Method": "GET",
        },
    )

    assert response.status_code == 200
    assert response.headers.get("access-control-allow-origin") == LOCAL_DEVELOPMENT_ORIGIN
