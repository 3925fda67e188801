"""Concurrency-focused tests exercising the API's per-request isolation."""

from concurrent.futures import ThreadPoolExecutor
from fastapi.testclient import TestClient
from backend.app.main import app

client = TestClient(app)


def _post_run(payload):
    r = client.post("/run", json=payload)
    return r.status_code, r.json()


def test_concurrent_runs_isolated():
    # Three different jobs; only the second one asks for a tiny output cap
    jobs = [
        {"code": "\n".join(["print(1)"] * 50)},
        {"code": "\n".join(["print(\"x\")"] * 100), "settings": {"max_output_chars": 10}},
        {"code": "a = 1\nprint(a)"},
    ]

    with ThreadPoolExecutor(max_workers=3) as ex:
        results = list(ex.map(_post_run, jobs))

    assert len(results) == 3
    assert all(status == 200 for status, _ in results)
    for _, body in results:
        assert 'output' in body and 'warnings' in body and 'variables' in body and 'errors' in body

    first, second, third = (body for _, body in results)
    # limits and scopes belong to the request that set them
    assert first["errors"] is None
    assert first["output"] == "\n".join(["1"] * 50)
    assert second["errors"]["code"] == "OUTPUT_LIMIT"
    assert third["errors"] is None
    assert third["output"] == "1"
    assert list(third["variables"]) == ["a"]
