"""End-to-end tests for the /run endpoint's response shape."""

import pytest
from fastapi.testclient import TestClient

from backend.app.main import app


@pytest.fixture(scope="module")
def client():
    client = TestClient(app)
    yield client
    client.close()


def test_run_reports_output_and_variables(client):
    code = 'name = "Ada"\nscores = [90, 85]\nprint(f"{name}: {sum(scores)}")'
    resp = client.post('/run', json={'code': code})
    assert resp.status_code == 200
    data = resp.json()
    assert data['output'] == 'Ada: 175'
    assert data['errors'] is None
    assert data['warnings'] == []
    assert data['variables']['name'] == {'type': 'string', 'value': 'Ada'}
    assert data['variables']['scores'] == {'type': 'list', 'value': '[90, 85]'}
    assert isinstance(data['duration_ms'], int)


def test_run_reports_program_errors(client):
    resp = client.post('/run', json={'code': 'for i in 5:\n    print(i)'})
    assert resp.status_code == 200
    data = resp.json()
    assert data['output'] == ''
    assert data['errors'] == {'code': 'RUNTIME_ERROR', 'message': "'number' object is not iterable"}


def test_run_reports_while_cap_warning(client):
    resp = client.post('/run', json={'code': 'while True:\n    x = 1'})
    data = resp.json()
    assert data['errors'] is None
    assert len(data['warnings']) == 1
    assert data['output'] == data['warnings'][0]


def test_run_requires_code(client):
    resp = client.post('/run', json={'settings': {}})
    assert resp.status_code == 422
