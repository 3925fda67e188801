"""API integration smoke tests using FastAPI TestClient."""

from fastapi.testclient import TestClient
from backend.app.main import app

client = TestClient(app)


def test_ping():
	# Basic run endpoint smoke test
	r = client.post('/run', json={'code': 'print(1)'})
	assert r.status_code == 200
	assert r.json()['output'] == '1'
