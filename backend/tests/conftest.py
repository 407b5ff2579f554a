import os
import sys
from pathlib import Path

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from fakeredis.aioredis import FakeRedis

os.environ.setdefault("SECRET_KEY", "test-secret")

# Ensure backend package is importable when tests run from repo root
BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
	sys.path.insert(0, str(BACKEND_ROOT))

from classroom.domain.lessons.store import registry
from classroom.main import app
from classroom.settings import settings


@pytest_asyncio.fixture(autouse=True)
async def fake_redis():
	from classroom.infra.redis import redis_client, set_redis_client
	original = redis_client._client
	client = FakeRedis(decode_responses=True)
	set_redis_client(client)
	try:
		yield client
	finally:
		set_redis_client(original)
		await client.flushall()


@pytest_asyncio.fixture(autouse=True)
async def clear_rooms():
	await registry.clear()
	yield
	await registry.clear()


@pytest.fixture(autouse=True)
def force_test_settings():
	"""Ensure a consistent test environment.

	Socket tests authenticate with the synthetic `uid:...;role:...` token and
	API tests with X-User-Id/X-User-Role headers, which are only accepted in dev mode.
	"""
	original_env = settings.environment
	original_admin = settings.obs_admin_token
	settings.environment = "dev"
	settings.obs_admin_token = "admin-secret"
	try:
		yield
	finally:
		settings.environment = original_env
		settings.obs_admin_token = original_admin


@pytest_asyncio.fixture
async def api_client():
	transport = ASGITransport(app=app)
	async with AsyncClient(transport=transport, base_url="http://testserver") as client:
		yield client
