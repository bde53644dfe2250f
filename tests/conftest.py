"""Pytest configuration and shared fixtures for backend tests."""
import json
import os
from datetime import UTC, datetime

import httpx
import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool

# Set required environment variables for testing
os.environ.setdefault("DB_HOST", "localhost")
os.environ.setdefault("DB_USER", "test_user")
os.environ.setdefault("DB_PASSWORD", "test_password")
os.environ.setdefault("DB_NAME", "test_db")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("POLLER_ENABLED", "false")
os.environ.setdefault("SYNC_ENABLED", "false")


def _location(url: httpx.URL) -> str:
    return url.host if url.port is None else f"{url.host}:{url.port}"


class FakeAgent:
    """In-memory simulator agent speaking the agent REST API."""

    def __init__(self, base_url, *, canonical_id=None, devices=None, envelope=True):
        self.base_url = base_url
        self.canonical_id = canonical_id
        self.envelope = envelope
        self.devices = {
            device_id: {"on": False, "rebooting": False, "action": None, "broker": None, **state}
            for device_id, state in (devices or {}).items()
        }
        self.reachable = True
        self.fail_status = None
        self.devices_payload = None
        self.requests = []
        self.pushed_configs = []
        self.reboots = 0

    def configuration(self):
        general = {"Id": self.canonical_id} if self.canonical_id else {}
        devices = {
            device_id: {"Id": device_id, "Action": state["action"], "Broker": state["broker"]}
            for device_id, state in self.devices.items()
        }
        return {httpx.URL(self.base_url).host: {"general": general, "devices": devices}}

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append((request.method, request.url.path))
        if not self.reachable:
            raise httpx.ConnectError("connection refused", request=request)
        if self.fail_status is not None:
            return httpx.Response(self.fail_status, json={"error": "agent failure"})

        body = json.loads(request.content) if request.content else None
        parts = request.url.path.strip("/").split("/")
        match (request.method, parts):
            case ("GET", ["configuration"]):
                return httpx.Response(200, json=self.configuration())
            case ("POST", ["configuration"]):
                self.pushed_configs.append(body)
                return httpx.Response(200, json={"status": "configured"})
            case ("GET", ["devices"]):
                if self.devices_payload is not None:
                    return httpx.Response(200, json=self.devices_payload)
                states = {device_id: dict(state) for device_id, state in self.devices.items()}
                return httpx.Response(200, json={"devices": states} if self.envelope else states)
            case ("POST", ["devices"]):
                for key, entry in body["devices"].items():
                    self._add(entry.get("id") or key, entry.get("action"), entry.get("broker"))
                return httpx.Response(200, json={"created": sorted(body["devices"])})
            case ("POST", ["reboot"]):
                self.reboots += 1
                for state in self.devices.values():
                    state.update(on=False, rebooting=True)
                return httpx.Response(200, json={"status": "rebooting"})
            case ("GET", ["device", device_id]) if device_id in self.devices:
                return httpx.Response(200, json={"id": device_id, **self.devices[device_id]})
            case ("POST", ["device", device_id]):
                self._add(device_id, body.get("action"), body.get("broker"))
                return httpx.Response(200, json={"id": device_id, **self.devices[device_id]})
            case ("POST", ["device", device_id, ("on" | "off") as command]) if device_id in self.devices:
                self.devices[device_id]["on"] = command == "on"
                return httpx.Response(200, json={"id": device_id, "on": command == "on"})
            case ("POST", ["device", device_id, "delete"]) if device_id in self.devices:
                del self.devices[device_id]
                return httpx.Response(200, json={"deleted": device_id})
        return httpx.Response(404, json={"error": "not found"})

    def _add(self, device_id, action, broker):
        self.devices[device_id] = {"on": False, "rebooting": False, "action": action, "broker": broker}


class FakeFleet:
    """Routes requests to fake agents by host and port."""

    def __init__(self):
        self.agents = {}

    def add(self, base_url, **kwargs) -> FakeAgent:
        agent = FakeAgent(base_url, **kwargs)
        self.agents[_location(httpx.URL(base_url))] = agent
        return agent

    def handle(self, request: httpx.Request) -> httpx.Response:
        agent = self.agents.get(_location(request.url))
        if agent is None:
            raise httpx.ConnectError("no route to host", request=request)
        return agent.handle(request)


@pytest.fixture(scope="session", autouse=True)
def setup_test_env():
    """Set up test environment variables."""
    yield


@pytest.fixture
def test_settings():
    """Fast timings for background services."""
    from simdash.core.config import settings

    return settings.model_copy(
        update={
            "reboot_grace_s": 0.2,
            "command_refresh_delay_s": 0.0,
            "poll_interval_s": 0.05,
            "sync_interval_s": 0.05,
            "stale_after_s": 300,
        }
    )


@pytest_asyncio.fixture
async def test_engine():
    """Create in-memory test database engine."""
    from simdash.models import Base

    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(test_engine):
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def test_session(session_factory):
    """Create test database session."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def fleet():
    return FakeFleet()


@pytest_asyncio.fixture
async def agent_client(fleet, test_settings):
    from simdash.services import SimulatorClient

    client = SimulatorClient(config=test_settings, transport=httpx.MockTransport(fleet.handle))
    yield client
    await client.aclose()


@pytest_asyncio.fixture
async def registry(session_factory, test_settings):
    from simdash.services import SimulatorRegistry

    registry = SimulatorRegistry(session_factory=session_factory, config=test_settings)
    yield registry
    await registry.cancel_pending()


@pytest.fixture
def resolver(session_factory, agent_client):
    from simdash.services import IdentityResolver

    return IdentityResolver(session_factory=session_factory, client=agent_client)


@pytest.fixture
def poller(session_factory, agent_client, registry, test_settings):
    from simdash.services import SimulatorPoller

    return SimulatorPoller(
        session_factory=session_factory,
        client=agent_client,
        registry=registry,
        config=test_settings,
    )


@pytest.fixture
def syncer(session_factory, agent_client, registry, resolver, test_settings):
    from simdash.services import DeviceSyncService

    return DeviceSyncService(
        session_factory=session_factory,
        client=agent_client,
        registry=registry,
        resolver=resolver,
        config=test_settings,
    )


@pytest.fixture
def reboot_tracker(agent_client, registry):
    from simdash.services import RebootTracker

    return RebootTracker(client=agent_client, registry=registry)


@pytest.fixture
def seed(session_factory):
    """Insert a simulator and its devices directly into the store."""
    from simdash.models import Device, Simulator

    async def _seed(simulator_id, url, devices=(), *, status="online", created_at=None, **device_fields):
        async with session_factory() as session:
            session.add(
                Simulator(
                    id=simulator_id,
                    url=url,
                    status=status,
                    created_at=created_at or datetime.now(UTC),
                )
            )
            await session.flush()
            for device_id in devices:
                session.add(Device(id=device_id, simulator_id=simulator_id, **device_fields))
            await session.commit()

    return _seed


@pytest_asyncio.fixture
async def client(
    session_factory, agent_client, registry, syncer, reboot_tracker, test_settings
):
    """Create test HTTP client with database and service overrides."""
    from simdash.main import app
    from simdash import dependencies

    async def override_get_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[dependencies.get_session] = override_get_session
    app.dependency_overrides[dependencies.get_agent_client] = lambda: agent_client
    app.dependency_overrides[dependencies.get_registry] = lambda: registry
    app.dependency_overrides[dependencies.get_syncer] = lambda: syncer
    app.dependency_overrides[dependencies.get_reboot_tracker] = lambda: reboot_tracker
    app.dependency_overrides[dependencies.get_settings] = lambda: test_settings
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
