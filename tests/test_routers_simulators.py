"""Tests for simulator registration and sync endpoints."""
import pytest
from httpx import AsyncClient

URL = "http://10.0.0.5:8080"


@pytest.mark.asyncio
async def test_list_simulators_empty(client: AsyncClient):
    response = await client.get("/api/simulators")
    assert response.status_code == 200
    assert response.json() == []


@pytest.mark.asyncio
async def test_list_simulators_with_devices(client: AsyncClient, seed):
    await seed("sim-a", URL, ["lamp-2", "lamp-1"], on=True)
    await seed("sim-b", "http://10.0.0.6:8080", status="offline")

    response = await client.get("/api/simulators")

    assert response.status_code == 200
    data = response.json()
    assert [sim["id"] for sim in data] == ["sim-a", "sim-b"]
    assert [device["id"] for device in data[0]["devices"]] == ["lamp-1", "lamp-2"]
    assert data[0]["devices"][0]["on"] is True
    assert data[1]["status"] == "offline"
    assert data[1]["devices"] == []


@pytest.mark.asyncio
async def test_register_simulator(client: AsyncClient):
    response = await client.post("/api/simulators", json={"url": "10.0.0.5:8080/"})

    assert response.status_code == 201
    data = response.json()
    assert data["id"] == "10.0.0.5:8080"
    assert data["url"] == URL
    assert data["status"] == "awaiting"
    assert data["title"] == "Simulator"
    assert data["devices"] == []


@pytest.mark.asyncio
async def test_register_simulator_with_id_and_title(client: AsyncClient):
    response = await client.post(
        "/api/simulators", json={"url": URL, "id": "kitchen", "title": "Kitchen"}
    )
    assert response.status_code == 201
    assert response.json()["id"] == "kitchen"
    assert response.json()["title"] == "Kitchen"


@pytest.mark.asyncio
async def test_register_duplicate_url_conflicts(client: AsyncClient, seed):
    await seed("sim-a", URL)

    response = await client.post("/api/simulators", json={"url": URL, "id": "other"})

    assert response.status_code == 409
    assert response.json()["detail"]["id"] == "sim-a"


@pytest.mark.asyncio
async def test_register_requires_url(client: AsyncClient):
    response = await client.post("/api/simulators", json={"url": "  "})
    assert response.status_code == 400

    response = await client.post("/api/simulators", json={})
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_sync_all(client: AsyncClient, fleet, seed):
    fleet.add(URL, canonical_id="uuid-7", devices={"lamp-1": {}, "lamp-2": {"on": True}})
    await seed("10.0.0.5:8080", URL, ["lamp-3"])

    response = await client.post("/api/simulators/sync")

    assert response.status_code == 200
    data = response.json()
    assert data["mergedSimulators"] == 0
    assert data["finishedAt"] is not None
    [result] = data["results"]
    assert result["simulatorId"] == "uuid-7"
    assert result["outcome"] == "synced"
    assert result["inserted"] == ["lamp-1", "lamp-2"]
    assert result["removed"] == ["lamp-3"]

    simulators = (await client.get("/api/simulators")).json()
    assert [sim["id"] for sim in simulators] == ["uuid-7"]
    assert simulators[0]["status"] == "online"


@pytest.mark.asyncio
async def test_sync_all_conflicts_while_running(client: AsyncClient, syncer):
    async with syncer._run_lock:
        response = await client.post("/api/simulators/sync")
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_sync_one(client: AsyncClient, fleet, seed):
    fleet.add(URL, devices={"lamp-1": {}})
    await seed("sim-a", URL)

    response = await client.post("/api/simulators/sim-a/sync")

    assert response.status_code == 200
    assert response.json()["inserted"] == ["lamp-1"]


@pytest.mark.asyncio
async def test_sync_one_offline(client: AsyncClient, fleet, seed):
    fleet.add(URL).reachable = False
    await seed("sim-a", URL, ["lamp-1"])

    response = await client.post("/api/simulators/sim-a/sync")

    assert response.status_code == 200
    assert response.json()["outcome"] == "offline"
    devices = (await client.get("/api/devices")).json()
    assert list(devices["devices"]) == ["lamp-1"]
    assert devices["warnings"]["offline_simulators"] == ["sim-a"]


@pytest.mark.asyncio
async def test_sync_one_unknown(client: AsyncClient):
    response = await client.post("/api/simulators/missing/sync")
    assert response.status_code == 404
    assert response.json() == {"detail": {"error": "Simulator not found"}}
