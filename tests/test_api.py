import pytest
import pytest_asyncio
from fastapi import WebSocketDisconnect, status
from fastapi.testclient import TestClient
from httpx import ASGITransport, AsyncClient

from propertyhub.main import app
from propertyhub.schemas.hierarchy import Country


@pytest.fixture
def attached(repository):
    app.state.repository = repository
    yield repository
    app.state.repository = None


@pytest_asyncio.fixture
async def client(attached):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


async def _create(client, path, body):
    response = await client.post(path, json=body)
    assert response.status_code == 201, response.text
    return response.json()["id"]


@pytest_asyncio.fixture
async def tree(client):
    country_id = await _create(client, "/hierarchy/countries", {"name": "India", "iso2": "IN"})
    state_id = await _create(
        client, f"/hierarchy/countries/{country_id}/states", {"name": "Karnataka"}
    )
    city_id = await _create(
        client,
        f"/hierarchy/states/{state_id}/cities",
        {"name": "Bengaluru", "country_id": country_id},
    )
    society_id = await _create(
        client,
        f"/hierarchy/cities/{city_id}/societies",
        {"name": "Green Acres", "country_id": country_id, "state_id": state_id},
    )
    block_id = await _create(
        client, f"/hierarchy/societies/{society_id}/blocks", {"name": "Block A"}
    )
    tower_id = await _create(
        client, f"/hierarchy/societies/{society_id}/towers", {"name": "Tower 1"}
    )
    return {
        "country": country_id,
        "state": state_id,
        "city": city_id,
        "society": society_id,
        "block": block_id,
        "tower": tower_id,
    }


@pytest.mark.asyncio
async def test_index(client):
    response = await client.get("/")
    assert response.status_code == 200
    assert "running" in response.json()["message"]


@pytest.mark.asyncio
async def test_unattached_repository_is_unavailable():
    app.state.repository = None
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        response = await ac.get("/hierarchy/countries")
    assert response.status_code == 503


@pytest.mark.asyncio
async def test_scoped_lists(client, tree):
    states = (await client.get(f"/hierarchy/countries/{tree['country']}/states")).json()
    assert [s["id"] for s in states] == [tree["state"]]

    societies = (await client.get(f"/hierarchy/cities/{tree['city']}/societies")).json()
    assert societies[0]["state_id"] == tree["state"]


@pytest.mark.asyncio
async def test_flat_placement(client, tree):
    society = tree["society"]
    await _create(client, f"/hierarchy/societies/{society}/flats", {"number": "G-01"})
    await _create(
        client,
        f"/hierarchy/societies/{society}/flats",
        {"number": "A-101", "block_id": tree["block"]},
    )
    await _create(
        client,
        f"/hierarchy/societies/{society}/flats",
        {"number": "T-101", "tower_id": tree["tower"]},
    )

    direct = (await client.get(f"/hierarchy/societies/{society}/flats")).json()
    in_block = (await client.get(f"/hierarchy/blocks/{tree['block']}/flats")).json()
    in_tower = (await client.get(f"/hierarchy/towers/{tree['tower']}/flats")).json()
    assert [f["number"] for f in direct] == ["G-01"]
    assert [f["number"] for f in in_block] == ["A-101"]
    assert [f["number"] for f in in_tower] == ["T-101"]
    assert in_tower[0]["block_id"] is None


@pytest.mark.asyncio
async def test_flat_in_block_and_tower_is_422(client, tree):
    response = await client.post(
        f"/hierarchy/societies/{tree['society']}/flats",
        json={"number": "X", "block_id": tree["block"], "tower_id": tree["tower"]},
    )
    assert response.status_code == 422
    assert response.json()["detail"]["code"] == "validation_failure"


@pytest.mark.asyncio
async def test_missing_entities_are_404(client, tree):
    assert (await client.get("/hierarchy/countries/missing")).status_code == 404
    response = await client.post("/hierarchy/countries/missing/states", json={"name": "Goa"})
    assert response.status_code == 404
    assert response.json()["detail"]["code"] == "not_found"
    assert (await client.delete("/hierarchy/flats/missing")).status_code == 404


@pytest.mark.asyncio
async def test_city_without_country_is_422(client, tree):
    response = await client.post(
        f"/hierarchy/states/{tree['state']}/cities", json={"name": "Mysuru"}
    )
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_partial_update(client, tree):
    response = await client.put(
        f"/hierarchy/states/{tree['state']}", json={"name": "Karnataka", "state_code": "KA"}
    )
    assert response.status_code == 200
    body = response.json()
    assert body["state_code"] == "KA"
    assert body["country_id"] == tree["country"]


@pytest.mark.asyncio
async def test_flat_update_cannot_move_it(client, tree):
    flat_id = await _create(
        client, f"/hierarchy/societies/{tree['society']}/flats", {"number": "G-01"}
    )
    moved = await client.put(
        f"/hierarchy/flats/{flat_id}", json={"number": "G-01", "block_id": tree["block"]}
    )
    assert moved.status_code == 422
    edited = await client.put(f"/hierarchy/flats/{flat_id}", json={"number": "G-01", "floor": 2})
    assert edited.status_code == 200
    assert edited.json()["floor"] == 2


@pytest.mark.asyncio
async def test_block_with_flats_cannot_change_society(client, tree):
    other_society = await _create(
        client,
        f"/hierarchy/cities/{tree['city']}/societies",
        {"name": "Blue Hills", "country_id": tree["country"], "state_id": tree["state"]},
    )
    await _create(
        client,
        f"/hierarchy/societies/{tree['society']}/flats",
        {"number": "A-101", "block_id": tree["block"]},
    )
    moved = await client.put(
        f"/hierarchy/blocks/{tree['block']}",
        json={"name": "Block A", "society_id": other_society},
    )
    assert moved.status_code == 422
    assert moved.json()["detail"]["code"] == "validation_failure"
    block = (await client.get(f"/hierarchy/blocks/{tree['block']}")).json()
    assert block["society_id"] == tree["society"]

    renamed = await client.put(f"/hierarchy/blocks/{tree['block']}", json={"name": "Block B"})
    assert renamed.status_code == 200
    assert renamed.json()["name"] == "Block B"


@pytest.mark.asyncio
async def test_cascade_delete(client, tree):
    response = await client.delete(f"/hierarchy/countries/{tree['country']}?cascade=true")
    assert response.status_code == 204
    assert (await client.get(f"/hierarchy/states/{tree['state']}")).status_code == 404
    assert (await client.get(f"/hierarchy/towers/{tree['tower']}")).status_code == 404


@pytest.mark.asyncio
async def test_store_outage_is_503(client, attached):
    attached.store(Country).available = False
    response = await client.get("/hierarchy/countries")
    assert response.status_code == 503
    assert response.json()["detail"]["code"] == "subscription_error"


def _receive_until(websocket, predicate, limit=50):
    for _ in range(limit):
        message = websocket.receive_json()
        if predicate(message):
            return message
    raise AssertionError("expected message never arrived")


def test_selection_websocket(attached):
    client = TestClient(app)
    with client.websocket_connect("/selection/ws") as websocket:
        first = websocket.receive_json()
        assert first["type"] == "snapshot"

        websocket.send_json({"kind": "add_country", "country": {"name": "India"}})
        message = _receive_until(
            websocket,
            lambda m: m["type"] == "snapshot" and m["snapshot"]["countries"],
        )
        country = message["snapshot"]["countries"][0]
        assert country["name"] == "India"

        websocket.send_json({"kind": "select_country", "country": country})
        message = _receive_until(
            websocket,
            lambda m: m["type"] == "snapshot"
            and m["snapshot"]["selected_country"] is not None
            and "states" not in m["snapshot"]["loading"],
        )
        assert message["snapshot"]["selected_country"]["id"] == country["id"]

        websocket.send_json({"kind": "add_flat", "flat": {"number": "1"}})
        message = _receive_until(
            websocket,
            lambda m: m["type"] == "snapshot" and m["snapshot"]["last_error"] is not None,
        )
        assert message["snapshot"]["last_error"]["source"] == "add_flat"

        websocket.send_json({"kind": "teleport"})
        message = _receive_until(websocket, lambda m: m["type"] == "rejected")
        assert message["detail"]


def test_selection_websocket_without_repository():
    app.state.repository = None
    client = TestClient(app)
    with client.websocket_connect("/selection/ws") as websocket:
        with pytest.raises(WebSocketDisconnect) as closed:
            websocket.receive_json()
    assert closed.value.code == status.WS_1011_INTERNAL_ERROR
