"""Shared test fixtures."""

import asyncio
from types import SimpleNamespace

import pytest
import pytest_asyncio

from propertyhub.schemas.hierarchy import (
    Block,
    City,
    Country,
    Flat,
    Placement,
    Society,
    State,
    Tower,
)
from propertyhub.services.hierarchy_repository import HierarchyRepository
from propertyhub.services.selection import SelectionStateMachine


async def _wait_until(predicate, timeout: float = 2.0):
    """Polls the event loop until predicate() holds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached before timeout")
        await asyncio.sleep(0.005)


@pytest.fixture
def wait_until():
    return _wait_until


@pytest.fixture
def repository():
    return HierarchyRepository.in_memory()


@pytest_asyncio.fixture
async def session(repository):
    async with SelectionStateMachine(repository, clear_on_delete=False) as machine:
        yield machine


@pytest_asyncio.fixture
async def seeded(repository):
    """
    One branch of every shape:

    India / Karnataka / Bengaluru / Green Acres
        Block A  -> flat A-101
        Tower 1  -> flat T-101
        flat G-01 directly under the society
    plus a second society (Blue Hills) with its own block.
    """
    country_id = (await repository.add_country(Country(name="India", iso2="IN"))).unwrap()
    state_id = (await repository.add_state(country_id, State(name="Karnataka"))).unwrap()
    city_id = (await repository.add_city(country_id, state_id, City(name="Bengaluru"))).unwrap()
    society_id = (
        await repository.add_society(country_id, state_id, city_id, Society(name="Green Acres"))
    ).unwrap()
    other_society_id = (
        await repository.add_society(country_id, state_id, city_id, Society(name="Blue Hills"))
    ).unwrap()
    block_id = (await repository.add_block(society_id, Block(name="Block A"))).unwrap()
    other_block_id = (
        await repository.add_block(other_society_id, Block(name="Block Z"))
    ).unwrap()
    tower_id = (await repository.add_tower(society_id, Tower(name="Tower 1"))).unwrap()

    society_flat_id = (
        await repository.add_flat(Placement(society_id=society_id), Flat(number="G-01"))
    ).unwrap()
    block_flat_id = (
        await repository.add_flat(
            Placement(society_id=society_id, block_id=block_id), Flat(number="A-101")
        )
    ).unwrap()
    tower_flat_id = (
        await repository.add_flat(
            Placement(society_id=society_id, tower_id=tower_id), Flat(number="T-101")
        )
    ).unwrap()

    return SimpleNamespace(
        country=(await repository.get_country(country_id)).unwrap(),
        state=(await repository.get_state(state_id)).unwrap(),
        city=(await repository.get_city(city_id)).unwrap(),
        society=(await repository.get_society(society_id)).unwrap(),
        other_society=(await repository.get_society(other_society_id)).unwrap(),
        block=(await repository.get_block(block_id)).unwrap(),
        other_block=(await repository.get_block(other_block_id)).unwrap(),
        tower=(await repository.get_tower(tower_id)).unwrap(),
        society_flat=(await repository.get_flat(society_flat_id)).unwrap(),
        block_flat=(await repository.get_flat(block_flat_id)).unwrap(),
        tower_flat=(await repository.get_flat(tower_flat_id)).unwrap(),
    )
