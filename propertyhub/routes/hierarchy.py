# propertyhub/routes/hierarchy.py
from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, Response, status

from propertyhub.dependencies.repository import get_repository, unwrap_or_raise
from propertyhub.schemas.hierarchy import (
    Block,
    BlockBase,
    City,
    CityBase,
    Country,
    CountryBase,
    Flat,
    FlatBase,
    Society,
    SocietyBase,
    State,
    StateBase,
    Tower,
    TowerBase,
)
from propertyhub.schemas.misc import Created
from propertyhub.services.errors import Result, StoreError
from propertyhub.services.hierarchy_repository import HierarchyRepository
from propertyhub.services.placement import resolve_parent
from propertyhub.services.store import first_snapshot

router = APIRouter()


def _changes(body) -> dict:
    return body.model_dump(exclude_unset=True)


def _found(result: Result, label: str, entity_id: str):
    entity = unwrap_or_raise(result)
    if entity is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"code": "not_found", "message": f"{label} {entity_id} not found"},
        )
    return entity


# --- Countries ---


@router.get("/countries", response_model=List[Country])
async def list_countries(repository: HierarchyRepository = Depends(get_repository)):
    return unwrap_or_raise(await first_snapshot(repository.countries()))


@router.post("/countries", response_model=Created, status_code=status.HTTP_201_CREATED)
async def create_country(
    body: CountryBase, repository: HierarchyRepository = Depends(get_repository)
):
    country = Country(**body.model_dump())
    return Created(id=unwrap_or_raise(await repository.add_country(country)))


@router.get("/countries/{country_id}", response_model=Country)
async def get_country(country_id: str, repository: HierarchyRepository = Depends(get_repository)):
    return _found(await repository.get_country(country_id), "Country", country_id)


@router.put("/countries/{country_id}", response_model=Country)
async def update_country(
    country_id: str,
    body: CountryBase,
    repository: HierarchyRepository = Depends(get_repository),
):
    unwrap_or_raise(await repository.update_country(country_id, _changes(body)))
    return _found(await repository.get_country(country_id), "Country", country_id)


@router.delete("/countries/{country_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_country(
    country_id: str,
    cascade: bool = False,
    repository: HierarchyRepository = Depends(get_repository),
):
    unwrap_or_raise(await repository.delete_country(country_id, cascade=cascade))
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/countries/{country_id}/states", response_model=List[State])
async def list_states(country_id: str, repository: HierarchyRepository = Depends(get_repository)):
    return unwrap_or_raise(await first_snapshot(repository.states_of(country_id)))


@router.post(
    "/countries/{country_id}/states",
    response_model=Created,
    status_code=status.HTTP_201_CREATED,
)
async def create_state(
    country_id: str,
    body: StateBase,
    repository: HierarchyRepository = Depends(get_repository),
):
    state = State(**body.model_dump())
    return Created(id=unwrap_or_raise(await repository.add_state(country_id, state)))


# --- States ---


@router.get("/states/{state_id}", response_model=State)
async def get_state(state_id: str, repository: HierarchyRepository = Depends(get_repository)):
    return _found(await repository.get_state(state_id), "State", state_id)


@router.put("/states/{state_id}", response_model=State)
async def update_state(
    state_id: str,
    body: StateBase,
    repository: HierarchyRepository = Depends(get_repository),
):
    unwrap_or_raise(await repository.update_state(state_id, _changes(body)))
    return _found(await repository.get_state(state_id), "State", state_id)


@router.delete("/states/{state_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_state(
    state_id: str,
    cascade: bool = False,
    repository: HierarchyRepository = Depends(get_repository),
):
    unwrap_or_raise(await repository.delete_state(state_id, cascade=cascade))
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/states/{state_id}/cities", response_model=List[City])
async def list_cities(state_id: str, repository: HierarchyRepository = Depends(get_repository)):
    return unwrap_or_raise(await first_snapshot(repository.cities_of(state_id)))


@router.post(
    "/states/{state_id}/cities", response_model=Created, status_code=status.HTTP_201_CREATED
)
async def create_city(
    state_id: str,
    body: CityBase,
    repository: HierarchyRepository = Depends(get_repository),
):
    """Creates a city; the body must name its country explicitly."""
    city = City(**body.model_dump())
    result = await repository.add_city(body.country_id, state_id, city)
    return Created(id=unwrap_or_raise(result))


# --- Cities ---


@router.get("/cities/{city_id}", response_model=City)
async def get_city(city_id: str, repository: HierarchyRepository = Depends(get_repository)):
    return _found(await repository.get_city(city_id), "City", city_id)


@router.put("/cities/{city_id}", response_model=City)
async def update_city(
    city_id: str,
    body: CityBase,
    repository: HierarchyRepository = Depends(get_repository),
):
    unwrap_or_raise(await repository.update_city(city_id, _changes(body)))
    return _found(await repository.get_city(city_id), "City", city_id)


@router.delete("/cities/{city_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_city(
    city_id: str,
    cascade: bool = False,
    repository: HierarchyRepository = Depends(get_repository),
):
    unwrap_or_raise(await repository.delete_city(city_id, cascade=cascade))
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/cities/{city_id}/societies", response_model=List[Society])
async def list_societies(city_id: str, repository: HierarchyRepository = Depends(get_repository)):
    return unwrap_or_raise(await first_snapshot(repository.societies_of(city_id)))


@router.post(
    "/cities/{city_id}/societies", response_model=Created, status_code=status.HTTP_201_CREATED
)
async def create_society(
    city_id: str,
    body: SocietyBase,
    repository: HierarchyRepository = Depends(get_repository),
):
    """Creates a society; the body must name its country and state explicitly."""
    society = Society(**body.model_dump())
    result = await repository.add_society(body.country_id, body.state_id, city_id, society)
    return Created(id=unwrap_or_raise(result))


# --- Societies ---


@router.get("/societies/{society_id}", response_model=Society)
async def get_society(society_id: str, repository: HierarchyRepository = Depends(get_repository)):
    return _found(await repository.get_society(society_id), "Society", society_id)


@router.put("/societies/{society_id}", response_model=Society)
async def update_society(
    society_id: str,
    body: SocietyBase,
    repository: HierarchyRepository = Depends(get_repository),
):
    unwrap_or_raise(await repository.update_society(society_id, _changes(body)))
    return _found(await repository.get_society(society_id), "Society", society_id)


@router.delete("/societies/{society_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_society(
    society_id: str,
    cascade: bool = False,
    repository: HierarchyRepository = Depends(get_repository),
):
    unwrap_or_raise(await repository.delete_society(society_id, cascade=cascade))
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/societies/{society_id}/blocks", response_model=List[Block])
async def list_blocks(society_id: str, repository: HierarchyRepository = Depends(get_repository)):
    return unwrap_or_raise(await first_snapshot(repository.blocks_of(society_id)))


@router.post(
    "/societies/{society_id}/blocks",
    response_model=Created,
    status_code=status.HTTP_201_CREATED,
)
async def create_block(
    society_id: str,
    body: BlockBase,
    repository: HierarchyRepository = Depends(get_repository),
):
    block = Block(**body.model_dump())
    return Created(id=unwrap_or_raise(await repository.add_block(society_id, block)))


@router.get("/societies/{society_id}/towers", response_model=List[Tower])
async def list_towers(society_id: str, repository: HierarchyRepository = Depends(get_repository)):
    return unwrap_or_raise(await first_snapshot(repository.towers_of(society_id)))


@router.post(
    "/societies/{society_id}/towers",
    response_model=Created,
    status_code=status.HTTP_201_CREATED,
)
async def create_tower(
    society_id: str,
    body: TowerBase,
    repository: HierarchyRepository = Depends(get_repository),
):
    tower = Tower(**body.model_dump())
    result = await repository.add_tower(society_id, tower, block_id=body.block_id)
    return Created(id=unwrap_or_raise(result))


@router.get("/societies/{society_id}/flats", response_model=List[Flat])
async def list_society_flats(
    society_id: str, repository: HierarchyRepository = Depends(get_repository)
):
    """Flats attached directly to the society."""
    return unwrap_or_raise(await first_snapshot(repository.flats_of(society_id)))


@router.post(
    "/societies/{society_id}/flats",
    response_model=Created,
    status_code=status.HTTP_201_CREATED,
)
async def create_flat(
    society_id: str,
    body: FlatBase,
    repository: HierarchyRepository = Depends(get_repository),
):
    """
    Creates a flat in the society, or inside one of its blocks or towers when
    the body names exactly one of block_id/tower_id.
    """
    if body.block_id and body.tower_id:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={
                "code": "validation_failure",
                "message": "A flat cannot belong to both a block and a tower",
            },
        )
    society = _found(await repository.get_society(society_id), "Society", society_id)
    block = tower = None
    if body.block_id:
        block = _found(await repository.get_block(body.block_id), "Block", body.block_id)
    if body.tower_id:
        tower = _found(await repository.get_tower(body.tower_id), "Tower", body.tower_id)
    placement = _placement_or_raise(society, block, tower)
    flat = Flat(**body.model_dump())
    return Created(id=unwrap_or_raise(await repository.add_flat(placement, flat)))


# --- Blocks ---


@router.get("/blocks/{block_id}", response_model=Block)
async def get_block(block_id: str, repository: HierarchyRepository = Depends(get_repository)):
    return _found(await repository.get_block(block_id), "Block", block_id)


@router.put("/blocks/{block_id}", response_model=Block)
async def update_block(
    block_id: str,
    body: BlockBase,
    repository: HierarchyRepository = Depends(get_repository),
):
    unwrap_or_raise(await repository.update_block(block_id, _changes(body)))
    return _found(await repository.get_block(block_id), "Block", block_id)


@router.delete("/blocks/{block_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_block(
    block_id: str,
    cascade: bool = False,
    repository: HierarchyRepository = Depends(get_repository),
):
    unwrap_or_raise(await repository.delete_block(block_id, cascade=cascade))
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/blocks/{block_id}/towers", response_model=List[Tower])
async def list_block_towers(
    block_id: str, repository: HierarchyRepository = Depends(get_repository)
):
    return unwrap_or_raise(await first_snapshot(repository.towers_of_block(block_id)))


@router.get("/blocks/{block_id}/flats", response_model=List[Flat])
async def list_block_flats(
    block_id: str, repository: HierarchyRepository = Depends(get_repository)
):
    return unwrap_or_raise(await first_snapshot(repository.flats_of_block(block_id)))


# --- Towers ---


@router.get("/towers/{tower_id}", response_model=Tower)
async def get_tower(tower_id: str, repository: HierarchyRepository = Depends(get_repository)):
    return _found(await repository.get_tower(tower_id), "Tower", tower_id)


@router.put("/towers/{tower_id}", response_model=Tower)
async def update_tower(
    tower_id: str,
    body: TowerBase,
    repository: HierarchyRepository = Depends(get_repository),
):
    unwrap_or_raise(await repository.update_tower(tower_id, _changes(body)))
    return _found(await repository.get_tower(tower_id), "Tower", tower_id)


@router.delete("/towers/{tower_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_tower(
    tower_id: str,
    cascade: bool = False,
    repository: HierarchyRepository = Depends(get_repository),
):
    unwrap_or_raise(await repository.delete_tower(tower_id, cascade=cascade))
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/towers/{tower_id}/flats", response_model=List[Flat])
async def list_tower_flats(
    tower_id: str, repository: HierarchyRepository = Depends(get_repository)
):
    return unwrap_or_raise(await first_snapshot(repository.flats_of_tower(tower_id)))


# --- Flats ---


@router.get("/flats/{flat_id}", response_model=Flat)
async def get_flat(flat_id: str, repository: HierarchyRepository = Depends(get_repository)):
    return _found(await repository.get_flat(flat_id), "Flat", flat_id)


@router.put("/flats/{flat_id}", response_model=Flat)
async def update_flat(
    flat_id: str,
    body: FlatBase,
    repository: HierarchyRepository = Depends(get_repository),
):
    """Updates a flat's own fields; parent pointers are rejected here."""
    unwrap_or_raise(await repository.update_flat(flat_id, _changes(body)))
    return _found(await repository.get_flat(flat_id), "Flat", flat_id)


@router.delete("/flats/{flat_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_flat(flat_id: str, repository: HierarchyRepository = Depends(get_repository)):
    unwrap_or_raise(await repository.delete_flat(flat_id))
    return Response(status_code=status.HTTP_204_NO_CONTENT)


def _placement_or_raise(society: Society, block: Optional[Block], tower: Optional[Tower]):
    try:
        return resolve_parent(society=society, block=block, tower=tower)
    except StoreError as exc:
        unwrap_or_raise(Result.failure(exc))
