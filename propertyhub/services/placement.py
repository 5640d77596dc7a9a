# propertyhub/services/placement.py
from typing import Optional

from propertyhub.schemas.hierarchy import Block, Placement, Society, Tower
from propertyhub.services.errors import ValidationFailure


def resolve_parent(
    society: Optional[Society] = None,
    block: Optional[Block] = None,
    tower: Optional[Tower] = None,
) -> Placement:
    """
    Computes where a new or edited flat hangs from the active selection.

    The most specific container wins: tower, then block, then society. At most
    one of block_id/tower_id is ever set, and society_id always names the
    society that owns the chosen container. Raises ``ValidationFailure`` when
    nothing is selected or when the selection contradicts itself.
    """
    if tower is not None:
        _check_container(society, tower.id, tower.society_id, "Tower")
        return Placement(society_id=tower.society_id, tower_id=tower.id)
    if block is not None:
        _check_container(society, block.id, block.society_id, "Block")
        return Placement(society_id=block.society_id, block_id=block.id)
    if society is not None:
        if not society.id:
            raise ValidationFailure("Selected society has not been saved yet")
        return Placement(society_id=society.id)
    raise ValidationFailure("Select a society, block or tower before adding a flat")


def _check_container(
    society: Optional[Society],
    container_id: Optional[str],
    owner_id: Optional[str],
    label: str,
) -> None:
    if not container_id:
        raise ValidationFailure(f"Selected {label.lower()} has not been saved yet")
    if not owner_id:
        raise ValidationFailure(f"{label} {container_id} is not attached to a society")
    if society is not None and society.id != owner_id:
        raise ValidationFailure(
            f"{label} {container_id} belongs to society {owner_id}, not {society.id}"
        )
