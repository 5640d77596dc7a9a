import pytest

from propertyhub.schemas.hierarchy import Block, Placement, Society, Tower
from propertyhub.services.errors import ValidationFailure
from propertyhub.services.placement import resolve_parent

SOCIETY = Society(id="s1", name="Green Acres")
BLOCK = Block(id="b1", society_id="s1", name="Block A")
TOWER = Tower(id="t1", society_id="s1", name="Tower 1")


def test_society_only():
    assert resolve_parent(society=SOCIETY) == Placement(society_id="s1")


def test_block_selected():
    assert resolve_parent(society=SOCIETY, block=BLOCK) == Placement(
        society_id="s1", block_id="b1"
    )


def test_tower_wins_over_block():
    placement = resolve_parent(society=SOCIETY, block=BLOCK, tower=TOWER)
    assert placement == Placement(society_id="s1", tower_id="t1")
    assert placement.block_id is None


def test_tower_without_selected_society_uses_tower_owner():
    assert resolve_parent(tower=TOWER) == Placement(society_id="s1", tower_id="t1")


def test_nothing_selected():
    with pytest.raises(ValidationFailure, match="Select a society"):
        resolve_parent()


def test_block_from_another_society():
    stray = Block(id="b9", society_id="s2", name="Block Z")
    with pytest.raises(ValidationFailure, match="belongs to society s2"):
        resolve_parent(society=SOCIETY, block=stray)


@pytest.mark.parametrize(
    "kwargs",
    [
        {"society": Society(name="Unsaved")},
        {"society": SOCIETY, "block": Block(society_id="s1", name="Unsaved")},
        {"society": SOCIETY, "tower": Tower(id="t2", name="Orphan")},
    ],
)
def test_incomplete_selection(kwargs):
    with pytest.raises(ValidationFailure):
        resolve_parent(**kwargs)
