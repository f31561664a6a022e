"""
Roster Kernel - Unit Tree Tests

Covers:
  - Unit creation (id derivation, duplicate name / id, unknown parent)
  - Rename cascade into assignedUnit / secondment
  - Reparent cycle rejection, top-level moves
  - Delete: child lift, personnel reassignment, protected unit
  - Display ordering and depth
  - Acyclicity under arbitrary reparent sequences

Run:  py -3 -m roster_kernel.test_unit_tree
"""

from __future__ import annotations

import itertools
import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from roster_kernel.domain_types import (
    UNASSIGNED_UNIT_ID,
    Personnel,
    RosterState,
    Unit,
    derive_unit_id,
)
from roster_kernel.graph import build_unit_map, detect_parent_cycles
from roster_kernel.invariants import (
    CircularReferenceError,
    DuplicateIdError,
    DuplicateNameError,
    InvalidUnitNameError,
    ProtectedUnitError,
    UnitTreeError,
    UnknownUnitError,
    validate_unit_tree,
)
from roster_kernel.unit_tree import UnitTree


_pass = 0
_fail = 0


def _test(name, fn):
    global _pass, _fail
    try:
        fn()
        print(f"  [PASS] {name}")
        _pass += 1
    except Exception as exc:
        print(f"  [FAIL] {name}: {exc}")
        _fail += 1


def _make_state() -> RosterState:
    """HQ > Squad 1 > Fire Team, HQ > Squad 2, plus Unassigned."""
    return RosterState(
        units=[
            Unit(id="hq", name="HQ"),
            Unit(id="sq1", name="Squad 1", parent_id="hq"),
            Unit(id="sq2", name="Squad 2", parent_id="hq"),
            Unit(id="ft", name="Fire Team", parent_id="sq1"),
            Unit(id=UNASSIGNED_UNIT_ID, name="Unassigned"),
        ],
        personnel_by_unit={
            "sq1": [Personnel(id="p1", name="Ann", assigned_unit="Squad 1", grade="5")],
            "sq2": [Personnel(id="p2", name="Bob", assigned_unit="Squad 2", secondment="Squad 1")],
        },
        current_unit_id="sq1",
    )


# ---------------------------------------------------------------------------
# Create
# ---------------------------------------------------------------------------

def test_derive_unit_id():
    assert derive_unit_id("17th Assault Group") == "17th-assault-group"
    assert derive_unit_id("I.S.S. Beaumont Hill") == "iss-beaumont-hill"
    assert derive_unit_id("Alpha  -- Team") == "alpha-team"


def test_create_unit():
    state = _make_state()
    unit = UnitTree(state).create("  Recon Platoon ", parent_id="hq")
    assert unit.id == "recon-platoon"
    assert unit.name == "Recon Platoon"
    assert unit.parent_id == "hq"
    assert state.units[-1] is unit


def test_create_duplicate_name_case_insensitive():
    state = _make_state()
    before = len(state.units)
    try:
        UnitTree(state).create("squad 1")
        assert False, "Expected DuplicateNameError"
    except DuplicateNameError as exc:
        assert exc.rule == "duplicate_name"
    assert len(state.units) == before


def test_create_duplicate_id():
    state = _make_state()
    tree = UnitTree(state)
    tree.create("Alpha Team")
    try:
        tree.create("Alpha  Team")
        assert False, "Expected DuplicateIdError"
    except DuplicateIdError:
        pass


def test_create_unknown_parent():
    state = _make_state()
    try:
        UnitTree(state).create("Ghost", parent_id="nowhere")
        assert False, "Expected UnknownUnitError"
    except UnknownUnitError:
        pass


def test_create_blank_name():
    state = _make_state()
    for name in ("", "   ", "!!!"):
        try:
            UnitTree(state).create(name)
            assert False, f"Expected InvalidUnitNameError for {name!r}"
        except InvalidUnitNameError:
            pass


# ---------------------------------------------------------------------------
# Rename
# ---------------------------------------------------------------------------

def test_rename_cascades():
    state = _make_state()
    rewritten = UnitTree(state).rename("sq1", "Squad One")
    assert rewritten == 2
    p1 = state.personnel_by_unit["sq1"][0]
    p2 = state.personnel_by_unit["sq2"][0]
    assert p1.assigned_unit == "Squad One"
    assert p2.secondment == "Squad One"
    for group in state.personnel_by_unit.values():
        for person in group:
            assert "Squad 1" not in (person.assigned_unit, person.secondment)
    # Id is stable across renames.
    assert UnitTree(state).get("sq1").name == "Squad One"


def test_rename_to_taken_name():
    state = _make_state()
    try:
        UnitTree(state).rename("sq1", "SQUAD 2")
        assert False, "Expected DuplicateNameError"
    except DuplicateNameError:
        pass
    assert UnitTree(state).get("sq1").name == "Squad 1"
    assert state.personnel_by_unit["sq1"][0].assigned_unit == "Squad 1"


def test_rename_unknown_unit_is_noop():
    state = _make_state()
    assert UnitTree(state).rename("nowhere", "Anything") == 0
    assert [u.name for u in state.units][:2] == ["HQ", "Squad 1"]


# ---------------------------------------------------------------------------
# Reparent
# ---------------------------------------------------------------------------

def test_reparent_under_descendant_rejected():
    state = _make_state()
    tree = UnitTree(state)
    for bad_parent in ("hq", "sq1", "ft"):
        try:
            tree.reparent("hq", bad_parent)
            assert False, f"Expected CircularReferenceError for {bad_parent}"
        except CircularReferenceError:
            pass
    assert tree.get("hq").parent_id is None


def test_reparent_top_level():
    state = _make_state()
    tree = UnitTree(state)
    tree.reparent("ft", "")
    assert tree.get("ft").parent_id is None
    assert tree.depth("ft") == 0
    tree.reparent("ft", "sq2")
    assert tree.path("ft") == "HQ/Squad 2/Fire Team"


def test_update_validates_before_mutating():
    state = _make_state()
    tree = UnitTree(state)
    try:
        tree.update("sq1", name="Renamed", parent_id="ft")
        assert False, "Expected CircularReferenceError"
    except CircularReferenceError:
        pass
    unit = tree.get("sq1")
    assert unit.name == "Squad 1"
    assert unit.parent_id == "hq"


def test_arbitrary_reparents_stay_acyclic():
    state = _make_state()
    tree = UnitTree(state)
    ids = [u.id for u in state.units if u.id != UNASSIGNED_UNIT_ID]
    for child, parent in itertools.permutations(ids + [None], 2):
        if child is None:
            continue
        try:
            tree.reparent(child, parent)
        except CircularReferenceError:
            pass
        assert detect_parent_cycles(build_unit_map(state.units)) == []
    validate_unit_tree(state.units)


# ---------------------------------------------------------------------------
# Delete
# ---------------------------------------------------------------------------

def test_delete_lifts_children_and_moves_personnel():
    state = _make_state()
    tree = UnitTree(state)
    removed = tree.delete("sq1", reassign_to="sq2")
    assert removed.id == "sq1"
    assert tree.get("sq1") is None
    assert tree.get("ft").parent_id == "hq"
    assert "sq1" not in state.personnel_by_unit
    moved = [p for p in state.personnel_by_unit["sq2"] if p.id == "p1"]
    assert len(moved) == 1
    assert moved[0].assigned_unit == "Squad 2"
    # Selection follows the personnel.
    assert state.current_unit_id == "sq2"


def test_delete_top_level_lifts_children_to_root():
    state = _make_state()
    tree = UnitTree(state)
    tree.delete("hq")
    assert tree.get("sq1").parent_id is None
    assert tree.get("sq2").parent_id is None
    assert tree.get("ft").parent_id == "sq1"


def test_delete_defaults_to_unassigned():
    state = _make_state()
    UnitTree(state).delete("sq1")
    group = state.personnel_by_unit[UNASSIGNED_UNIT_ID]
    assert [p.id for p in group] == ["p1"]
    assert group[0].assigned_unit == "Unassigned"


def test_delete_protected_unit():
    state = _make_state()
    try:
        UnitTree(state).delete(UNASSIGNED_UNIT_ID)
        assert False, "Expected ProtectedUnitError"
    except ProtectedUnitError:
        pass


def test_delete_rejects_bad_targets():
    state = _make_state()
    tree = UnitTree(state)
    try:
        tree.delete("sq1", reassign_to="sq1")
        assert False, "Expected UnitTreeError"
    except UnitTreeError as exc:
        assert exc.rule == "invalid_reassignment"
    try:
        tree.delete("sq1", reassign_to="nowhere")
        assert False, "Expected UnknownUnitError"
    except UnknownUnitError:
        pass
    assert tree.get("sq1") is not None


def test_delete_unknown_unit_is_noop():
    state = _make_state()
    assert UnitTree(state).delete("nowhere") is None
    assert len(state.units) == 5


# ---------------------------------------------------------------------------
# Ordering
# ---------------------------------------------------------------------------

def test_ordered_list_policy():
    state = RosterState(units=[
        Unit(id=UNASSIGNED_UNIT_ID, name="Unassigned"),
        Unit(id="zulu", name="Zulu"),
        Unit(id="bravo", name="Bravo", parent_id="zulu"),
        Unit(id="alpha", name="Alpha"),
        Unit(id="charlie", name="Charlie", sort_order=2),
        Unit(id="delta", name="Delta", sort_order=1),
    ])
    ordered = [u.id for u in UnitTree(state).ordered_list()]
    assert ordered == ["delta", "charlie", "alpha", "zulu", "bravo", UNASSIGNED_UNIT_ID]


def test_ordered_list_groups_children_under_parent():
    state = _make_state()
    ordered = [u.id for u in UnitTree(state).ordered_list()]
    assert ordered == ["hq", "sq1", "ft", "sq2", UNASSIGNED_UNIT_ID]


def test_ordered_list_compares_joined_path():
    state = RosterState(units=[
        Unit(id="a", name="A"),
        Unit(id="b", name="B", parent_id="a"),
        Unit(id="a-b", name="A B"),
        Unit(id=UNASSIGNED_UNIT_ID, name="Unassigned"),
    ])
    ordered = [u.id for u in UnitTree(state).ordered_list()]
    # " " sorts before "/", so the sibling "A B" precedes the child "A/B".
    assert ordered == ["a", "a-b", "b", UNASSIGNED_UNIT_ID]


def test_depth_and_candidates():
    state = _make_state()
    tree = UnitTree(state)
    assert [tree.depth(uid) for uid in ("hq", "sq1", "ft")] == [0, 1, 2]
    candidates = {u.id for u in tree.parent_candidates("sq1")}
    assert candidates == {"hq", "sq2"}
    targets = {u.id for u in tree.reassignment_targets("sq1")}
    assert targets == {"hq", "sq2", UNASSIGNED_UNIT_ID}


# ---------------------------------------------------------------------------
# Runner
# ---------------------------------------------------------------------------

def main():
    tests = [
        ("Create: id derivation", test_derive_unit_id),
        ("Create: basic", test_create_unit),
        ("Create: duplicate name", test_create_duplicate_name_case_insensitive),
        ("Create: duplicate id", test_create_duplicate_id),
        ("Create: unknown parent", test_create_unknown_parent),
        ("Create: blank name", test_create_blank_name),
        ("Rename: cascade", test_rename_cascades),
        ("Rename: taken name", test_rename_to_taken_name),
        ("Rename: unknown unit", test_rename_unknown_unit_is_noop),
        ("Reparent: cycle rejected", test_reparent_under_descendant_rejected),
        ("Reparent: top level", test_reparent_top_level),
        ("Update: validate first", test_update_validates_before_mutating),
        ("Reparent: stays acyclic", test_arbitrary_reparents_stay_acyclic),
        ("Delete: children + personnel", test_delete_lifts_children_and_moves_personnel),
        ("Delete: top level", test_delete_top_level_lifts_children_to_root),
        ("Delete: default target", test_delete_defaults_to_unassigned),
        ("Delete: protected", test_delete_protected_unit),
        ("Delete: bad targets", test_delete_rejects_bad_targets),
        ("Delete: unknown unit", test_delete_unknown_unit_is_noop),
        ("Order: policy", test_ordered_list_policy),
        ("Order: nesting", test_ordered_list_groups_children_under_parent),
        ("Order: joined path", test_ordered_list_compares_joined_path),
        ("Depth + candidates", test_depth_and_candidates),
    ]

    print(f"\nRunning {len(tests)} tests...\n")
    for name, fn in tests:
        _test(name, fn)

    print(f"\n{'='*60}")
    print(f"  {_pass} passed, {_fail} failed out of {_pass + _fail}")
    print(f"{'='*60}")

    if _fail > 0:
        sys.exit(1)


if __name__ == "__main__":
    main()
