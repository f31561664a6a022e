"""
End-to-end roster scenarios.

Covers:
  - HQ / Squad 1 walkthrough: subtree view, rename cascade, delete with
    reassignment (kernel only, then through a live session)
  - Passkey set / verify
  - Concurrent subscriptions during backend initialization
  - Unit tree stays acyclic under a long mixed edit sequence

Run:  py -3 test_scenarios.py
"""

from __future__ import annotations

import asyncio
import os
import random
import sys

sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from roster_kernel import (
    UNASSIGNED_UNIT_ID,
    CircularReferenceError,
    DuplicateIdError,
    DuplicateNameError,
    Personnel,
    RosterIndex,
    RosterState,
    Unit,
    UnitTree,
    hash_passkey,
    is_hashed,
    validate_unit_tree,
)
from roster_kernel.graph import build_unit_map, detect_parent_cycles
from roster_runtime import (
    BackendInitError,
    KeyValueStore,
    MockStore,
    RosterSession,
    StoreAdapter,
    StoreConfig,
    StorePath,
)


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


def _hq_state() -> RosterState:
    return RosterState(
        units=[
            Unit(id="hq", name="HQ"),
            Unit(id="sq1", name="Squad 1", parent_id="hq"),
            Unit(id=UNASSIGNED_UNIT_ID, name="Unassigned"),
        ],
        personnel_by_unit={
            "sq1": [Personnel(id="p1", name="Ann", assigned_unit="Squad 1", grade="5")],
        },
        current_unit_id="hq",
    )


# ---------------------------------------------------------------------------
# Walkthrough
# ---------------------------------------------------------------------------

def test_walkthrough_kernel():
    state = _hq_state()
    tree = UnitTree(state)
    index = RosterIndex(state)

    assert [p.id for p in index.personnel_in_subtree("hq")] == ["p1"]

    tree.rename("sq1", "Squad One")
    assert state.personnel_by_unit["sq1"][0].assigned_unit == "Squad One"

    tree.delete("sq1", reassign_to="hq")
    p1 = state.personnel_by_unit["hq"][0]
    assert p1.id == "p1"
    assert p1.assigned_unit == "HQ"
    assert "sq1" not in [u.id for u in tree.ordered_list()]


def test_walkthrough_session():
    mock = MockStore()
    seed = _hq_state()
    mock.set("units", seed.units_to_list())
    mock.set("personnelByUnit", seed.personnel_to_dict())
    mock.set("currentUnitId", "hq")

    async def scenario():
        session = RosterSession(StoreAdapter(StoreConfig(), mock))
        await session.start()
        subtree = [p.id for p in session.index.personnel_in_subtree("hq")]
        await session.update_unit("sq1", name="Squad One")
        renamed_to = session.index.find("p1")[1].assigned_unit
        await session.delete_unit("sq1", reassign_to="hq")
        await session.stop()
        return session, subtree, renamed_to

    session, subtree, renamed_to = asyncio.run(scenario())
    assert subtree == ["p1"]
    assert renamed_to == "Squad One"
    unit_id, p1 = session.index.find("p1")
    assert unit_id == "hq"
    assert p1.assigned_unit == "HQ"
    assert "sq1" not in [u.id for u in session.tree.ordered_list()]
    # The store holds exactly what the session shows.
    assert mock.get("personnelByUnit") == session.state.personnel_to_dict()


# ---------------------------------------------------------------------------
# Passkey
# ---------------------------------------------------------------------------

def test_passkey_scenario():
    mock = MockStore()

    async def scenario():
        session = RosterSession(StoreAdapter(StoreConfig(), mock))
        await session.credentials.set_passkey("secret123", "secret123")
        return (
            await session.credentials.verify_passkey("secret123"),
            await session.credentials.verify_passkey("wrong"),
        )

    right, wrong = asyncio.run(scenario())
    stored = mock.get("gmPasskey")
    assert len(stored) == 64 and is_hashed(stored)
    assert stored == hash_passkey("secret123")
    assert right is True
    assert wrong is False


# ---------------------------------------------------------------------------
# Concurrent startup
# ---------------------------------------------------------------------------

class SlowRemote(KeyValueStore):
    def __init__(self, fail):
        self.fail = fail

    async def connect(self):
        await asyncio.sleep(0.02)
        if self.fail:
            raise BackendInitError("unreachable")

    async def read(self, path):
        return None

    async def write(self, path, value):
        pass

    async def subscribe(self, path, callback):
        return lambda: None


def _concurrent_start(fail):
    remote_config = StoreConfig(
        enabled=True,
        api_key="k",
        database_url="postgresql://u:p@h:5432/db",
        project_id="proj",
        local_db_path=None,
    )
    created = []

    def factory(config):
        created.append(SlowRemote(fail))
        return created[-1]

    async def scenario():
        mock = MockStore()
        adapter = StoreAdapter(remote_config, mock, remote_factory=factory)
        handles = await asyncio.gather(*(adapter.backend() for _ in range(3)))
        await asyncio.gather(
            adapter.subscribe(StorePath.UNITS, lambda v: None),
            adapter.subscribe(StorePath.PERSONNEL_BY_UNIT, lambda v: None),
            adapter.subscribe(StorePath.CURRENT_UNIT_ID, lambda v: None),
        )
        return adapter, mock, handles

    adapter, mock, handles = asyncio.run(scenario())
    return adapter, mock, handles, created


def test_concurrent_start_success():
    adapter, mock, handles, created = _concurrent_start(fail=False)
    assert adapter.init_attempts == 1
    assert len(created) == 1
    assert all(h is created[0] for h in handles)


def test_concurrent_start_failure():
    adapter, mock, handles, created = _concurrent_start(fail=True)
    assert adapter.init_attempts == 1
    assert all(h is mock for h in handles)
    # All three session subscriptions landed on the mock.
    assert mock.listener_count == 3


# ---------------------------------------------------------------------------
# Acyclic under mixed edits
# ---------------------------------------------------------------------------

def test_mixed_edits_stay_acyclic():
    rng = random.Random(1729)
    state = RosterState(units=[Unit(id=UNASSIGNED_UNIT_ID, name="Unassigned")])
    tree = UnitTree(state)
    for step in range(300):
        ids = [u.id for u in state.units if u.id != UNASSIGNED_UNIT_ID]
        action = rng.choice(["create", "create", "reparent", "rename", "delete"])
        try:
            if action == "create" or not ids:
                parent = rng.choice(ids) if ids and rng.random() < 0.7 else None
                tree.create(f"Unit {rng.randint(0, 60)}", parent_id=parent)
            elif action == "reparent":
                tree.reparent(rng.choice(ids), rng.choice(ids + [None]))
            elif action == "rename":
                tree.rename(rng.choice(ids), f"Unit {rng.randint(0, 60)}")
            else:
                tree.delete(rng.choice(ids))
        except (CircularReferenceError, DuplicateNameError, DuplicateIdError):
            pass
        assert detect_parent_cycles(build_unit_map(state.units)) == [], f"cycle at step {step}"
    validate_unit_tree(state.units)
    ordered = tree.ordered_list()
    assert ordered[-1].id == UNASSIGNED_UNIT_ID
    assert len(ordered) == len(state.units)


# ---------------------------------------------------------------------------
# Runner
# ---------------------------------------------------------------------------

def main():
    tests = [
        ("Walkthrough: kernel", test_walkthrough_kernel),
        ("Walkthrough: session", test_walkthrough_session),
        ("Passkey", test_passkey_scenario),
        ("Concurrent start: success", test_concurrent_start_success),
        ("Concurrent start: failure", test_concurrent_start_failure),
        ("Mixed edits stay acyclic", test_mixed_edits_stay_acyclic),
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
