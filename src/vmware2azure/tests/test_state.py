"""Tests for migration state persistence and the active-attempt guard."""

from datetime import datetime

import pytest


# ═══════════════════════════════════════════════════════════════════
#  Migration State Tests
# ═══════════════════════════════════════════════════════════════════

class TestMigrationState:
    def test_round_trip(self):
        from vmware2azure.azure.provisioner import CloudResourceRef, ResourceKind
        from vmware2azure.pipeline.state import MigrationStage, MigrationState
        state = MigrationState(migration_id="abc", vm_name="web", started_at=datetime(2026, 1, 2, 3, 4, 5))
        state.advance(MigrationStage.AWAIT_POWEROFF)
        state.power_off_checks = 2
        state.record_resource(CloudResourceRef("/ip", "web-ip", ResourceKind.IP))

        restored = MigrationState.from_dict(state.to_dict())

        assert restored.stage == MigrationStage.AWAIT_POWEROFF
        assert restored.started_at == datetime(2026, 1, 2, 3, 4, 5)
        assert restored.power_off_checks == 2
        assert restored.resource(ResourceKind.IP) == CloudResourceRef("/ip", "web-ip", ResourceKind.IP)
        assert restored.resource(ResourceKind.NIC) is None

    def test_advance_records_completed_stages(self):
        from vmware2azure.pipeline.state import MigrationStage, MigrationState
        state = MigrationState(migration_id="abc", vm_name="web")
        state.advance(MigrationStage.AWAIT_POWEROFF)
        state.advance(MigrationStage.CONVERTING)
        state.advance(MigrationStage.FAILED)

        assert state.completed_stages == ["await_poweroff"]
        assert state.stage.terminal
        assert state.completed_at is not None
        assert not state.active

    def test_resource_refs_in_creation_order(self):
        from vmware2azure.azure.provisioner import CloudResourceRef, ResourceKind
        from vmware2azure.pipeline.state import MigrationState
        state = MigrationState(migration_id="abc", vm_name="web")
        state.record_resource(CloudResourceRef("/nic", "nic", ResourceKind.NIC))
        state.record_resource(CloudResourceRef("/ip", "ip", ResourceKind.IP))

        assert [r.kind for r in state.resource_refs()] == [ResourceKind.IP, ResourceKind.NIC]


# ═══════════════════════════════════════════════════════════════════
#  State Store Tests
# ═══════════════════════════════════════════════════════════════════

class TestMigrationStateStore:
    def test_save_and_load(self, tmp_path):
        from vmware2azure.pipeline.state import MigrationStage, MigrationStateStore
        store = MigrationStateStore(tmp_path)
        state = store.create("m-1", "web")
        state.advance(MigrationStage.AWAIT_POWEROFF)
        store.save(state)

        loaded = store.load("m-1")
        assert loaded.vm_name == "web"
        assert loaded.stage == MigrationStage.AWAIT_POWEROFF
        assert (tmp_path / "state" / "m-1.json").exists()
        assert not (tmp_path / "state" / "m-1.json.tmp").exists()

    def test_load_missing(self, tmp_path):
        from vmware2azure.pipeline.state import MigrationStateStore
        assert MigrationStateStore(tmp_path).load("nope") is None

    def test_load_corrupt(self, tmp_path):
        from vmware2azure.pipeline.state import MigrationStateStore
        store = MigrationStateStore(tmp_path)
        (tmp_path / "state" / "bad.json").write_text("{not json")
        assert store.load("bad") is None
        assert store.list_all() == []

    def test_second_active_attempt_refused(self, tmp_path):
        from vmware2azure.errors import MigrationInProgressError
        from vmware2azure.pipeline.state import MigrationStateStore
        store = MigrationStateStore(tmp_path)
        store.create("m-1", "web")

        with pytest.raises(MigrationInProgressError, match="m-1"):
            store.create("m-2", "web")

    def test_new_attempt_after_terminal(self, tmp_path):
        from vmware2azure.pipeline.state import MigrationStage, MigrationStateStore
        store = MigrationStateStore(tmp_path)
        first = store.create("m-1", "web")
        first.advance(MigrationStage.FAILED)
        store.save(first)

        second = store.create("m-2", "web")

        assert store.find_active("web").migration_id == second.migration_id

    def test_attempts_for_other_vms_independent(self, tmp_path):
        from vmware2azure.pipeline.state import MigrationStateStore
        store = MigrationStateStore(tmp_path)
        store.create("m-1", "web")
        store.create("m-2", "db")

        assert store.find_active("db").migration_id == "m-2"
        assert store.find_active("cache") is None

    def test_list_newest_first_and_delete(self, tmp_path):
        from vmware2azure.pipeline.state import MigrationState, MigrationStateStore
        store = MigrationStateStore(tmp_path)
        store.save(MigrationState("old", "a", started_at=datetime(2025, 1, 1)))
        store.save(MigrationState("new", "b", started_at=datetime(2026, 1, 1)))

        assert [s.migration_id for s in store.list_all()] == ["new", "old"]
        store.delete("old")
        assert [s.migration_id for s in store.list_all()] == ["new"]
