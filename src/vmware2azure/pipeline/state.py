"""Migration state persisted between orchestrator invocations.

The orchestrator is re-invoked while the source VM powers off, so the stage
reached and the resources created so far must survive between calls.
"""

from __future__ import annotations

import enum
import json
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

from vmware2azure.azure.provisioner import CloudResourceRef, ResourceKind
from vmware2azure.errors import MigrationInProgressError
from vmware2azure.utils.logging import get_logger

logger = get_logger(__name__)


class MigrationStage(str, enum.Enum):
    INIT = "init"
    AWAIT_POWEROFF = "await_poweroff"
    CONVERTING = "converting"
    PROVISIONING_IP = "provisioning_ip"
    PROVISIONING_NIC = "provisioning_nic"
    PROVISIONING_VM = "provisioning_vm"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (MigrationStage.COMPLETED, MigrationStage.FAILED)


@dataclass
class MigrationState:
    """Persistent state for a single migration attempt.

    Attributes:
        migration_id: Unique identifier for this attempt
        vm_name: Source VM name in vCenter
        stage: Stage the next invocation starts from
        completed_stages: Stages finished so far, in order
        resources: Created cloud resources keyed by kind ("ip", "nic", "vm")
        power_off_checks: How many times the VM was observed not powered off
    """
    migration_id: str
    vm_name: str
    stage: MigrationStage = MigrationStage.INIT
    completed_stages: list[str] = field(default_factory=list)
    resources: dict[str, dict[str, str]] = field(default_factory=dict)
    power_off_checks: int = 0
    power_off_requested_at: Optional[datetime] = None
    conversion_output: str = ""
    error: Optional[str] = None
    started_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def active(self) -> bool:
        return not self.stage.terminal

    def advance(self, stage: MigrationStage) -> None:
        """Record the current stage as done and move to ``stage``."""
        if (stage != MigrationStage.FAILED
                and self.stage not in (MigrationStage.INIT, stage)
                and self.stage.value not in self.completed_stages):
            self.completed_stages.append(self.stage.value)
        self.stage = stage
        self.updated_at = datetime.now()
        if stage.terminal:
            self.completed_at = self.updated_at

    def record_resource(self, ref: CloudResourceRef) -> None:
        self.resources[ref.kind.value] = ref.to_dict()

    def resource(self, kind: ResourceKind) -> Optional[CloudResourceRef]:
        data = self.resources.get(kind.value)
        return CloudResourceRef.from_dict(data) if data else None

    def resource_refs(self) -> list[CloudResourceRef]:
        return [CloudResourceRef.from_dict(self.resources[k.value]) for k in ResourceKind if k.value in self.resources]

    def to_dict(self) -> dict:
        return {
            "migration_id": self.migration_id,
            "vm_name": self.vm_name,
            "stage": self.stage.value,
            "completed_stages": self.completed_stages,
            "resources": self.resources,
            "power_off_checks": self.power_off_checks,
            "power_off_requested_at": _iso(self.power_off_requested_at),
            "conversion_output": self.conversion_output,
            "error": self.error,
            "started_at": _iso(self.started_at),
            "updated_at": _iso(self.updated_at),
            "completed_at": _iso(self.completed_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MigrationState":
        data = dict(data)
        data["stage"] = MigrationStage(data.get("stage", MigrationStage.INIT.value))
        for key in ("power_off_requested_at", "started_at", "updated_at", "completed_at"):
            if data.get(key) and isinstance(data[key], str):
                data[key] = datetime.fromisoformat(data[key])
        return cls(**data)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


class MigrationStateStore:
    """Persists migration state to disk as JSON files.

    State files are stored at: {work_dir}/state/{migration_id}.json
    """

    def __init__(self, work_dir: Path | str = "/var/lib/vmware2azure"):
        self.state_dir = Path(work_dir) / "state"
        self.state_dir.mkdir(parents=True, exist_ok=True)

    def _state_path(self, migration_id: str) -> Path:
        return self.state_dir / f"{migration_id}.json"

    def save(self, state: MigrationState) -> None:
        """Save migration state to disk, atomically replacing the previous file."""
        path = self._state_path(state.migration_id)
        tmp = path.with_suffix(".json.tmp")
        with open(tmp, "w") as f:
            json.dump(state.to_dict(), f, indent=2, default=str)
        tmp.replace(path)

    def load(self, migration_id: str) -> Optional[MigrationState]:
        """Load migration state from disk."""
        path = self._state_path(migration_id)
        if not path.exists():
            return None
        try:
            with open(path) as f:
                data = json.load(f)
            return MigrationState.from_dict(data)
        except (OSError, ValueError, TypeError) as e:
            logger.error(f"Failed to load state for {migration_id}: {e}")
            return None

    def list_all(self) -> list[MigrationState]:
        """List all known migration states, newest first."""
        states = []
        for path in self.state_dir.glob("*.json"):
            state = self.load(path.stem)
            if state:
                states.append(state)
        return sorted(states, key=lambda s: s.started_at or datetime.min, reverse=True)

    def find_active(self, vm_name: str) -> Optional[MigrationState]:
        """The non-terminal attempt for ``vm_name``, if any."""
        for state in self.list_all():
            if state.vm_name == vm_name and state.active:
                return state
        return None

    def create(self, migration_id: str, vm_name: str) -> MigrationState:
        """Start a new attempt for ``vm_name``.

        Raises:
            MigrationInProgressError: If another attempt for the VM is still active
        """
        active = self.find_active(vm_name)
        if active:
            raise MigrationInProgressError(
                f"Migration {active.migration_id} for VM '{vm_name}' is still {active.stage.value}"
            )
        state = MigrationState(migration_id=migration_id, vm_name=vm_name, started_at=datetime.now())
        self.save(state)
        return state

    def delete(self, migration_id: str) -> None:
        """Delete a migration state file."""
        path = self._state_path(migration_id)
        if path.exists():
            path.unlink()
