"""Hypervisor inventory models.

These models validate the JSON emitted by the PowerShell queries in
``hvtools.hosts.powershell``. Field aliases match the PowerShell property
names; Python code uses the snake_case names.
"""

from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _clean_paths(value: object) -> list[str]:
    """Turn a PowerShell path list into a list of non-empty strings.

    ConvertTo-Json emits a bare string for one-element arrays and null
    for empty drives.
    """
    if value is None:
        return []
    items = value if isinstance(value, list) else [value]
    return [item.strip() for item in items if isinstance(item, str) and item.strip()]


class ClusterInfo(BaseModel):
    """Failover cluster membership as seen from one node.

    Attributes:
        name: Cluster name.
        primary_node: Node designated to own cluster shared volume files.
        members: All node names of the cluster.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: Annotated[str, Field(alias="Name")]
    primary_node: Annotated[str, Field(alias="PrimaryNode", min_length=1)]
    members: Annotated[list[str], Field(alias="Members", default_factory=list)]

    @field_validator("members", mode="before")
    @classmethod
    def validate_members(cls, v: object) -> list[str]:
        return _clean_paths(v)


class HostConfig(BaseModel):
    """Hypervisor host settings relevant to orphan detection.

    Attributes:
        computer_name: Name the host reports for itself.
        virtual_machine_path: Default VM configuration path.
        virtual_hard_disk_path: Default virtual hard disk path.
        registration_path: Directory holding VM registration links.
        system_drive: System drive (e.g. "C:").
        cluster_storage_volumes: Mounted cluster shared volume roots.
        cluster: Cluster membership, None for standalone hosts.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    computer_name: Annotated[str, Field(alias="ComputerName")]
    virtual_machine_path: Annotated[str | None, Field(alias="VirtualMachinePath")] = None
    virtual_hard_disk_path: Annotated[str | None, Field(alias="VirtualHardDiskPath")] = None
    registration_path: Annotated[str | None, Field(alias="RegistrationPath")] = None
    system_drive: Annotated[str, Field(alias="SystemDrive")] = "C:"
    cluster_storage_volumes: Annotated[
        list[str],
        Field(alias="ClusterStorageVolumes", default_factory=list),
    ]
    cluster: Annotated[ClusterInfo | None, Field(alias="Cluster")] = None

    @field_validator("cluster_storage_volumes", mode="before")
    @classmethod
    def validate_volumes(cls, v: object) -> list[str]:
        return _clean_paths(v)

    @property
    def default_paths(self) -> list[str]:
        """Default VM, disk and registration paths that are set."""
        candidates = (
            self.virtual_machine_path,
            self.virtual_hard_disk_path,
            self.registration_path,
        )
        return [path for path in candidates if path]


class Checkpoint(BaseModel):
    """One checkpoint (snapshot) of a virtual machine.

    Attributes:
        checkpoint_id: Checkpoint GUID, which also names its metadata files.
        name: Display name.
        parent_id: GUID of the parent checkpoint, None for the first one.
        hard_drives: Disk files captured by the checkpoint.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    checkpoint_id: Annotated[str, Field(alias="Id")]
    name: Annotated[str, Field(alias="Name")] = ""
    parent_id: Annotated[str | None, Field(alias="ParentId")] = None
    hard_drives: Annotated[list[str], Field(alias="HardDrives", default_factory=list)]

    @field_validator("hard_drives", mode="before")
    @classmethod
    def validate_hard_drives(cls, v: object) -> list[str]:
        return _clean_paths(v)

    @field_validator("parent_id", mode="before")
    @classmethod
    def validate_parent_id(cls, v: object) -> object:
        if isinstance(v, str) and not v.strip():
            return None
        return v


class VirtualMachine(BaseModel):
    """A virtual machine registered on a host.

    Attributes:
        name: VM name.
        vm_id: VM GUID, which also names its configuration files.
        generation: VM generation (floppy drives exist on generation 1 only).
        configuration_location: Directory holding the configuration files.
        snapshot_file_location: Directory holding checkpoint files.
        smart_paging_file_path: Directory for the smart paging file.
        smart_paging_file_in_use: Whether a smart paging file currently exists.
        hard_drives: Attached virtual hard disk files.
        floppy_drive: Attached virtual floppy file (generation 1 only).
        checkpoints: Checkpoints of the VM.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: Annotated[str, Field(alias="Name")]
    vm_id: Annotated[str, Field(alias="Id")]
    generation: Annotated[int, Field(alias="Generation", ge=1, le=2)] = 1
    configuration_location: Annotated[str | None, Field(alias="ConfigurationLocation")] = None
    snapshot_file_location: Annotated[str | None, Field(alias="SnapshotFileLocation")] = None
    smart_paging_file_path: Annotated[str | None, Field(alias="SmartPagingFilePath")] = None
    smart_paging_file_in_use: Annotated[bool, Field(alias="SmartPagingFileInUse")] = False
    hard_drives: Annotated[list[str], Field(alias="HardDrives", default_factory=list)]
    floppy_drive: Annotated[str | None, Field(alias="FloppyDrive")] = None
    checkpoints: Annotated[list[Checkpoint], Field(alias="Checkpoints", default_factory=list)]

    @field_validator("hard_drives", mode="before")
    @classmethod
    def validate_hard_drives(cls, v: object) -> list[str]:
        return _clean_paths(v)

    @field_validator(
        "configuration_location",
        "snapshot_file_location",
        "smart_paging_file_path",
        "floppy_drive",
        mode="before",
    )
    @classmethod
    def validate_optional_path(cls, v: object) -> object:
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator("checkpoints", mode="before")
    @classmethod
    def validate_checkpoints(cls, v: object) -> object:
        if v is None:
            return []
        return v if isinstance(v, list) else [v]

    @property
    def identifiers(self) -> set[str]:
        """GUIDs naming this VM's metadata files (VM and checkpoint ids)."""
        return {self.vm_id, *(cp.checkpoint_id for cp in self.checkpoints)}

    @property
    def disk_files(self) -> list[str]:
        """All disk files referenced by the VM and its checkpoints."""
        disks = list(self.hard_drives)
        if self.generation == 1 and self.floppy_drive:
            disks.append(self.floppy_drive)
        for checkpoint in self.checkpoints:
            disks.extend(checkpoint.hard_drives)
        return disks
