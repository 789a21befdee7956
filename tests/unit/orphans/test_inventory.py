"""Unit tests for per-host inventory collection."""

import pytest
from hvtools.hosts.base import HostQueryError
from hvtools.hosts.models import ClusterInfo, HostConfig
from hvtools.orphans.inventory import cluster_membership, collect_inventory
from hvtools.orphans.models import ClusterMembership, FileKind, IssueKind, ScanTarget

VM_ID = "5C4B8E0A-1F2D-4C3B-9A8E-7D6F5E4C3B2A"
CP_ID = "0D2E8F4A-6B1C-4D3E-8F7A-9B0C1D2E3F4A"
STRANGER_ID = "11111111-2222-3333-4444-555555555555"
REGISTRATION = "C:\\ProgramData\\Microsoft\\Windows\\Hyper-V"
RAW_DISK = "\\\\?\\Volume{1234abcd-0000-4000-8000-000000000001}\\db01.vhdx"


def _refs(inventory, kind: FileKind) -> list[str]:
    return [r.path for r in inventory.references if r.kind == kind]


@pytest.fixture
def web01(lab, vm_factory):
    """Host hv01 with VM web01 (one checkpoint) below D:\\VMs\\web01."""
    lab.file("hv01", f"D:\\VMs\\web01\\Virtual Machines\\{VM_ID}.vmcx")
    lab.file("hv01", f"D:\\VMs\\web01\\Virtual Machines\\{VM_ID}.vmgs")
    lab.file("hv01", f"D:\\VMs\\web01\\Snapshots\\{CP_ID}.vmcx")
    lab.file("hv01", f"D:\\VMs\\web01\\Virtual Machines\\{STRANGER_ID}.vmcx")
    lab.vhdx("hv01", "D:\\VMs\\web01\\web01.vhdx")
    lab.vhdx("hv01", "D:\\VMs\\web01\\web01_A.avhdx", parent="D:\\VMs\\web01\\web01.vhdx")
    vm = vm_factory(
        "web01",
        VM_ID,
        location="D:\\VMs\\web01",
        disks=["D:\\VMs\\web01\\web01_A.avhdx"],
        checkpoints=[{"Id": CP_ID, "Name": "cp1", "HardDrives": ["D:\\VMs\\web01\\web01.vhdx"]}],
    )
    return lab.host(
        "hv01",
        config=HostConfig(computer_name="HV01", virtual_machine_path="D:\\Hyper-V"),
        vms=[vm],
    )


class TestCollectInventory:
    """Tests for collect_inventory function."""

    def test_targets(self, web01) -> None:
        """Default paths and VM directories become scan targets."""
        inventory = collect_inventory(web01)

        assert inventory.host == "hv01"
        assert inventory.targets == (
            ScanTarget("D:\\Hyper-V\\", "hv01"),
            ScanTarget("D:\\VMs\\web01\\", "hv01"),
        )

    def test_metadata_of_vm_and_checkpoints(self, web01) -> None:
        """Metadata files named by the VM or a checkpoint GUID are referenced."""
        inventory = collect_inventory(web01)

        assert _refs(inventory, FileKind.METADATA) == [
            f"D:\\VMs\\web01\\Snapshots\\{CP_ID}.vmcx",
            f"D:\\VMs\\web01\\Virtual Machines\\{VM_ID}.vmcx",
            f"D:\\VMs\\web01\\Virtual Machines\\{VM_ID}.vmgs",
        ]
        assert _refs(inventory, FileKind.DIRECTORY_ROOT) == ["D:\\VMs\\web01\\"]

    def test_disks_include_chain(self, web01) -> None:
        """Attached disks and their ancestors are referenced once."""
        inventory = collect_inventory(web01)

        assert _refs(inventory, FileKind.DISK) == [
            "D:\\VMs\\web01\\web01.vhdx",
            "D:\\VMs\\web01\\web01_A.avhdx",
        ]
        assert all(r.vm_name == "web01" for r in inventory.references)
        assert inventory.issues == ()

    def test_is_deterministic(self, web01) -> None:
        """Collecting twice gives the same inventory."""
        assert collect_inventory(web01) == collect_inventory(web01)

    def test_flags_only_change_targets(self, web01) -> None:
        """Without path flags, references are still complete."""
        full = collect_inventory(web01)
        bare = collect_inventory(
            web01, include_default_paths=False, include_existing_vm_paths=False
        )

        assert bare.targets == ()
        assert bare.references == full.references

    def test_cluster_storage_volumes_are_targets(self, lab) -> None:
        """Mounted cluster shared volumes are always scanned."""
        host = lab.host(
            "node-a",
            config=HostConfig(
                computer_name="node-a",
                cluster_storage_volumes=["C:\\ClusterStorage\\Volume1"],
            ),
        )

        inventory = collect_inventory(host, include_default_paths=False)

        assert inventory.targets == (ScanTarget("C:\\ClusterStorage\\Volume1\\", "node-a"),)

    def test_secondary_node_targets_skip_cluster_storage(self, lab) -> None:
        """Targets of a non-primary node skip ClusterStorage."""
        cluster = ClusterInfo(name="cl01", primary_node="node-a", members=["node-a", "node-b"])
        host = lab.host(
            "node-b",
            config=HostConfig(
                computer_name="NODE-B", virtual_machine_path="C:\\VMs", cluster=cluster
            ),
        )

        inventory = collect_inventory(host)

        assert inventory.cluster == ClusterMembership("cl01", "node-a", ("node-a", "node-b"))
        assert inventory.targets == (ScanTarget("C:\\VMs\\", "node-b", True),)

    def test_query_errors_propagate(self, lab) -> None:
        """A host that cannot be queried raises HostQueryError."""
        host = lab.host("hv01", error="WinRM cannot complete the operation")

        with pytest.raises(HostQueryError, match="WinRM"):
            collect_inventory(host)


class TestSharedStorage:
    """Tests for VMs keeping files on SMB shares."""

    def test_shared_metadata_per_identifier(self, lab, vm_factory) -> None:
        """Metadata on a share is recorded per GUID, without listing it."""
        vm = vm_factory(
            "web02",
            VM_ID,
            location="\\\\nas\\vms\\web02",
            disks=["\\\\nas\\vms\\web02\\web02.vhdx"],
            checkpoints=[{"Id": CP_ID}],
        )
        lab.vhdx(None, "\\\\nas\\vms\\web02\\web02.vhdx")
        host = lab.host("hv01", vms=[vm])

        inventory = collect_inventory(host, include_default_paths=False)

        shared = [r for r in inventory.references if r.kind == FileKind.SHARED_METADATA]
        assert {r.identifier for r in shared} == {VM_ID, CP_ID}
        assert all(r.owning_host is None for r in shared)
        assert inventory.targets == (ScanTarget("\\\\nas\\vms\\web02\\", None),)

    def test_mixed_locations(self, lab, vm_factory) -> None:
        """Local configuration and shared disks are classified separately."""
        lab.file("hv01", f"D:\\VMs\\web03\\Virtual Machines\\{VM_ID}.vmcx")
        lab.vhdx(None, "\\\\nas\\disks\\web03.vhdx")
        vm = vm_factory(
            "web03", VM_ID, location="D:\\VMs\\web03", disks=["\\\\nas\\disks\\web03.vhdx"]
        )
        host = lab.host("hv01", vms=[vm])

        inventory = collect_inventory(host, include_default_paths=False)

        owners = {r.path: r.owning_host for r in inventory.references}
        assert owners[f"D:\\VMs\\web03\\Virtual Machines\\{VM_ID}.vmcx"] == "hv01"
        assert owners["\\\\nas\\disks\\web03.vhdx"] is None


class TestInventoryIssues:
    """Tests for problems recorded instead of raised."""

    def test_cyclic_chain(self, lab, vm_factory) -> None:
        """A disk naming itself as parent is reported, not fatal."""
        lab.vhdx("hv01", "D:\\VMs\\loop.avhdx", parent="D:\\VMs\\loop.avhdx")
        host = lab.host(
            "hv01", vms=[vm_factory("loop", VM_ID, disks=["D:\\VMs\\loop.avhdx"])]
        )

        inventory = collect_inventory(host)

        (issue,) = inventory.issues
        assert issue.kind == IssueKind.CYCLIC_CHAIN
        assert issue.path == "D:\\VMs\\loop.avhdx"
        assert _refs(inventory, FileKind.DISK) == ["D:\\VMs\\loop.avhdx"]

    def test_missing_parent_keeps_partial_chain(self, lab, vm_factory) -> None:
        """Ancestors found before a missing parent are still referenced."""
        lab.vhdx("hv01", "D:\\VMs\\a.avhdx", parent="D:\\VMs\\b.avhdx")
        lab.vhdx("hv01", "D:\\VMs\\b.avhdx", parent="D:\\VMs\\gone.vhdx")
        host = lab.host("hv01", vms=[vm_factory("vm", VM_ID, disks=["D:\\VMs\\a.avhdx"])])

        inventory = collect_inventory(host)

        (issue,) = inventory.issues
        assert issue.kind == IssueKind.DISK_READ_ERROR
        assert issue.ancestors == ("D:\\VMs\\b.avhdx", "D:\\VMs\\gone.vhdx")
        assert _refs(inventory, FileKind.DISK) == [
            "D:\\VMs\\a.avhdx",
            "D:\\VMs\\b.avhdx",
            "D:\\VMs\\gone.vhdx",
        ]

    def test_invalid_disk(self, lab, vm_factory) -> None:
        """Attached files that are not virtual disks are reported."""
        lab.file("hv01", "D:\\VMs\\broken.vhdx", b"garbage" * 10)
        host = lab.host("hv01", vms=[vm_factory("vm", VM_ID, disks=["D:\\VMs\\broken.vhdx"])])

        (issue,) = collect_inventory(host).issues

        assert issue.kind == IssueKind.INVALID_DISK_FORMAT

    def test_floppy_is_not_parsed(self, lab, vm_factory) -> None:
        """Floppy images are referenced without reading a header."""
        lab.file("hv01", "D:\\VMs\\boot.vfd", b"\x00" * 512)
        vm = vm_factory("old", VM_ID, Generation=1, FloppyDrive="D:\\VMs\\boot.vfd")
        host = lab.host("hv01", vms=[vm])

        inventory = collect_inventory(host)

        assert inventory.issues == ()
        assert _refs(inventory, FileKind.DISK) == ["D:\\VMs\\boot.vfd"]

    def test_raw_volume_disk(self, lab, vm_factory) -> None:
        """Disks on volume GUID paths are referenced; their header is an issue."""
        host = lab.host("hv01", vms=[vm_factory("db01", VM_ID, disks=[RAW_DISK])])

        inventory = collect_inventory(host)

        (issue,) = inventory.issues
        assert issue.kind == IssueKind.DISK_READ_ERROR
        assert _refs(inventory, FileKind.DISK) == [
            "\\\\.\\Volume{1234abcd-0000-4000-8000-000000000001}\\db01.vhdx"
        ]

    def test_malformed_path(self, lab, vm_factory) -> None:
        """Unusable paths reported by the host become issues."""
        host = lab.host("hv01", vms=[vm_factory("vm", VM_ID, disks=["relative\\disk.vhdx"])])

        inventory = collect_inventory(host)

        (issue,) = inventory.issues
        assert issue.kind == IssueKind.MALFORMED_PATH
        assert issue.path == "relative\\disk.vhdx"
        assert _refs(inventory, FileKind.DISK) == []


class TestRegistrationLinks:
    """Tests for the links Hyper-V keeps below the registration path."""

    def test_links_of_live_vms(self, lab, vm_factory) -> None:
        """Links named by a VM or checkpoint GUID are referenced, others are not."""
        lab.file("hv01", f"{REGISTRATION}\\Virtual Machines\\{VM_ID}.xml")
        lab.file("hv01", f"{REGISTRATION}\\Snapshots\\{CP_ID}.xml")
        lab.file("hv01", f"{REGISTRATION}\\Virtual Machines\\{STRANGER_ID}.xml")
        vm = vm_factory("web01", VM_ID, location="D:\\VMs\\web01", checkpoints=[{"Id": CP_ID}])
        host = lab.host(
            "hv01",
            config=HostConfig(computer_name="hv01", registration_path=REGISTRATION),
            vms=[vm],
        )

        inventory = collect_inventory(host)

        assert _refs(inventory, FileKind.METADATA) == [
            f"{REGISTRATION}\\Snapshots\\{CP_ID}.xml",
            f"{REGISTRATION}\\Virtual Machines\\{VM_ID}.xml",
        ]
        assert ScanTarget(f"{REGISTRATION}\\", "hv01") in inventory.targets

    def test_links_are_known_without_default_paths(self, lab, vm_factory) -> None:
        """Links are referenced even when the registration path is not scanned."""
        lab.file("hv01", f"{REGISTRATION}\\Virtual Machines\\{VM_ID}.xml")
        host = lab.host(
            "hv01",
            config=HostConfig(computer_name="hv01", registration_path=REGISTRATION),
            vms=[vm_factory("web01", VM_ID)],
        )

        inventory = collect_inventory(host, include_default_paths=False)

        assert _refs(inventory, FileKind.METADATA) == [
            f"{REGISTRATION}\\Virtual Machines\\{VM_ID}.xml"
        ]


class TestClusterMembership:
    """Tests for cluster_membership function."""

    def test_standalone(self) -> None:
        """Standalone hosts have no membership."""
        assert cluster_membership(HostConfig(computer_name="hv01")) is None

    def test_cluster(self) -> None:
        """Reported cluster data becomes a ClusterMembership."""
        config = HostConfig(
            computer_name="node-a",
            cluster=ClusterInfo(name="cl01", primary_node="node-a", members=["node-a"]),
        )
        assert cluster_membership(config) == ClusterMembership("cl01", "node-a", ("node-a",))
