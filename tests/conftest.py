"""Pytest configuration and shared fixtures.

Hyper-V reports Windows paths. ``RootedMapper`` maps them below
``tmp_path`` so the Windows path logic runs unchanged on any platform:

- ``C:\\VMs\\a.vhdx`` on host ``hv01`` -> ``<tmp>/hosts/hv01/C/VMs/a.vhdx``
- ``\\\\nas\\vms\\a.vhdx``               -> ``<tmp>/shares/nas/vms/a.vhdx``

Disk files are written byte-exact by ``build_vhd`` and ``build_vhdx``.
"""

import os
import struct
import uuid
from collections.abc import Iterable
from pathlib import Path, PureWindowsPath

# Rich reads COLUMNS when the module-level consoles are created; a fixed wide
# terminal keeps CLI output unwrapped regardless of temp path length.
os.environ["COLUMNS"] = "200"

import pytest
from hvtools.core.winpath import is_unc_path, strip_device_prefix
from hvtools.disks.header import METADATA_REGION_GUID, PARENT_LOCATOR_GUID
from hvtools.hosts.base import HostQueryError, HypervisorHost
from hvtools.hosts.filesystem import HostFilesystem, PathMapper
from hvtools.hosts.models import HostConfig, VirtualMachine

BAT_REGION_GUID = uuid.UUID("2dc27766-f623-4200-9d64-115e9bfd4a08")
FILE_PARAMETERS_GUID = uuid.UUID("caa16737-fa36-4d43-b3b6-33f0aa44e76b")
LOCATOR_TYPE_GUID = uuid.UUID("b04aefb7-d19e-4a81-b789-25b8e9445913")

VHDX_METADATA_OFFSET = 0x100000
VHDX_LOCATOR_OFFSET = 0x10000
VHDX_SIZE = VHDX_METADATA_OFFSET + VHDX_LOCATOR_OFFSET + 0x1000


# =============================================================================
# Disk image builders
# =============================================================================


def build_vhd(
    parent: str | None = None, *, disk_type: int | None = None, padding: bytes = b""
) -> bytes:
    """Build a legacy VHD header (footer copy) with an optional parent name."""
    data = bytearray(1536)
    data[0:8] = b"conectix"
    if disk_type is None:
        disk_type = 4 if parent else 2
    data[60:64] = struct.pack(">I", disk_type)
    if parent is not None:
        name = (parent.encode("utf-16-be") + padding)[:512]
        data[576 : 576 + len(name)] = name
    return bytes(data)


def build_vhdx(
    parent: str | None = None,
    *,
    metadata_region: bool = True,
    active_table: int = 0,
    locator_pairs: list[tuple[str, str]] | None = None,
) -> bytes:
    """Build the VHDX structures read by the parent parser.

    Args:
        parent: Parent path written as ``absolute_win32_path``.
        metadata_region: Include a metadata region entry.
        active_table: Region table (0 or 1) that lists every region; the
            other one only lists the BAT region.
        locator_pairs: Key/value pairs of the parent locator (default:
            linkage, relative path and absolute path).
    """
    data = bytearray(VHDX_SIZE)
    data[0:8] = b"vhdxfile"

    regions = [(BAT_REGION_GUID, 0x300000, 0x100000)]
    if metadata_region:
        regions.append((METADATA_REGION_GUID, VHDX_METADATA_OFFSET, 0x100000))
    for index, offset in enumerate((196608, 262144)):
        listed = regions if index == active_table else regions[:1]
        data[offset : offset + 4] = b"regi"
        data[offset + 8 : offset + 12] = struct.pack("<I", len(listed))
        for n, (guid, start, length) in enumerate(listed):
            entry = offset + 16 + n * 32
            data[entry : entry + 32] = guid.bytes_le + struct.pack("<QII", start, length, 1)

    if not metadata_region:
        return bytes(data)

    items = [(FILE_PARAMETERS_GUID, 0x8000, 8)]
    if parent is not None or locator_pairs is not None:
        items.append((PARENT_LOCATOR_GUID, VHDX_LOCATOR_OFFSET, 0x1000))
    table = VHDX_METADATA_OFFSET
    data[table : table + 8] = b"metadata"
    data[table + 10 : table + 12] = struct.pack("<H", len(items))
    for n, (guid, offset, length) in enumerate(items):
        entry = table + 32 + n * 32
        data[entry : entry + 32] = guid.bytes_le + struct.pack("<IIII", offset, length, 0, 0)

    if locator_pairs is None and parent is not None:
        locator_pairs = [
            ("parent_linkage", "{83ab2bb4-4b8f-4c27-9a57-3f3d0c1e2a51}"),
            ("relative_path", "..\\" + PureWindowsPath(parent).name),
            ("absolute_win32_path", parent),
        ]
    if locator_pairs is not None:
        _write_locator(data, VHDX_METADATA_OFFSET + VHDX_LOCATOR_OFFSET, locator_pairs)
    return bytes(data)


def _write_locator(data: bytearray, start: int, pairs: list[tuple[str, str]]) -> None:
    data[start : start + 16] = LOCATOR_TYPE_GUID.bytes_le
    data[start + 18 : start + 20] = struct.pack("<H", len(pairs))
    cursor = 20 + len(pairs) * 12
    for n, (key, value) in enumerate(pairs):
        key_bytes = key.encode("utf-16-le")
        value_bytes = value.encode("utf-16-le")
        key_offset = cursor
        value_offset = key_offset + len(key_bytes)
        cursor = value_offset + len(value_bytes)
        record = start + 20 + n * 12
        data[record : record + 12] = struct.pack(
            "<IIHH", key_offset, value_offset, len(key_bytes), len(value_bytes)
        )
        data[start + key_offset : start + value_offset] = key_bytes
        data[start + value_offset : start + cursor] = value_bytes


# =============================================================================
# Fake hosts
# =============================================================================


class RootedMapper(PathMapper):
    """Maps drive and UNC paths below two local directories."""

    def __init__(self, drives: Path, shares: Path) -> None:
        self._drives = drives
        self._shares = shares

    def to_local(self, path: str) -> Path:
        path = strip_device_prefix(path.replace("/", "\\"))
        if is_unc_path(path):
            return self._shares.joinpath(*[p for p in path.split("\\") if p])
        pure = PureWindowsPath(path)
        if len(pure.drive) != 2:
            msg = f"Cannot map path without drive letter: {path}"
            raise ValueError(msg)
        return self._drives.joinpath(pure.drive[0].upper(), *pure.parts[1:])

    def to_host(self, local: Path) -> str:
        if local.is_relative_to(self._shares):
            return "\\\\" + "\\".join(local.relative_to(self._shares).parts)
        drive, *rest = local.relative_to(self._drives).parts
        return f"{drive}:\\" + "\\".join(rest)


class FakeHost(HypervisorHost):
    """In-memory hypervisor host backed by a rooted filesystem."""

    def __init__(
        self,
        name: str,
        filesystem: HostFilesystem,
        *,
        config: HostConfig | None = None,
        vms: Iterable[VirtualMachine] = (),
        error: str | None = None,
    ) -> None:
        self._name = name
        self._filesystem = filesystem
        self.config = config or HostConfig(computer_name=name)
        self.vms = list(vms)
        self.error = error
        self.queries = 0

    @property
    def name(self) -> str:
        return self._name

    @property
    def filesystem(self) -> HostFilesystem:
        return self._filesystem

    def is_available(self) -> bool:
        return self.error is None

    def get_host_config(self) -> HostConfig:
        self.queries += 1
        if self.error is not None:
            raise HostQueryError(self._name, self.error)
        return self.config

    def list_vms(self) -> list[VirtualMachine]:
        if self.error is not None:
            raise HostQueryError(self._name, self.error)
        return list(self.vms)


class Lab:
    """A set of fake hosts sharing one set of SMB shares."""

    def __init__(self, root: Path) -> None:
        self.root = root
        self.shares = root / "shares"
        self.shares.mkdir(parents=True, exist_ok=True)
        self.hosts: dict[str, FakeHost] = {}
        self.shared = HostFilesystem(None, RootedMapper(root / "unused", self.shares))

    def mapper(self, host: str) -> RootedMapper:
        return RootedMapper(self.root / "hosts" / host.casefold(), self.shares)

    def host(
        self,
        name: str,
        *,
        config: HostConfig | None = None,
        vms: Iterable[VirtualMachine] = (),
        error: str | None = None,
    ) -> FakeHost:
        host = FakeHost(
            name,
            HostFilesystem(name, self.mapper(name)),
            config=config,
            vms=vms,
            error=error,
        )
        self.hosts[name.casefold()] = host
        return host

    def factory(self, name: str) -> HypervisorHost:
        """Host factory for OrphanFinder; unknown hosts are unreachable."""
        host = self.hosts.get(name.casefold())
        if host is None:
            return FakeHost(
                name, HostFilesystem(name, self.mapper(name)), error="host not reachable"
            )
        return host

    def local(self, host: str | None, path: str) -> Path:
        """Locally openable form of a host path (host None for shares)."""
        if host is None:
            return self.shared_mapper.to_local(path)
        return self.mapper(host).to_local(path)

    @property
    def shared_mapper(self) -> RootedMapper:
        return RootedMapper(self.root / "unused", self.shares)

    def file(self, host: str | None, path: str, data: bytes = b"") -> Path:
        local = self.local(host, path)
        local.parent.mkdir(parents=True, exist_ok=True)
        local.write_bytes(data)
        return local

    def directory(self, host: str | None, path: str) -> Path:
        local = self.local(host, path)
        local.mkdir(parents=True, exist_ok=True)
        return local

    def vhdx(self, host: str | None, path: str, parent: str | None = None) -> Path:
        return self.file(host, path, build_vhdx(parent))

    def vhd(self, host: str | None, path: str, parent: str | None = None) -> Path:
        return self.file(host, path, build_vhd(parent))


def make_vm(
    name: str,
    vm_id: str,
    *,
    location: str | None = None,
    disks: Iterable[str] = (),
    checkpoints: Iterable[dict] = (),
    **fields: object,
) -> VirtualMachine:
    """Build a VirtualMachine the way the PowerShell query reports it."""
    data: dict[str, object] = {
        "Name": name,
        "Id": vm_id,
        "Generation": 2,
        "ConfigurationLocation": location,
        "SnapshotFileLocation": location,
        "HardDrives": list(disks),
        "Checkpoints": list(checkpoints),
    }
    data.update(fields)
    return VirtualMachine.model_validate(data)


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def lab(tmp_path: Path) -> Lab:
    """Fake hosts and shares rooted in a temporary directory."""
    return Lab(tmp_path)


@pytest.fixture
def vm_factory():
    """Factory building VirtualMachine models."""
    return make_vm


@pytest.fixture
def vhd_bytes():
    """Builder for legacy VHD headers."""
    return build_vhd


@pytest.fixture
def vhdx_bytes():
    """Builder for VHDX headers."""
    return build_vhdx


@pytest.fixture(autouse=True)
def isolated_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point XDG_CONFIG_HOME to a temporary directory."""
    config_home = tmp_path / "xdg-config"
    monkeypatch.setenv("XDG_CONFIG_HOME", str(config_home))
    return config_home / "hvtools"
