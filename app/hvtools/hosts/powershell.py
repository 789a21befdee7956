"""Hyper-V host queries through PowerShell.

Runs the Hyper-V and FailoverClusters cmdlets and validates their JSON
output. Remote hosts are queried through ``Invoke-Command`` with the
caller's own identity; their files are read through administrative
shares.
"""

import json
import logging
import socket
import subprocess

from pydantic import ValidationError

from hvtools.core.config import DEFAULT_COMMAND_TIMEOUT, DEFAULT_POWERSHELL
from hvtools.hosts.base import HostQueryError, HypervisorHost
from hvtools.hosts.filesystem import AdminShareMapper, DirectMapper, HostFilesystem
from hvtools.hosts.models import HostConfig, VirtualMachine
from hvtools.utils.shell import CommandResult, command_exists, run_powershell

logger = logging.getLogger(__name__)

HOST_CONFIG_SCRIPT = r"""
$ErrorActionPreference = 'Stop'
$vmHost = Get-VMHost
$cluster = $null
if (Get-Command -Name Get-Cluster -ErrorAction SilentlyContinue) {
    $c = Get-Cluster -ErrorAction SilentlyContinue
    if ($c) {
        $cluster = [ordered]@{
            Name = $c.Name
            PrimaryNode = (Get-ClusterGroup -Name 'Cluster Group').OwnerNode.Name
            Members = @(Get-ClusterNode | ForEach-Object { $_.Name })
        }
    }
}
$csvRoot = Join-Path -Path $env:SystemDrive -ChildPath 'ClusterStorage'
$volumes = @()
if (Test-Path -Path $csvRoot) {
    $volumes = @(Get-ChildItem -Path $csvRoot -Directory | ForEach-Object { $_.FullName })
}
[ordered]@{
    ComputerName = $env:COMPUTERNAME
    VirtualMachinePath = $vmHost.VirtualMachinePath
    VirtualHardDiskPath = $vmHost.VirtualHardDiskPath
    RegistrationPath = Join-Path -Path $env:ProgramData -ChildPath 'Microsoft\Windows\Hyper-V'
    SystemDrive = $env:SystemDrive
    ClusterStorageVolumes = $volumes
    Cluster = $cluster
} | ConvertTo-Json -Depth 4 -Compress
"""

LIST_VMS_SCRIPT = r"""
$ErrorActionPreference = 'Stop'
$vms = @(Get-VM | ForEach-Object {
    $vm = $_
    $floppy = $null
    if ($vm.Generation -eq 1) {
        $floppy = (Get-VMFloppyDiskDrive -VM $vm).Path
    }
    [ordered]@{
        Name = $vm.Name
        Id = $vm.Id.ToString()
        Generation = $vm.Generation
        ConfigurationLocation = $vm.ConfigurationLocation
        SnapshotFileLocation = $vm.SnapshotFileLocation
        SmartPagingFilePath = $vm.SmartPagingFilePath
        SmartPagingFileInUse = [bool]$vm.SmartPagingFileInUse
        HardDrives = @($vm.HardDrives | ForEach-Object { $_.Path })
        FloppyDrive = $floppy
        Checkpoints = @(Get-VMSnapshot -VM $vm | ForEach-Object {
            [ordered]@{
                Id = $_.Id.ToString()
                Name = $_.Name
                ParentId = [string]$_.ParentSnapshotId
                HardDrives = @($_.HardDrives | ForEach-Object { $_.Path })
            }
        })
    }
})
ConvertTo-Json -InputObject $vms -Depth 6 -Compress
"""

_LOCAL_NAMES = frozenset({"localhost", ".", "127.0.0.1", "::1"})


def is_local_host(name: str) -> bool:
    """Check if a host name refers to the machine running hvtools."""
    candidate = name.strip().casefold()
    if candidate in _LOCAL_NAMES:
        return True
    hostname = socket.gethostname().casefold()
    return candidate in (hostname, hostname.split(".", 1)[0])


def remote_script(host: str, script: str) -> str:
    """Wrap a script so it runs on ``host`` through Invoke-Command."""
    quoted = host.replace("'", "''")
    return f"Invoke-Command -ComputerName '{quoted}' -ErrorAction Stop -ScriptBlock {{{script}}}"


class PowerShellHost(HypervisorHost):
    """Hyper-V host queried with PowerShell cmdlets.

    Args:
        name: Host name. Local names (localhost, the own computer name)
            run the scripts directly and read files directly.
        powershell: PowerShell executable.
        timeout: Timeout in seconds for each query.
    """

    def __init__(
        self,
        name: str,
        *,
        powershell: str = DEFAULT_POWERSHELL,
        timeout: float = DEFAULT_COMMAND_TIMEOUT,
    ) -> None:
        self._name = name
        self._powershell = powershell
        self._timeout = timeout
        self._local = is_local_host(name)
        mapper = DirectMapper() if self._local else AdminShareMapper(name)
        self._filesystem = HostFilesystem(name, mapper)

    @property
    def name(self) -> str:
        return self._name

    @property
    def filesystem(self) -> HostFilesystem:
        return self._filesystem

    @property
    def is_local(self) -> bool:
        return self._local

    def is_available(self) -> bool:
        """Check if the PowerShell executable exists."""
        return command_exists(self._powershell)

    def get_host_config(self) -> HostConfig:
        data = self._query(HOST_CONFIG_SCRIPT, "host configuration")
        if not isinstance(data, dict):
            raise HostQueryError(self._name, "host configuration query returned no object")
        try:
            return HostConfig.model_validate(data)
        except ValidationError as e:
            raise HostQueryError(self._name, f"invalid host configuration: {e}") from e

    def list_vms(self) -> list[VirtualMachine]:
        data = self._query(LIST_VMS_SCRIPT, "virtual machine inventory")
        if data is None:
            return []
        items = data if isinstance(data, list) else [data]
        try:
            return [VirtualMachine.model_validate(item) for item in items]
        except ValidationError as e:
            raise HostQueryError(self._name, f"invalid virtual machine data: {e}") from e

    def _query(self, script: str, what: str) -> object:
        """Run a query script and decode its JSON output.

        Raises:
            HostQueryError: If PowerShell is missing, times out, fails, or
                prints something that is not JSON.
        """
        if not self.is_available():
            raise HostQueryError(self._name, f"{self._powershell} is not available")

        full_script = script if self._local else remote_script(self._name, script)
        logger.debug("Querying %s on %s", what, self._name)
        try:
            result = run_powershell(
                full_script, executable=self._powershell, timeout=self._timeout
            )
        except subprocess.TimeoutExpired as e:
            msg = f"{what} query timed out after {self._timeout:.0f}s"
            raise HostQueryError(self._name, msg) from e
        except OSError as e:
            raise HostQueryError(self._name, f"cannot run {self._powershell}: {e}") from e

        return self._decode(result, what)

    def _decode(self, result: CommandResult, what: str) -> object:
        if not result.success:
            detail = result.stderr.strip() or f"exit code {result.returncode}"
            raise HostQueryError(self._name, f"{what} query failed: {detail}")

        output = result.stdout.strip().lstrip("\ufeff")
        if not output:
            return None
        try:
            return json.loads(output)
        except json.JSONDecodeError as e:
            raise HostQueryError(self._name, f"{what} query returned invalid JSON: {e}") from e
