"""Abstract base class for hypervisor hosts.

This module defines the HypervisorHost interface the orphan finder uses
to query VM inventories and host settings.
"""

from abc import ABC, abstractmethod

from hvtools.hosts.filesystem import HostFilesystem
from hvtools.hosts.models import HostConfig, VirtualMachine


class HostQueryError(Exception):
    """Raised when a host cannot be queried (unreachable or query failed).

    Attributes:
        host: Host that failed.
    """

    def __init__(self, host: str, message: str) -> None:
        super().__init__(f"{host}: {message}")
        self.host = host


class HypervisorHost(ABC):
    """Abstract base class for hypervisor hosts.

    Example:
        >>> host = PowerShellHost("hv01")
        >>> if host.is_available():
        ...     for vm in host.list_vms():
        ...         print(vm.name, vm.hard_drives)
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Host name as given by the operator."""

    @property
    @abstractmethod
    def filesystem(self) -> HostFilesystem:
        """Filesystem access to this host's local paths."""

    @abstractmethod
    def is_available(self) -> bool:
        """Check if the host can be queried from this machine.

        Returns:
            True if queries can be attempted, False otherwise.
        """

    @abstractmethod
    def get_host_config(self) -> HostConfig:
        """Query default paths and cluster membership.

        Raises:
            HostQueryError: If the query fails.
        """

    @abstractmethod
    def list_vms(self) -> list[VirtualMachine]:
        """Query all VMs registered on the host, with checkpoints and disks.

        Raises:
            HostQueryError: If the query fails.
        """
