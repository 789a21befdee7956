"""Hypervisor host access module.

This module provides the HypervisorHost interface, its PowerShell
implementation, filesystem access with path mapping, and the models for
host settings and VM inventories.
"""

from hvtools.hosts.base import HostQueryError, HypervisorHost
from hvtools.hosts.filesystem import (
    AdminShareMapper,
    DirectMapper,
    FileEntry,
    HostFilesystem,
    PathMapper,
)
from hvtools.hosts.models import Checkpoint, ClusterInfo, HostConfig, VirtualMachine
from hvtools.hosts.powershell import PowerShellHost, is_local_host

__all__ = [
    "AdminShareMapper",
    "Checkpoint",
    "ClusterInfo",
    "DirectMapper",
    "FileEntry",
    "HostConfig",
    "HostFilesystem",
    "HostQueryError",
    "HypervisorHost",
    "PathMapper",
    "PowerShellHost",
    "VirtualMachine",
    "is_local_host",
]
