"""hvtools - Hyper-V host maintenance tools.

Read-only helpers for Hyper-V hosts: orphaned VM file detection across
hosts, cluster nodes and shared storage, and VHD/VHDX differencing disk
inspection.
"""

__version__ = "0.1.0"
