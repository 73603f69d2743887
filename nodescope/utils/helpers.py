# nodescope/utils/helpers.py - Helper functions
"""
Host prerequisite checks used by the trace collectors and `nodescope check`.
"""

import os
import platform
import logging
from typing import List, Tuple


logger = logging.getLogger(__name__)


def check_root_privileges() -> bool:
    """
    Check if running with root privileges.
    """
    return os.geteuid() == 0 if hasattr(os, 'geteuid') else False


def check_bcc_installed() -> bool:
    """
    Check if the BCC python bindings are importable.
    """
    try:
        import bcc  # noqa: F401
        return True
    except ImportError:
        return False


def check_kernel_version() -> Tuple[int, int, int]:
    """
    Get Linux kernel version.

    Returns:
        Tuple of (major, minor, patch) version numbers, zeros if unknown
    """
    release = platform.release()
    parts = release.split('-')[0].split('.')

    try:
        major = int(parts[0]) if len(parts) > 0 else 0
        minor = int(parts[1]) if len(parts) > 1 else 0
        patch = int(parts[2]) if len(parts) > 2 else 0
    except ValueError:
        logger.error(f"Failed to parse kernel release: {release}")
        return (0, 0, 0)

    return (major, minor, patch)


def check_ebpf_support() -> bool:
    """
    Check if the kernel supports the kprobes used by the tracers.
    """
    major, minor, _ = check_kernel_version()

    # BCC works best with 4.9+
    if major < 4 or (major == 4 and minor < 9):
        logger.warning(f"Kernel version {major}.{minor} may not fully support eBPF (4.9+ recommended)")
        return False

    return True


def prerequisite_checks() -> List[Tuple[str, bool]]:
    """
    Run all host checks.

    Returns:
        List of (check name, passed) tuples
    """
    return [
        ("Root privileges", check_root_privileges()),
        ("BCC installed", check_bcc_installed()),
        ("eBPF support", check_ebpf_support()),
        ("HOST_NODE_NAME set", bool(os.environ.get('HOST_NODE_NAME'))),
    ]
