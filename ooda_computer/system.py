#!/usr/bin/env python3
"""
System inspection for MCP: host metrics, processes and environment.
"""

from __future__ import annotations

import os
import platform
import signal
import time
from typing import Any, Dict, List, Optional

import psutil

from .exceptions import ErrorCode, InvalidParametersError, OodaError

SORT_KEYS = ("cpu", "memory", "pid")


class SystemSensors:
    def get_cpu_metrics(self) -> Dict[str, Any]:
        freq = psutil.cpu_freq()
        return {
            "percent": psutil.cpu_percent(interval=0.1, percpu=False),
            "count_logical": psutil.cpu_count(logical=True),
            "count_physical": psutil.cpu_count(logical=False),
            "freq": freq._asdict() if freq else None,
            "load_avg": os.getloadavg() if hasattr(os, "getloadavg") else None,
        }

    def get_memory_metrics(self) -> Dict[str, Any]:
        return {
            "virtual": psutil.virtual_memory()._asdict(),
            "swap": psutil.swap_memory()._asdict(),
        }

    def get_disk_metrics(self) -> Dict[str, Any]:
        partitions = []
        for part in psutil.disk_partitions(all=False):
            try:
                usage = psutil.disk_usage(part.mountpoint)
            except OSError:
                continue
            partitions.append({
                "device": part.device,
                "mountpoint": part.mountpoint,
                "fstype": part.fstype,
                "usage": usage._asdict(),
            })
        return {"partitions": partitions}

    def get_all(self) -> Dict[str, Any]:
        return {
            "platform": {
                "system": platform.system(),
                "release": platform.release(),
                "machine": platform.machine(),
                "hostname": platform.node(),
                "python": platform.python_version(),
            },
            "boot_time": psutil.boot_time(),
            "cpu": self.get_cpu_metrics(),
            "memory": self.get_memory_metrics(),
            "disk": self.get_disk_metrics(),
            "timestamp": time.time(),
        }


def list_processes(limit: int = 50, sort_by: str = "cpu") -> List[Dict[str, Any]]:
    if sort_by not in SORT_KEYS:
        raise InvalidParametersError(
            f"Invalid sort_by value: {sort_by}",
            details={"valid_values": list(SORT_KEYS)},
        )
    if isinstance(limit, bool) or not isinstance(limit, int) or limit < 1:
        raise InvalidParametersError(f"limit must be a positive integer, got {limit!r}")

    procs = []
    for p in psutil.process_iter(["pid", "name", "username", "cpu_percent", "memory_percent"]):
        procs.append(p.info)

    if sort_by == "cpu":
        procs.sort(key=lambda x: x["cpu_percent"] or 0, reverse=True)
    elif sort_by == "memory":
        procs.sort(key=lambda x: x["memory_percent"] or 0, reverse=True)
    else:
        procs.sort(key=lambda x: x["pid"])
    return procs[:limit]


def kill_process(pid: int, force: bool = False) -> Dict[str, Any]:
    """SIGTERM (or SIGKILL with ``force``) the process ``pid``."""
    if isinstance(pid, bool) or not isinstance(pid, int) or pid <= 0:
        raise InvalidParametersError(f"pid must be a positive integer, got {pid!r}")
    try:
        proc = psutil.Process(pid)
        name = proc.name()
        if force:
            proc.kill()
        else:
            proc.terminate()
    except psutil.NoSuchProcess as e:
        raise OodaError(f"No such process: {pid}", code=ErrorCode.INVALID_INPUT, cause=e)
    except psutil.AccessDenied as e:
        raise OodaError(f"Access denied killing process {pid}", code=ErrorCode.PERMISSION_DENIED, cause=e)
    return {
        "pid": pid,
        "name": name,
        "signal": signal.SIGKILL.name if force and hasattr(signal, "SIGKILL") else signal.SIGTERM.name,
    }


def get_environment(name: Optional[str] = None) -> Dict[str, Any]:
    if name:
        return {"name": name, "value": os.environ.get(name), "set": name in os.environ}
    return {"variables": dict(sorted(os.environ.items()))}


def set_environment(name: str, value: str) -> Dict[str, Any]:
    """Set a variable in this server's environment (inherited by exec_cli)."""
    if not isinstance(name, str) or not name or "=" in name:
        raise InvalidParametersError(f"Invalid environment variable name: {name!r}")
    if not isinstance(value, str):
        raise InvalidParametersError(f"value must be a string, got {type(value).__name__}")
    previous = os.environ.get(name)
    os.environ[name] = value
    return {"name": name, "value": value, "previous": previous}


def get_network_info() -> Dict[str, Any]:
    interfaces = {}
    for name, addrs in psutil.net_if_addrs().items():
        interfaces[name] = [
            {"family": getattr(addr.family, "name", str(addr.family)), "address": addr.address, "netmask": addr.netmask}
            for addr in addrs
        ]
    stats = {name: {"isup": s.isup, "speed": s.speed, "mtu": s.mtu} for name, s in psutil.net_if_stats().items()}
    io = psutil.net_io_counters()
    return {
        "hostname": platform.node(),
        "interfaces": interfaces,
        "stats": stats,
        "io": io._asdict() if io else None,
    }
