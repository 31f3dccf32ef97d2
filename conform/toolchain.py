#!/usr/bin/env python3
"""Toolchain detection and reporting helpers."""

import platform
import sys
from typing import Dict

import numpy as np

from conform.errors import CompilerInvocationFault


def nvrtc_version_str(compiler) -> str:
    """NVRTC version as "major.minor", or a note when it cannot be queried."""
    if compiler is None:
        return "not loaded"
    try:
        major, minor = compiler.version()
    except CompilerInvocationFault as e:
        return f"unavailable ({e.status})"
    return f"{major}.{minor}"


def collect_toolchain_versions(driver=None, compiler=None) -> Dict[str, str]:
    """Collect host, driver and compiler versions for result artifacts."""
    versions: Dict[str, str] = {
        "python": sys.version.split()[0],
        "numpy": np.__version__,
        "platform": platform.platform(),
    }
    if driver is not None:
        versions["driver_library"] = str(driver.library_path)
        versions["driver_api"] = driver.gpu_info.driver_version_str
    if compiler is not None:
        versions["nvrtc_library"] = str(compiler.library_path)
    versions["nvrtc"] = nvrtc_version_str(compiler)
    return versions
