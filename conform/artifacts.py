#!/usr/bin/env python3
"""
Run-report artifacts: path resolution and JSON export.
"""

import json
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, Optional

from conform import __version__


DEFAULT_ARTIFACT_DIR = "artifacts"


def ensure_artifact_dir(path: str) -> Path:
    """Create artifact directory if needed and return Path."""
    p = Path(path)
    p.mkdir(parents=True, exist_ok=True)
    return p


def resolve_run_json_path(explicit: str, artifact_dir: str = DEFAULT_ARTIFACT_DIR) -> Path:
    """
    Where the run report goes.

    A bare file name is placed under `artifact_dir`; any path with a
    directory part (or an absolute path) is used as given.
    """
    path = Path(explicit)
    if not path.is_absolute() and path.parent == Path("."):
        return Path(artifact_dir) / path.name
    return path


def serialize_outcome(outcome) -> Dict:
    entry = {
        "result": outcome.kind.name,
        "evaluated": outcome.evaluated,
        "elapsed_s": round(outcome.elapsed_s, 3),
    }
    if outcome.index is not None:
        entry.update({
            "index": outcome.index,
            "input": outcome.input,
            "gpu": outcome.device_output,
            "cpu": outcome.host_expected,
        })
    if outcome.compile_log:
        entry["compile_log"] = outcome.compile_log
    return entry


def export_results(filepath, outcomes: Iterable, backend: str = "",
                   device: str = "", toolchain: Optional[Dict[str, str]] = None,
                   interrupted: bool = False) -> Path:
    """Export run outcomes to a JSON file and return its path."""
    outcomes = list(outcomes)
    output = {
        "tool": "gpuconform",
        "version": __version__,
        "timestamp": datetime.now().isoformat(),
        "backend": backend,
        "device": device,
        "toolchain_versions": toolchain or {},
        "interrupted": interrupted,
        "failures": sum(1 for o in outcomes if o.failed),
        "tests": {o.test_name: serialize_outcome(o) for o in outcomes},
    }
    path = Path(filepath)
    ensure_artifact_dir(str(path.parent))
    with open(path, "w") as f:
        json.dump(output, f, indent=2, default=str)
    return path
