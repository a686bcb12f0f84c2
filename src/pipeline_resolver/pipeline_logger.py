"""Structured JSON logging for resolution passes.

Writes JSON-lines to disk so operators can see after the fact which
references were resolved, which pipeline results were dropped, and
which were rejected. Each log entry is a single JSON object on one line.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

_logger = logging.getLogger("pipeline_resolver")


def configure_logging(
    log_dir: str | Path, level: int = logging.DEBUG
) -> None:
    """Set up resolver logging to write JSON-lines to a file.

    Args:
        log_dir: Directory to write ``resolver.log`` into.
        level: Logging level (default: DEBUG).
    """
    log_path = Path(log_dir) / "resolver.log"
    log_path.parent.mkdir(parents=True, exist_ok=True)

    handler = logging.FileHandler(str(log_path))
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter("%(message)s"))

    _logger.addHandler(handler)
    _logger.setLevel(level)


def _log(event: dict[str, Any], level: int = logging.INFO) -> None:
    _logger.log(level, json.dumps(event, default=str))


def log_resolution_start(stage: str, pipeline_run: str, task_count: int) -> None:
    _log({
        "event": "resolution_start",
        "stage": stage,
        "pipeline_run": pipeline_run,
        "task_count": task_count,
    })


def log_resolution_complete(stage: str, pipeline_run: str) -> None:
    _log({"event": "resolution_complete", "stage": stage, "pipeline_run": pipeline_run})


def log_matrix_reference_unresolved(task_name: str, reference: str) -> None:
    _log(
        {
            "event": "matrix_reference_unresolved",
            "task_name": task_name,
            "reference": reference,
        },
        logging.DEBUG,
    )


def log_result_dropped(result_name: str, task_name: str, status: str) -> None:
    _log({
        "event": "result_dropped",
        "result_name": result_name,
        "task_name": task_name,
        "status": status,
    })


def log_result_invalid(result_name: str, reference: str, error: str) -> None:
    _log(
        {
            "event": "result_invalid",
            "result_name": result_name,
            "reference": reference,
            "error": error,
        },
        logging.WARNING,
    )
