"""
Rendering and saving of retention plan reports.

This module provides functions to:
- Render the human readable preview of a plan
- Summarize a plan as a table
- Save plans and run results as JSON
"""
import dataclasses
import json
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from tabulate import tabulate

from kitgc.logging_utils import get_logger
from kitgc.retention import RetentionPlan

logger = get_logger(__name__)


# ============================================================================
# Formatting Utilities
# ============================================================================

def sizeof_fmt(num: float, suffix: str = "B") -> str:
	"""Format bytes into human-readable size.

	Args:
	    num: Number of bytes
	    suffix: Suffix to append (default: "B")

	Returns:
	    Formatted string like "1.5GiB", "500MiB", etc.
	"""
	for unit in ("", "Ki", "Mi", "Gi", "Ti", "Pi", "Ei", "Zi"):
		if abs(num) < 1024.0:
			return f"{num:3.1f}{unit}{suffix}"
		num /= 1024.0
	return f"{num:.1f}Yi{suffix}"


def get_timestamp_suffix() -> str:
    """
    Generate a timestamp suffix for report filenames.

    Returns:
        String in format: YYYY-MM-DD-HH-MM-SS
    """
    return datetime.now().strftime("%Y-%m-%d-%H-%M-%S")


def add_timestamp_to_path(path: str, timestamp: Optional[str] = None) -> str:
    """
    Add a timestamp to a file path before the extension.

    Args:
        path: Original file path (e.g., 'reports/kit-retention-plan.json')
        timestamp: Optional timestamp string (defaults to current time)

    Returns:
        Path with timestamp inserted (e.g., 'reports/kit-retention-plan-2026-01-15-14-30-00.json')
    """
    if timestamp is None:
        timestamp = get_timestamp_suffix()
    p = Path(path)
    return str(p.parent / f"{p.stem}-{timestamp}{p.suffix}")


# ============================================================================
# Plan Rendering
# ============================================================================

def _kit_line(node) -> str:
    return f"{node.kit.name} in namespace: {node.kit.namespace}"


def render_plan(plan: RetentionPlan) -> str:
    """Render the preview printed before anything is changed."""
    if plan.nothing_to_do():
        return "Nothing to do"

    lines: List[str] = []
    if plan.to_squash:
        lines.append("\nThe following Integration Kits will be squashed:")
        for chain in plan.to_squash:
            members = "".join(f"{_kit_line(node)}, " for node in chain)
            lines.append(f"{members}will all be squashed into Integration Kit: {_kit_line(chain[0])}")

        lines.append("\nThe following Integrations will be updated with a new squashed Image and redeployed:")
        for chain in plan.to_squash:
            for integration in plan.used_images.get(chain[0].kit.image, []):
                lines.append(f"{integration.name} in namespace: {integration.namespace}")

    if plan.to_delete:
        lines.append("\nThe following Integration Kits will be deleted:")
        for node in plan.to_delete:
            lines.append(_kit_line(node))
        if plan.remove_images:
            lines.append("\nThe following Images will be deleted from the Image Registry:")
            for node in plan.to_delete:
                lines.append(node.kit.image)

    return "\n".join(lines)


def summary_table(plan: RetentionPlan) -> str:
    """One row per kit the plan touches."""
    headers = ["Kit", "Namespace", "Action", "Image", "Used By"]
    rows = []
    for chain in plan.to_squash:
        anchor = chain[0]
        users = plan.used_images.get(anchor.kit.image, [])
        absorbed = ", ".join(node.kit.name for node in chain[1:])
        rows.append((anchor.kit.name, anchor.kit.namespace, f"squash ({absorbed})", anchor.kit.image,
                     ", ".join(i.name for i in users)))
    for node in plan.to_delete:
        rows.append((node.kit.name, node.kit.namespace, "delete", node.kit.image, ""))
    return tabulate(rows, headers=headers, tablefmt="grid")


def plan_to_dict(plan: RetentionPlan, results: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """JSON-friendly form of a plan, optionally with the outcome of running it."""
    data: Dict[str, Any] = {
        "generated_at": datetime.now().isoformat(),
        "remove_images": plan.remove_images,
        "squash": [
            {
                "kit": str(chain[0].kit),
                "image": chain[0].kit.image,
                "absorbs": [str(node.kit) for node in chain[1:]],
                "integrations": [str(i) for i in plan.used_images.get(chain[0].kit.image, [])],
            }
            for chain in plan.to_squash
        ],
        "delete": [{"kit": str(node.kit), "image": node.kit.image} for node in plan.to_delete],
    }
    if results is not None:
        data["results"] = results
    return data


# ============================================================================
# Report Saving
# ============================================================================

def _to_serializable(data: Any) -> Any:
    if dataclasses.is_dataclass(data) and not isinstance(data, type):
        return _to_serializable(dataclasses.asdict(data))
    elif isinstance(data, datetime):
        return data.isoformat()
    elif isinstance(data, (set, frozenset)):
        return sorted(_to_serializable(item) for item in data)
    elif isinstance(data, dict):
        return {k: _to_serializable(v) for k, v in data.items()}
    elif isinstance(data, (list, tuple)):
        return [_to_serializable(item) for item in data]
    return data


def save_json(path: str, data: Any, timestamp: bool = False) -> str:
    """
    Write JSON data to a file with indentation.

    Args:
        path: Path to save the JSON file
        data: Data to save; dataclasses, sets and datetimes are converted
        timestamp: If True, add timestamp to filename (default: False)

    Returns:
        Path to the saved file
    """
    p = Path(path)
    if timestamp:
        p = Path(add_timestamp_to_path(str(p)))
    p.parent.mkdir(parents=True, exist_ok=True)

    with open(p, 'w') as f:
        json.dump(_to_serializable(data), f, indent=2)
    logger.info(f"Saved JSON to {p}")
    return str(p)
