"""
Column definitions for the jobs table.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence


def format_submitted(value: Any) -> str:
    if isinstance(value, datetime):
        return value.strftime("%Y-%m-%d %H:%M")
    return "" if value is None else str(value)


def format_memory(value: Any) -> str:
    if value is None:
        return ""
    size = float(value)
    for unit in ("B", "Ki", "Mi", "Gi"):
        if size < 1024:
            return f"{size:g}{unit}"
        size /= 1024
    return f"{size:g}Ti"


@dataclass(frozen=True)
class ColumnSpec:
    key: str
    name: str
    groupable: bool = False
    min_size: int = 30
    formatter: Optional[Callable[[Any], str]] = None


DEFAULT_COLUMN_SPECS: List[ColumnSpec] = [
    ColumnSpec("job_id", "Job Id", min_size=100),
    ColumnSpec("queue", "Queue", groupable=True, min_size=95),
    ColumnSpec("job_set", "Job Set", groupable=True, min_size=100),
    ColumnSpec("owner", "Owner", groupable=True, min_size=95),
    ColumnSpec("state", "State", groupable=True, min_size=60),
    ColumnSpec("priority", "Priority", min_size=40),
    ColumnSpec("submitted", "Submitted", min_size=100, formatter=format_submitted),
    ColumnSpec("cpu", "CPUs", min_size=40),
    ColumnSpec("memory", "Memory", min_size=60, formatter=format_memory),
]


def groupable_keys(columns: List[ColumnSpec]) -> List[str]:
    return [c.key for c in columns if c.groupable]


def format_value(column: ColumnSpec, value: Any) -> str:
    if column.formatter is not None:
        return column.formatter(value)
    return "" if value is None else str(value)


def format_values(columns: Sequence[ColumnSpec], values: Dict[str, Any]) -> Dict[str, str]:
    """Display strings for the selected columns present in ``values``."""
    return {c.key: format_value(c, values[c.key]) for c in columns if c.key in values}


def column_to_dict(column: ColumnSpec) -> Dict[str, Any]:
    return {
        "key": column.key,
        "name": column.name,
        "groupable": column.groupable,
        "min_size": column.min_size,
    }
