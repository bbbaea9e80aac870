"""Simplified key=value splitter for informational summaries.

This is not an HCL parser: blocks, heredocs and multi-line values are not
understood. Policy checks never go through it.
"""

from __future__ import annotations


def parse_simple_assignments(content: str) -> dict[str, str]:
    """Split ``key = value`` lines into a mapping; later keys win."""
    result: dict[str, str] = {}
    for raw_line in content.splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or line.startswith("//"):
            continue
        if "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        if key:
            result[key] = value.strip()
    return result
