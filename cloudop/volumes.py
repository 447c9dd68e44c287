"""Volume attachment bookkeeping for cloud servers."""

from __future__ import annotations

from collections.abc import Iterable


def calculate_volume_changes(
    desired_volume_ids: Iterable[str], current_volume_ids: Iterable[str]
) -> tuple[list[str], list[str]]:
    """Return the volumes to attach and to detach, in input order."""
    desired = list(desired_volume_ids)
    current = list(current_volume_ids)
    desired_set = set(desired)
    current_set = set(current)
    to_attach = [vid for vid in desired if vid not in current_set]
    to_detach = [vid for vid in current if vid not in desired_set]
    return to_attach, to_detach