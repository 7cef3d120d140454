"""Helpers for reading a server's capability statement."""

from __future__ import annotations

from collections.abc import Sequence

from fhirsession.types import CapabilityRest, CapabilityRestOperation

CLIENT_MODE = "client"


def select_rest(rests: Sequence[CapabilityRest] | None) -> CapabilityRest | None:
    """Pick the interaction group to trust.

    The first group in ``client`` mode wins wherever it appears; without one,
    the first group is used.
    """
    best: CapabilityRest | None = None
    for rest in rests or []:
        if rest.mode == CLIENT_MODE:
            return rest
        if best is None:
            best = rest
    return best


def find_operation(
    operations: Sequence[CapabilityRestOperation] | None,
    name: str,
) -> CapabilityRestOperation | None:
    """Return the advertised operation called `name` (with or without a leading ``$``)."""
    wanted = name.lstrip("$")
    for op in operations or []:
        if op.name.lstrip("$") == wanted:
            return op
    return None
