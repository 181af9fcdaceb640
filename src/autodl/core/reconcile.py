"""Membership reconciliation between a source group and a target list."""

from collections.abc import Iterable
from dataclasses import dataclass, field

from autodl.core.normalize import normalize_identities


@dataclass(frozen=True)
class Diff:
    """Changes needed to make the target membership match the source."""

    to_add: frozenset[str] = field(default_factory=frozenset)
    to_remove: frozenset[str] = field(default_factory=frozenset)

    @property
    def is_empty(self) -> bool:
        """Check if the target already matches the source."""
        return not self.to_add and not self.to_remove


def diff(source: Iterable[str], target: Iterable[str]) -> Diff:
    """Compute additions and removals that turn ``target`` into ``source``.

    Source wins: anything only in the target is removed, anything only in
    the source is added. Inputs are normalized so casing never produces a
    spurious change.

    Args:
        source: Identities from the authoritative group
        target: Identities currently on the distribution list

    Returns:
        Diff with ``to_add = source - target`` and ``to_remove = target - source``
    """
    source_set = normalize_identities(source)
    target_set = normalize_identities(target)
    return Diff(
        to_add=frozenset(source_set - target_set),
        to_remove=frozenset(target_set - source_set),
    )
