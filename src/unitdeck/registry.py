"""In-memory registry of known units and the diffs that update it."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Iterator, Mapping

from .models import ServiceUnit


@dataclass(frozen=True, slots=True)
class RegistryDiff:
    """Additions, updates and removals between two views of the unit set.

    ``order`` is the full reported order for a bulk poll; targeted single-unit
    refreshes leave it ``None`` so the existing order is kept.
    """

    added: tuple[ServiceUnit, ...] = ()
    updated: tuple[ServiceUnit, ...] = ()
    removed: tuple[str, ...] = ()
    order: tuple[str, ...] | None = None

    @property
    def empty(self) -> bool:
        return not (self.added or self.updated or self.removed)


def dedupe(units: Iterable[ServiceUnit]) -> dict[str, ServiceUnit]:
    """Index units by name, first occurrence wins, reported order kept."""
    result: dict[str, ServiceUnit] = {}
    for unit in units:
        if unit.name not in result:
            result[unit.name] = unit
    return result


def compute_diff(known: Mapping[str, ServiceUnit], units: Iterable[ServiceUnit]) -> RegistryDiff:
    """Diff a full poll result against the previously known set."""
    current = dedupe(units)
    added = tuple(u for name, u in current.items() if name not in known)
    updated = tuple(u for name, u in current.items() if name in known and known[name] != u)
    removed = tuple(name for name in known if name not in current)
    return RegistryDiff(added=added, updated=updated, removed=removed, order=tuple(current))


def single_unit_diff(known: Mapping[str, ServiceUnit], unit: ServiceUnit) -> RegistryDiff:
    if unit.name not in known:
        return RegistryDiff(added=(unit,))
    if known[unit.name] != unit:
        return RegistryDiff(updated=(unit,))
    return RegistryDiff()


@dataclass(slots=True)
class Registry:
    """Mapping of unit name to last-known attributes, in display order."""

    _units: dict[str, ServiceUnit] = field(default_factory=dict)

    def __len__(self) -> int:
        return len(self._units)

    def __iter__(self) -> Iterator[ServiceUnit]:
        return iter(self._units.values())

    def __contains__(self, name: object) -> bool:
        return name in self._units

    def get(self, name: str) -> ServiceUnit | None:
        return self._units.get(name)

    def names(self) -> list[str]:
        return list(self._units)

    def units(self) -> tuple[ServiceUnit, ...]:
        return tuple(self._units.values())

    def apply(self, diff: RegistryDiff) -> None:
        for name in diff.removed:
            self._units.pop(name, None)
        for unit in diff.updated:
            self._units[unit.name] = unit
        for unit in diff.added:
            self._units[unit.name] = unit
        if diff.order is not None:
            self._units = {name: self._units[name] for name in diff.order if name in self._units}

    def resolve(self, names: Iterable[str]) -> list[tuple[str, ServiceUnit | None]]:
        """Look dependency names up on demand; unknown names map to ``None``."""
        return [(name, self._units.get(name)) for name in names]
