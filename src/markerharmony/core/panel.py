"""
Marker panel: the fixed, ordered list of gene/protein symbols shared by every dataset.

Membership testing is the basic operation of every other component, so the
panel keeps a frozenset alongside the ordered tuple.
"""

from __future__ import annotations

from typing import Iterable, Iterator

__all__ = ['MarkerPanel']


class MarkerPanel:
    """
    Ordered, duplicate-free set of marker identifiers.

    Duplicates in the input keep their first occurrence. Blank identifiers
    are rejected; identifiers are stripped of surrounding whitespace.

    Examples:
        >>> panel = MarkerPanel(["GFAP", "S100B", "VIM", "GFAP"])
        >>> list(panel)
        ['GFAP', 'S100B', 'VIM']
        >>> "VIM" in panel
        True
        >>> panel.intersect(["VIM", "ACTB", "GFAP"])
        ('GFAP', 'VIM')
    """

    def __init__(self, markers: Iterable[str], name: str | None = None):
        ordered: list[str] = []
        seen: set[str] = set()
        for marker in markers:
            if not isinstance(marker, str):
                raise TypeError(f"Marker identifiers must be strings, got {type(marker)}")
            marker = marker.strip()
            if not marker:
                raise ValueError("Marker identifiers must be non-empty")
            if marker not in seen:
                seen.add(marker)
                ordered.append(marker)

        self._markers = tuple(ordered)
        self._members = frozenset(ordered)
        self.name = name

    @property
    def markers(self) -> tuple[str, ...]:
        """Markers in panel order."""
        return self._markers

    def intersect(self, identifiers: Iterable[str]) -> tuple[str, ...]:
        """Panel markers present in ``identifiers``, in panel order."""
        present = set(identifiers)
        return tuple(m for m in self._markers if m in present)

    def missing_from(self, identifiers: Iterable[str]) -> tuple[str, ...]:
        """Panel markers absent from ``identifiers``, in panel order."""
        present = set(identifiers)
        return tuple(m for m in self._markers if m not in present)

    def __contains__(self, marker: object) -> bool:
        return marker in self._members

    def __iter__(self) -> Iterator[str]:
        return iter(self._markers)

    def __len__(self) -> int:
        return len(self._markers)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, MarkerPanel):
            return NotImplemented
        return self._markers == other._markers

    def __hash__(self) -> int:
        return hash(self._markers)

    def __repr__(self) -> str:
        label = f"{self.name!r}, " if self.name else ""
        return f"MarkerPanel({label}{len(self)} markers)"
