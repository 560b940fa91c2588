"""Dice notation codec for the chat dice tray.

Converts between notation strings ("2d6 + d20 +3") and a DiceSelection: a
count per supported die type plus one flat modifier.

Parsing is lenient: dice with an unsupported number of sides are skipped, and
only the first signed integer that is not part of a die term is taken as the
modifier. "2d6+1+2" therefore parses with modifier 1. Serialization only ever
emits a single modifier, so the two stay consistent.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field, replace

DIE_TYPES: tuple[str, ...] = ("d4", "d6", "d8", "d10", "d12", "d20")

_DIE_RE = re.compile(r"(?P<count>\d+)?d(?P<sides>\d+)")
# A signed integer not followed by another digit or a "d": skips "+1" in "+1d20".
_MODIFIER_RE = re.compile(r"([+-]\d+)(?![d\d])")


def _zero_counts() -> dict[str, int]:
    return {label: 0 for label in DIE_TYPES}


@dataclass(frozen=True)
class DiceSelection:
    """Dice picked in the tray. Immutable; every change returns a new selection."""

    counts: dict[str, int] = field(default_factory=_zero_counts)
    modifier: int = 0

    def __post_init__(self) -> None:
        counts = _zero_counts()
        for label, count in self.counts.items():
            _check_label(label)
            if count < 0:
                raise ValueError(f"Negative count for {label}: {count}")
            counts[label] = count
        object.__setattr__(self, "counts", counts)

    def increment(self, label: str) -> DiceSelection:
        _check_label(label)
        return replace(self, counts={**self.counts, label: self.counts[label] + 1})

    def decrement(self, label: str) -> DiceSelection:
        """Remove one die of the given type; a zero count stays at zero."""
        _check_label(label)
        return replace(self, counts={**self.counts, label: max(self.counts[label] - 1, 0)})

    def with_modifier(self, modifier: int) -> DiceSelection:
        return replace(self, modifier=modifier)

    def clear(self) -> DiceSelection:
        return DiceSelection()

    @property
    def has_dice(self) -> bool:
        return any(self.counts.values())

    @property
    def is_empty(self) -> bool:
        """True when there is nothing to roll: no dice and no modifier."""
        return not self.has_dice and self.modifier == 0

    @property
    def expression(self) -> str:
        return serialize(self)


def _check_label(label: str) -> None:
    if label not in DIE_TYPES:
        raise ValueError(f"Unsupported die type: {label!r}")


def parse(expression: str) -> DiceSelection:
    """Parse dice notation into a DiceSelection.

    Args:
        expression: Dice notation, e.g. "2d6+1d20+3" or "d6 + d6 -1".

    Returns:
        The selection described by the expression. Repeated die types are
        summed; unsupported die types are ignored.
    """
    counts = _zero_counts()
    for match in _DIE_RE.finditer(expression):
        label = f"d{int(match.group('sides'))}"
        if label in counts:
            counts[label] += int(match.group("count") or 1)

    modifier_match = _MODIFIER_RE.search(expression)
    modifier = int(modifier_match.group(1)) if modifier_match else 0
    return DiceSelection(counts=counts, modifier=modifier)


def serialize(selection: DiceSelection) -> str:
    """Render a selection as notation, e.g. "d4 + 3d6 +2".

    Die types appear in DIE_TYPES order; a count of one is written without
    the number. An empty selection renders as "".
    """
    parts = [
        label if count == 1 else f"{count}{label}"
        for label in DIE_TYPES
        if (count := selection.counts[label]) > 0
    ]
    expression = " + ".join(parts)
    if selection.modifier != 0:
        modifier = f"{selection.modifier:+d}"
        expression = f"{expression} {modifier}" if expression else modifier
    return expression
