from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum

from console_memories.app.errors import ValidationError


class ReactionKind(StrEnum):
    FIRE = "fire"
    HEART = "heart"
    THINKING = "thinking"
    CLAP = "clap"


REACTION_KINDS: tuple[ReactionKind, ...] = tuple(ReactionKind)


def parse_reaction_kind(label: object) -> ReactionKind:
    if isinstance(label, ReactionKind):
        return label
    if not isinstance(label, str):
        raise ValidationError("type", "reaction type must be a string")
    try:
        return ReactionKind(label.strip().lower())
    except ValueError as exc:
        allowed = ", ".join(kind.value for kind in REACTION_KINDS)
        raise ValidationError("type", f"invalid reaction type, expected one of: {allowed}") from exc


@dataclass(frozen=True)
class ReactionCounts:
    fire: int = 0
    heart: int = 0
    thinking: int = 0
    clap: int = 0

    @classmethod
    def from_mapping(cls, counts: dict[str, int]) -> ReactionCounts:
        values = {kind.value: max(0, int(counts.get(kind.value, 0))) for kind in REACTION_KINDS}
        return cls(**values)

    def get(self, kind: ReactionKind) -> int:
        return int(getattr(self, kind.value))

    def as_dict(self) -> dict[str, int]:
        return {kind.value: self.get(kind) for kind in REACTION_KINDS}


@dataclass(frozen=True)
class ReactionOutcome:
    reactions: ReactionCounts
    already_counted: bool
