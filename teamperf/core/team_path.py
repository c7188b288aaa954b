"""
Materialized team paths.

A user's path lists every ancestor from the top of the tree down to the user
itself, delimited by "/": "/root/A/B/". Because a descendant's path always
begins with its ancestor's full path, "everyone under A" is a single indexed
prefix match (team_path LIKE '/root/A/%').
"""
from dataclasses import dataclass
from typing import Optional

SEPARATOR = "/"


@dataclass(frozen=True)
class TeamPath:
    segments: tuple[str, ...]

    @classmethod
    def parse(cls, value: str) -> "TeamPath":
        if not value or not value.startswith(SEPARATOR) or not value.endswith(SEPARATOR):
            raise ValueError(f"Malformed team path: {value!r}")
        segments = tuple(s for s in value.strip(SEPARATOR).split(SEPARATOR) if s)
        if not segments:
            raise ValueError(f"Empty team path: {value!r}")
        return cls(segments)

    @classmethod
    def root(cls, user_id: str) -> "TeamPath":
        return cls((user_id,))

    def __str__(self) -> str:
        return SEPARATOR + SEPARATOR.join(self.segments) + SEPARATOR

    @property
    def owner(self) -> str:
        return self.segments[-1]

    @property
    def depth(self) -> int:
        """Number of segments; a top-level user has depth 1."""
        return len(self.segments)

    @property
    def prefix(self) -> str:
        """LIKE prefix matching this path and every path below it."""
        return str(self)

    @property
    def parent_id(self) -> Optional[str]:
        return self.segments[-2] if len(self.segments) > 1 else None

    def ancestors(self) -> list[str]:
        """Ancestor ids, nearest first."""
        return list(reversed(self.segments[:-1]))

    def child(self, user_id: str) -> "TeamPath":
        return TeamPath(self.segments + (user_id,))

    def is_descendant_of(self, other: "TeamPath") -> bool:
        """True when other is a strict ancestor of this path."""
        return (
            len(self.segments) > len(other.segments)
            and self.segments[:len(other.segments)] == other.segments
        )

    def depth_below(self, other: "TeamPath") -> int:
        """Generations between other and this path (1 for a direct referral)."""
        if not self.is_descendant_of(other):
            raise ValueError(f"{self} is not below {other}")
        return len(self.segments) - len(other.segments)
