"""
Identities attached to mutating operations.

Authentication happens upstream; the core only records who acted and,
for voids, who witnessed.
"""

from __future__ import annotations

from dataclasses import dataclass


SYSTEM_ACTOR_ID = "system"


@dataclass(frozen=True)
class Actor:
    id: str
    name: str | None = None

    @property
    def display_name(self) -> str:
        return self.name or self.id

    @classmethod
    def system(cls) -> "Actor":
        return cls(id=SYSTEM_ACTOR_ID, name="System")


@dataclass(frozen=True)
class Witness:
    """Second authorized identity required to void a bill."""
    id: str
    email: str | None = None
    name: str | None = None

    @classmethod
    def from_dict(cls, data: dict | None) -> "Witness | None":
        if not data or not data.get("id"):
            return None
        return cls(
            id=str(data["id"]),
            email=data.get("email"),
            name=data.get("name"),
        )

    @property
    def label(self) -> str:
        if self.email:
            return f"{self.name or self.id} ({self.email})"
        return self.name or self.id


def resolve_actor(actor: Actor | None) -> Actor:
    return actor if actor is not None else Actor.system()
