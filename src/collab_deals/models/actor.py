"""Explicit caller context passed into every lifecycle operation."""

from enum import Enum

from pydantic import BaseModel, ConfigDict


class ActorRole(str, Enum):
    CREATOR = "creator"
    MARKETER = "marketer"
    SYSTEM = "system"  # scheduler-driven transitions (expiry)

    @property
    def counterpart(self) -> "ActorRole":
        if self is ActorRole.CREATOR:
            return ActorRole.MARKETER
        if self is ActorRole.MARKETER:
            return ActorRole.CREATOR
        raise ValueError("system actor has no counterpart")


class Actor(BaseModel):
    """The user performing an operation and the side of the deal they act for."""

    model_config = ConfigDict(frozen=True)

    id: str
    role: ActorRole


SYSTEM_ACTOR = Actor(id="system", role=ActorRole.SYSTEM)
