"""
Slot data model for generation batches.

A slot is one generation attempt at one position of one variant group. Slots
are frozen values: every state change produces a new ``Slot`` with the same
``id``, which lets history keep plain references as snapshots.

Primary and guide state are modelled as small tagged classes so that a result
or an error only exists on the arm where it is valid:

    primary: Idle | Loading | Succeeded(image_ref) | Failed(message)
    guide:   GuideAbsent | GuideLoading | GuideReady(image_ref) | GuideFailed(message)
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Optional, Union


class Variant(str, Enum):
    FAST = "fast"
    PRO = "pro"


class SlotStatus(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    SUCCESS = "success"
    ERROR = "error"


class GuideStatus(str, Enum):
    ABSENT = "absent"
    LOADING = "loading"
    SUCCESS = "success"
    ERROR = "error"


TERMINAL_STATUSES = frozenset({SlotStatus.SUCCESS, SlotStatus.ERROR})


# Primary state arms


@dataclass(frozen=True)
class Idle:
    status = SlotStatus.IDLE


@dataclass(frozen=True)
class Loading:
    status = SlotStatus.LOADING


@dataclass(frozen=True)
class Succeeded:
    image_ref: str
    status = SlotStatus.SUCCESS


@dataclass(frozen=True)
class Failed:
    message: str
    status = SlotStatus.ERROR


PrimaryState = Union[Idle, Loading, Succeeded, Failed]


# Guide state arms


@dataclass(frozen=True)
class GuideAbsent:
    status = GuideStatus.ABSENT


@dataclass(frozen=True)
class GuideLoading:
    status = GuideStatus.LOADING


@dataclass(frozen=True)
class GuideReady:
    image_ref: str
    status = GuideStatus.SUCCESS


@dataclass(frozen=True)
class GuideFailed:
    message: str
    status = GuideStatus.ERROR


GuideState = Union[GuideAbsent, GuideLoading, GuideReady, GuideFailed]


class SlotStateError(ValueError):
    """Raised when a transition would break a slot invariant."""


@dataclass(frozen=True)
class VariantProfile:
    """Static description of a backend shown next to each of its slots."""

    variant: Variant
    label: str
    backend_name: str
    description: str


@dataclass(frozen=True)
class Slot:
    id: str
    variant: Variant
    label: str
    backend_name: str
    description: str
    primary: PrimaryState = field(default_factory=Idle)
    guide: GuideState = field(default_factory=GuideAbsent)

    @property
    def status(self) -> SlotStatus:
        return self.primary.status

    @property
    def primary_result(self) -> Optional[str]:
        if isinstance(self.primary, Succeeded):
            return self.primary.image_ref
        return None

    @property
    def primary_error(self) -> Optional[str]:
        if isinstance(self.primary, Failed):
            return self.primary.message
        return None

    @property
    def guide_status(self) -> GuideStatus:
        return self.guide.status

    @property
    def guide_result(self) -> Optional[str]:
        if isinstance(self.guide, GuideReady):
            return self.guide.image_ref
        return None

    @property
    def guide_error(self) -> Optional[str]:
        if isinstance(self.guide, GuideFailed):
            return self.guide.message
        return None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def evolve(
        self,
        *,
        primary: Optional[PrimaryState] = None,
        guide: Optional[GuideState] = None,
    ) -> "Slot":
        """
        Return a copy with the given state arms replaced.

        Identity and descriptive metadata are carried over untouched. A guide
        state other than ``GuideAbsent`` is only accepted while the primary
        state is ``Succeeded``.
        """
        next_primary = self.primary if primary is None else primary
        next_guide = self.guide if guide is None else guide
        if not isinstance(next_guide, GuideAbsent) and not isinstance(
            next_primary, Succeeded
        ):
            raise SlotStateError(
                f"Slot {self.id}: guide state {next_guide.status.value} requires "
                f"primary status success (got {next_primary.status.value})"
            )
        return replace(self, primary=next_primary, guide=next_guide)


def new_batch_id() -> str:
    return uuid.uuid4().hex


def create_slots(
    profile: VariantProfile,
    width: int,
    batch_id: Optional[str] = None,
) -> list[Slot]:
    """Create ``width`` idle slots with identifiers unique to this batch."""
    if width < 1:
        raise ValueError(f"Batch width must be positive, got {width}")
    batch = batch_id or new_batch_id()
    return [
        Slot(
            id=f"{profile.variant.value}_{batch}_{position}",
            variant=profile.variant,
            label=f"{profile.label} #{position + 1}",
            backend_name=profile.backend_name,
            description=profile.description,
        )
        for position in range(width)
    ]
