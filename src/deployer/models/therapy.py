"""Therapy profile models."""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class TherapyProfile(str, Enum):
    """Stimulation profiles a device can be configured with."""

    REGULAR = "REGULAR"
    NOISY = "NOISY"
    HYBRID = "HYBRID"
    GENTLE = "GENTLE"


class TherapyProfileInfo(BaseModel):
    """Display metadata for a therapy profile."""

    id: TherapyProfile
    name: str
    description: str


class AdvancedSettings(BaseModel):
    """Operator settings sent alongside a profile."""

    disable_led_during_therapy: bool = Field(
        default=False, description="Turn the status LED off during therapy"
    )
    debug_mode: bool = Field(default=False, description="Enable device debug output")

    def has_non_default_settings(self) -> bool:
        return self != AdvancedSettings()


THERAPY_PROFILES: list[TherapyProfileInfo] = [
    TherapyProfileInfo(
        id=TherapyProfile.REGULAR,
        name="Regular",
        description="Default vCR pattern - non-mirrored, no jitter",
    ),
    TherapyProfileInfo(
        id=TherapyProfile.NOISY,
        name="Noisy",
        description="Mirrored pattern with 23.5% jitter for varied stimulation",
    ),
    TherapyProfileInfo(
        id=TherapyProfile.HYBRID,
        name="Hybrid",
        description="Non-mirrored pattern with 23.5% jitter",
    ),
    TherapyProfileInfo(
        id=TherapyProfile.GENTLE,
        name="Gentle",
        description="Lower amplitude with sequential pattern for sensitive users",
    ),
]


def get_profile_info(profile_id: str) -> Optional[TherapyProfileInfo]:
    """Look up profile metadata by id (e.g. "NOISY")."""
    for info in THERAPY_PROFILES:
        if info.id.value == profile_id:
            return info
    return None
