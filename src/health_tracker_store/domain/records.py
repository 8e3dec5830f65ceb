"""
Tracker domain vocabulary and canonical defaults.

This module defines the five logical collections, the enumerations the
normalizer coerces into, and the default values for the goals, profile and
settings singletons.
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

SCHEMA_VERSION = 2
EXPORT_VERSION = "2.0"

MAX_CUSTOM_EXERCISE_LENGTH = 80
MAX_DISPLAY_NAME_LENGTH = 60


class Collection(str, Enum):
    """Logical collections held by the store."""

    WORKOUTS = "workouts"
    NUTRITION = "nutrition"
    METRICS = "metrics"
    GOALS = "goals"
    SETTINGS = "settings"


RECORD_COLLECTIONS = (Collection.WORKOUTS, Collection.NUTRITION, Collection.METRICS)


class WorkoutType(str, Enum):
    """Workout types; the first member is the fallback for unknown values."""

    PUSH = "push"
    PULL = "pull"
    LEGS = "legs"
    UPPER = "upper"
    CARDIO = "cardio"
    SUPERSET = "superset"


class PrimaryGoal(str, Enum):
    """Profile primary goal."""

    FAT_LOSS = "fat_loss"
    MUSCLE_GAIN = "muscle_gain"
    PERFORMANCE = "performance"
    MAINTENANCE = "maintenance"


class ExperienceLevel(str, Enum):
    """Profile training experience."""

    BEGINNER = "beginner"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"


class Units(str, Enum):
    """Profile measurement units."""

    IMPERIAL = "imperial"
    METRIC = "metric"


class Theme(str, Enum):
    """Display theme."""

    DARK = "dark"
    LIGHT = "light"


class SyncStatus(str, Enum):
    """Display strings for the sync indicator."""

    LOCAL_ONLY = "Local only"
    SYNCING = "Syncing…"
    SAVING = "Saving…"
    SYNCED = "Synced"
    SYNC_FAILED = "Sync failed"


def enum_values(enum_cls: type[Enum]) -> list[str]:
    """Return the string values of an enumeration in declaration order."""
    return [member.value for member in enum_cls]


class Goals(BaseModel):
    """Default goals singleton."""

    weightGoal: float = 210.0
    dailyCalories: int = 1500
    dailyProtein: int = 150
    weeklyWorkouts: int = Field(default=4, ge=1, le=7)
    dailySteps: int = 10000
    sleepHours: float = 7.0


class Profile(BaseModel):
    """Default profile embedded in the settings singleton."""

    displayName: str = ""
    primaryGoal: PrimaryGoal = PrimaryGoal.FAT_LOSS
    experienceLevel: ExperienceLevel = ExperienceLevel.INTERMEDIATE
    units: Units = Units.IMPERIAL

    model_config = ConfigDict(use_enum_values=True)


class FastingWindow(BaseModel):
    """Eating window as a pair of ``HH:MM`` strings."""

    start: str = "12:00"
    end: str = "20:00"


class Settings(BaseModel):
    """Default settings singleton."""

    darkMode: bool = True
    theme: Theme = Theme.DARK
    workoutSplit: list[WorkoutType] = Field(
        default_factory=lambda: [WorkoutType.PUSH, WorkoutType.PULL, WorkoutType.LEGS]
    )
    defaultFastingWindow: FastingWindow = Field(default_factory=FastingWindow)
    customExercises: list[str] = Field(default_factory=list)
    onboardingCompleted: bool = False
    onboardingCompletedAt: str | None = None
    onboardingDeferredUntil: str | None = None

    model_config = ConfigDict(use_enum_values=True)


def default_goals() -> dict[str, Any]:
    """Fresh copy of the default goals."""
    return Goals().model_dump(mode="json")


def default_profile() -> dict[str, Any]:
    """Fresh copy of the default profile."""
    return Profile().model_dump(mode="json")


def default_settings() -> dict[str, Any]:
    """Fresh copy of the default settings (without profile or version)."""
    return Settings().model_dump(mode="json")


def default_fasting_window() -> dict[str, str]:
    """Fresh copy of the default fasting window."""
    return FastingWindow().model_dump(mode="json")


class ExportBundle(BaseModel):
    """
    Full export of the store.

    Only the keys present in an imported file are written back, so every
    collection field is optional here.
    """

    version: Any = EXPORT_VERSION
    schemaVersion: Any = SCHEMA_VERSION
    exportedAt: Any = None
    workouts: Any = None
    nutrition: Any = None
    metrics: Any = None
    goals: Any = None
    settings: Any = None

    model_config = ConfigDict(extra="allow")

    def collections(self) -> dict[str, Any]:
        """Return only the collection keys that were supplied."""
        supplied = self.model_fields_set
        return {
            collection.value: getattr(self, collection.value)
            for collection in Collection
            if collection.value in supplied
        }
