"""
Schema normalization for stored tracker data.

Turns raw, possibly legacy or malformed, JSON for each collection into the
canonical shape. Normalization never raises: malformed fields are replaced by
defaults and malformed individual records are filtered out. Applying it twice
gives the same result as applying it once.
"""

import copy
import logging
import math
import re
from collections.abc import Callable
from typing import Any

from health_tracker_store.domain.records import (
    MAX_CUSTOM_EXERCISE_LENGTH,
    MAX_DISPLAY_NAME_LENGTH,
    SCHEMA_VERSION,
    Collection,
    ExperienceLevel,
    PrimaryGoal,
    Theme,
    Units,
    WorkoutType,
    default_fasting_window,
    default_goals,
    default_profile,
    default_settings,
    enum_values,
)
from health_tracker_store.utils.identifiers import generate_record_id
from health_tracker_store.utils.timezone_utils import Clock, to_iso_timestamp, today_str

logger = logging.getLogger(__name__)

DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")
TIMESTAMP_DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}T")
TIME_PATTERN = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")

WORKOUT_TYPES = enum_values(WorkoutType)
PROFILE_GOALS = enum_values(PrimaryGoal)
PROFILE_LEVELS = enum_values(ExperienceLevel)
PROFILE_UNITS = enum_values(Units)

METRIC_NUMERIC_FIELDS = (
    "weight",
    "sleepHours",
    "sleepQuality",
    "steps",
    "energyLevel",
    "mood",
)
METRIC_FLAG_FIELDS = ("workoutCompleted", "nutritionCompleted")


def _as_mapping(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


class SchemaNormalizer:
    """
    Canonicalizes each collection and singleton held by the store.

    The clock supplies "today" for date fallbacks and "now" for timestamps of
    records that never had one; the id factory supplies identifiers for
    records that never had one. Neither is consulted for records that are
    already canonical.
    """

    def __init__(
        self,
        clock: Clock,
        id_factory: Callable[[], str] = generate_record_id,
    ) -> None:
        """
        Initialize the normalizer.

        Args:
            clock: Clock used for date and timestamp defaults.
            id_factory: Callable producing new record identifiers.
        """
        self.clock = clock
        self.id_factory = id_factory

    # --- scalar coercion -------------------------------------------------

    def to_number(self, value: Any) -> int | float | None:
        """
        Coerce a value to a finite number.

        Args:
            value: Raw value (number or numeric string).

        Returns:
            The number, or None when the value is missing, non-numeric or not finite.
        """
        if value is None or isinstance(value, bool):
            return None

        if isinstance(value, int):
            return value

        if isinstance(value, float):
            return value if math.isfinite(value) else None

        if isinstance(value, str):
            text = value.strip()
            if not text:
                return None
            try:
                return int(text)
            except ValueError:
                pass
            try:
                number = float(text)
            except ValueError:
                return None
            return number if math.isfinite(number) else None

        return None

    def to_positive_int(self, value: Any, fallback: int) -> int:
        """Coerce to a positive integer, truncating fractions; fallback otherwise."""
        number = self.to_number(value)
        if number is None:
            return fallback
        number = int(number)
        return number if number > 0 else fallback

    def today(self) -> str:
        return today_str(self.clock)

    def now_iso(self) -> str:
        return to_iso_timestamp(self.clock.now())

    def normalize_date_value(self, value: Any, fallback: str | None = None) -> str:
        """
        Coerce a value to a ``YYYY-MM-DD`` date.

        Accepts a bare date or any timestamp starting with one.

        Args:
            value: Raw date or timestamp.
            fallback: Date to use for unusable input (defaults to today).

        Returns:
            Calendar date string.
        """
        if isinstance(value, str):
            trimmed = value.strip()
            if DATE_PATTERN.match(trimmed):
                return trimmed
            if TIMESTAMP_DATE_PATTERN.match(trimmed):
                return trimmed[:10]
        return fallback or self.today()

    def normalize_time_value(self, value: Any, fallback: str) -> str:
        if not isinstance(value, str):
            return fallback
        trimmed = value.strip()
        return trimmed if TIME_PATTERN.match(trimmed) else fallback

    def normalize_theme_value(self, theme: Any, dark_mode: Any) -> str:
        """Resolve a theme, deriving it from the legacy ``darkMode`` flag if needed."""
        if theme in (Theme.LIGHT.value, Theme.DARK.value):
            return str(theme)
        if dark_mode is False:
            return Theme.LIGHT.value
        return Theme.DARK.value

    def _record_identity(self, record: dict[str, Any]) -> tuple[str, str]:
        record_id = record.get("id")
        created_at = record.get("createdAt")
        return (
            record_id if isinstance(record_id, str) and record_id else self.id_factory(),
            created_at if isinstance(created_at, str) and created_at else self.now_iso(),
        )

    # --- settings parts --------------------------------------------------

    def normalize_workout_type(self, value: Any) -> str:
        return value if value in WORKOUT_TYPES else WORKOUT_TYPES[0]

    def normalize_workout_split(self, split: Any) -> list[str]:
        """
        Normalize the workout split.

        Accepts a list or the older comma-separated string format. Unknown types
        are dropped and duplicates removed; an empty result falls back to the
        default split.

        Args:
            split: Raw split value.

        Returns:
            Non-empty list of workout types.
        """
        default_split = default_settings()["workoutSplit"]

        if isinstance(split, list):
            raw = split
        elif isinstance(split, str):
            raw = split.split(",")
        else:
            raw = default_split

        normalized: list[str] = []
        for item in raw:
            workout_type = str(item or "").strip().lower()
            if workout_type in WORKOUT_TYPES and workout_type not in normalized:
                normalized.append(workout_type)

        return normalized or default_split

    def normalize_fasting_window(self, window: Any) -> dict[str, str]:
        defaults = default_fasting_window()
        source = window if isinstance(window, dict) else defaults
        return {
            "start": self.normalize_time_value(source.get("start"), defaults["start"]),
            "end": self.normalize_time_value(source.get("end"), defaults["end"]),
        }

    def normalize_custom_exercises(self, exercises: Any) -> list[str]:
        if not isinstance(exercises, list):
            return []
        cleaned: list[str] = []
        for item in exercises:
            name = str(item or "").strip()
            if 0 < len(name) <= MAX_CUSTOM_EXERCISE_LENGTH and name not in cleaned:
                cleaned.append(name)
        return cleaned

    def normalize_profile(self, profile: Any) -> dict[str, Any]:
        """
        Normalize the profile embedded in settings.

        Args:
            profile: Raw profile object.

        Returns:
            Profile with enum fields coerced and a bounded display name.
        """
        source = _as_mapping(profile)
        defaults = default_profile()

        display_name = str(source.get("displayName") or defaults["displayName"])
        display_name = display_name.strip()[:MAX_DISPLAY_NAME_LENGTH].strip()

        primary_goal = source.get("primaryGoal")
        experience_level = source.get("experienceLevel")
        units = source.get("units")

        return {
            **defaults,
            **copy.deepcopy(source),
            "displayName": display_name,
            "primaryGoal": primary_goal if primary_goal in PROFILE_GOALS else defaults["primaryGoal"],
            "experienceLevel": (
                experience_level
                if experience_level in PROFILE_LEVELS
                else defaults["experienceLevel"]
            ),
            "units": units if units in PROFILE_UNITS else defaults["units"],
        }

    # --- singletons ------------------------------------------------------

    def normalize_goals(self, goals: Any) -> dict[str, Any]:
        """
        Normalize the goals singleton.

        Every field always has a usable value; ``weeklyWorkouts`` is clamped
        to the range 1-7.

        Args:
            goals: Raw goals object.

        Returns:
            Canonical goals.
        """
        source = _as_mapping(goals)
        defaults = default_goals()

        weight_goal = self.to_number(source.get("weightGoal"))
        sleep_hours = self.to_number(source.get("sleepHours"))
        weekly = self.to_positive_int(source.get("weeklyWorkouts"), defaults["weeklyWorkouts"])

        return {
            "weightGoal": weight_goal if weight_goal is not None else defaults["weightGoal"],
            "dailyCalories": self.to_positive_int(
                source.get("dailyCalories"), defaults["dailyCalories"]
            ),
            "dailyProtein": self.to_positive_int(
                source.get("dailyProtein"), defaults["dailyProtein"]
            ),
            "weeklyWorkouts": min(7, max(1, weekly)),
            "dailySteps": self.to_positive_int(source.get("dailySteps"), defaults["dailySteps"]),
            "sleepHours": sleep_hours if sleep_hours is not None else defaults["sleepHours"],
        }

    def normalize_settings(
        self, settings: Any, has_historical_data: bool = False
    ) -> dict[str, Any]:
        """
        Normalize the settings singleton.

        When the onboarding flag was never recorded, an existing history of
        records counts as completed onboarding so returning users are not
        prompted again.

        Args:
            settings: Raw settings object.
            has_historical_data: Whether any workout, nutrition or metric records exist.

        Returns:
            Canonical settings stamped with the current schema version.
        """
        source = _as_mapping(settings)
        defaults = default_settings()

        theme = self.normalize_theme_value(source.get("theme"), source.get("darkMode"))

        explicit = source.get("onboardingCompleted")
        completed = explicit if isinstance(explicit, bool) else has_historical_data

        completed_at = None
        if completed:
            stored_at = source.get("onboardingCompletedAt")
            completed_at = stored_at if isinstance(stored_at, str) and stored_at else self.now_iso()

        deferred_until = None
        stored_deferral = source.get("onboardingDeferredUntil")
        if not completed and isinstance(stored_deferral, str):
            deferral = self.normalize_date_value(stored_deferral, fallback=None)
            if deferral >= self.today():
                deferred_until = deferral

        return {
            **defaults,
            **copy.deepcopy(source),
            "schemaVersion": SCHEMA_VERSION,
            "theme": theme,
            "darkMode": theme == Theme.DARK.value,
            "workoutSplit": self.normalize_workout_split(source.get("workoutSplit")),
            "defaultFastingWindow": self.normalize_fasting_window(
                source.get("defaultFastingWindow")
            ),
            "customExercises": self.normalize_custom_exercises(source.get("customExercises")),
            "profile": self.normalize_profile(source.get("profile")),
            "onboardingCompleted": completed,
            "onboardingCompletedAt": completed_at,
            "onboardingDeferredUntil": deferred_until,
        }

    # --- record collections ----------------------------------------------

    def _normalize_sets(self, sets: Any) -> list[dict[str, Any]]:
        if not isinstance(sets, list):
            return []
        normalized = []
        for entry in sets:
            if not isinstance(entry, dict):
                continue
            reps = self.to_number(entry.get("reps"))
            weight = self.to_number(entry.get("weight"))
            if reps is None and weight is None:
                continue
            normalized.append({"reps": reps, "weight": weight})
        return normalized

    def _normalize_exercises(self, exercises: Any) -> list[dict[str, Any]]:
        if not isinstance(exercises, list):
            return []
        normalized = []
        for exercise in exercises:
            if not isinstance(exercise, dict):
                continue
            name = str(exercise.get("name") or "").strip()
            if not name:
                continue
            normalized.append(
                {**exercise, "name": name, "sets": self._normalize_sets(exercise.get("sets"))}
            )
        return normalized

    def _normalize_cardio(self, cardio: Any) -> dict[str, Any] | None:
        if not isinstance(cardio, dict):
            return None
        cardio_type = cardio.get("type")
        duration = cardio.get("duration")
        return {
            **cardio,
            "type": cardio_type if isinstance(cardio_type, str) else "",
            "distance": self.to_number(cardio.get("distance")),
            "duration": duration if isinstance(duration, str) else "",
        }

    def _normalize_day_number(self, value: Any) -> int | None:
        number = self.to_number(value)
        if number is None:
            return None
        return max(1, round(number))

    def _optional_text(self, value: Any) -> str | None:
        return str(value) if value else None

    def normalize_workouts(self, workouts: Any) -> list[dict[str, Any]]:
        """
        Normalize the workouts collection.

        Args:
            workouts: Raw workouts list.

        Returns:
            Canonical workouts; non-object entries are dropped.
        """
        if not isinstance(workouts, list):
            return []

        normalized = []
        for raw in workouts:
            if not isinstance(raw, dict):
                continue
            workout = copy.deepcopy(raw)
            record_id, created_at = self._record_identity(workout)
            normalized.append(
                {
                    **workout,
                    "id": record_id,
                    "createdAt": created_at,
                    "date": self.normalize_date_value(workout.get("date")),
                    "type": self.normalize_workout_type(workout.get("type")),
                    "dayNumber": self._normalize_day_number(workout.get("dayNumber")),
                    "preWeight": self.to_number(workout.get("preWeight")),
                    "energyLevel": self.to_number(workout.get("energyLevel")),
                    "notes": self._optional_text(workout.get("notes")),
                    "exercises": self._normalize_exercises(workout.get("exercises")),
                    "cardio": self._normalize_cardio(workout.get("cardio")),
                }
            )
        return normalized

    def _normalize_alcohol(self, alcohol: Any) -> dict[str, Any]:
        if not isinstance(alcohol, dict):
            return {"drinks": 0, "type": None}
        drinks = self.to_number(alcohol.get("drinks"))
        return {
            "drinks": drinks if drinks is not None else 0,
            "type": alcohol.get("type") or None,
        }

    def normalize_nutrition(self, nutrition: Any) -> list[dict[str, Any]]:
        """Normalize the nutrition collection (one entry per calendar date)."""
        if not isinstance(nutrition, list):
            return []

        normalized = []
        for raw in nutrition:
            if not isinstance(raw, dict):
                continue
            entry = copy.deepcopy(raw)
            record_id, created_at = self._record_identity(entry)
            calories = self.to_number(entry.get("totalCalories"))
            protein = self.to_number(entry.get("totalProtein"))
            meals = entry.get("meals")
            supplements = entry.get("supplements")
            normalized.append(
                {
                    **entry,
                    "id": record_id,
                    "createdAt": created_at,
                    "date": self.normalize_date_value(entry.get("date")),
                    "foodWindow": self.normalize_fasting_window(entry.get("foodWindow")),
                    "steps": self.to_number(entry.get("steps")),
                    "totalCalories": calories if calories is not None else 0,
                    "totalProtein": protein if protein is not None else 0,
                    "meals": meals if isinstance(meals, list) else [],
                    "supplements": supplements if isinstance(supplements, list) else [],
                    "alcohol": self._normalize_alcohol(entry.get("alcohol")),
                    "notes": self._optional_text(entry.get("notes")),
                }
            )
        return normalized

    def normalize_metrics(self, metrics: Any) -> list[dict[str, Any]]:
        """Normalize the metrics collection (one entry per calendar date)."""
        if not isinstance(metrics, list):
            return []

        normalized = []
        for raw in metrics:
            if not isinstance(raw, dict):
                continue
            entry = copy.deepcopy(raw)
            record_id, created_at = self._record_identity(entry)
            record = {
                **entry,
                "id": record_id,
                "createdAt": created_at,
                "date": self.normalize_date_value(entry.get("date")),
            }
            for field in METRIC_NUMERIC_FIELDS:
                record[field] = self.to_number(entry.get(field))
            for field in METRIC_FLAG_FIELDS:
                record[field] = bool(entry.get(field))
            normalized.append(record)
        return normalized

    def normalize(
        self, collection: Collection | str, raw: Any, has_historical_data: bool = False
    ) -> Any:
        """
        Normalize any collection by name.

        Args:
            collection: Collection to normalize.
            raw: Raw parsed JSON for that collection.
            has_historical_data: Passed through to settings normalization.

        Returns:
            Canonical value for the collection.
        """
        collection = Collection(collection)
        if collection is Collection.WORKOUTS:
            return self.normalize_workouts(raw)
        if collection is Collection.NUTRITION:
            return self.normalize_nutrition(raw)
        if collection is Collection.METRICS:
            return self.normalize_metrics(raw)
        if collection is Collection.GOALS:
            return self.normalize_goals(raw)
        return self.normalize_settings(raw, has_historical_data=has_historical_data)
