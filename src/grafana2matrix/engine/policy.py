"""Per-host mention policies.

The mention configuration is a JSON object keyed by host name::

    {
      "db1.example.org": {
        "primary": ["@oncall:example.org"],
        "secondary": ["@team:example.org"],
        "delay_crit_primary": 0,
        "delay_crit_secondary": 15,
        "repeat_crit_primary": 60
      }
    }

It is re-read on every decision so edits take effect without a restart.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from grafana2matrix.engine.models import MentionKind, Severity

logger = logging.getLogger(__name__)

# Normalised value for "never" (delay) and "once" (repeat)
NEGATIVE = -1


class MentionPolicy(BaseModel):
    """Mention rules for one host.

    Delays are minutes since the alert started before a user type is
    mentioned: 0 means immediately, negative or missing means never.
    Repeats are minutes between re-mentions on the periodic tick: 0 means
    every tick, negative means only once, missing means the user is
    re-mentioned each time Grafana redelivers the firing alert instead.
    """

    model_config = ConfigDict(extra="ignore", frozen=True)

    primary: list[str] = Field(default_factory=list)
    secondary: list[str] = Field(default_factory=list)

    delay_crit_primary: int | None = None
    delay_warn_primary: int | None = None
    delay_crit_secondary: int | None = None
    delay_warn_secondary: int | None = None

    repeat_crit_primary: int | None = None
    repeat_warn_primary: int | None = None
    repeat_crit_secondary: int | None = None
    repeat_warn_secondary: int | None = None

    @field_validator("primary", "secondary", mode="before")
    @classmethod
    def coerce_users(cls, v: object) -> object:
        """Accept a single user id where a list is expected."""
        if v is None:
            return []
        if isinstance(v, str):
            return [v]
        return v

    @field_validator(
        "delay_crit_primary",
        "delay_warn_primary",
        "delay_crit_secondary",
        "delay_warn_secondary",
        "repeat_crit_primary",
        "repeat_warn_primary",
        "repeat_crit_secondary",
        "repeat_warn_secondary",
    )
    @classmethod
    def normalise_negative(cls, v: int | None) -> int | None:
        if v is not None and v < 0:
            return NEGATIVE
        return v

    def users(self, kind: MentionKind) -> list[str]:
        return self.primary if kind is MentionKind.PRIMARY else self.secondary

    def delay(self, severity: Severity, kind: MentionKind) -> int | None:
        value: int | None = getattr(self, f"delay_{severity.value.lower()}_{kind.value}")
        return value

    def repeat(self, severity: Severity, kind: MentionKind) -> int | None:
        value: int | None = getattr(self, f"repeat_{severity.value.lower()}_{kind.value}")
        return value


PolicyMap = dict[str, MentionPolicy]


class MentionConfigLoader:
    """Loads the per-host mention policy map from a JSON file.

    A missing path, a missing file or a malformed document all yield an
    empty map; a host entry that fails validation is skipped on its own.
    """

    def __init__(self, path: str | Path | None) -> None:
        self.path = Path(path) if path else None

    def load(self) -> PolicyMap:
        """Read and validate the mention configuration.

        Returns:
            Mapping of host name to MentionPolicy.
        """
        if self.path is None:
            return {}

        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {}
        except (OSError, json.JSONDecodeError) as e:
            logger.error("Error reading mention config %s: %s", self.path, e)
            return {}

        if not isinstance(raw, dict):
            logger.error("Mention config %s must be a JSON object keyed by host", self.path)
            return {}

        policies: PolicyMap = {}
        for host, entry in raw.items():
            try:
                policies[str(host)] = MentionPolicy.model_validate(entry)
            except ValidationError as e:
                logger.warning("Skipping invalid mention policy for %s: %s", host, e)
        return policies
