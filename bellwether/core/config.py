"""Pydantic settings loaded from YAML (or JSON) configuration."""

from __future__ import annotations

import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator, model_validator
from pydantic.alias_generators import to_camel

from bellwether.core.types import OverflowPolicy, Status, StepKind

_settings: Settings | None = None

_DEFAULT_CONFIG_PATH = Path("config/settings.yaml")

_HHMM = re.compile(r"^([01]?\d|2[0-3]):([0-5]\d)$")


class ConfigModel(BaseModel):
    """Base for config sections — accepts snake_case or camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class LoggingConfig(ConfigModel):
    """Logging configuration."""

    level: str = "INFO"
    format: str = "json"


class DefaultsConfig(ConfigModel):
    """Fallbacks applied when a trigger or monitor leaves a setting unset."""

    cooldown_secs: float = Field(default=0.0, ge=0)
    workflow_timeout_secs: float = Field(default=30.0, gt=0)
    max_volume: float = Field(default=1.0, ge=0, le=1)
    probe_timeout_secs: float | None = None


class BucketConfig(ConfigModel):
    """One token bucket: burst size and sustained refill rate."""

    capacity: float = Field(default=10.0, ge=1)
    refill_per_sec: float = Field(default=1.0, gt=0)


class BurstConfig(BucketConfig):
    """Global bucket plus optional per-event-type buckets.

    ``max_throttled`` caps how many firings one ``throttle`` trigger may
    queue while it waits for tokens; beyond it they are dropped.
    """

    per_event_type: dict[str, BucketConfig] = Field(default_factory=dict)
    max_throttled: int = Field(default=100, ge=1)


class QuietHoursConfig(ConfigModel):
    """Daily quiet window, e.g. 22:00-07:00. Both null disables it."""

    start: str | None = None
    end: str | None = None

    @field_validator("start", "end", mode="before")
    @classmethod
    def _require_text(cls, v: Any) -> Any:
        # YAML 1.1 reads an unquoted 22:00 as the base-60 integer 1320.
        if v is not None and not isinstance(v, str):
            raise ValueError(f"expected a quoted 'HH:MM' string, got {v!r}")
        return v

    @field_validator("start", "end")
    @classmethod
    def _check_hhmm(cls, v: str | None) -> str | None:
        if v is not None and not _HHMM.match(v):
            raise ValueError(f"expected HH:MM, got {v!r}")
        return v

    @property
    def enabled(self) -> bool:
        return self.start is not None and self.end is not None


class HysteresisConfig(ConfigModel):
    """Enter/exit thresholds and streak lengths for a status band.

    ``exit_threshold`` defaults to ``enter_threshold``. ``min_down_secs``
    holds an unhealthy candidate back until it has persisted that long.
    """

    enter_threshold: float | None = None
    exit_threshold: float | None = None
    enter_count: int = Field(default=1, ge=1)
    exit_count: int = Field(default=1, ge=1)
    min_down_secs: float = Field(default=0.0, ge=0)

    @model_validator(mode="after")
    def _default_exit(self) -> HysteresisConfig:
        if self.exit_threshold is None:
            self.exit_threshold = self.enter_threshold
        return self


class MonitorConfig(ConfigModel):
    """One monitor instance: a probe polled on a fixed interval."""

    id: str
    probe: str
    interval_secs: float = Field(default=30.0, gt=0)
    targets: list[str] = Field(default_factory=list)
    event_type: str | None = None
    options: dict[str, Any] = Field(default_factory=dict)
    hysteresis: HysteresisConfig | None = None
    probe_timeout_secs: float | None = None

    @property
    def resolved_event_type(self) -> str:
        return self.event_type or self.id


class ActionConfig(ConfigModel):
    """A single inline action; extra keys become the step config."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="allow",
    )

    kind: StepKind
    continue_on_fail: bool = True

    @property
    def options(self) -> dict[str, Any]:
        return dict(self.model_extra or {})


class WorkflowStepConfig(ConfigModel):
    """One node of a workflow graph."""

    id: str
    kind: StepKind
    config: dict[str, Any] = Field(default_factory=dict)
    next: str | None = None
    branch_true: str | None = None
    branch_false: str | None = None
    parallel_with: list[str] = Field(default_factory=list)
    continue_on_fail: bool = True


class WorkflowConfig(ConfigModel):
    """A named step graph. ``entry`` defaults to the first step."""

    entry: str | None = None
    steps: list[WorkflowStepConfig] = Field(default_factory=list)


class TriggerConfig(ConfigModel):
    """Mapping from an event type (+ optional condition) to actions."""

    id: str
    event_type: str
    to_status: list[Status] = Field(default_factory=list)
    from_status: list[Status] = Field(default_factory=list)
    condition: str | dict[str, Any] | None = None
    actions: list[ActionConfig] = Field(default_factory=list)
    workflow: str | None = None
    enabled: bool = True
    cooldown_secs: float | None = Field(default=None, ge=0)
    overflow: OverflowPolicy = OverflowPolicy.SILENCE
    quiet_hours_exempt: bool = False
    hysteresis: HysteresisConfig | None = None
    timeout_secs: float | None = Field(default=None, gt=0)


class EventShorthandConfig(ConfigModel):
    """Sound-only trigger shorthand: ``events: {stop: {sound, volume}}``."""

    enabled: bool = True
    sound: str
    volume: float = Field(default=0.5, ge=0, le=1)
    cooldown: float = Field(default=0.0, ge=0)


class SoundSinkConfig(ConfigModel):
    """Audio back end selection."""

    player: str = "auto"
    sounds_dir: str = "sounds"


class NotifyConfig(ConfigModel):
    """Notification channels for ``notify`` actions."""

    desktop: bool = False
    discord_webhook_url: SecretStr = SecretStr("")


class SinksConfig(ConfigModel):
    """Action sink configuration."""

    webhook_timeout_secs: float = Field(default=10.0, gt=0)
    sound: SoundSinkConfig = SoundSinkConfig()
    notify: NotifyConfig = NotifyConfig()


class Settings(ConfigModel):
    """Root settings container."""

    enabled: bool = True
    debug: bool = False
    logging: LoggingConfig = LoggingConfig()
    defaults: DefaultsConfig = DefaultsConfig()
    burst: BurstConfig = BurstConfig()
    quiet_hours: QuietHoursConfig = QuietHoursConfig()
    monitors: list[MonitorConfig] = Field(default_factory=list)
    triggers: list[TriggerConfig] = Field(default_factory=list)
    workflows: dict[str, WorkflowConfig] = Field(default_factory=dict)
    events: dict[str, EventShorthandConfig] = Field(default_factory=dict)
    sinks: SinksConfig = SinksConfig()


def load_settings(path: str | Path | None = None) -> Settings:
    """Load settings from a YAML or JSON file and cache globally.

    Args:
        path: Path to the config file. Defaults to config/settings.yaml.
            A relative ``sinks.sound.sounds_dir`` is resolved against the
            directory holding this file.

    Returns:
        Parsed Settings instance.
    """
    global _settings  # noqa: PLW0603

    config_path = Path(path) if path else _DEFAULT_CONFIG_PATH

    data: dict[str, Any] = {}
    if config_path.exists():
        with open(config_path) as f:
            raw = yaml.safe_load(f)
            if isinstance(raw, dict):
                data = raw

    _settings = Settings(**data)
    _anchor_sounds_dir(_settings, config_path.parent)
    return _settings


def _anchor_sounds_dir(settings: Settings, base: Path) -> None:
    # A relative sounds_dir is relative to the config file, not the cwd.
    sound = settings.sinks.sound
    sounds_dir = Path(sound.sounds_dir).expanduser()
    if not sounds_dir.is_absolute():
        sounds_dir = base / sounds_dir
    sound.sounds_dir = str(sounds_dir)


def get_settings() -> Settings:
    """Return the cached settings, loading defaults if not yet loaded."""
    global _settings  # noqa: PLW0603
    if _settings is None:
        _settings = load_settings()
    return _settings


def reset_settings() -> None:
    """Reset the cached settings (useful for testing)."""
    global _settings  # noqa: PLW0603
    _settings = None
