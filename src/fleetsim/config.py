"""Simulation and diagnosis configuration for fleetsim."""

from __future__ import annotations

import dataclasses
import os
from collections.abc import Mapping
from typing import Any

from pydantic import AliasChoices, Field, ValidationError, field_validator

from fleetsim.exceptions import SimulationConfigError
from fleetsim.models._base import FleetBaseModel

DEFAULT_ERROR_PROBABILITY = 0.3
DEFAULT_HISTORY_SIZE = 5


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


class SimulationConfig(FleetBaseModel):
    """Per-tenant session configuration.

    Accepts the control-surface wire keys (``vehicles``, ``intervalSeconds``,
    ``durationSeconds``, ``errorProbability``), the snake_case field names,
    and the short ``interval``/``duration`` keys.

    Parameters
    ----------
    vehicles : list[str]
        Vehicle ids to simulate. Blank ids are rejected; duplicates are
        dropped keeping the first occurrence.
    interval_seconds : float
        Seconds between ticks. Must be > 0.
    duration_seconds : float
        Auto-stop after this many seconds. ``0`` runs until stopped.
    error_probability : float
        Bias toward alert-triggering states, in ``[0, 1]``.
    history_size : int
        How many previous samples per vehicle are sent with a diagnosis
        request as recent history.
    seed : int or None
        Seed for the session's random source (reproducible runs).
    """

    vehicles: tuple[str, ...] = Field(min_length=1)
    interval_seconds: float = Field(
        gt=0,
        validation_alias=AliasChoices("intervalSeconds", "interval_seconds", "interval"),
    )
    duration_seconds: float = Field(
        default=0.0,
        ge=0,
        validation_alias=AliasChoices("durationSeconds", "duration_seconds", "duration"),
    )
    error_probability: float = Field(default=DEFAULT_ERROR_PROBABILITY, ge=0, le=1)
    history_size: int = Field(default=DEFAULT_HISTORY_SIZE, ge=0, le=100)
    seed: int | None = None

    @field_validator("vehicles", mode="before")
    @classmethod
    def _normalise_vehicles(cls, value: Any) -> Any:
        if isinstance(value, str):
            value = [value]
        if not isinstance(value, (list, tuple)):
            return value
        seen: dict[str, None] = {}
        for item in value:
            if not isinstance(item, str):
                raise ValueError("vehicle ids must be strings")
            vehicle_id = item.strip()
            if not vehicle_id:
                raise ValueError("vehicle ids must be non-empty")
            seen.setdefault(vehicle_id, None)
        return tuple(seen)

    @classmethod
    def parse(cls, data: SimulationConfig | Mapping[str, Any]) -> SimulationConfig:
        """Validate *data* into a config, raising :class:`SimulationConfigError`."""
        if isinstance(data, SimulationConfig):
            return data
        if not isinstance(data, Mapping):
            raise SimulationConfigError(f"config must be a mapping, got {type(data).__name__}")
        try:
            return cls.model_validate(dict(data))
        except ValidationError as exc:
            raise SimulationConfigError(f"Invalid simulation config: {exc}") from exc


@dataclasses.dataclass(frozen=True)
class DiagnosisConfig:
    """Enrichment client configuration.

    Parameters
    ----------
    enabled : bool
        Master switch. When off, alerts are persisted rule-based only.
    api_key : str or None
        Bearer token for the provider.
    model : str
        Chat model name; also selects the cost rate row.
    base_url : str
        OpenAI-compatible API root (``/chat/completions`` is appended).
    max_tokens : int
        Completion token cap per request.
    temperature : float
        Sampling temperature.
    timeout : float
        Per-request timeout in seconds.
    max_attempts : int
        Provider calls per enrichment before giving up.
    retry_base_delay : float
        Backoff base in seconds; attempt *n* waits ``base * 2**(n-1)``.
    rate_limit_calls : int
        Calls allowed per sliding window.
    rate_limit_window : float
        Sliding window length in seconds.
    cache_ttl : float
        Seconds a diagnosis is reused for an identical alert context.
        ``0`` disables the cache.
    cache_max_entries : int
        Upper bound on cached diagnoses.
    """

    enabled: bool = False
    api_key: str | None = None
    model: str = "gpt-4o-mini"
    base_url: str = "https://api.openai.com/v1"
    max_tokens: int = 500
    temperature: float = 0.3
    timeout: float = 30.0
    max_attempts: int = 3
    retry_base_delay: float = 1.0
    rate_limit_calls: int = 50
    rate_limit_window: float = 60.0
    cache_ttl: float = 0.0
    cache_max_entries: int = 256

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise SimulationConfigError("max_attempts must be >= 1")
        if self.retry_base_delay < 0:
            raise SimulationConfigError("retry_base_delay must be >= 0")
        if self.rate_limit_calls < 1:
            raise SimulationConfigError("rate_limit_calls must be >= 1")
        if self.rate_limit_window <= 0:
            raise SimulationConfigError("rate_limit_window must be > 0")
        if self.cache_ttl < 0:
            raise SimulationConfigError("cache_ttl must be >= 0")

    @classmethod
    def from_env(cls, **overrides: Any) -> DiagnosisConfig:
        """Create configuration from environment variables.

        Reads ``OPENAI_API_KEY`` and the optional ``FLEETSIM_LLM_*``
        variables. Explicit keyword arguments override environment values.
        """
        env = os.environ

        config_kwargs: dict[str, Any] = {}
        api_key = env.get("OPENAI_API_KEY")
        if api_key:
            config_kwargs["api_key"] = api_key

        _ENV_STR_MAP = {
            "FLEETSIM_LLM_MODEL": "model",
            "FLEETSIM_LLM_BASE_URL": "base_url",
        }
        for env_key, field_name in _ENV_STR_MAP.items():
            val = env.get(env_key)
            if val:
                config_kwargs[field_name] = val

        _ENV_NUMERIC_MAP: dict[str, tuple[str, type]] = {
            "FLEETSIM_LLM_MAX_TOKENS": ("max_tokens", int),
            "FLEETSIM_LLM_TEMPERATURE": ("temperature", float),
            "FLEETSIM_LLM_TIMEOUT": ("timeout", float),
            "FLEETSIM_LLM_MAX_ATTEMPTS": ("max_attempts", int),
            "FLEETSIM_LLM_RETRY_BASE_DELAY": ("retry_base_delay", float),
            "FLEETSIM_LLM_RATE_LIMIT": ("rate_limit_calls", int),
            "FLEETSIM_LLM_CACHE_TTL": ("cache_ttl", float),
        }
        for env_key, (field_name, cast) in _ENV_NUMERIC_MAP.items():
            val = env.get(env_key)
            if val is None or field_name in overrides:
                continue
            try:
                config_kwargs[field_name] = cast(val)
            except ValueError as exc:
                raise SimulationConfigError(f"{env_key} must be numeric, got {val!r}") from exc

        if "enabled" not in overrides:
            config_kwargs["enabled"] = _env_bool(env.get("FLEETSIM_LLM_ENABLED"), False)

        config_kwargs.update(overrides)

        return cls(**config_kwargs)
