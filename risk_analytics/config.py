"""Environment-backed defaults for the analytics pipeline."""

from __future__ import annotations

import os
from dataclasses import dataclass, fields, replace

from risk_analytics.errors import InvalidInputError

ENV_PREFIX = "RISK_ANALYTICS_"


@dataclass(frozen=True)
class AnalysisSettings:
    """Tunable defaults shared by the library entry points and the CLI."""

    min_aligned_points: int = 30
    days_per_year: int = 365
    scenario_count: int = 10_000
    min_scenario_count: int = 100
    block_size: int = 250
    workers: int | None = None
    irr_tolerance: float = 1e-4
    irr_max_iterations: int = 100
    log_level: str = "INFO"

    @staticmethod
    def load(environ: dict[str, str] | None = None) -> "AnalysisSettings":
        """
        Build settings from ``RISK_ANALYTICS_*`` environment variables.

        Unset variables keep their defaults. ``RISK_ANALYTICS_WORKERS=0``
        means one worker per available core.
        """
        env = os.environ if environ is None else environ
        settings = AnalysisSettings()
        overrides: dict[str, object] = {}

        for f in fields(AnalysisSettings):
            raw = env.get(ENV_PREFIX + f.name.upper())
            if raw is None or raw == "":
                continue
            overrides[f.name] = _parse(f.name, raw)

        if overrides.get("workers") == 0:
            overrides["workers"] = None

        settings = replace(settings, **overrides)
        settings.validate()
        return settings

    def validate(self) -> None:
        if self.min_aligned_points < 2:
            raise InvalidInputError("min_aligned_points must be at least 2")
        if self.days_per_year <= 0:
            raise InvalidInputError("days_per_year must be positive")
        if self.min_scenario_count < 1:
            raise InvalidInputError("min_scenario_count must be positive")
        if self.scenario_count < self.min_scenario_count:
            raise InvalidInputError(
                f"scenario_count {self.scenario_count} is below the minimum "
                f"of {self.min_scenario_count}"
            )
        if self.block_size <= 0:
            raise InvalidInputError("block_size must be positive")
        if self.workers is not None and self.workers < 1:
            raise InvalidInputError("workers must be positive")
        if self.irr_tolerance <= 0:
            raise InvalidInputError("irr_tolerance must be positive")
        if self.irr_max_iterations < 1:
            raise InvalidInputError("irr_max_iterations must be positive")


def _parse(name: str, raw: str) -> object:
    if name == "log_level":
        return raw.upper()
    caster = float if name == "irr_tolerance" else int
    try:
        return caster(raw)
    except ValueError as exc:
        raise InvalidInputError(
            f"{ENV_PREFIX}{name.upper()} must be a number, got {raw!r}"
        ) from exc
