"""
Configuration for marginal-effects computations.

A single pydantic model holds every tunable default: confidence level,
finite-difference step sizes, how "typical" values are chosen when a
grid is collapsed, the prediction scale, and the gradient strategy used
by the delta method.  Every public operation accepts an optional
``config``; when omitted, the module-level config is used.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field


class MarginsConfig(BaseModel):
    """Defaults shared by the grid builder, effect engine and contrasts."""

    conf_level: float = Field(default=0.95, gt=0.0, lt=1.0)
    distribution: Literal["auto", "normal", "t"] = Field(
        default="auto",
        description="auto: Student t when the model has residual df, else normal",
    )
    step_fraction: float = Field(
        default=1e-4, gt=0.0,
        description="slope step as a fraction of the target's range in the data",
    )
    param_rel_step: float = Field(
        default=1e-6, gt=0.0,
        description="relative step for numerical gradients w.r.t. parameters",
    )
    numeric_typical: Literal["mean", "median"] = Field(default="mean")
    categorical_typical: Literal["proportional", "reference", "mode"] = Field(
        default="proportional",
        description=(
            "proportional: observed level shares (dummy columns at their means); "
            "reference: first sorted level; mode: most frequent level"
        ),
    )
    scale: Literal["response", "link"] = Field(default="response")
    gradient_method: Literal["auto", "analytic", "numeric"] = Field(default="auto")
    psd_tolerance: float = Field(
        default=1e-10, ge=0.0,
        description="eigenvalue floor of the correlation-scaled covariance",
    )

    @classmethod
    def from_yaml(cls, path: Path | str) -> "MarginsConfig":
        """Load config from a YAML file."""
        with open(Path(path)) as f:
            data = yaml.safe_load(f) or {}
        return cls(**data)

    def to_yaml(self, path: Path | str) -> None:
        """Write config to a YAML file."""
        with open(Path(path), "w") as f:
            yaml.dump(self.model_dump(), f, default_flow_style=False, sort_keys=False)

    def updated(self, **overrides: Any) -> "MarginsConfig":
        """Return a copy with the non-None overrides applied."""
        changes = {k: v for k, v in overrides.items() if v is not None}
        return self.model_copy(update=changes) if changes else self


# ---------------------------------------------------------------------------
# Global singleton
# ---------------------------------------------------------------------------

_config: MarginsConfig | None = None


def get_config() -> MarginsConfig:
    """Return the global config instance (creates default if needed)."""
    global _config
    if _config is None:
        _config = MarginsConfig()
    return _config


def set_config(config: MarginsConfig | None) -> None:
    """Override the global config instance (None restores defaults)."""
    global _config
    _config = config


def load_config(path: Path | str | None = None) -> MarginsConfig:
    """
    Load config from file, falling back to standard locations, then defaults.
    """
    global _config

    if path is not None:
        _config = MarginsConfig.from_yaml(path)
    else:
        for candidate in [Path("margins.yaml"), Path("config/margins.yaml")]:
            if candidate.exists():
                _config = MarginsConfig.from_yaml(candidate)
                break
        else:
            _config = MarginsConfig()

    return _config


def resolve(config: MarginsConfig | None) -> MarginsConfig:
    """Return ``config`` or the global default."""
    return config if config is not None else get_config()
