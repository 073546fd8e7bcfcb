"""
Estimate records and the inference context they share.

Every reported quantity -- a prediction, a slope, a first difference, a
contrast -- is an Estimate: a point value with its delta-method standard
error, test statistic, p-value and confidence interval, plus the
gradient that produced them so later contrasts can combine estimates
without refitting anything.
"""

from dataclasses import dataclass, field
from typing import Optional

import numpy as np
import pandas as pd
from loguru import logger

from .config import resolve
from .exceptions import IllConditionedCovarianceError
from .uncertainty import delta_method


@dataclass(frozen=True, eq=False)
class Inference:
    """Covariance matrix and interval settings shared by related estimates."""

    vcov: np.ndarray
    conf_level: float = 0.95
    df: Optional[float] = None
    tol: float = 1e-10

    @classmethod
    def from_model(cls, model, config=None):
        config = resolve(config)
        df = model.df_resid
        if config.distribution == "normal":
            df = None
        elif config.distribution == "t" and df is None:
            logger.warning(
                f"model {model.name!r} has no residual df; using normal intervals"
            )
        return cls(vcov=model.vcov, conf_level=config.conf_level, df=df,
                   tol=config.psd_tolerance)

    def summarize(self, values, jacobian):
        """
        Delta-method summaries for a batch of estimates.  An
        ill-conditioned covariance leaves every uncertainty field NaN.
        """
        try:
            return delta_method(values, jacobian, self.vcov,
                                conf_level=self.conf_level, df=self.df,
                                tol=self.tol)
        except IllConditionedCovarianceError as err:
            logger.warning(f"{err}; reporting point estimates without standard errors")
            nan = np.full(len(values), np.nan)
            return dict(se=nan, statistic=nan, p_value=nan,
                        conf_low=nan, conf_high=nan)

    def build(self, values, jacobian, meta):
        """
        Estimates from values, gradients and per-estimate metadata.

        ``meta`` is a list of dicts with keys ``term``, ``contrast``,
        ``group`` and ``rows``.
        """
        values = np.asarray(values, dtype=float)
        jacobian = np.atleast_2d(np.asarray(jacobian, dtype=float))
        s = self.summarize(values, jacobian)
        out = []
        for i, m in enumerate(meta):
            gradient = jacobian[i].copy()
            gradient.setflags(write=False)
            out.append(Estimate(
                term=m.get("term", ""),
                contrast=m.get("contrast", ""),
                group=dict(m.get("group", {})),
                estimate=float(values[i]),
                std_error=float(s["se"][i]),
                statistic=float(s["statistic"][i]),
                p_value=float(s["p_value"][i]),
                conf_low=float(s["conf_low"][i]),
                conf_high=float(s["conf_high"][i]),
                gradient=gradient,
                rows=tuple(m.get("rows", ())),
                inference=self,
            ))
        return out


@dataclass(frozen=True, eq=False)
class Estimate:
    """One reported quantity with its uncertainty."""

    term: str
    estimate: float
    std_error: float
    statistic: float
    p_value: float
    conf_low: float
    conf_high: float
    gradient: np.ndarray
    inference: Inference
    contrast: str = ""
    group: dict = field(default_factory=dict)
    rows: tuple = ()

    @property
    def has_uncertainty(self):
        return bool(np.isfinite(self.std_error))

    @property
    def conf_level(self):
        return self.inference.conf_level

    @property
    def label(self):
        """Short name: contrast and group values, else the term."""
        parts = [self.contrast] if self.contrast else []
        parts += [f"{k}={v}" for k, v in self.group.items()]
        return ", ".join(parts) if parts else self.term

    def as_dict(self):
        out = dict(term=self.term, contrast=self.contrast)
        out.update(self.group)
        out.update(
            estimate=self.estimate,
            std_error=self.std_error,
            statistic=self.statistic,
            p_value=self.p_value,
            conf_low=self.conf_low,
            conf_high=self.conf_high,
        )
        return out

    def __repr__(self):
        return (f"Estimate({self.label!r}, estimate={self.estimate:.6g}, "
                f"std_error={self.std_error:.4g})")


def to_frame(estimates):
    """Tabulate estimates, one row each, group values as columns."""
    return pd.DataFrame([e.as_dict() for e in estimates])
