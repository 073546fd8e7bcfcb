"""
Reference grids -- the covariate rows a model is evaluated on.

Three policies:

  typical         every predictor not named in ``spec`` collapses to one
                  representative value (mean / median for numeric, level
                  shares / reference level / mode for categorical); the
                  explicit values are crossed with the collapsed row.
  counterfactual  one full copy of the dataset per combination of the
                  explicit values, overwriting only those predictors.
  as-is           the dataset unchanged.

The "typical" value of a categorical predictor changes results, so it
is never implicit: it comes from ``MarginsConfig.categorical_typical``.
"""

from dataclasses import dataclass, field
from enum import Enum
from itertools import product

import numpy as np
import pandas as pd
from loguru import logger
from pandas.api import types as ptypes

from .config import resolve
from .design import LevelMix
from .exceptions import (
    EmptyGridError,
    UnknownPredictorError,
    UnsupportedPredictorError,
)
from .utils import as_frame, is_categorical, sorted_levels, unique_values


class GridPolicy(str, Enum):
    TYPICAL = "typical"
    COUNTERFACTUAL = "counterfactual"
    AS_IS = "as-is"


class _UseData:
    """Spec marker: keep the dataset's own values for this predictor."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self):
        return "USE_DATA"


USE_DATA = _UseData()


@dataclass
class Grid:
    """
    Covariate rows plus how they were built.

    ``scales`` holds the range of every numeric predictor in the source
    dataset; slopes use it to size finite-difference steps even when the
    grid itself has a single row.  ``keys`` names the predictors the
    spec set explicitly, which label the resulting estimates.
    """

    frame: pd.DataFrame
    policy: GridPolicy = GridPolicy.AS_IS
    scales: dict = field(default_factory=dict)
    keys: tuple = ()

    def __len__(self):
        return len(self.frame)

    def __iter__(self):
        return iter(self.frame.to_dict(orient="records"))

    @property
    def columns(self):
        return list(self.frame.columns)

    @classmethod
    def from_frame(cls, frame):
        """Wrap raw data as an as-is grid."""
        frame = as_frame(frame)
        return cls(frame, GridPolicy.AS_IS, numeric_scales(frame))


def numeric_scales(frame):
    """Range (max - min) of every numeric, non-boolean column."""
    out = {}
    for name in frame.columns:
        col = frame[name]
        if _is_numeric(col) and len(col.dropna()):
            out[name] = float(col.max() - col.min())
    return out


def _is_numeric(series):
    return ptypes.is_numeric_dtype(series) and not ptypes.is_bool_dtype(series)


def _categorical_names(frame, categorical):
    names = set(categorical or ())
    for name in frame.columns:
        if is_categorical(frame[name]):
            names.add(name)
    return names


def _explicit_values(name, value, column, operation):
    if value is USE_DATA:
        values = unique_values(column)
    elif isinstance(value, (list, tuple, np.ndarray, pd.Series, pd.Index)):
        values = list(value)
    else:
        values = [value]
    if not values:
        raise EmptyGridError(f"no values given for predictor '{name}'",
                             operation=operation, name=name)
    return values


def _summarisable(column, categorical):
    return categorical or _is_numeric(column)


def typical_value(column, categorical, config, operation=""):
    """Representative value of one column under the configured policy."""
    config = resolve(config)
    if categorical:
        rule = config.categorical_typical
        if rule == "proportional":
            return LevelMix.from_series(column)
        if rule == "reference":
            return sorted_levels(column)[0]
        # mode: most frequent, ties broken by natural level order
        counts = column.value_counts()
        top = counts.max()
        return next(lvl for lvl in sorted_levels(column) if counts.get(lvl, 0) == top)
    if not _is_numeric(column):
        raise UnsupportedPredictorError(column.name, str(column.dtype),
                                        operation=operation)
    if config.numeric_typical == "median":
        return float(column.median())
    return float(column.mean())


def build_grid(dataset, spec=None, policy="typical", categorical=None, config=None,
               predictors=None):
    """
    Build a reference grid.

    Parameters
    ----------
    dataset : DataFrame or mapping
        Observed rows.
    spec : dict or None
        predictor -> fixed value, list of values, or ``USE_DATA``.
    policy : {"typical", "counterfactual", "as-is"}
    categorical : iterable of str or None
        Extra column names to treat as categorical (non-numeric dtypes
        always are).
    config : MarginsConfig or None
    predictors : iterable of str or None
        Columns a typical grid must collapse (usually the model's
        predictors).  Given: only these and the ``spec`` columns are
        kept.  None: every column is kept except those with no typical
        value (dates, free-form objects), which are dropped.

    Returns
    -------
    Grid

    Raises
    ------
    UnknownPredictorError
        A spec key is not a dataset column.
    EmptyGridError
        The dataset is empty (typical / counterfactual) or a value list
        is empty.
    UnsupportedPredictorError
        A required column of a typical grid has no typical value.
    """
    policy = GridPolicy(policy)
    config = resolve(config)
    frame = as_frame(dataset)
    spec = dict(spec or {})
    operation = f"build_grid[{policy.value}]"

    for name in spec:
        if name not in frame.columns:
            raise UnknownPredictorError(name, operation=operation,
                                        available=list(frame.columns))
    scales = numeric_scales(frame)

    if policy is GridPolicy.AS_IS:
        fixed = [k for k, v in spec.items() if v is not USE_DATA]
        if fixed:
            raise ValueError(f"{operation}: cannot fix {fixed} on an as-is grid")
        return Grid(frame, policy, scales)

    if len(frame) == 0:
        raise EmptyGridError("dataset has no rows", operation=operation)

    cats = _categorical_names(frame, categorical)
    if policy is GridPolicy.TYPICAL:
        grid = _typical(frame, spec, cats, config, operation, predictors)
    else:
        grid = _counterfactual(frame, spec, operation)
    logger.debug(f"{operation}: {len(frame)} rows -> {len(grid)} grid rows")
    if policy is GridPolicy.TYPICAL:
        keys = tuple(spec)
    else:
        keys = tuple(k for k, v in spec.items() if v is not USE_DATA)
    return Grid(grid, policy, scales, keys)


def _typical(frame, spec, cats, config, operation, predictors=None):
    explicit = {
        name: _explicit_values(name, value, frame[name], operation)
        for name, value in spec.items()
    }
    required = None if predictors is None else set(predictors)
    collapsed = {}
    for name in frame.columns:
        if name in explicit:
            continue
        if required is not None and name not in required:
            continue
        if required is None and not _summarisable(frame[name], name in cats):
            logger.debug(f"{operation}: dropping column '{name}' "
                         f"of dtype {frame[name].dtype}")
            continue
        collapsed[name] = typical_value(frame[name], name in cats, config,
                                        operation=operation)
    columns = [c for c in frame.columns if c in explicit or c in collapsed]
    rows = []
    for combo in product(*explicit.values()):
        row = dict(collapsed)
        row.update(zip(explicit, combo))
        rows.append({name: row[name] for name in columns})
    out = pd.DataFrame(rows, columns=columns)
    for name in columns:
        # keep numeric dtypes for numeric columns
        if name not in cats and _is_numeric(frame[name]):
            out[name] = out[name].astype(float)
    return out


def _counterfactual(frame, spec, operation):
    fixed = {
        name: _explicit_values(name, value, frame[name], operation)
        for name, value in spec.items() if value is not USE_DATA
    }
    base = frame.reset_index(drop=True)
    base.index.name = "rowid"
    if not fixed:
        return base
    copies = []
    for combo in product(*fixed.values()):
        copy = base.copy()
        for name, value in zip(fixed, combo):
            copy[name] = value
        copies.append(copy)
    return pd.concat(copies)


def datagrid(dataset, categorical=None, config=None, **values):
    """
    Typical grid with ``spec`` given as keywords::

        datagrid(df, x=[0, 1, 2], group=USE_DATA)
    """
    return build_grid(dataset, values, policy=GridPolicy.TYPICAL,
                      categorical=categorical, config=config)
