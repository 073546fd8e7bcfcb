"""
margins -- from-scratch marginal effects and estimated marginal means.

Given a fitted linear, logit or probit model, computes predictions,
slopes, first differences and linear contrasts on reference grids,
with delta-method standard errors, using only numpy / scipy / pandas.
The averaging order (AME, MEM, or per grid row) is always an explicit
choice.
"""

from .config import MarginsConfig, get_config, load_config, set_config
from .contrasts import contrast, linear_combination, pairwise
from .design import Design, LevelMix
from .effects import (
    AveragingPolicy,
    aggregate,
    comparisons,
    evaluate,
    marginal_means,
    predictions,
    slopes,
)
from .estimates import Estimate, Inference, to_frame
from .exceptions import (
    EmptyGridError,
    IllConditionedCovarianceError,
    IncompatibleEstimatesError,
    InvalidStepError,
    MarginsError,
    MissingPredictorError,
    UnknownPredictorError,
    UnknownTermError,
    UnsupportedExpressionError,
    UnsupportedPredictorError,
)
from .fitting import fit_logit, fit_ols, fit_probit
from .grid import USE_DATA, Grid, GridPolicy, build_grid, datagrid
from .links import get_link
from .models import FittedModel
from .uncertainty import delta_se
from . import contrasts
from . import effects
from . import grid
from . import uncertainty

__version__ = "0.1.0"
