"""
Link functions.

A link g maps the mean response mu to the linear predictor eta = g(mu).
Marginal effects on the response scale need the inverse link and its
derivative d mu / d eta, which is what the closed-form delta-method
gradients use.
"""

import numpy as np
from scipy import stats


def logistic(z):
    """Logistic (sigmoid) CDF: 1 / (1 + exp(-z))."""
    return 1 / (1 + np.exp(-np.clip(z, -500, 500)))


class Link:
    """
    Base link.  Subclasses implement ``linkfun``, ``linkinv`` and
    ``mu_eta``.
    """

    name = "link"

    def linkfun(self, mu):
        raise NotImplementedError

    def linkinv(self, eta):
        raise NotImplementedError

    def mu_eta(self, eta):
        """Derivative of the inverse link, d mu / d eta."""
        raise NotImplementedError

    @property
    def is_identity(self):
        return False

    def __repr__(self):
        return f"{type(self).__name__}()"

    def __eq__(self, other):
        return type(self) is type(other)

    def __hash__(self):
        return hash(type(self))


class Identity(Link):
    name = "identity"

    def linkfun(self, mu):
        return np.asarray(mu, dtype=float)

    def linkinv(self, eta):
        return np.asarray(eta, dtype=float)

    def mu_eta(self, eta):
        return np.ones_like(np.asarray(eta, dtype=float))

    @property
    def is_identity(self):
        return True


class Logit(Link):
    name = "logit"

    def linkfun(self, mu):
        mu = np.asarray(mu, dtype=float)
        return np.log(mu / (1 - mu))

    def linkinv(self, eta):
        return logistic(np.asarray(eta, dtype=float))

    def mu_eta(self, eta):
        p = self.linkinv(eta)
        return p * (1 - p)


class Probit(Link):
    name = "probit"

    def linkfun(self, mu):
        return stats.norm.ppf(mu)

    def linkinv(self, eta):
        return stats.norm.cdf(eta)

    def mu_eta(self, eta):
        return stats.norm.pdf(eta)


class Log(Link):
    name = "log"

    def linkfun(self, mu):
        return np.log(mu)

    def linkinv(self, eta):
        return np.exp(np.clip(eta, -700, 700))

    def mu_eta(self, eta):
        return self.linkinv(eta)


class CLogLog(Link):
    name = "cloglog"

    def linkfun(self, mu):
        mu = np.asarray(mu, dtype=float)
        return np.log(-np.log(1 - mu))

    def linkinv(self, eta):
        eta = np.clip(np.asarray(eta, dtype=float), -700, 700)
        return 1 - np.exp(-np.exp(eta))

    def mu_eta(self, eta):
        eta = np.clip(np.asarray(eta, dtype=float), -700, 700)
        return np.exp(eta - np.exp(eta))


LINKS = {
    "identity": Identity,
    "logit": Logit,
    "probit": Probit,
    "log": Log,
    "cloglog": CLogLog,
}


def get_link(link):
    """Return a Link instance from a name or an existing Link."""
    if isinstance(link, Link):
        return link
    try:
        return LINKS[str(link).lower()]()
    except KeyError:
        raise ValueError(
            f"unknown link '{link}' (choose from {', '.join(LINKS)})"
        ) from None
