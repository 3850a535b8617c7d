"""
Stochastic Ricker Growth Model
==============================

Fits a single-population Ricker model with multiplicative process noise to a
series of (pre-harvest abundance N_t, previous post-harvest abundance X_t-1)
pairs:

    N_t = X_t-1 * exp( r * (1 - X_t-1 / K) + c * z_t ) * (1 + e_t)

    z_t ~ N(0, 1)           latent process noise, one per time step
    log(1 + e_t) ~ N(0, s)  observation layer with fixed small sd s

The latent z_t are integrated out with a Laplace approximation and the
marginal negative log-likelihood is minimised over (r, K, log c) with BFGS.

On the log scale the model reads

    y_t = log(N_t / X_t-1) = r * (1 - X_t-1 / K) + c * z_t + s * e_t

so the inner problem in z_t is Gaussian: the mode and curvature are
available in closed form and the Laplace approximation is exact. The
equivalent marginal is y_t ~ N(m_t, c² + s²), which is what the analytic
gradient is derived from.

The fixed observation sd is not estimated; it keeps the likelihood well
posed when the process noise collapses towards zero.

A fit never raises for bad data. Too few pairs, a degenerate series,
non-convergence or a non-positive K are reported through
GrowthModelFit.success so that callers can skip the unit.

Reference:
    Ricker, W. E. (1954). Stock and recruitment. Journal of the
    Fisheries Research Board of Canada, 11(5), 559-623.
"""

from dataclasses import asdict, dataclass
from typing import Dict, Optional

import numpy as np
from scipy import optimize

from .config import (
    GRADIENT_TOLERANCE,
    GROWTH_MODEL_INITS,
    MIN_PAIRS_FOR_FIT,
    OBSERVATION_SD,
    OPTIMIZER_GTOL,
    OPTIMIZER_MAXITER,
)

LOG_2PI = np.log(2 * np.pi)


@dataclass
class GrowthModelFit:
    """Result of one growth model fit."""
    r: float = np.nan
    K: float = np.nan
    c: float = np.nan
    K_se: float = np.nan
    success: bool = False
    converged: bool = False
    n_pairs: int = 0
    n_iter: int = 0
    nll: float = np.nan
    message: str = ""

    def to_dict(self) -> Dict:
        return asdict(self)


# ============================================================================
# LIKELIHOOD
# ============================================================================

def laplace_marginal_nll(params, x, y, obs_sd=OBSERVATION_SD):
    """
    Laplace-approximated marginal negative log-likelihood.

    For each time step the joint negative log-density in z_t,

        f(z) = z²/2 + (y_t - m_t - c z)² / (2 s²) + log s + log(2π)

    is minimised at z_hat = c (y_t - m_t) / (s² + c²) with curvature
    H = 1 + c²/s², and the latent variable is integrated out as

        -log ∫ exp(-f) dz ≈ f(z_hat) + log(H)/2 - log(2π)/2

    Parameters
    ----------
    params : sequence
        (r, K, log_c)
    x : ndarray
        Previous post-harvest abundance X_t-1
    y : ndarray
        log(N_t / X_t-1)
    obs_sd : float
        Fixed observation sd on the log scale

    Returns
    -------
    float
    """
    r, K, log_c = params
    c = np.exp(log_c)
    s2 = obs_sd ** 2

    resid = y - r * (1 - x / K)

    curvature = 1 + c ** 2 / s2
    z_hat = c * resid / (s2 + c ** 2)

    joint = (0.5 * z_hat ** 2
             + 0.5 * (resid - c * z_hat) ** 2 / s2
             + np.log(obs_sd) + LOG_2PI)

    return float(np.sum(joint + 0.5 * np.log(curvature) - 0.5 * LOG_2PI))


def marginal_gradient(params, x, y, obs_sd=OBSERVATION_SD):
    """Analytic gradient of the marginal nll with respect to (r, K, log_c)."""
    r, K, log_c = params
    c2 = np.exp(2 * log_c)
    var = c2 + obs_sd ** 2

    resid = y - r * (1 - x / K)
    n = len(y)

    d_r = -np.sum(resid * (1 - x / K)) / var
    d_K = -np.sum(resid * r * x / K ** 2) / var
    d_log_c = c2 * (n / var - np.sum(resid ** 2) / var ** 2)

    return np.array([d_r, d_K, d_log_c])


def numerical_hessian(grad, params, rel_step=1e-5):
    """
    Central-difference Hessian from an analytic gradient.

    Parameters
    ----------
    grad : callable
        params -> gradient vector
    params : ndarray
    rel_step : float
        Step relative to max(|param|, 1)

    Returns
    -------
    ndarray
        Symmetrised Hessian
    """
    params = np.asarray(params, dtype=float)
    k = len(params)
    hess = np.zeros((k, k))

    for i in range(k):
        h = rel_step * max(abs(params[i]), 1.0)
        up = params.copy()
        down = params.copy()
        up[i] += h
        down[i] -= h
        hess[:, i] = (grad(up) - grad(down)) / (2 * h)

    return 0.5 * (hess + hess.T)


# ============================================================================
# FITTING
# ============================================================================

def _failure(message, n_pairs=0, **kwargs):
    return GrowthModelFit(success=False, message=message, n_pairs=n_pairs, **kwargs)


def fit_growth_model(n, x,
                     obs_sd: float = OBSERVATION_SD,
                     min_pairs: int = MIN_PAIRS_FOR_FIT,
                     inits: Optional[Dict[str, float]] = None,
                     plausibility_check: bool = False,
                     maxiter: int = OPTIMIZER_MAXITER,
                     gtol: float = OPTIMIZER_GTOL) -> GrowthModelFit:
    """
    Fit the stochastic Ricker model to paired (N_t, X_t-1) observations.

    Pairs where either value is missing or non-positive are dropped
    pairwise before fitting.

    Parameters
    ----------
    n : array-like
        Pre-harvest abundance N_t
    x : array-like
        Post-harvest abundance of the previous year, X_t-1
    obs_sd : float
        Fixed sd of the log-scale observation layer
    min_pairs : int
        Fewer valid pairs than this is reported as a failed fit
    inits : dict, optional
        Keys 'r', 'K_multiplier', 'log_c'; defaults from config
        (r = 0.3, K = 1.2 * max(N), log c = -1)
    plausibility_check : bool
        If True, a K below the largest observed N counts as a failed fit
    maxiter, gtol : optimizer controls

    Returns
    -------
    GrowthModelFit
        success is False with a message when the fit cannot be used:
        'insufficient_data', 'degenerate_series', 'not_converged',
        'non_finite', 'non_positive_K' or 'implausible'.

    Examples
    --------
    >>> fit = fit_growth_model(N[1:], X[:-1])
    >>> if fit.success:
    ...     print(f"K = {fit.K:.0f} ± {fit.K_se:.0f}")
    """
    n = np.asarray(n, dtype=float)
    x = np.asarray(x, dtype=float)
    if n.shape != x.shape:
        raise ValueError(f"N and X must be paired: {n.shape} vs {x.shape}")

    valid = np.isfinite(n) & np.isfinite(x) & (n > 0) & (x > 0)
    n = n[valid]
    x = x[valid]
    n_pairs = int(valid.sum())

    if n_pairs < min_pairs:
        return _failure('insufficient_data', n_pairs)
    if np.ptp(x) == 0:
        return _failure('degenerate_series', n_pairs)

    y = np.log(n / x)

    inits = {**GROWTH_MODEL_INITS, **(inits or {})}
    K_scale = inits['K_multiplier'] * np.max(n)

    # K is optimised in units of its initial value to balance the scales
    def objective(theta):
        params = (theta[0], theta[1] * K_scale, theta[2])
        value = laplace_marginal_nll(params, x, y, obs_sd)
        grad = marginal_gradient(params, x, y, obs_sd)
        grad[1] *= K_scale
        return value, grad

    theta0 = np.array([inits['r'], 1.0, inits['log_c']])

    with np.errstate(over='ignore', divide='ignore', invalid='ignore'):
        result = optimize.minimize(
            objective, theta0, jac=True, method='BFGS',
            options={'maxiter': maxiter, 'gtol': gtol},
        )

    r_hat, K_hat, log_c_hat = result.x[0], result.x[1] * K_scale, result.x[2]
    estimates = dict(r=r_hat, K=K_hat, c=np.exp(log_c_hat),
                     n_iter=int(result.nit), nll=float(result.fun))

    if not np.all(np.isfinite([r_hat, K_hat, log_c_hat, result.fun])):
        return _failure('non_finite', n_pairs, **estimates)

    # BFGS often stops on precision loss at a genuine optimum
    converged = bool(result.success) or (
        result.jac is not None
        and np.all(np.isfinite(result.jac))
        and np.max(np.abs(result.jac)) < GRADIENT_TOLERANCE
    )
    if not converged:
        return _failure('not_converged', n_pairs, **estimates)

    if K_hat <= 0:
        return _failure('non_positive_K', n_pairs, converged=True, **estimates)

    K_se = _standard_error_K((r_hat, K_hat, log_c_hat), x, y, obs_sd)

    if plausibility_check and K_hat < np.max(n):
        return _failure('implausible', n_pairs, converged=True, K_se=K_se, **estimates)

    return GrowthModelFit(
        K_se=K_se, success=True, converged=True, n_pairs=n_pairs,
        message='ok', **estimates,
    )


def _standard_error_K(params, x, y, obs_sd):
    """se(K) from the inverse Hessian of the marginal nll; NaN if singular."""
    params = np.asarray(params, dtype=float)
    with np.errstate(over='ignore', divide='ignore', invalid='ignore'):
        hess = numerical_hessian(lambda p: marginal_gradient(p, x, y, obs_sd), params)

    if not np.all(np.isfinite(hess)):
        return np.nan
    try:
        cov = np.linalg.inv(hess)
    except np.linalg.LinAlgError:
        return np.nan

    var_K = cov[1, 1]
    return float(np.sqrt(var_K)) if np.isfinite(var_K) and var_K > 0 else np.nan
