"""
Parameter covariance and correlation reporting.

The covariance is the inverse of the Gauss-Newton Hessian approximation
(J^T J) at the solution, scaled by the residual variance, and covers only the
free parameters.  Strongly correlated pairs point at parameters that the
measurement geometry cannot separate and that should be masked.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Sequence

import numpy as np

from kincal.exceptions import CovarianceError, DomainError

logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class CovarianceResult:
    """Covariance over the free parameters, one label per row/column."""
    matrix: np.ndarray
    labels: tuple[str, ...]
    # J^T J inverse before residual-variance scaling; used for correlations
    unscaled: np.ndarray
    residual_variance: float

    def standard_deviations(self) -> np.ndarray:
        return np.sqrt(np.clip(np.diag(self.matrix), 0.0, None))

    def correlation_matrix(self) -> np.ndarray:
        d = np.sqrt(np.diag(self.unscaled))
        corr = self.unscaled / np.outer(d, d)
        return np.clip(corr, -1.0, 1.0)

    def correlation_coeff_above_threshold(self, threshold: float) -> list[tuple[str, str, float]]:
        """Parameter pairs whose absolute correlation is above ``threshold``.

        A threshold of 0 reports every off-diagonal pair; since correlations
        are clipped to [-1, 1] a threshold of 1 never reports anything.
        """
        if not 0.0 <= threshold <= 1.0:
            raise DomainError(f"Correlation threshold must be in [0, 1], got {threshold}")
        corr = self.correlation_matrix()
        pairs = []
        n = len(self.labels)
        for i in range(n):
            for j in range(i + 1, n):
                c = float(corr[i, j])
                if threshold == 0.0 or abs(c) > threshold:
                    pairs.append((self.labels[i], self.labels[j], c))
        return pairs

    def format_correlation_coeff_above_threshold(self, threshold: float) -> str:
        pairs = self.correlation_coeff_above_threshold(threshold)
        lines = [f"Correlation coefficients with magnitude > {threshold}:"]
        if not pairs:
            lines.append("  (none)")
        for a, b, c in pairs:
            lines.append(f"  {a} <-> {b}: {c:+.4f}")
        return "\n".join(lines)


def compute_covariance(
    jacobian: np.ndarray,
    residuals: np.ndarray,
    labels: Sequence[str],
    rcond: float = 1e-12,
) -> CovarianceResult:
    """Covariance of the free parameters from the solution Jacobian.

    Args:
        jacobian: (m, n) Jacobian of the residuals w.r.t. the free parameters.
        residuals: (m,) residuals at the solution.
        labels: n human-readable parameter names.
        rcond: relative singular-value cutoff used for the rank test.

    Raises:
        CovarianceError: J^T J is singular or the inverse is not finite.
    """
    J = np.asarray(jacobian, dtype=np.float64)
    r = np.asarray(residuals, dtype=np.float64).reshape(-1)
    if J.ndim != 2 or J.shape[1] != len(labels):
        raise CovarianceError(
            f"Jacobian shape {J.shape} does not match {len(labels)} parameter labels"
        )
    m, n = J.shape
    if n == 0:
        raise CovarianceError("No free parameters; covariance is undefined")
    if not np.all(np.isfinite(J)):
        raise CovarianceError("Jacobian contains non-finite values")

    JtJ = J.T @ J
    s = np.linalg.svd(JtJ, compute_uv=False)
    if s[0] <= 0.0 or s[-1] <= rcond * s[0]:
        raise CovarianceError(
            f"Normal equations are singular (condition number "
            f"{s[0] / s[-1] if s[-1] > 0 else float('inf'):.3g}); "
            "check the parameter mask for redundant degrees of freedom"
        )
    try:
        unscaled = np.linalg.inv(JtJ)
    except np.linalg.LinAlgError as e:
        raise CovarianceError(f"Could not invert normal equations: {e}") from e
    if not np.all(np.isfinite(unscaled)):
        raise CovarianceError("Covariance contains non-finite values")

    dof = max(m - n, 1)
    residual_variance = float(r @ r) / dof
    logger.debug("Covariance: %d residuals, %d parameters, residual variance %.3e", m, n, residual_variance)

    return CovarianceResult(
        matrix=unscaled * residual_variance,
        labels=tuple(labels),
        unscaled=unscaled,
        residual_variance=residual_variance,
    )
