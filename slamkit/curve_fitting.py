"""Fitting the curve ``y = exp(a*x^2 + b*x + c)`` to noisy samples."""

from __future__ import annotations

import argparse
import logging
import time
from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np
from scipy.optimize import least_squares

logger = logging.getLogger(__name__)

TRUE_PARAMS = (1.0, 2.0, 1.0)
INITIAL_PARAMS = (2.0, -1.0, 5.0)


@dataclass(frozen=True)
class CurveFitResult:
    """Estimated parameters ``(a, b, c)`` with the final squared-error cost."""

    params: np.ndarray
    cost: float
    iterations: int


def curve_model(abc: Sequence[float], x) -> np.ndarray:
    """Evaluate ``exp(a*x^2 + b*x + c)`` at ``x``."""
    a, b, c = (float(v) for v in abc)
    xs = np.asarray(x, dtype=float)
    return np.exp(a * xs * xs + b * xs + c)


def _as_data(x_data, y_data) -> tuple[np.ndarray, np.ndarray]:
    xs = np.asarray(x_data, dtype=float).ravel()
    ys = np.asarray(y_data, dtype=float).ravel()
    if xs.shape != ys.shape:
        raise ValueError("x_data and y_data must have the same length")
    if xs.size == 0:
        raise ValueError("no data points")
    return xs, ys


def _cost(params: np.ndarray, xs: np.ndarray, ys: np.ndarray) -> float:
    err = ys - curve_model(params, xs)
    return float(err @ err)


def generate_data(
    n: int = 100,
    abc: Sequence[float] = TRUE_PARAMS,
    sigma: float = 1.0,
    seed: Optional[int] = None,
) -> tuple[np.ndarray, np.ndarray]:
    """Sample ``x = i / 100`` for ``i < n`` and noisy ``y`` values.

    The noise is normal with standard deviation ``sigma * sigma``.
    """
    if n < 0:
        raise ValueError("n must not be negative")
    if sigma < 0:
        raise ValueError("sigma must not be negative")
    rng = np.random.default_rng(seed)
    xs = np.arange(n) / 100.0
    noise = rng.normal(0.0, sigma * sigma, size=n)
    return xs, curve_model(abc, xs) + noise


def gauss_newton(
    x_data,
    y_data,
    initial: Sequence[float] = INITIAL_PARAMS,
    sigma: float = 1.0,
    iterations: int = 100,
) -> CurveFitResult:
    """Hand-written Gauss-Newton iterations, stopping when the cost stops falling."""
    xs, ys = _as_data(x_data, y_data)
    if sigma <= 0:
        raise ValueError("sigma must be positive")
    inv_sigma2 = 1.0 / (sigma * sigma)
    params = np.array(initial, dtype=float)
    if params.shape != (3,):
        raise ValueError("initial must hold three parameters")

    last_cost = 0.0
    done = 0
    for it in range(iterations):
        model = curve_model(params, xs)
        error = ys - model
        jac = np.column_stack([-xs * xs * model, -xs * model, -model])
        hessian = inv_sigma2 * jac.T @ jac
        bias = -inv_sigma2 * jac.T @ error
        cost = float(error @ error)

        try:
            dx = np.linalg.solve(hessian, bias)
        except np.linalg.LinAlgError:
            dx = np.full(3, np.nan)
        if np.isnan(dx[0]):
            logger.info("result is nan")
            break
        if it > 0 and cost >= last_cost:
            logger.info("cost: %g >= last cost: %g, break.", cost, last_cost)
            break

        params = params + dx
        last_cost = cost
        done += 1
        logger.debug("total cost: %g, update: %s, estimated params: %s", cost, dx, params)

    return CurveFitResult(params=params, cost=_cost(params, xs, ys), iterations=done)


def fit_least_squares(x_data, y_data, initial: Sequence[float] = INITIAL_PARAMS) -> CurveFitResult:
    """Fit with a general nonlinear least-squares solver using the analytic Jacobian."""
    xs, ys = _as_data(x_data, y_data)
    start = np.array(initial, dtype=float)
    if start.shape != (3,):
        raise ValueError("initial must hold three parameters")

    def residual(p: np.ndarray) -> np.ndarray:
        return ys - curve_model(p, xs)

    def jacobian(p: np.ndarray) -> np.ndarray:
        model = curve_model(p, xs)
        return np.column_stack([-xs * xs * model, -xs * model, -model])

    method = "lm" if xs.size >= 3 else "trf"
    solution = least_squares(residual, start, jac=jacobian, method=method)
    params = np.asarray(solution.x, dtype=float)
    return CurveFitResult(params=params, cost=_cost(params, xs, ys), iterations=int(solution.nfev))


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Generate noisy samples, fit them and print the estimate."""
    parser = argparse.ArgumentParser(description="Fit y = exp(a x^2 + b x + c) to noisy data.")
    parser.add_argument("--method", choices=("gauss-newton", "least-squares"), default="gauss-newton")
    parser.add_argument("--points", type=int, default=100)
    parser.add_argument("--sigma", type=float, default=1.0)
    parser.add_argument("--seed", type=int, default=0)
    args = parser.parse_args(argv)

    xs, ys = generate_data(args.points, TRUE_PARAMS, args.sigma, args.seed)
    start = time.perf_counter()
    if args.method == "gauss-newton":
        result = gauss_newton(xs, ys, INITIAL_PARAMS, max(args.sigma, 1e-12))
    else:
        result = fit_least_squares(xs, ys, INITIAL_PARAMS)
    elapsed = time.perf_counter() - start
    print(f"solve time cost = {elapsed} seconds. ")
    a, b, c = result.params
    print(f"estimated abc = {a}, {b}, {c}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())