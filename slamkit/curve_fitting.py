"""Least-squares fitting of the curve y = exp(a x^2 + b x + c)."""

from __future__ import annotations

import argparse
import time
from collections.abc import Sequence
from dataclasses import dataclass, field

import numpy as np

TRUE_PARAMS = (1.0, 2.0, 1.0)
INITIAL_PARAMS = (2.0, -1.0, 5.0)
DEFAULT_COUNT = 100
DEFAULT_SIGMA = 1.0


@dataclass
class FitResult:
    """Outcome of a fit: estimated (a, b, c), final cost and accepted steps."""

    params: np.ndarray
    cost: float
    iterations: int
    history: list[float] = field(default_factory=list)


def model(params, x) -> np.ndarray:
    """Evaluate exp(a x^2 + b x + c) at ``x``."""
    a, b, c = _params(params)
    x = np.asarray(x, dtype=float)
    with np.errstate(over="ignore"):
        return np.exp(a * x * x + b * x + c)


def generate_data(params=TRUE_PARAMS, count: int = DEFAULT_COUNT, sigma: float = DEFAULT_SIGMA, rng=None):
    """Sample ``count`` points at x = i / 100 with Gaussian noise of deviation sigma^2."""
    if count < 0:
        raise ValueError("count must not be negative")
    if rng is None:
        rng = np.random.default_rng()
    x = np.arange(count, dtype=float) / 100.0
    noise = rng.normal(0.0, sigma * sigma, size=count) if sigma else np.zeros(count)
    return x, model(params, x) + noise


def _params(params) -> np.ndarray:
    arr = np.asarray(params, dtype=float).reshape(-1)
    if arr.size != 3:
        raise ValueError("params must have 3 elements")
    return arr


def _prepare(x_data, y_data, sigma):
    x = np.asarray(x_data, dtype=float).reshape(-1)
    y = np.asarray(y_data, dtype=float).reshape(-1)
    if x.size != y.size:
        raise ValueError("x_data and y_data must have the same length")
    if x.size == 0:
        raise ValueError("no data to fit")
    if sigma <= 0:
        raise ValueError("sigma must be positive")
    return x, y, 1.0 / (sigma * sigma)


def _linearize(params, x, y):
    """Residuals y - f(x) and their Jacobian with respect to (a, b, c)."""
    e = model(params, x)
    error = y - e
    jac = -np.column_stack([x * x * e, x * e, e])
    return error, jac


def _cost(params, x, y) -> float:
    with np.errstate(over="ignore", invalid="ignore"):
        return float(np.sum((y - model(params, x)) ** 2))


def gauss_newton(x_data, y_data, initial=INITIAL_PARAMS, iterations: int = 100, sigma: float = DEFAULT_SIGMA) -> FitResult:
    """Plain Gauss-Newton; stops when the step is NaN or the cost stops falling."""
    x, y, weight = _prepare(x_data, y_data, sigma)
    params = _params(initial).copy()
    last_cost = 0.0
    history: list[float] = []
    accepted = 0
    for it in range(iterations):
        with np.errstate(over="ignore", invalid="ignore"):
            error, jac = _linearize(params, x, y)
            h = weight * jac.T @ jac
            g = -weight * jac.T @ error
            cost = float(np.sum(error * error))
        try:
            dx = np.linalg.solve(h, g)
        except np.linalg.LinAlgError:
            break
        if np.isnan(dx[0]):
            break
        if it > 0 and cost >= last_cost:
            break
        params = params + dx
        last_cost = cost
        history.append(cost)
        accepted += 1
    return FitResult(params, _cost(params, x, y), accepted, history)


def levenberg_marquardt(x_data, y_data, initial=INITIAL_PARAMS, iterations: int = 50, sigma: float = DEFAULT_SIGMA) -> FitResult:
    """Levenberg-Marquardt with a damping factor adapted after each trial step."""
    x, y, weight = _prepare(x_data, y_data, sigma)
    params = _params(initial).copy()
    cost = _cost(params, x, y)
    history: list[float] = []
    damping = None
    accepted = 0
    for _ in range(iterations):
        with np.errstate(over="ignore", invalid="ignore"):
            error, jac = _linearize(params, x, y)
            h = weight * jac.T @ jac
            g = -weight * jac.T @ error
        if not (np.all(np.isfinite(h)) and np.all(np.isfinite(g))):
            break
        if damping is None:
            damping = 1e-3 * float(np.max(np.diag(h))) or 1e-3
        step = None
        while damping < 1e32:
            try:
                dx = np.linalg.solve(h + damping * np.eye(3), g)
            except np.linalg.LinAlgError:
                damping *= 10.0
                continue
            candidate = params + dx
            new_cost = _cost(candidate, x, y)
            if np.isfinite(new_cost) and new_cost < cost:
                step = dx
                params, cost = candidate, new_cost
                damping = max(damping / 10.0, 1e-15)
                break
            damping *= 10.0
        if step is None:
            break
        history.append(cost)
        accepted += 1
        if np.linalg.norm(step) < 1e-12 * (np.linalg.norm(params) + 1e-12):
            break
    return FitResult(params, cost, accepted, history)


def main(argv: Sequence[str] | None = None) -> int:
    """Fit the curve to generated data and print the estimate."""
    parser = argparse.ArgumentParser(description="Fit y = exp(a x^2 + b x + c) to noisy samples.")
    parser.add_argument("--method", choices=("gauss-newton", "lm"), default="gauss-newton")
    parser.add_argument("--seed", type=int, default=None)
    parser.add_argument("--iterations", type=int, default=None)
    args = parser.parse_args(argv)

    x, y = generate_data(TRUE_PARAMS, DEFAULT_COUNT, DEFAULT_SIGMA, np.random.default_rng(args.seed))
    solver = gauss_newton if args.method == "gauss-newton" else levenberg_marquardt
    kwargs = {} if args.iterations is None else {"iterations": args.iterations}

    start = time.perf_counter()
    result = solver(x, y, INITIAL_PARAMS, sigma=DEFAULT_SIGMA, **kwargs)
    elapsed = time.perf_counter() - start

    for cost in result.history:
        print(f"total cost: {cost:g}")
    print(f"solve time cost = {elapsed:g} seconds. ")
    a, b, c = result.params
    print(f"estimated abc = {a:g}, {b:g}, {c:g}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())