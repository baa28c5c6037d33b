"""
Numeric core for IRT estimation.

Provides the three primitives the estimators are built from:

    compose_plus / compose_multiply
        Pointwise sum / product of functions. Used to accumulate per-response
        log-likelihood contributions (sum) or raw likelihoods (product)
        without pre-aggregating the response data.

    invert_matrix
        Gauss-Jordan inversion on the matrix augmented with the identity.
        An exactly-zero pivot is replaced by a small epsilon so that a
        singular Hessian degrades the step instead of raising.

    newton_raphson
        Multivariate Newton-Raphson root finder on a gradient vector and a
        Hessian matrix, stepping x <- x - H(x)^-1 G(x) until the step norm
        falls below a tolerance or the iteration cap is hit.

All functions are pure: composed functions capture no mutable state and may
be evaluated any number of times.
"""

import logging
import math
from dataclasses import dataclass
from typing import Callable, Optional, Sequence, Tuple, Union

import numpy as np

from catquiz.core.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

# Defaults for the Gauss-Jordan pivot substitute and the Newton-Raphson
# run. Callers pass the configured values from settings.
DEFAULT_PIVOT_EPSILON = 1e-10
DEFAULT_TOLERANCE = 0.001
DEFAULT_MAX_ITERATIONS = 50

ScalarFunction = Callable[..., float]
VectorFunction = Callable[[np.ndarray], np.ndarray]
GradientSpec = Union[VectorFunction, Sequence[Callable[[np.ndarray], float]]]
HessianSpec = Union[VectorFunction, Sequence[Sequence[Callable[[np.ndarray], float]]]]


def compose_plus(*functions: Callable) -> Callable:
    """
    Pointwise sum of functions.

    ``compose_plus(f, g)(x) == f(x) + g(x)``. Works for scalar- and
    array-valued functions alike. With no arguments the result is the zero
    function. The composition is flat (one call evaluates every function
    once), so summing thousands of contributions does not build a deep chain
    of nested closures.
    """
    parts = tuple(functions)

    def composed(*args, **kwargs):
        total = 0.0
        for fn in parts:
            total = total + fn(*args, **kwargs)
        return total

    return composed


def compose_multiply(*functions: Callable) -> Callable:
    """Pointwise product of functions; the empty product is the constant 1."""
    parts = tuple(functions)

    def composed(*args, **kwargs):
        product = 1.0
        for fn in parts:
            product = product * fn(*args, **kwargs)
        return product

    return composed


def vector_function(functions: Sequence[Callable[[np.ndarray], float]]) -> VectorFunction:
    """Lift a sequence of scalar functions to one function returning a vector."""
    parts = tuple(functions)

    def evaluate(x: np.ndarray) -> np.ndarray:
        return np.array([fn(x) for fn in parts], dtype=float)

    return evaluate


def matrix_function(
    functions: Sequence[Sequence[Callable[[np.ndarray], float]]],
) -> VectorFunction:
    """Lift a matrix of scalar functions to one function returning a 2-D array."""
    rows = tuple(tuple(row) for row in functions)

    def evaluate(x: np.ndarray) -> np.ndarray:
        return np.array([[fn(x) for fn in row] for row in rows], dtype=float)

    return evaluate


def identity_matrix(size: int) -> np.ndarray:
    """Return the ``size`` x ``size`` identity matrix."""
    if size < 1:
        raise ConfigurationError(
            "Identity matrix size must be positive", context={"size": size}
        )
    return np.eye(size, dtype=float)


def append_identity_matrix(matrix: np.ndarray, identity: np.ndarray) -> np.ndarray:
    """
    Augment ``matrix`` with ``identity`` column-wise.

    Raises:
        ConfigurationError: If either matrix is not square or their row counts
            disagree.
    """
    matrix = np.asarray(matrix, dtype=float)
    identity = np.asarray(identity, dtype=float)
    _require_square(matrix, "matrix")
    _require_square(identity, "identity")
    if matrix.shape != identity.shape:
        raise ConfigurationError(
            "Matrix and identity must have the same shape",
            context={"matrix_shape": matrix.shape, "identity_shape": identity.shape},
        )
    return np.hstack([matrix, identity])


def invert_matrix(
    matrix: Union[np.ndarray, Sequence[Sequence[float]]],
    epsilon: float = DEFAULT_PIVOT_EPSILON,
) -> np.ndarray:
    """
    Invert a square matrix with Gauss-Jordan elimination.

    For every pivot row: an exactly-zero pivot is replaced by ``epsilon``, the
    row is divided by the pivot, and the pivot column is eliminated from all
    other rows. The left half of the augmented matrix then holds the identity
    and the right half the inverse.

    A singular input therefore yields a finite but meaningless (possibly
    huge) result rather than an exception; callers detect the fallout through
    non-finite or non-converging iterates.

    Args:
        matrix: Square matrix (nested sequences or 2-D array).
        epsilon: Substitute for an exactly-zero pivot.

    Returns:
        The inverse as a new 2-D float array.

    Raises:
        ConfigurationError: If the input is not a non-empty square matrix.
    """
    source = np.array(matrix, dtype=float)
    _require_square(source, "matrix")
    size = source.shape[0]

    augmented = append_identity_matrix(source, identity_matrix(size))

    for pivot_row in range(size):
        pivot = augmented[pivot_row, pivot_row]
        if pivot == 0.0:
            augmented[pivot_row, pivot_row] = epsilon
            pivot = epsilon
        augmented[pivot_row, :] = augmented[pivot_row, :] / pivot

        for row in range(size):
            if row == pivot_row:
                continue
            factor = augmented[row, pivot_row]
            if factor != 0.0:
                augmented[row, :] = augmented[row, :] - factor * augmented[pivot_row, :]

    return augmented[:, size:].copy()


def multiply_matrices(left: np.ndarray, right: np.ndarray) -> np.ndarray:
    """
    Matrix product with an explicit shape check.

    Raises:
        ConfigurationError: If the inner dimensions disagree.
    """
    left = np.atleast_2d(np.asarray(left, dtype=float))
    right = np.asarray(right, dtype=float)
    if right.ndim == 1:
        right = right.reshape(-1, 1)
    if left.shape[1] != right.shape[0]:
        raise ConfigurationError(
            "Matrices are not compatible for multiplication",
            context={"left_shape": left.shape, "right_shape": right.shape},
        )
    return left @ right


def _require_square(matrix: np.ndarray, name: str) -> None:
    if matrix.ndim != 2 or matrix.shape[0] == 0 or matrix.shape[0] != matrix.shape[1]:
        raise ConfigurationError(
            f"Expected a non-empty square {name}", context={"shape": matrix.shape}
        )


@dataclass(frozen=True)
class NewtonResult:
    """
    Outcome of a Newton-Raphson run.

    Attributes:
        x: Last iterate. Returned even when the run did not converge.
        iterations: Number of steps taken.
        converged: True if the last step norm fell below the tolerance.
        step_norm: Euclidean norm of the last step (inf if no step was taken).
        finite: False if a gradient, Hessian or iterate became NaN/Inf.
    """

    x: Tuple[float, ...]
    iterations: int
    converged: bool
    step_norm: float
    finite: bool = True

    @property
    def degraded(self) -> bool:
        """True when the iterate should not be trusted as a root."""
        return not (self.converged and self.finite)


def _as_floats(x: np.ndarray) -> Tuple[float, ...]:
    return tuple(float(v) for v in x)


def newton_raphson(
    gradient: GradientSpec,
    hessian: HessianSpec,
    start: Sequence[float],
    tolerance: float = DEFAULT_TOLERANCE,
    max_iterations: int = DEFAULT_MAX_ITERATIONS,
    epsilon: float = DEFAULT_PIVOT_EPSILON,
) -> NewtonResult:
    """
    Find a root of ``gradient`` with the multivariate Newton-Raphson method.

    Each iteration evaluates G(x) and H(x), computes
    ``step = invert_matrix(H(x)) @ G(x)`` and updates ``x <- x - step``. The
    run stops when ``||step|| < tolerance`` or after ``max_iterations`` steps.

    Args:
        gradient: Either one function returning the gradient vector, or a
            sequence of scalar functions (one per coordinate).
        hessian: Either one function returning the Hessian matrix, or a matrix
            (nested sequences) of scalar functions.
        start: Initial point.
        tolerance: Step-norm convergence tolerance.
        max_iterations: Iteration cap.
        epsilon: Gauss-Jordan substitute for an exactly-zero pivot.

    Returns:
        NewtonResult with the last iterate and convergence flags. Never raises
        for numeric trouble; a non-finite evaluation stops the run with
        ``finite=False``.

    Raises:
        ConfigurationError: If the gradient/Hessian shapes do not match the
            start vector.
    """
    gradient_fn = gradient if callable(gradient) else vector_function(gradient)
    hessian_fn = hessian if callable(hessian) else matrix_function(hessian)

    x = np.array(start, dtype=float).reshape(-1)
    dimension = x.shape[0]
    step_norm = math.inf

    for iteration in range(1, max_iterations + 1):
        g = np.asarray(gradient_fn(x), dtype=float).reshape(-1)
        h = np.atleast_2d(np.asarray(hessian_fn(x), dtype=float))

        if g.shape[0] != dimension or h.shape != (dimension, dimension):
            raise ConfigurationError(
                "Gradient/Hessian shape does not match the parameter vector",
                context={
                    "dimension": dimension,
                    "gradient_shape": g.shape,
                    "hessian_shape": h.shape,
                },
            )

        if not (np.all(np.isfinite(g)) and np.all(np.isfinite(h))):
            logger.debug(f"Newton-Raphson hit a non-finite evaluation at step {iteration}")
            return NewtonResult(_as_floats(x), iteration - 1, False, step_norm, finite=False)

        step = multiply_matrices(invert_matrix(h, epsilon), g).reshape(-1)
        x = x - step
        step_norm = float(np.linalg.norm(step))

        if not (np.all(np.isfinite(x)) and math.isfinite(step_norm)):
            return NewtonResult(_as_floats(x), iteration, False, step_norm, finite=False)

        if step_norm < tolerance:
            return NewtonResult(_as_floats(x), iteration, True, step_norm)

    logger.debug(
        f"Newton-Raphson did not converge in {max_iterations} steps "
        f"(last step norm {step_norm:.3g})"
    )
    return NewtonResult(_as_floats(x), max_iterations, False, step_norm)
