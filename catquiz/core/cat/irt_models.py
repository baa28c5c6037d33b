"""
IRT response models.

Each model gives the probability of a correct response as a function of the
person ability (theta) and the item's free parameters, together with the
closed-form first and second derivatives of the response log-likelihood.
Derivatives are branched on the response outcome: a correct response
contributes log P, an incorrect one log(1 - P).

Models:
    1PL (Rasch):        P = sigmoid(theta - b)                      params [b]
    2PL (Birnbaum):     P = sigmoid(a * (theta - b))                params [b, a]
    3PL:                P = c + (1 - c) * sigmoid(a * (theta - b))  params [b, a, c]
    demo:               P = 0.5                                     params []

References:
    Baker, F. B. & Kim, S.-H. (2004). Item Response Theory: Parameter
    Estimation Techniques (2nd ed.). Marcel Dekker. Chapters 2-3 and 5.
"""

import logging
import math
from abc import ABC, abstractmethod
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np

from catquiz.core.config import settings
from catquiz.core.exceptions import ConfigurationError
from catquiz.models.types import ModelName

logger = logging.getLogger(__name__)


def sigmoid(x: float) -> float:
    """Logistic function, evaluated without overflow for large |x|."""
    if x >= 0:
        z = math.exp(-x)
        return 1.0 / (1.0 + z)
    z = math.exp(x)
    return z / (1.0 + z)


def log_sigmoid(x: float) -> float:
    """log(sigmoid(x)), stable for extreme logits."""
    if x >= 0:
        return -math.log1p(math.exp(-x))
    return x - math.log1p(math.exp(x))


def safe_log(x: float) -> float:
    """Natural log that maps non-positive input to -inf."""
    if x <= 0.0:
        return -math.inf
    return math.log(x)


class IRTModel(ABC):
    """
    Common contract of every response model.

    ``dimension`` counts the ability parameter, so a model with ``k`` free item
    parameters has dimension ``k + 1``. Item gradients and Hessians are taken
    with respect to the free item parameters only; ability derivatives with
    respect to theta only.
    """

    name: str = ""
    parameter_names: Tuple[str, ...] = ()
    supports_item_estimation: bool = True

    @property
    def dimension(self) -> int:
        return len(self.parameter_names) + 1

    def check_params(self, params: Sequence[float]) -> Tuple[float, ...]:
        """Return ``params`` as a tuple or raise on a length mismatch."""
        values = tuple(float(p) for p in params)
        if len(values) != self.dimension - 1:
            raise ConfigurationError(
                f"Model '{self.name}' expects {self.dimension - 1} item parameters",
                context={"model": self.name, "got": len(values)},
            )
        return values

    @abstractmethod
    def likelihood(self, ability: float, params: Sequence[float]) -> float:
        """Probability of a correct response."""

    def response_likelihood(
        self, ability: float, params: Sequence[float], correct: bool
    ) -> float:
        """Probability of the observed outcome."""
        p = self.likelihood(ability, params)
        return p if correct else 1.0 - p

    @abstractmethod
    def log_likelihood(
        self, ability: float, params: Sequence[float], correct: bool
    ) -> float:
        """Log-probability of the observed outcome."""

    @abstractmethod
    def ability_gradient(
        self, ability: float, params: Sequence[float], correct: bool
    ) -> float:
        """d log L / d theta."""

    @abstractmethod
    def ability_hessian(
        self, ability: float, params: Sequence[float], correct: bool
    ) -> float:
        """d^2 log L / d theta^2."""

    @abstractmethod
    def fisher_information(self, ability: float, params: Sequence[float]) -> float:
        """Item information at ``ability``."""

    def item_gradient(
        self, ability: float, params: Sequence[float], correct: bool
    ) -> np.ndarray:
        """Gradient of log L with respect to the free item parameters."""
        self._require_item_estimation()
        return np.array(self._item_gradient(ability, self.check_params(params), correct))

    def item_hessian(
        self, ability: float, params: Sequence[float], correct: bool
    ) -> np.ndarray:
        """
        Hessian of log L with respect to the free item parameters.

        Subclasses compute the upper triangle only; the lower triangle is
        mirrored from it.
        """
        self._require_item_estimation()
        upper = self._item_hessian_upper(ability, self.check_params(params), correct)
        size = self.dimension - 1
        matrix = np.zeros((size, size))
        for (i, j), value in upper.items():
            matrix[i, j] = value
            matrix[j, i] = value
        return matrix

    def _item_gradient(
        self, ability: float, params: Tuple[float, ...], correct: bool
    ) -> List[float]:
        raise NotImplementedError

    def _item_hessian_upper(
        self, ability: float, params: Tuple[float, ...], correct: bool
    ) -> Dict[Tuple[int, int], float]:
        raise NotImplementedError

    def _require_item_estimation(self) -> None:
        if not self.supports_item_estimation:
            raise ConfigurationError(
                f"Model '{self.name}' does not support item parameter estimation",
                context={"model": self.name},
            )

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"


class RaschModel(IRTModel):
    """One-parameter logistic model."""

    name = ModelName.RASCH_1PL.value
    parameter_names = ("difficulty",)

    def likelihood(self, ability, params):
        (b,) = self.check_params(params)
        return sigmoid(ability - b)

    def log_likelihood(self, ability, params, correct):
        (b,) = self.check_params(params)
        z = ability - b
        return log_sigmoid(z) if correct else log_sigmoid(-z)

    def ability_gradient(self, ability, params, correct):
        p = self.likelihood(ability, params)
        return 1.0 - p if correct else -p

    def ability_hessian(self, ability, params, correct):
        p = self.likelihood(ability, params)
        return -p * (1.0 - p)

    def fisher_information(self, ability, params):
        p = self.likelihood(ability, params)
        return p * (1.0 - p)

    def _item_gradient(self, ability, params, correct):
        p = self.likelihood(ability, params)
        return [-(1.0 - p) if correct else p]

    def _item_hessian_upper(self, ability, params, correct):
        p = self.likelihood(ability, params)
        return {(0, 0): -p * (1.0 - p)}


class BirnbaumModel(IRTModel):
    """Two-parameter logistic model; parameters are ordered (difficulty, discrimination)."""

    name = ModelName.BIRNBAUM_2PL.value
    parameter_names = ("difficulty", "discrimination")

    def likelihood(self, ability, params):
        b, a = self.check_params(params)
        return sigmoid(a * (ability - b))

    def log_likelihood(self, ability, params, correct):
        b, a = self.check_params(params)
        z = a * (ability - b)
        return log_sigmoid(z) if correct else log_sigmoid(-z)

    def ability_gradient(self, ability, params, correct):
        b, a = self.check_params(params)
        p = sigmoid(a * (ability - b))
        return a * (1.0 - p) if correct else -a * p

    def ability_hessian(self, ability, params, correct):
        b, a = self.check_params(params)
        p = sigmoid(a * (ability - b))
        return -(a**2) * p * (1.0 - p)

    def fisher_information(self, ability, params):
        b, a = self.check_params(params)
        p = sigmoid(a * (ability - b))
        return a**2 * p * (1.0 - p)

    def _item_gradient(self, ability, params, correct):
        b, a = params
        d = ability - b
        p = sigmoid(a * d)
        if correct:
            return [-a * (1.0 - p), d * (1.0 - p)]
        return [a * p, -d * p]

    def _item_hessian_upper(self, ability, params, correct):
        b, a = params
        d = ability - b
        p = sigmoid(a * d)
        w = p * (1.0 - p)
        # The outcome only shifts the mixed term by the gradient's constant part
        mixed = (-(1.0 - p) if correct else p) + a * d * w
        return {
            (0, 0): -(a**2) * w,
            (0, 1): mixed,
            (1, 1): -(d**2) * w,
        }


class ThreeParameterModel(IRTModel):
    """
    Three-parameter logistic model with a lower asymptote (guessing).

    The guessing parameter is not clamped here; keeping it inside [0, 1) is a
    caller policy. Outside that range log-likelihoods become -inf and the
    solver reports a numeric failure.
    """

    name = ModelName.BIRNBAUM_3PL.value
    parameter_names = ("difficulty", "discrimination", "guessing")

    def likelihood(self, ability, params):
        b, a, c = self.check_params(params)
        return c + (1.0 - c) * sigmoid(a * (ability - b))

    def log_likelihood(self, ability, params, correct):
        b, a, c = self.check_params(params)
        z = a * (ability - b)
        if correct:
            return safe_log(c + (1.0 - c) * sigmoid(z))
        return safe_log(1.0 - c) + log_sigmoid(-z)

    def ability_gradient(self, ability, params, correct):
        b, a, c = self.check_params(params)
        s = sigmoid(a * (ability - b))
        if not correct:
            return -a * s
        w = s * (1.0 - s)
        return (1.0 - c) * a * w / (c + (1.0 - c) * s)

    def ability_hessian(self, ability, params, correct):
        b, a, c = self.check_params(params)
        s = sigmoid(a * (ability - b))
        w = s * (1.0 - s)
        if not correct:
            return -(a**2) * w
        p = c + (1.0 - c) * s
        p_t = (1.0 - c) * a * w
        p_tt = (1.0 - c) * a**2 * w * (1.0 - 2.0 * s)
        return p_tt / p - (p_t / p) ** 2

    def fisher_information(self, ability, params):
        b, a, c = self.check_params(params)
        s = sigmoid(a * (ability - b))
        p = c + (1.0 - c) * s
        if p <= 0.0:
            return 0.0
        return a**2 * (1.0 - c) * s**2 * (1.0 - s) / p

    def _item_gradient(self, ability, params, correct):
        b, a, c = params
        d = ability - b
        s = sigmoid(a * d)
        if not correct:
            return [a * s, -d * s, -1.0 / (1.0 - c)]
        w = s * (1.0 - s)
        p = c + (1.0 - c) * s
        return [
            -(1.0 - c) * a * w / p,
            (1.0 - c) * d * w / p,
            (1.0 - s) / p,
        ]

    def _item_hessian_upper(self, ability, params, correct):
        b, a, c = params
        d = ability - b
        s = sigmoid(a * d)
        w = s * (1.0 - s)
        if not correct:
            return {
                (0, 0): -(a**2) * w,
                (0, 1): s + a * w * d,
                (0, 2): 0.0,
                (1, 1): -(d**2) * w,
                (1, 2): 0.0,
                (2, 2): -1.0 / (1.0 - c) ** 2,
            }

        p = c + (1.0 - c) * s
        curvature = w * (1.0 - 2.0 * s)
        first = [-(1.0 - c) * a * w, (1.0 - c) * d * w, 1.0 - s]
        second = {
            (0, 0): (1.0 - c) * a**2 * curvature,
            (0, 1): -(1.0 - c) * (w + a * d * curvature),
            (0, 2): a * w,
            (1, 1): (1.0 - c) * d**2 * curvature,
            (1, 2): -d * w,
            (2, 2): 0.0,
        }
        # d2 log P = P_xy / P - P_x * P_y / P^2
        return {
            (i, j): value / p - first[i] * first[j] / p**2
            for (i, j), value in second.items()
        }


class DemoModel(IRTModel):
    """Constant model for demonstrations: every answer is a coin flip."""

    name = ModelName.DEMO.value
    parameter_names = ()
    supports_item_estimation = False

    def likelihood(self, ability, params):
        self.check_params(params)
        return 0.5

    def log_likelihood(self, ability, params, correct):
        self.check_params(params)
        return math.log(0.5)

    def ability_gradient(self, ability, params, correct):
        return 0.0

    def ability_hessian(self, ability, params, correct):
        return 0.0

    def fisher_information(self, ability, params):
        return 1.0


_MODEL_CLASSES = {
    ModelName.RASCH_1PL.value: RaschModel,
    ModelName.BIRNBAUM_2PL.value: BirnbaumModel,
    ModelName.BIRNBAUM_3PL.value: ThreeParameterModel,
    ModelName.DEMO.value: DemoModel,
}


class ModelRegistry:
    """
    Installed models keyed by identifier.

    Built once from a list of identifiers; lookups never construct models.
    Iteration order follows the installation order, which also decides
    precedence when several models carry parameters for the same item.
    """

    def __init__(self, installed: Optional[Iterable[str]] = None):
        names = list(settings.CAT_INSTALLED_MODELS if installed is None else installed)
        self._models: Dict[str, IRTModel] = {}
        for name in names:
            model_class = _MODEL_CLASSES.get(name)
            if model_class is None:
                raise ConfigurationError(
                    f"Unknown model identifier '{name}'",
                    context={"known": sorted(_MODEL_CLASSES)},
                )
            self._models[name] = model_class()
        logger.debug(f"Model registry initialized with {list(self._models)}")

    def get(self, name: str) -> IRTModel:
        """
        Resolve a model by identifier.

        Raises:
            ConfigurationError: If the model is not installed.
        """
        model = self._models.get(name)
        if model is None:
            raise ConfigurationError(
                f"Model '{name}' is not installed",
                context={"installed": list(self._models)},
            )
        return model

    def names(self) -> List[str]:
        return list(self._models)

    def __contains__(self, name: object) -> bool:
        return name in self._models

    def __iter__(self):
        return iter(self._models.values())

    def __len__(self) -> int:
        return len(self._models)


default_registry = ModelRegistry()
