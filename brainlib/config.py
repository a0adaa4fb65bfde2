"""
config.py
~~~~~~~~~

Training configuration.

Values come from keyword arguments, a JSON-style dict (API requests) or
environment variables:

    BRAIN_ACTIVATION    activation name (default: logistic)
    BRAIN_MOMENTUM      momentum, >= 0 (default: 0.1)
    BRAIN_ACCURACY      learning-rate divisor, > 0 (default: 10.0)
    BRAIN_BLOCK_SIZE    examples per block, >= 1 (default: 5)
    BRAIN_ERROR_MEMORY  blocks in the mean squared error window, >= 0 (default: 10)
"""

import logging
import os
from dataclasses import asdict, dataclass, fields
from typing import Any, Dict, Optional

from brainlib.activations import ACTIVATIONS
from brainlib.errors import ConfigurationError

logger = logging.getLogger(__name__)

ENV_PREFIX = 'BRAIN_'


def _whole_number(value: Any) -> int:
    if isinstance(value, float) and not value.is_integer():
        raise ValueError(f"{value!r} is not a whole number")
    return int(value)


@dataclass
class TrainingConfig:
    """
    Hyperparameters of a training run.

    Attributes:
        activation: Activation applied by the network during training
        momentum: Share of the previous step carried into the next one
        accuracy: Divisor of the averaged gradient
        example_block_size: Examples averaged per parameter update
        error_memory: Number of block losses kept for mean_squared_error
    """
    activation: str = 'logistic'
    momentum: float = 0.1
    accuracy: float = 10.0
    example_block_size: int = 5
    error_memory: int = 10

    def __post_init__(self):
        if self.activation not in ACTIVATIONS:
            raise ConfigurationError(
                f"Unknown activation {self.activation!r}, expected one of "
                f"{sorted(ACTIVATIONS)}"
            )
        if not self.momentum >= 0:
            raise ConfigurationError(
                f"momentum cannot be lower than zero, got {self.momentum}"
            )
        if not self.accuracy > 0:
            raise ConfigurationError(
                f"accuracy must be greater than zero, got {self.accuracy}"
            )
        if self.example_block_size < 1:
            raise ConfigurationError(
                f"example_block_size must be at least 1, "
                f"got {self.example_block_size}"
            )
        if self.error_memory < 0:
            raise ConfigurationError(
                f"error_memory cannot be negative, got {self.error_memory}"
            )

    @classmethod
    def from_env(cls, environ: Optional[Dict[str, str]] = None) -> 'TrainingConfig':
        """
        Build a configuration from BRAIN_* environment variables.

        Unset variables keep their defaults.

        Raises:
            ConfigurationError: If a variable cannot be parsed or is out of range
        """
        environ = os.environ if environ is None else environ
        names = {
            'activation': 'ACTIVATION',
            'momentum': 'MOMENTUM',
            'accuracy': 'ACCURACY',
            'example_block_size': 'BLOCK_SIZE',
            'error_memory': 'ERROR_MEMORY',
        }
        values = {}
        for field_name, suffix in names.items():
            raw = environ.get(ENV_PREFIX + suffix)
            if raw is not None and raw.strip() != '':
                values[field_name] = raw.strip()
        config = cls.from_dict(values)
        if values:
            logger.info(f"Training configuration from environment: {config}")
        return config

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'TrainingConfig':
        """
        Build a configuration from a dict, e.g. a request body.

        Unknown keys are ignored. Values are converted to the field types.

        Raises:
            ConfigurationError: If a value has the wrong type or range
        """
        data = data or {}
        converters = {
            'activation': lambda v: str(v).strip().lower(),
            'momentum': float,
            'accuracy': float,
            'example_block_size': _whole_number,
            'error_memory': _whole_number,
        }
        kwargs = {}
        for field in fields(cls):
            if field.name not in data or data[field.name] is None:
                continue
            try:
                kwargs[field.name] = converters[field.name](data[field.name])
            except (TypeError, ValueError):
                raise ConfigurationError(
                    f"Invalid value for {field.name}: {data[field.name]!r}"
                ) from None
        return cls(**kwargs)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
