"""
brainlib package
~~~~~~~~~~~~~~~~

Feed-forward neural network library with manual backpropagation,
momentum training, live topology mutation and a text file format.
Contains the core network implementation, the training loop,
network persistence, and the API server.
"""

from brainlib.errors import (
    BrainError,
    ConstructionError,
    ShapeError,
    CorruptFileError,
    MissingFileError,
    ConfigurationError,
    MissingDataSourceError,
)
from brainlib.activations import (
    NeuronActivation,
    RawActivation,
    LogisticActivation,
    SechActivation,
    TanhActivation,
    LayerwiseActivation,
    get_activation,
    normalize_input,
)
from brainlib.config import TrainingConfig
from brainlib.network import Network
from brainlib.engine import ForwardState, GradientResult
from brainlib.training import Trainer, TrainingSession, SessionState

__version__ = "1.0.0"

__all__ = [
    'BrainError',
    'ConstructionError',
    'ShapeError',
    'CorruptFileError',
    'MissingFileError',
    'ConfigurationError',
    'MissingDataSourceError',
    'NeuronActivation',
    'RawActivation',
    'LogisticActivation',
    'SechActivation',
    'TanhActivation',
    'LayerwiseActivation',
    'get_activation',
    'normalize_input',
    'TrainingConfig',
    'Network',
    'ForwardState',
    'GradientResult',
    'Trainer',
    'TrainingSession',
    'SessionState',
]
