"""
training.py
~~~~~~~~~~~

Block-wise training loop and a pausable training session.

A Trainer learns in blocks: it backpropagates every example of a block,
averages the gradients and hands the average to the momentum optimizer,
so parameters change exactly once per block. Examples come either from
an explicit list or from a `data_extractor(trainer)` callable that
returns one (input, target) pair per call.

A TrainingSession wraps a Trainer in a small state machine so that other
threads (or greenlets, for the API server) can pause, resume, stop and
snapshot a run between blocks:

    IDLE -> TRAINING <-> PAUSED -> STOPPED

Example:
    >>> trainer = Trainer(net, TrainingConfig(example_block_size=4))
    >>> trainer.learn_dataset(inputs, targets, blocks=200)
    >>> trainer.mean_squared_error
    0.0031...
"""

import itertools
import logging
import math
import threading
from collections import deque
from enum import Enum
from typing import Callable, Iterable, Optional, Sequence, Tuple

import numpy as np

from brainlib.config import TrainingConfig
from brainlib.errors import ConfigurationError, MissingDataSourceError, ShapeError
from brainlib.optimizer import MomentumOptimizer
from brainlib.parameters import ParameterStore

logger = logging.getLogger(__name__)

Example = Tuple[Sequence[float], Sequence[float]]
Condition = Callable[[int, int, float], bool]


def dataset_extractor(inputs: Sequence, targets: Sequence) -> Callable:
    """
    Build a data extractor that cycles through a fixed dataset.

    Args:
        inputs: Input vectors
        targets: Target vectors, one per input

    Returns:
        Callable taking the trainer and returning the next (input, target)

    Raises:
        ShapeError: If the lists differ in length or are empty
    """
    if len(inputs) != len(targets):
        raise ShapeError(
            f"Got {len(inputs)} inputs but {len(targets)} targets"
        )
    if len(inputs) == 0:
        raise ShapeError("Dataset is empty")
    examples = itertools.cycle(list(zip(inputs, targets)))

    def extract(trainer):
        return next(examples)

    return extract


# ============================================================================
# TRAINER
# ============================================================================

class Trainer:
    """
    Trains a network with averaged-gradient momentum descent.

    Args:
        network: Network to train. Its activation is left unchanged
        config: TrainingConfig; defaults are used if None
        data_extractor: Optional callable `f(trainer) -> (input, target)`
            used by learn_blocks and learn_blocks_while
        block_done: Optional callable `f(trainer)` run after every block
    """

    def __init__(
        self,
        network,
        config: Optional[TrainingConfig] = None,
        data_extractor: Optional[Callable] = None,
        block_done: Optional[Callable] = None
    ):
        self.network = network
        self.config = config or TrainingConfig()
        self.data_extractor = data_extractor
        self.block_done = block_done

        self.optimizer = MomentumOptimizer(
            network, accuracy=self.config.accuracy, momentum=self.config.momentum
        )
        self.accumulator = ParameterStore.zeros(network.layer_counts)
        network.register_companion(self.accumulator)

        self._errors = deque(maxlen=max(self.config.error_memory, 1))
        self.blocks_done = 0
        self.examples_done = 0
        self.total_blocks_done = 0
        self.total_examples_done = 0

    @property
    def mean_squared_error(self) -> float:
        """Mean loss of the remembered blocks, inf before the first block."""
        if not self._errors:
            return math.inf
        return float(np.mean(self._errors))

    def learn_block(self, examples: Iterable[Example]) -> float:
        """
        Learn one block of examples with a single parameter update.

        Args:
            examples: (input, target) pairs

        Returns:
            Mean sum of squared errors of the block, measured before the update

        Raises:
            ConfigurationError: If the block is empty
            ShapeError: If an input or target has the wrong length; the
                parameters are not modified in that case
        """
        examples = list(examples)
        if not examples:
            raise ConfigurationError("A block needs at least one example")

        self.accumulator.fill(0.0)
        total_loss = 0.0
        for input_vector, target_vector in examples:
            result = self.network.compute_gradients(input_vector, target_vector)
            for acc, grad in zip(self.accumulator.weights, result.weight_grads):
                acc.values += grad
            for acc, grad in zip(self.accumulator.biases, result.bias_grads):
                acc.values += grad
            total_loss += result.loss

        count = len(examples)
        self.optimizer.step(
            [w / count for w in self.accumulator.weight_arrays()],
            [b / count for b in self.accumulator.bias_arrays()]
        )

        block_loss = total_loss / count
        self._errors.append(block_loss)
        self.blocks_done += 1
        self.examples_done += count
        self.total_blocks_done += 1
        self.total_examples_done += count
        logger.debug(
            f"Block {self.blocks_done}: loss={block_loss:.6g}, "
            f"mse={self.mean_squared_error:.6g}"
        )
        if self.block_done is not None:
            self.block_done(self)
        return block_loss

    def _next_block(self):
        if self.data_extractor is None:
            raise MissingDataSourceError(
                "No data extractor bound to the trainer"
            )
        return [
            self.data_extractor(self)
            for _ in range(self.config.example_block_size)
        ]

    def learn_blocks(self, count: int) -> float:
        """
        Learn `count` blocks pulled from the data extractor.

        Returns:
            mean_squared_error after the last block

        Raises:
            MissingDataSourceError: If no data extractor is bound
        """
        if self.data_extractor is None:
            raise MissingDataSourceError(
                "No data extractor bound to the trainer"
            )
        for _ in range(count):
            self.learn_block(self._next_block())
        return self.mean_squared_error

    def learn_blocks_while(self, condition: Condition) -> int:
        """
        Learn blocks while `condition(blocks_done, examples_done, mse)` holds.

        Returns:
            Number of blocks learned by this call

        Raises:
            MissingDataSourceError: If no data extractor is bound
        """
        learned = 0
        while condition(self.blocks_done, self.examples_done,
                        self.mean_squared_error):
            self.learn_block(self._next_block())
            learned += 1
        return learned

    def learn_dataset(self, inputs: Sequence, targets: Sequence,
                      blocks: Optional[int] = None) -> float:
        """
        Cycle through a fixed dataset in blocks of example_block_size.

        Args:
            inputs: Input vectors
            targets: Target vectors, one per input
            blocks: Blocks to learn; by default just enough to see every
                example once

        Returns:
            mean_squared_error after the last block

        Raises:
            ShapeError: If the lists differ in length or are empty
        """
        extract = dataset_extractor(inputs, targets)
        size = self.config.example_block_size
        if blocks is None:
            blocks = math.ceil(len(inputs) / size)
        for _ in range(blocks):
            self.learn_block([extract(self) for _ in range(size)])
        return self.mean_squared_error

    def reset_session(self) -> None:
        """Clear the per-session counters and the error memory."""
        self.blocks_done = 0
        self.examples_done = 0
        self._errors.clear()

    def detach(self) -> None:
        """Stop following topology edits of the network."""
        self.network.unregister_companion(self.accumulator)
        self.optimizer.detach()


# ============================================================================
# SESSION
# ============================================================================

class SessionState(Enum):
    IDLE = 'idle'
    TRAINING = 'training'
    PAUSED = 'paused'
    STOPPED = 'stopped'


class TrainingSession:
    """
    Pausable, stoppable run of a Trainer.

    All transitions and every learned block happen under one
    threading.Condition, so pause(), stop() and snapshot() called from
    another thread always take effect between two blocks.

    Args:
        trainer: Trainer driven by this session
    """

    def __init__(self, trainer: Trainer):
        self.trainer = trainer
        self.blocks_run = 0
        self.error: Optional[str] = None
        self._state = SessionState.IDLE
        self._condition = threading.Condition()

    @property
    def state(self) -> SessionState:
        with self._condition:
            return self._state

    def _transition(self, allowed, target: SessionState) -> None:
        with self._condition:
            if self._state not in allowed:
                raise ConfigurationError(
                    f"Cannot go from {self._state.value} to {target.value}"
                )
            logger.info(
                f"Training session {self._state.value} -> {target.value}"
            )
            self._state = target
            self._condition.notify_all()

    def start(self) -> None:
        self._transition((SessionState.IDLE,), SessionState.TRAINING)

    def pause(self) -> None:
        self._transition((SessionState.TRAINING,), SessionState.PAUSED)

    def resume(self) -> None:
        self._transition((SessionState.PAUSED,), SessionState.TRAINING)

    def stop(self) -> None:
        """Stop the session. Stopping a stopped session does nothing."""
        with self._condition:
            if self._state is SessionState.STOPPED:
                return
            self._transition(
                (SessionState.IDLE, SessionState.TRAINING, SessionState.PAUSED),
                SessionState.STOPPED
            )

    def _budget_reached(self, max_blocks: Optional[int],
                        until: Optional[Condition]) -> bool:
        if max_blocks is not None and self.blocks_run >= max_blocks:
            return True
        if until is not None:
            t = self.trainer
            return bool(until(t.blocks_done, t.examples_done,
                              t.mean_squared_error))
        return False

    def _learn_one(self) -> None:
        try:
            self.trainer.learn_blocks(1)
        except Exception as e:
            self.error = str(e)
            self._state = SessionState.STOPPED
            self._condition.notify_all()
            logger.error(f"Training session failed: {e}")
            raise
        self.blocks_run += 1

    def advance(self, max_blocks: Optional[int] = None,
                until: Optional[Condition] = None) -> bool:
        """
        Learn at most one block without ever waiting.

        For cooperative drivers that yield between blocks themselves.

        Args:
            max_blocks: Total blocks this session may learn
            until: `until(blocks_done, examples_done, mse)` ends the run
                when it returns True

        Returns:
            True if a block was learned. False if the session is paused,
            stopped, or has just finished (it is then STOPPED)

        Raises:
            ConfigurationError: If the session was never started
        """
        with self._condition:
            if self._state is SessionState.IDLE:
                raise ConfigurationError("Training session was not started")
            if self._state is not SessionState.TRAINING:
                return False
            if self._budget_reached(max_blocks, until):
                self._state = SessionState.STOPPED
                self._condition.notify_all()
                logger.info(
                    f"Training session finished after {self.blocks_run} blocks"
                )
                return False
            self._learn_one()
            return True

    def run(self, max_blocks: Optional[int] = None,
            until: Optional[Condition] = None) -> int:
        """
        Learn blocks until the budget is used up or the session is stopped.

        Starts an IDLE session. Blocks while the session is paused.

        Args:
            max_blocks: Total blocks this session may learn
            until: `until(blocks_done, examples_done, mse)` ends the run
                when it returns True

        Returns:
            Number of blocks learned by the session
        """
        with self._condition:
            if self._state is SessionState.IDLE:
                self.start()
        while True:
            with self._condition:
                while self._state is SessionState.PAUSED:
                    self._condition.wait()
                if self._state is SessionState.STOPPED:
                    break
                if self._budget_reached(max_blocks, until):
                    self._state = SessionState.STOPPED
                    self._condition.notify_all()
                    logger.info(
                        f"Training session finished after "
                        f"{self.blocks_run} blocks"
                    )
                    break
                self._learn_one()
        return self.blocks_run

    def snapshot(self):
        """Copy of the network taken between two blocks."""
        with self._condition:
            return self.trainer.network.clone_core()

    def status(self) -> dict:
        """JSON-friendly progress report."""
        with self._condition:
            t = self.trainer
            mse = t.mean_squared_error
            return {
                'state': self._state.value,
                'blocks_run': self.blocks_run,
                'blocks_done': t.blocks_done,
                'examples_done': t.examples_done,
                'total_blocks_done': t.total_blocks_done,
                'total_examples_done': t.total_examples_done,
                'mean_squared_error': mse if math.isfinite(mse) else None,
                'error': self.error,
            }
