"""
Agent interface used by the training orchestrator.

Both learning algorithms implement this so the orchestrator can drive either
one through the same act/observe/end_episode cycle.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict

import numpy as np
import torch


class Agent(ABC):
    """
    Base class for climbing agents.

    Subclasses must implement:
    - act(): choose an action for the current observation
    - observe(): receive the outcome of the last action
    - end_episode(): per-episode training / schedule update
    - state_dict() / load_state_dict(): parameters for persistence
    """

    name: str = 'agent'

    @abstractmethod
    def act(self, observation: np.ndarray, explore: bool = True) -> int:
        pass

    @abstractmethod
    def observe(self, observation: np.ndarray, action: int, reward: float,
                next_observation: np.ndarray, done: bool) -> Dict[str, float]:
        """Record a transition. Returns training stats if an update ran, else {}."""
        pass

    @abstractmethod
    def end_episode(self) -> Dict[str, float]:
        """Called once after the terminal transition of every episode."""
        pass

    def abort_episode(self):
        """Drop any per-episode state after a failed episode."""

    @abstractmethod
    def state_dict(self) -> Dict[str, Any]:
        pass

    @abstractmethod
    def load_state_dict(self, state: Dict[str, Any]):
        pass

    def get_hyperparameters(self) -> Dict[str, Any]:
        return {}

    def save(self, path: str):
        """Save agent state."""
        torch.save(self.state_dict(), path)

    def load(self, path: str):
        """Load agent state."""
        state = torch.load(path, map_location='cpu', weights_only=False)
        self.load_state_dict(state)
