"""
Training statistics for the climbing trainer.

TrainingStats is an explicit value object: the orchestrator owns one per run,
updates it after each episode and returns it from train().
"""

from collections import deque
from dataclasses import dataclass, field
from typing import Dict, Optional

import numpy as np

from .config import SUCCESS_WINDOW


@dataclass
class RunningStats:
    """Track running statistics efficiently."""
    window_size: int = 100
    values: deque = field(default_factory=lambda: deque(maxlen=100))

    def __post_init__(self):
        self.values = deque(maxlen=self.window_size)

    def add(self, value: float):
        self.values.append(value)

    def clear(self):
        self.values.clear()

    def mean(self) -> float:
        if not self.values:
            return 0.0
        return float(np.mean(self.values))

    def std(self) -> float:
        if len(self.values) < 2:
            return 0.0
        return float(np.std(self.values))

    def max(self) -> float:
        if not self.values:
            return 0.0
        return float(np.max(self.values))

    def __len__(self):
        return len(self.values)


@dataclass
class TrainingStats:
    """Training statistics across all episodes."""
    episodes_completed: int = 0
    episodes_failed: int = 0
    episodes_interrupted: int = 0
    successes: int = 0
    total_steps: int = 0
    best_reward: float = float('-inf')
    best_support: int = -1
    curriculum_level: int = 0
    diverged: bool = False
    window_size: int = 100

    rewards: RunningStats = field(default_factory=RunningStats)
    lengths: RunningStats = field(default_factory=RunningStats)
    losses: RunningStats = field(default_factory=RunningStats)
    # Success flags at the current curriculum level only
    recent_successes: RunningStats = field(default_factory=lambda: RunningStats(SUCCESS_WINDOW))

    def __post_init__(self):
        self.rewards = RunningStats(self.window_size)
        self.lengths = RunningStats(self.window_size)
        self.losses = RunningStats(self.window_size)

    def record_episode(self, reward: float, steps: int, highest_support: int,
                       success: bool, loss: Optional[float] = None):
        """Fold a completed episode into the statistics."""
        self.episodes_completed += 1
        self.total_steps += steps
        self.rewards.add(reward)
        self.lengths.add(steps)
        self.recent_successes.add(1.0 if success else 0.0)
        if success:
            self.successes += 1
        if reward > self.best_reward:
            self.best_reward = reward
        if highest_support > self.best_support:
            self.best_support = highest_support
        if loss is not None and np.isfinite(loss):
            self.losses.add(loss)

    def success_rate(self) -> float:
        """Success rate over the rolling window at the current curriculum level."""
        return self.recent_successes.mean()

    def window_full(self) -> bool:
        return len(self.recent_successes) >= self.recent_successes.window_size

    def reset_success_window(self):
        self.recent_successes.clear()

    def average_reward(self) -> float:
        return self.rewards.mean()

    def to_metadata(self) -> Dict:
        """JSON-safe summary for checkpoint metadata."""
        return {
            'episodes_completed': self.episodes_completed,
            'episodes_failed': self.episodes_failed,
            'episodes_interrupted': self.episodes_interrupted,
            'successes': self.successes,
            'total_steps': self.total_steps,
            'best_reward': self.best_reward if np.isfinite(self.best_reward) else None,
            'best_support': self.best_support,
            'curriculum_level': self.curriculum_level,
            'success_rate': self.success_rate(),
            'reward_mean': self.rewards.mean(),
            'reward_std': self.rewards.std(),
            'episode_length': self.lengths.mean(),
            'loss_mean': self.losses.mean(),
            'diverged': self.diverged,
        }

    def restore(self, metadata: Dict):
        """Restore counters from checkpoint metadata (rolling windows start empty)."""
        self.episodes_completed = metadata.get('episodes_completed', 0)
        self.episodes_failed = metadata.get('episodes_failed', 0)
        self.episodes_interrupted = metadata.get('episodes_interrupted', 0)
        self.successes = metadata.get('successes', 0)
        self.total_steps = metadata.get('total_steps', 0)
        best_reward = metadata.get('best_reward')
        self.best_reward = float('-inf') if best_reward is None else best_reward
        self.best_support = metadata.get('best_support', -1)
        self.curriculum_level = metadata.get('curriculum_level', 0)
