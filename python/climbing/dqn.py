"""
Deep Q-Network (DQN) agent for the climbing environment.

Epsilon-greedy exploration, uniform experience replay and a target network
synced by parameter copy. Every update clips the global gradient norm before
the optimizer step; a reward outlier would otherwise push the weights to
non-finite values that poison every later forward pass.
"""

import logging
from collections import deque
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, NamedTuple, Optional

import numpy as np
import torch
import torch.nn as nn

from .agent import Agent
from .config import (
    ACTION_DIM, BATCH_SIZE, DQN_LEARNING_RATE, DQN_MAX_GRAD_NORM, EPSILON_DECAY,
    EPSILON_MIN, EPSILON_START, GAMMA, HIDDEN_DIM, OBSERVATION_DIM,
    REPLAY_CAPACITY, TARGET_CLIP, TARGET_UPDATE_INTERVAL,
)
from .model import (
    DivergenceError, QNetwork, limit_update, make_optimizer, observation_to_tensor,
    parameters_finite, set_learning_rate, snapshot_parameters,
)

logger = logging.getLogger(__name__)


@dataclass
class DQNConfig:
    """DQN hyperparameters."""
    lr: float = DQN_LEARNING_RATE
    gamma: float = GAMMA

    # Exploration (decayed once per episode)
    epsilon_start: float = EPSILON_START
    epsilon_min: float = EPSILON_MIN
    epsilon_decay: float = EPSILON_DECAY

    # Replay
    replay_capacity: int = REPLAY_CAPACITY
    batch_size: int = BATCH_SIZE
    train_every: int = 1             # Observations between updates

    # Stability
    target_update_interval: int = TARGET_UPDATE_INTERVAL
    target_clip: float = TARGET_CLIP
    max_grad_norm: float = DQN_MAX_GRAD_NORM

    # Network
    hidden_dim: int = HIDDEN_DIM
    optimizer: str = 'adam'
    seed: Optional[int] = None


class Transition(NamedTuple):
    state: np.ndarray
    action: int
    reward: float
    next_state: np.ndarray
    done: bool


class ReplayBuffer:
    """
    Fixed-capacity FIFO of transitions, sampled uniformly.

    Once full, each new transition evicts the oldest one.
    """

    def __init__(self, capacity: int, seed: Optional[int] = None):
        if capacity < 1:
            raise ValueError("Replay capacity must be at least 1")
        self.capacity = capacity
        self.buffer = deque(maxlen=capacity)
        self.rng = np.random.default_rng(seed)

    def add(self, state: np.ndarray, action: int, reward: float,
            next_state: np.ndarray, done: bool):
        self.buffer.append(Transition(
            np.array(state, dtype=np.float32),
            int(action),
            float(reward),
            np.array(next_state, dtype=np.float32),
            bool(done),
        ))

    def sample(self, batch_size: int) -> List[Transition]:
        indices = self.rng.choice(len(self.buffer), size=batch_size,
                                  replace=len(self.buffer) < batch_size)
        return [self.buffer[i] for i in indices]

    def clear(self):
        self.buffer.clear()

    def __len__(self):
        return len(self.buffer)

    def __iter__(self):
        return iter(self.buffer)


class DQNAgent(Agent):
    """
    DQN agent for training and inference.
    """

    name = 'dqn'

    def __init__(self, config: Optional[DQNConfig] = None,
                 state_dim: int = OBSERVATION_DIM, action_dim: int = ACTION_DIM,
                 device: str = 'cpu'):
        self.config = config or DQNConfig()
        self.device = torch.device(device)
        self.state_dim = state_dim
        self.action_dim = action_dim

        if self.config.seed is not None:
            torch.manual_seed(self.config.seed)
        self.rng = np.random.default_rng(self.config.seed)

        self.q_network = QNetwork(state_dim, action_dim, self.config.hidden_dim).to(self.device)
        self.target_network = QNetwork(state_dim, action_dim, self.config.hidden_dim).to(self.device)
        self.update_target_network()
        self.target_network.eval()

        self.optimizer = make_optimizer(self.config.optimizer, self.q_network.parameters(),
                                        self.config.lr)
        self.replay_buffer = ReplayBuffer(self.config.replay_capacity, seed=self.config.seed)

        self.epsilon = self.config.epsilon_start
        self.total_steps = 0
        self.train_steps = 0
        self.episodes = 0

    # ------------------------------------------------------------------
    # Acting
    # ------------------------------------------------------------------

    def q_values(self, state: np.ndarray) -> np.ndarray:
        with torch.no_grad():
            q = self.q_network(observation_to_tensor(state, self.device).unsqueeze(0))
        return q.squeeze(0).cpu().numpy()

    def select_action(self, state: np.ndarray, explore: bool = True) -> int:
        """Epsilon-greedy action selection."""
        if explore and self.rng.random() < self.epsilon:
            return int(self.rng.integers(self.action_dim))
        return int(np.argmax(self.q_values(state)))

    def act(self, observation: np.ndarray, explore: bool = True) -> int:
        return self.select_action(observation, explore)

    # ------------------------------------------------------------------
    # Learning
    # ------------------------------------------------------------------

    def observe(self, state: np.ndarray, action: int, reward: float,
                next_state: np.ndarray, done: bool) -> Dict[str, float]:
        """Store a transition and train when enough data is available."""
        self.replay_buffer.add(state, action, reward, next_state, done)
        self.total_steps += 1
        if (len(self.replay_buffer) >= self.config.batch_size and
                self.total_steps % self.config.train_every == 0):
            return self.train()
        return {}

    def train(self, batch_size: Optional[int] = None) -> Dict[str, float]:
        """
        One gradient step on a uniformly sampled batch.

        Samples with a non-finite state, reward or target are skipped.

        Returns:
            Training statistics, or {} if the buffer holds less than a batch
        """
        batch_size = batch_size or self.config.batch_size
        if len(self.replay_buffer) < batch_size:
            return {}

        batch = self.replay_buffer.sample(batch_size)
        states = np.array([t.state for t in batch], dtype=np.float32)
        actions = np.array([t.action for t in batch], dtype=np.int64)
        rewards = np.array([t.reward for t in batch], dtype=np.float32)
        next_states = np.array([t.next_state for t in batch], dtype=np.float32)
        dones = np.array([t.done for t in batch], dtype=bool)

        # Non-finite rows must never reach the live network: a NaN input row
        # poisons the weight gradient even when its loss term is masked out.
        finite = (np.isfinite(rewards) &
                  np.isfinite(states).all(axis=1) &
                  np.isfinite(next_states).all(axis=1))

        stats = {'skipped': int(batch_size - finite.sum()), 'epsilon': self.epsilon}
        if not finite.any():
            logger.warning(f"Skipping DQN update: all {batch_size} samples non-finite")
            return stats

        states_t = observation_to_tensor(states[finite], self.device)
        actions_t = torch.as_tensor(actions[finite], device=self.device)
        rewards_t = torch.as_tensor(rewards[finite], device=self.device)
        next_states_t = observation_to_tensor(next_states[finite], self.device)
        dones_t = torch.as_tensor(dones[finite], device=self.device)

        with torch.no_grad():
            next_q = self.target_network(next_states_t).max(dim=1).values
            targets = torch.where(dones_t, rewards_t, rewards_t + self.config.gamma * next_q)
            valid = torch.isfinite(targets)
            targets = targets.clamp(-self.config.target_clip, self.config.target_clip)

        stats['skipped'] += int((~valid).sum().item())
        if not valid.any():
            logger.warning("Skipping DQN update: all targets non-finite")
            return stats

        q = self.q_network(states_t[valid]).gather(1, actions_t[valid].unsqueeze(1)).squeeze(1)
        loss = nn.functional.mse_loss(q, targets[valid])

        params = list(self.q_network.parameters())
        reference = snapshot_parameters(params)

        self.optimizer.zero_grad()
        loss.backward()
        grad_norm = nn.utils.clip_grad_norm_(params, self.config.max_grad_norm)
        self.optimizer.step()
        update_norm = limit_update(params, reference, self._max_update_norm())

        if not parameters_finite(self.q_network.parameters()):
            raise DivergenceError(f"Q-network parameters non-finite after update {self.train_steps + 1}")

        self.train_steps += 1
        if self.train_steps % self.config.target_update_interval == 0:
            self.update_target_network()

        stats['loss'] = loss.item()
        stats['grad_norm'] = float(grad_norm)
        stats['raw_update_norm'] = update_norm
        return stats

    def _max_update_norm(self) -> float:
        return self.optimizer.param_groups[0]['lr'] * self.config.max_grad_norm

    def update_target_network(self):
        """Copy live parameters into the target network."""
        self.target_network.load_state_dict(self.q_network.state_dict())

    def end_episode(self) -> Dict[str, float]:
        self.episodes += 1
        self.decay_epsilon()
        return {'epsilon': self.epsilon}

    # ------------------------------------------------------------------
    # Hyperparameters
    # ------------------------------------------------------------------

    def decay_epsilon(self):
        self.epsilon = max(self.config.epsilon_min, self.epsilon * self.config.epsilon_decay)

    def set_epsilon(self, epsilon: float):
        self.epsilon = float(np.clip(epsilon, 0.0, 1.0))

    def set_learning_rate(self, lr: float):
        self.config.lr = lr
        set_learning_rate(self.optimizer, lr)

    def get_hyperparameters(self) -> Dict[str, Any]:
        return {
            'algorithm': self.name,
            'lr': self.config.lr,
            'gamma': self.config.gamma,
            'epsilon': self.epsilon,
            'epsilon_min': self.config.epsilon_min,
            'epsilon_decay': self.config.epsilon_decay,
            'batch_size': self.config.batch_size,
            'replay_size': len(self.replay_buffer),
            'train_steps': self.train_steps,
        }

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def state_dict(self) -> Dict[str, Any]:
        return {
            'algorithm': self.name,
            'q_network': self.q_network.state_dict(),
            'target_network': self.target_network.state_dict(),
            'optimizer': self.optimizer.state_dict(),
            'config': asdict(self.config),
            'epsilon': self.epsilon,
            'total_steps': self.total_steps,
            'train_steps': self.train_steps,
            'episodes': self.episodes,
        }

    def load_state_dict(self, state: Dict[str, Any]):
        if state.get('algorithm', self.name) != self.name:
            raise ValueError(f"Cannot load '{state.get('algorithm')}' parameters into a DQN agent")
        self.q_network.load_state_dict(state['q_network'])
        self.target_network.load_state_dict(state.get('target_network', state['q_network']))
        if 'optimizer' in state:
            self.optimizer.load_state_dict(state['optimizer'])
        self.epsilon = state.get('epsilon', self.epsilon)
        self.total_steps = state.get('total_steps', 0)
        self.train_steps = state.get('train_steps', 0)
        self.episodes = state.get('episodes', 0)
