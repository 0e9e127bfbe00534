"""
Proximal Policy Optimization (PPO) for the climbing environment

Implements PPO-Clip with separate actor and critic networks, trained once per
episode on that episode's trajectory.
Reference: https://arxiv.org/abs/1707.06347
"""

import logging
from dataclasses import asdict, dataclass
from typing import Any, Dict, NamedTuple, Optional, Tuple

import numpy as np
import torch
import torch.nn as nn

from .agent import Agent
from .config import (
    ACTION_DIM, CLIP_EPSILON, ENTROPY_COEF, GAE_LAMBDA, GAMMA, HIDDEN_DIM,
    OBSERVATION_DIM, PPO_EPOCHS, PPO_LEARNING_RATE, PPO_MAX_GRAD_NORM,
)
from .model import (
    ActorNetwork, CriticNetwork, DivergenceError, limit_update, make_optimizer,
    observation_to_tensor, parameters_finite, set_learning_rate, snapshot_parameters,
)

logger = logging.getLogger(__name__)


@dataclass
class PPOConfig:
    """PPO hyperparameters."""
    # Learning rates
    lr: float = PPO_LEARNING_RATE
    critic_lr: Optional[float] = None    # Defaults to lr

    # PPO specific
    clip_epsilon: float = CLIP_EPSILON
    entropy_coef: float = ENTROPY_COEF
    max_grad_norm: float = PPO_MAX_GRAD_NORM

    # GAE (Generalized Advantage Estimation)
    gamma: float = GAMMA              # Discount factor
    gae_lambda: float = GAE_LAMBDA    # GAE lambda

    # Training
    num_epochs: int = PPO_EPOCHS      # Full-batch epochs per episode

    # Normalization
    normalize_advantages: bool = True

    # Network
    hidden_dim: int = HIDDEN_DIM
    optimizer: str = 'adam'
    seed: Optional[int] = None


class ActionSample(NamedTuple):
    """Action plus the log-prob and value recorded when it was chosen."""
    action: int
    log_prob: float
    value: float


class Trajectory:
    """
    Transitions of the current episode for the PPO update.
    """

    def __init__(self):
        self.states = []
        self.actions = []
        self.rewards = []
        self.values = []
        self.log_probs = []
        self.dones = []

    def add(self, state: np.ndarray, action: int, reward: float,
            value: float, log_prob: float, done: bool):
        """Add a transition to the trajectory."""
        self.states.append(np.array(state, dtype=np.float32))
        self.actions.append(int(action))
        self.rewards.append(float(reward))
        self.values.append(float(value))
        self.log_probs.append(float(log_prob))
        self.dones.append(bool(done))

    def compute_returns_and_advantages(self, last_value: float, gamma: float,
                                       gae_lambda: float) -> Tuple[np.ndarray, np.ndarray]:
        """
        Compute advantages and discounted returns using GAE.

        Walks the trajectory backward; last_value bootstraps a truncated
        episode and is ignored after a terminal transition.
        """
        n = len(self.rewards)
        advantages = np.zeros(n, dtype=np.float64)
        values = np.array(self.values, dtype=np.float64)

        last_gae = 0.0
        for t in reversed(range(n)):
            next_value = last_value if t == n - 1 else values[t + 1]
            next_non_terminal = 1.0 - float(self.dones[t])
            delta = self.rewards[t] + gamma * next_value * next_non_terminal - values[t]
            last_gae = delta + gamma * gae_lambda * next_non_terminal * last_gae
            advantages[t] = last_gae

        returns = advantages + values
        return advantages, returns

    def is_finite(self) -> bool:
        return (np.all(np.isfinite(self.rewards)) and
                np.all(np.isfinite(self.values)) and
                np.all(np.isfinite(self.log_probs)) and
                all(np.all(np.isfinite(s)) for s in self.states))

    def clear(self):
        """Clear the trajectory."""
        self.states = []
        self.actions = []
        self.rewards = []
        self.values = []
        self.log_probs = []
        self.dones = []

    def __len__(self):
        return len(self.states)


class PPOAgent(Agent):
    """
    PPO agent for training and inference.
    """

    name = 'ppo'

    def __init__(self, config: Optional[PPOConfig] = None,
                 state_dim: int = OBSERVATION_DIM, action_dim: int = ACTION_DIM,
                 device: str = 'cpu'):
        self.config = config or PPOConfig()
        self.device = torch.device(device)
        self.state_dim = state_dim
        self.action_dim = action_dim

        if self.config.seed is not None:
            torch.manual_seed(self.config.seed)

        self.actor = ActorNetwork(state_dim, action_dim, self.config.hidden_dim).to(self.device)
        self.critic = CriticNetwork(state_dim, self.config.hidden_dim).to(self.device)

        self.actor_optimizer = make_optimizer(self.config.optimizer, self.actor.parameters(),
                                              self.config.lr)
        self.critic_optimizer = make_optimizer(self.config.optimizer, self.critic.parameters(),
                                               self.config.critic_lr or self.config.lr)

        self.trajectory = Trajectory()

        # Sample recorded by act(), consumed by observe()
        self._pending: Optional[ActionSample] = None

        self.total_steps = 0
        self.total_episodes = 0
        self.update_count = 0

    # ------------------------------------------------------------------
    # Acting
    # ------------------------------------------------------------------

    def select_action(self, state: np.ndarray, deterministic: bool = False) -> ActionSample:
        """
        Select action given state.

        The log-prob and value are recorded here, at action time; the
        importance ratio in train() is taken against exactly these values.
        """
        state_t = observation_to_tensor(state, self.device).unsqueeze(0)
        with torch.no_grad():
            dist = self.actor.distribution(state_t)
            action = dist.probs.argmax(dim=-1) if deterministic else dist.sample()
            log_prob = dist.log_prob(action)
            value = self.critic(state_t)
        return ActionSample(int(action.item()), float(log_prob.item()), float(value.item()))

    def act(self, observation: np.ndarray, explore: bool = True) -> int:
        self._pending = self.select_action(observation, deterministic=not explore)
        return self._pending.action

    def store_transition(self, state: np.ndarray, action: int, reward: float,
                         log_prob: float, value: float, done: bool):
        """Store a transition in the trajectory."""
        self.trajectory.add(state, action, reward, value, log_prob, done)
        self.total_steps += 1

    def observe(self, state: np.ndarray, action: int, reward: float,
                next_state: np.ndarray, done: bool) -> Dict[str, float]:
        sample = self._pending
        if sample is None or sample.action != int(action):
            sample = self._evaluate(state, int(action))
        self._pending = None
        self.store_transition(state, action, reward, sample.log_prob, sample.value, done)
        return {}

    def _evaluate(self, state: np.ndarray, action: int) -> ActionSample:
        state_t = observation_to_tensor(state, self.device).unsqueeze(0)
        with torch.no_grad():
            dist = self.actor.distribution(state_t)
            log_prob = dist.log_prob(torch.tensor([action], device=self.device))
            value = self.critic(state_t)
        return ActionSample(action, float(log_prob.item()), float(value.item()))

    def end_episode(self) -> Dict[str, float]:
        self.total_episodes += 1
        return self.train()

    def abort_episode(self):
        self.trajectory.clear()
        self._pending = None

    # ------------------------------------------------------------------
    # Learning
    # ------------------------------------------------------------------

    def train(self, last_value: float = 0.0) -> Dict[str, float]:
        """
        Perform the PPO update on the current trajectory.

        The trajectory is cleared afterwards whatever the outcome.

        Returns:
            Training statistics; {} for an empty trajectory and
            {'aborted': True} if a non-finite quantity was detected
        """
        if len(self.trajectory) == 0:
            return {}
        try:
            return self._update(last_value)
        finally:
            self.trajectory.clear()
            self._pending = None

    def _update(self, last_value: float) -> Dict[str, float]:
        if not self.trajectory.is_finite() or not np.isfinite(last_value):
            logger.warning("Aborting PPO update: non-finite trajectory data")
            return {'aborted': True}

        advantages, returns = self.trajectory.compute_returns_and_advantages(
            last_value, self.config.gamma, self.config.gae_lambda
        )
        if not (np.all(np.isfinite(advantages)) and np.all(np.isfinite(returns))):
            logger.warning("Aborting PPO update: non-finite advantages")
            return {'aborted': True}

        if self.config.normalize_advantages and len(advantages) > 1:
            advantages = (advantages - advantages.mean()) / (advantages.std() + 1e-8)

        states = observation_to_tensor(np.stack(self.trajectory.states), self.device)
        actions = torch.as_tensor(self.trajectory.actions, dtype=torch.int64, device=self.device)
        old_log_probs = torch.as_tensor(self.trajectory.log_probs, dtype=torch.float32,
                                        device=self.device)
        advantages_t = torch.as_tensor(advantages, dtype=torch.float32, device=self.device)
        returns_t = torch.as_tensor(returns, dtype=torch.float32, device=self.device)

        stats = {
            'policy_loss': 0.0,
            'value_loss': 0.0,
            'entropy': 0.0,
            'approx_kl': 0.0,
            'clip_fraction': 0.0,
            'actor_grad_norm': 0.0,
            'critic_grad_norm': 0.0,
        }
        clip = self.config.clip_epsilon

        # Update limits apply to the whole call, not to each epoch
        actor_params = list(self.actor.parameters())
        critic_params = list(self.critic.parameters())
        actor_reference = snapshot_parameters(actor_params)
        critic_reference = snapshot_parameters(critic_params)
        actor_limit = self.actor_optimizer.param_groups[0]['lr'] * self.config.max_grad_norm
        critic_limit = self.critic_optimizer.param_groups[0]['lr'] * self.config.max_grad_norm

        for epoch in range(self.config.num_epochs):
            dist = self.actor.distribution(states)
            log_probs = dist.log_prob(actions)
            entropy = dist.entropy().mean()

            # Policy loss (PPO-Clip)
            ratio = torch.exp(log_probs - old_log_probs)
            clipped_ratio = torch.clamp(ratio, 1 - clip, 1 + clip)
            surrogate = torch.min(ratio * advantages_t, clipped_ratio * advantages_t)
            policy_loss = -surrogate.mean() - self.config.entropy_coef * entropy

            values = self.critic(states)
            value_loss = nn.functional.mse_loss(values, returns_t)

            if not (torch.isfinite(policy_loss) and torch.isfinite(value_loss)):
                logger.warning(f"Aborting PPO update at epoch {epoch}: non-finite loss")
                return {'aborted': True}

            self.actor_optimizer.zero_grad()
            policy_loss.backward()
            actor_grad_norm = nn.utils.clip_grad_norm_(actor_params, self.config.max_grad_norm)
            self.actor_optimizer.step()
            limit_update(actor_params, actor_reference, actor_limit)

            self.critic_optimizer.zero_grad()
            value_loss.backward()
            critic_grad_norm = nn.utils.clip_grad_norm_(critic_params, self.config.max_grad_norm)
            self.critic_optimizer.step()
            limit_update(critic_params, critic_reference, critic_limit)

            if not (parameters_finite(self.actor.parameters()) and
                    parameters_finite(self.critic.parameters())):
                raise DivergenceError(f"PPO parameters non-finite after update {self.update_count + 1}")

            # Statistics
            with torch.no_grad():
                approx_kl = ((ratio - 1) - torch.log(ratio)).mean()
                clip_fraction = ((ratio - 1).abs() > clip).float().mean()

            stats['policy_loss'] += policy_loss.item()
            stats['value_loss'] += value_loss.item()
            stats['entropy'] += entropy.item()
            stats['approx_kl'] += approx_kl.item()
            stats['clip_fraction'] += clip_fraction.item()
            stats['actor_grad_norm'] += float(actor_grad_norm)
            stats['critic_grad_norm'] += float(critic_grad_norm)

        # Average statistics
        for key in stats:
            stats[key] /= max(self.config.num_epochs, 1)

        stats['steps'] = len(self.trajectory)
        self.update_count += 1
        return stats

    # ------------------------------------------------------------------
    # Hyperparameters
    # ------------------------------------------------------------------

    def set_hyperparameters(self, lr: Optional[float] = None,
                            entropy_coef: Optional[float] = None,
                            clip_epsilon: Optional[float] = None,
                            num_epochs: Optional[int] = None):
        """Change hyperparameters in place; takes effect on the next train()."""
        if lr is not None:
            if lr <= 0:
                raise ValueError(f"lr must be positive, got {lr}")
            self.config.lr = lr
            set_learning_rate(self.actor_optimizer, lr)
            if self.config.critic_lr is None:
                set_learning_rate(self.critic_optimizer, lr)
        if entropy_coef is not None:
            if entropy_coef < 0:
                raise ValueError(f"entropy_coef must be non-negative, got {entropy_coef}")
            self.config.entropy_coef = entropy_coef
        if clip_epsilon is not None:
            if not 0 < clip_epsilon < 1:
                raise ValueError(f"clip_epsilon must be in (0, 1), got {clip_epsilon}")
            self.config.clip_epsilon = clip_epsilon
        if num_epochs is not None:
            if num_epochs < 1:
                raise ValueError(f"num_epochs must be at least 1, got {num_epochs}")
            self.config.num_epochs = num_epochs

    def get_hyperparameters(self) -> Dict[str, Any]:
        return {
            'algorithm': self.name,
            'lr': self.config.lr,
            'entropy_coef': self.config.entropy_coef,
            'clip_epsilon': self.config.clip_epsilon,
            'num_epochs': self.config.num_epochs,
            'gamma': self.config.gamma,
            'gae_lambda': self.config.gae_lambda,
            'update_count': self.update_count,
        }

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def state_dict(self) -> Dict[str, Any]:
        return {
            'algorithm': self.name,
            'actor': self.actor.state_dict(),
            'critic': self.critic.state_dict(),
            'actor_optimizer': self.actor_optimizer.state_dict(),
            'critic_optimizer': self.critic_optimizer.state_dict(),
            'config': asdict(self.config),
            'total_steps': self.total_steps,
            'total_episodes': self.total_episodes,
            'update_count': self.update_count,
        }

    def load_state_dict(self, state: Dict[str, Any]):
        if state.get('algorithm', self.name) != self.name:
            raise ValueError(f"Cannot load '{state.get('algorithm')}' parameters into a PPO agent")
        self.actor.load_state_dict(state['actor'])
        self.critic.load_state_dict(state['critic'])
        if 'actor_optimizer' in state:
            self.actor_optimizer.load_state_dict(state['actor_optimizer'])
        if 'critic_optimizer' in state:
            self.critic_optimizer.load_state_dict(state['critic_optimizer'])
        self.total_steps = state.get('total_steps', 0)
        self.total_episodes = state.get('total_episodes', 0)
        self.update_count = state.get('update_count', 0)
