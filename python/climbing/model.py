"""
Neural Networks for the Staircase Climbing Agents

Architecture:
- Input: Observation vector (13 floats)
- Hidden: 2 fully-connected layers with ReLU
- Output: Q-values (DQN), action logits (PPO actor) or a value estimate (PPO critic)

Also holds the numerical guards shared by both agents.
"""

from typing import Iterable, List, Sequence, Union

import numpy as np
import torch
import torch.nn as nn
from torch.distributions import Categorical

from .config import ACTION_DIM, HIDDEN_DIM, OBSERVATION_DIM


class DivergenceError(RuntimeError):
    """Network parameters became non-finite. Training cannot continue."""


def observation_to_tensor(observation: Union[np.ndarray, Sequence[float]],
                          device: torch.device = torch.device('cpu')) -> torch.Tensor:
    """Convert an observation (or batch of observations) to a float32 tensor."""
    array = np.asarray(observation, dtype=np.float32)
    return torch.as_tensor(array, device=device)


def parameters_finite(parameters: Iterable[torch.Tensor]) -> bool:
    """True if every parameter value is finite."""
    return all(bool(torch.isfinite(p).all()) for p in parameters)


def snapshot_parameters(parameters: Iterable[torch.Tensor]) -> List[torch.Tensor]:
    return [p.detach().clone() for p in parameters]


def limit_update(parameters: Sequence[torch.Tensor], reference: Sequence[torch.Tensor],
                 max_norm: float) -> float:
    """
    Pull parameters back towards `reference` so the global L2 norm of the
    update is at most `max_norm`.

    Gradient clipping bounds the step size only for plain SGD; Adam rescales
    each coordinate, so the applied update is limited here as well.
    Non-finite updates are left for the divergence check.

    Returns:
        Norm of the update before limiting
    """
    with torch.no_grad():
        deltas = [p - r for p, r in zip(parameters, reference)]
        norm = torch.norm(torch.stack([d.norm() for d in deltas])).item()
        if np.isfinite(norm) and norm > max_norm:
            scale = max_norm / norm
            for p, r, d in zip(parameters, reference, deltas):
                p.copy_(r + d * scale)
    return norm


def _mlp(input_dim: int, output_dim: int, hidden_dim: int) -> nn.Sequential:
    return nn.Sequential(
        nn.Linear(input_dim, hidden_dim),
        nn.ReLU(),
        nn.Linear(hidden_dim, hidden_dim),
        nn.ReLU(),
        nn.Linear(hidden_dim, output_dim),
    )


def _init_weights(network: nn.Module, output_gain: float):
    """Orthogonal init for hidden layers, scaled gain for the output layer."""
    linears = [m for m in network.modules() if isinstance(m, nn.Linear)]
    for module in linears:
        nn.init.orthogonal_(module.weight, gain=np.sqrt(2))
        nn.init.constant_(module.bias, 0)
    nn.init.orthogonal_(linears[-1].weight, gain=output_gain)


class QNetwork(nn.Module):
    """State -> Q-value per action."""

    def __init__(self, state_dim: int = OBSERVATION_DIM, action_dim: int = ACTION_DIM,
                 hidden_dim: int = HIDDEN_DIM):
        super().__init__()
        self.state_dim = state_dim
        self.action_dim = action_dim
        self.net = _mlp(state_dim, action_dim, hidden_dim)
        _init_weights(self, output_gain=1.0)

    def forward(self, state: torch.Tensor) -> torch.Tensor:
        return self.net(state)


class ActorNetwork(nn.Module):
    """
    Policy network for PPO.

    Outputs unnormalised logits over the discrete action set; distribution()
    wraps them in a Categorical.
    """

    def __init__(self, state_dim: int = OBSERVATION_DIM, action_dim: int = ACTION_DIM,
                 hidden_dim: int = HIDDEN_DIM):
        super().__init__()
        self.state_dim = state_dim
        self.action_dim = action_dim
        self.net = _mlp(state_dim, action_dim, hidden_dim)
        # Small output gain keeps the initial policy close to uniform
        _init_weights(self, output_gain=0.01)

    def forward(self, state: torch.Tensor) -> torch.Tensor:
        return self.net(state)

    def distribution(self, state: torch.Tensor) -> Categorical:
        return Categorical(logits=self.forward(state))


class CriticNetwork(nn.Module):
    """State -> scalar value estimate."""

    def __init__(self, state_dim: int = OBSERVATION_DIM, hidden_dim: int = HIDDEN_DIM):
        super().__init__()
        self.state_dim = state_dim
        self.net = _mlp(state_dim, 1, hidden_dim)
        _init_weights(self, output_gain=1.0)

    def forward(self, state: torch.Tensor) -> torch.Tensor:
        return self.net(state).squeeze(-1)


def make_optimizer(name: str, parameters, lr: float) -> torch.optim.Optimizer:
    """Build an optimizer by name ('adam' or 'sgd')."""
    if name == 'adam':
        return torch.optim.Adam(parameters, lr=lr)
    if name == 'sgd':
        return torch.optim.SGD(parameters, lr=lr)
    raise ValueError(f"Unknown optimizer: {name}")


def set_learning_rate(optimizer: torch.optim.Optimizer, lr: float):
    for group in optimizer.param_groups:
        group['lr'] = lr
