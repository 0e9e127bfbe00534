"""Tests for the network definitions and numerical guards."""

import pytest
import torch
import numpy as np
import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from climbing.config import ACTION_DIM, OBSERVATION_DIM
from climbing.model import (
    ActorNetwork, CriticNetwork, QNetwork, DivergenceError,
    make_optimizer, observation_to_tensor, parameters_finite, set_learning_rate,
)


class TestNetworks:
    """Output shapes and initialisation."""

    def test_q_network_shape(self):
        net = QNetwork()
        assert net(torch.randn(OBSERVATION_DIM)).shape == (ACTION_DIM,)
        assert net(torch.randn(8, OBSERVATION_DIM)).shape == (8, ACTION_DIM)

    def test_critic_is_scalar(self):
        net = CriticNetwork()
        assert net(torch.randn(1, OBSERVATION_DIM)).shape == (1,)
        assert net(torch.randn(5, OBSERVATION_DIM)).shape == (5,)

    def test_actor_starts_near_uniform(self):
        """Small output gain keeps the initial policy close to uniform."""
        torch.manual_seed(0)
        net = ActorNetwork()
        probs = net.distribution(torch.randn(16, OBSERVATION_DIM)).probs
        assert probs.shape == (16, ACTION_DIM)
        assert torch.allclose(probs.sum(dim=-1), torch.ones(16))
        assert torch.all((probs - 1.0 / ACTION_DIM).abs() < 0.05)


class TestGuards:

    def test_observation_to_tensor(self):
        tensor = observation_to_tensor(np.zeros(OBSERVATION_DIM, dtype=np.float64))
        assert tensor.dtype == torch.float32
        assert tensor.shape == (OBSERVATION_DIM,)

    def test_parameters_finite(self):
        net = QNetwork()
        assert parameters_finite(net.parameters())
        with torch.no_grad():
            next(net.parameters())[0, 0] = float('nan')
        assert not parameters_finite(net.parameters())

    def test_divergence_error_is_runtime_error(self):
        assert issubclass(DivergenceError, RuntimeError)


class TestOptimizers:

    def test_make_optimizer(self):
        net = QNetwork()
        assert isinstance(make_optimizer('adam', net.parameters(), 1e-3), torch.optim.Adam)
        assert isinstance(make_optimizer('sgd', net.parameters(), 1e-3), torch.optim.SGD)
        with pytest.raises(ValueError):
            make_optimizer('rmsprop', net.parameters(), 1e-3)

    def test_set_learning_rate(self):
        optimizer = make_optimizer('adam', QNetwork().parameters(), 1e-3)
        set_learning_rate(optimizer, 5e-4)
        assert all(group['lr'] == 5e-4 for group in optimizer.param_groups)


if __name__ == '__main__':
    pytest.main([__file__, '-v'])
