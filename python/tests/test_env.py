"""Tests for the climbing environment."""

import logging

import pytest
import numpy as np
import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from climbing.config import OBSERVATION_DIM, SUPPORT_HEIGHT_TOLERANCE
from climbing.env import Action, ClimbingEnv, CurriculumLevel, DEFAULT_CURRICULUM
from climbing.physics import StaircaseSimulator, build_staircase
from climbing.rewards import RewardConfig


def walk_to_first_support(env, max_ticks=300):
    """Hold FORWARD until support 0 is detected. Returns (reward, done, info)."""
    for _ in range(max_ticks):
        _, reward, done, info = env.step(Action.FORWARD)
        if info['support_index'] == 0 or done:
            return reward, done, info
    raise AssertionError("never reached support 0")


class BrokenPhysics(StaircaseSimulator):
    """Simulator whose position turns NaN on demand."""

    def __init__(self, layout):
        super().__init__(layout)
        self.broken = False

    def get_position(self):
        if self.broken:
            return np.full(3, np.nan)
        return super().get_position()


class VelocityFailurePhysics(StaircaseSimulator):
    """Simulator whose velocity query raises."""

    def get_velocity(self):
        raise RuntimeError("velocity query failed")


class TestReset:
    """Tests for ClimbingEnv.reset()."""

    @pytest.fixture
    def env(self):
        return ClimbingEnv()

    def test_observation_shape(self, env):
        obs = env.reset()
        assert obs.shape == (OBSERVATION_DIM,)
        assert obs.dtype == np.float32
        assert np.all(np.isfinite(obs))

    def test_reset_is_repeatable(self, env):
        """Repeated resets return the identical initial observation."""
        first = env.reset()
        for _ in range(5):
            np.testing.assert_array_equal(env.reset(), first)

    def test_reset_after_steps(self, env):
        first = env.reset()
        for _ in range(20):
            env.step(Action.FORWARD)
        np.testing.assert_array_equal(env.reset(), first)
        assert env.step_count == 0
        assert env.highest_support == -1
        assert env.safety_remaining == env.reward_config.safety_buffer_ticks

    def test_initial_safety_component_full(self, env):
        obs = env.reset()
        assert obs[-1] == pytest.approx(1.0)
        assert obs[-2] == 0.0

    def test_invalid_state_returns_zero_vector(self):
        layout = build_staircase()
        physics = BrokenPhysics(layout)
        env = ClimbingEnv(layout=layout, physics=physics)
        physics.broken = True
        obs = env.reset()
        np.testing.assert_array_equal(obs, np.zeros(OBSERVATION_DIM, dtype=np.float32))

    def test_failing_physics_query_does_not_raise(self):
        layout = build_staircase()
        env = ClimbingEnv(layout=layout, physics=VelocityFailurePhysics(layout))
        obs = env.reset()
        np.testing.assert_array_equal(obs, np.zeros(OBSERVATION_DIM, dtype=np.float32))

    def test_invalid_state_logged_once(self, caplog):
        layout = build_staircase()
        physics = BrokenPhysics(layout)
        env = ClimbingEnv(layout=layout, physics=physics)
        physics.broken = True
        with caplog.at_level(logging.WARNING, logger='climbing.env'):
            env.reset()
            env.reset()
            env.reset()
        warnings = [r for r in caplog.records if r.name == 'climbing.env']
        assert len(warnings) == 1


class TestStep:
    """Tests for ClimbingEnv.step()."""

    @pytest.fixture
    def env(self):
        env = ClimbingEnv()
        env.reset()
        return env

    def test_all_actions_finite(self, env):
        """Every action yields a fixed-length finite observation and finite reward."""
        rng = np.random.default_rng(0)
        for _ in range(400):
            action = Action(int(rng.integers(len(Action))))
            obs, reward, done, info = env.step(action)
            assert obs.shape == (OBSERVATION_DIM,)
            assert np.all(np.isfinite(obs))
            assert np.isfinite(reward)
            assert np.all(np.abs(obs) <= 1.0)
            if done:
                env.reset()

    def test_info_keys(self, env):
        _, _, _, info = env.step(Action.FORWARD)
        for key in ('step', 'support_index', 'highest_support', 'safety_remaining',
                    'off_support_ticks', 'position', 'termination', 'truncated', 'success'):
            assert key in info
        assert info['step'] == 1

    def test_reaching_first_support_pays_progress(self, env):
        """Walking forward onto support 0 pays exactly the support-0 progress reward."""
        reward, done, info = walk_to_first_support(env)
        assert not done
        assert info['support_index'] == 0
        assert info['highest_support'] == 0
        assert reward == env.reward_config.progress_reward(0)
        assert abs(info['position'][1] - env.layout.supports[0].top) <= SUPPORT_HEIGHT_TOLERANCE

    def test_progress_beats_off_support_penalty(self, env):
        reward, _, info = walk_to_first_support(env)
        assert reward > abs(env.reward_config.off_support_penalty(info['step']))

    def test_standing_on_support_resets_safety(self, env):
        walk_to_first_support(env)
        obs, reward, done, info = env.step(Action.GRAB)
        assert info['support_index'] == 0
        assert info['safety_remaining'] == env.reward_config.safety_buffer_ticks
        assert info['off_support_ticks'] == 0
        assert reward == pytest.approx(env.reward_config.time_penalty)
        assert obs[11] == 1.0

    def test_dropping_to_ground_is_regression(self, env):
        walk_to_first_support(env)
        env.physics.set_position(env.layout.start_position)
        _, reward, done, info = env.step(Action.GRAB)
        config = env.reward_config
        expected = config.time_penalty + config.regression_penalty + config.off_support_penalty(1)
        assert not done
        assert info['support_index'] == -1
        assert reward == pytest.approx(expected)

    def test_goal_reward_exact(self, env):
        """Reaching the goal pays exactly goal_reward regardless of prior accumulation."""
        walk_to_first_support(env)
        goal = env.layout.supports[env.goal_index]
        env.physics.set_position((goal.center_x, goal.top, goal.center_z))
        _, reward, done, info = env.step(Action.LEFT)
        assert done
        assert reward == env.reward_config.goal_reward
        assert info['termination'] == 'goal'
        assert info['success']
        assert env.is_terminal()

    def test_fall_terminates(self, env):
        env.physics.set_position((0.0, -3.0, 3.0))
        _, reward, done, info = env.step(Action.FORWARD)
        assert done
        assert info['termination'] == 'fallen'
        assert reward == env.reward_config.fall_reward

    def test_out_of_bounds_terminates(self, env):
        env.physics.set_position((env.layout.lateral_bound + 1.0, 0.0, 3.0))
        _, reward, done, info = env.step(Action.GRAB)
        assert done
        assert info['termination'] == 'out_of_bounds'
        assert reward == env.reward_config.out_of_bounds_reward

    def test_step_after_done_raises(self, env):
        env.physics.set_position((0.0, -3.0, 3.0))
        env.step(Action.FORWARD)
        with pytest.raises(RuntimeError):
            env.step(Action.FORWARD)

    def test_invalid_physics_ends_episode(self):
        layout = build_staircase()
        physics = BrokenPhysics(layout)
        env = ClimbingEnv(layout=layout, physics=physics)
        env.reset()
        physics.broken = True
        obs, reward, done, info = env.step(Action.FORWARD)
        assert done
        assert reward == 0.0
        assert info['termination'] == 'invalid_state'
        np.testing.assert_array_equal(obs, np.zeros(OBSERVATION_DIM, dtype=np.float32))


class TestSafetyBuffer:
    """Tests for the off-support safety buffer."""

    @pytest.mark.parametrize('budget', [30, 180])
    def test_terminates_on_exact_tick(self, budget):
        """Held off every support, the episode ends on exactly the budget tick."""
        env = ClimbingEnv(reward_config=RewardConfig(safety_buffer_ticks=budget), max_steps=1000)
        env.reset()
        for tick in range(1, budget):
            _, reward, done, info = env.step(Action.GRAB)
            assert not done, f"terminated early on tick {tick}"
            assert not env.is_terminal()
            assert info['safety_remaining'] == budget - tick
        _, reward, done, info = env.step(Action.GRAB)
        assert done
        assert env.is_terminal()
        assert info['termination'] == 'safety_buffer'
        assert reward == env.reward_config.safety_buffer_penalty
        assert info['step'] == budget


class TestStepBudget:
    """Tests for the step budget."""

    def test_timeout_is_neutral(self):
        env = ClimbingEnv(max_steps=5)
        env.reset()
        for _ in range(4):
            _, _, done, _ = env.step(Action.GRAB)
            assert not done
        _, reward, done, info = env.step(Action.GRAB)
        assert done
        assert reward == 0.0
        assert info['termination'] == 'max_steps'
        assert info['truncated']
        assert not info['success']


    def test_set_max_steps(self):
        env = ClimbingEnv(max_steps=50)
        env.set_max_steps(3)
        env.reset()
        env.step(Action.GRAB)
        env.step(Action.GRAB)
        _, _, done, info = env.step(Action.GRAB)
        assert done
        assert info['termination'] == 'max_steps'

    def test_set_max_steps_rejects_zero(self):
        with pytest.raises(ValueError):
            ClimbingEnv().set_max_steps(0)


class TestRewardWeights:

    def test_set_reward_config(self):
        env = ClimbingEnv()
        env.reset()
        env.set_reward_config(RewardConfig(time_penalty=-0.5, off_support_base=-0.1,
                                           off_support_growth=0.0))
        _, reward, _, _ = env.step(Action.GRAB)
        assert reward == pytest.approx(-0.6)

    def test_shorter_budget_clamps_remaining(self):
        env = ClimbingEnv()
        env.reset()
        env.set_reward_config(RewardConfig(safety_buffer_ticks=10))
        assert env.safety_remaining == 10
        for _ in range(9):
            _, _, done, _ = env.step(Action.GRAB)
            assert not done
        _, _, done, info = env.step(Action.GRAB)
        assert done
        assert info['termination'] == 'safety_buffer'

    def test_invalid_config_rejected(self):
        with pytest.raises(ValueError):
            ClimbingEnv().set_reward_config(RewardConfig(goal_reward=-1.0))


class TestPreconditions:
    """Gated actions are silent no-ops when their precondition fails."""

    def test_jump_in_air_is_noop(self):
        env = ClimbingEnv()
        env.reset()
        env.physics.set_position((0.0, 1.0, 3.0))
        env.step(Action.JUMP)
        assert env.physics.get_velocity()[1] < 0

    def test_jump_on_ground(self):
        env = ClimbingEnv()
        env.reset()
        env.step(Action.JUMP)
        assert env.physics.get_velocity()[1] > 0

    def test_grab_on_ground_is_noop(self):
        env = ClimbingEnv()
        env.reset()
        env.step(Action.GRAB)
        np.testing.assert_allclose(env.physics.get_position(), env.layout.start_position)


class TestSupportDetection:
    """Tests for position-based support detection."""

    @pytest.fixture
    def env(self):
        return ClimbingEnv()

    def test_within_tolerance(self, env):
        support = env.layout.supports[2]
        position = (support.center_x, support.top + SUPPORT_HEIGHT_TOLERANCE * 0.5, support.center_z)
        assert env.detect_support(position) == 2

    def test_outside_tolerance(self, env):
        support = env.layout.supports[2]
        position = (support.center_x, support.top + SUPPORT_HEIGHT_TOLERANCE * 2, support.center_z)
        assert env.detect_support(position) == -1

    def test_outside_footprint(self, env):
        support = env.layout.supports[2]
        position = (support.center_x + support.half_width + 0.1, support.top, support.center_z)
        assert env.detect_support(position) == -1

    def test_ground(self, env):
        assert env.detect_support(env.layout.start_position) == -1


class TestCurriculum:
    """Tests for curriculum levels."""

    @pytest.fixture
    def env(self):
        env = ClimbingEnv(curriculum=DEFAULT_CURRICULUM)
        env.reset()
        return env

    def test_first_level_narrows_goal(self, env):
        assert env.curriculum_enabled
        assert env.goal_index == 0
        assert env.max_steps == DEFAULT_CURRICULUM[0].max_steps

    def test_first_level_goal_reachable_by_walking(self, env):
        reward, done, info = walk_to_first_support(env)
        assert done
        assert info['termination'] == 'goal'
        assert reward == env.reward_config.goal_reward

    def test_advance(self, env):
        for level in range(1, len(DEFAULT_CURRICULUM)):
            assert env.advance_curriculum()
            assert env.curriculum_level == level
        assert not env.advance_curriculum()
        assert env.goal_index == env.layout.goal_index

    def test_set_level(self, env):
        env.set_curriculum_level(2)
        assert env.goal_index == DEFAULT_CURRICULUM[2].goal_support_index
        with pytest.raises(ValueError):
            env.set_curriculum_level(len(DEFAULT_CURRICULUM))

    def test_goal_index_capped_by_layout(self):
        env = ClimbingEnv(layout=build_staircase(num_supports=3),
                          curriculum=[CurriculumLevel(goal_support_index=10, max_steps=100)])
        assert env.goal_index == 2

    def test_without_curriculum(self):
        env = ClimbingEnv()
        assert not env.advance_curriculum()
        with pytest.raises(ValueError):
            env.set_curriculum_level(0)


class TestEpisodeStats:

    def test_episode_stats(self):
        env = ClimbingEnv()
        env.reset()
        total = 0.0
        for _ in range(10):
            _, reward, _, _ = env.step(Action.GRAB)
            total += reward
        stats = env.episode_stats()
        assert stats.steps == 10
        assert stats.total_reward == pytest.approx(total)
        assert stats.highest_support == -1
        assert not stats.success


if __name__ == '__main__':
    pytest.main([__file__, '-v'])
