"""
Staircase Climbing Environment

Provides a gym-like interface over a PhysicsBackend, handling:
- Action application (forces, jump impulse, grab) with contact preconditions
- Observation construction
- Position-based support detection
- Reward bookkeeping and episode termination
- Curriculum levels
"""

import logging
from dataclasses import dataclass
from enum import IntEnum
from typing import Dict, Optional, Sequence, Tuple

import numpy as np

from .config import (
    ACTION_DIM, MAX_EPISODE_STEPS, OBSERVATION_DIM, SUPPORT_HEIGHT_TOLERANCE,
)
from .physics import PhysicsBackend, StaircaseLayout, StaircaseSimulator, build_staircase
from .rewards import (
    FALLEN, GOAL, INVALID_STATE, MAX_STEPS, OUT_OF_BOUNDS, SAFETY_BUFFER,
    RewardConfig, StepOutcome, calculate_reward,
)

logger = logging.getLogger(__name__)

# Observation normalisation
POSITION_SCALE = 10.0
VELOCITY_SCALE = 20.0
DISTANCE_SCALE = 20.0


class Action(IntEnum):
    FORWARD = 0
    BACKWARD = 1
    LEFT = 2
    RIGHT = 3
    JUMP = 4
    GRAB = 5


@dataclass
class ActionForces:
    """Magnitudes applied for each action."""
    move: float = 20.0     # Continuous force while the action is held
    jump: float = 5.0      # Instantaneous impulse, grounded only
    grab: float = 15.0     # Sustained upward force, touching a support only


@dataclass(frozen=True)
class CurriculumLevel:
    """Narrows the goal and step budget of an episode."""
    goal_support_index: int
    max_steps: int


DEFAULT_CURRICULUM = (
    CurriculumLevel(goal_support_index=0, max_steps=300),
    CurriculumLevel(goal_support_index=1, max_steps=400),
    CurriculumLevel(goal_support_index=2, max_steps=500),
    CurriculumLevel(goal_support_index=3, max_steps=700),
    CurriculumLevel(goal_support_index=5, max_steps=1000),
)


@dataclass
class EpisodeStats:
    """Statistics for a single episode."""
    total_reward: float = 0.0
    steps: int = 0
    highest_support: int = -1
    success: bool = False
    termination: Optional[str] = None


class ClimbingEnv:
    """
    Environment for the staircase climbing task.

    Provides gym-like interface: reset(), step(), is_terminal()
    """

    def __init__(self, layout: Optional[StaircaseLayout] = None,
                 physics: Optional[PhysicsBackend] = None,
                 reward_config: Optional[RewardConfig] = None,
                 max_steps: int = MAX_EPISODE_STEPS,
                 curriculum: Optional[Sequence[CurriculumLevel]] = None,
                 forces: Optional[ActionForces] = None):
        self.layout = layout or build_staircase()
        self.physics = physics or StaircaseSimulator(self.layout)
        self.reward_config = (reward_config or RewardConfig()).validate()
        self.forces = forces or ActionForces()
        self.base_max_steps = max_steps

        self.curriculum = tuple(curriculum) if curriculum else ()
        self.curriculum_level = 0
        self._invalid_state_logged = False

        self._reset_tracking()

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def observation_dim(self) -> int:
        return OBSERVATION_DIM

    @property
    def action_dim(self) -> int:
        return ACTION_DIM

    @property
    def curriculum_enabled(self) -> bool:
        return bool(self.curriculum)

    @property
    def goal_index(self) -> int:
        if self.curriculum:
            level = self.curriculum[self.curriculum_level]
            return min(level.goal_support_index, self.layout.goal_index)
        return self.layout.goal_index

    @property
    def max_steps(self) -> int:
        if self.curriculum:
            return self.curriculum[self.curriculum_level].max_steps
        return self.base_max_steps

    # ------------------------------------------------------------------
    # Curriculum
    # ------------------------------------------------------------------

    def set_curriculum_level(self, level: int):
        if not self.curriculum:
            raise ValueError("Environment was created without a curriculum")
        if not 0 <= level < len(self.curriculum):
            raise ValueError(f"Curriculum level {level} out of range 0..{len(self.curriculum) - 1}")
        self.curriculum_level = level

    def advance_curriculum(self) -> bool:
        """Move to the next curriculum level. Returns False at the last level."""
        if not self.curriculum or self.curriculum_level >= len(self.curriculum) - 1:
            return False
        self.curriculum_level += 1
        logger.info(f"Curriculum advanced to level {self.curriculum_level} "
                    f"(goal support {self.goal_index}, {self.max_steps} steps)")
        return True

    def set_max_steps(self, max_steps: int):
        """Step budget used while no curriculum is attached."""
        if max_steps < 1:
            raise ValueError(f"max_steps must be at least 1, got {max_steps}")
        self.base_max_steps = max_steps

    def set_reward_config(self, reward_config: RewardConfig):
        """Swap reward weights between (or during) episodes."""
        self.reward_config = reward_config.validate()
        self.safety_remaining = min(self.safety_remaining, reward_config.safety_buffer_ticks)

    # ------------------------------------------------------------------
    # Episode lifecycle
    # ------------------------------------------------------------------

    def _reset_tracking(self):
        self.step_count = 0
        self.total_reward = 0.0
        self.support_index = -1
        self.highest_support = -1
        self.last_support_index = -1
        self.off_support_ticks = 0
        self.safety_remaining = self.reward_config.safety_buffer_ticks
        self.termination: Optional[str] = None
        self.supports_visited = set()

    def reset(self) -> np.ndarray:
        """
        Reset for a new episode.

        Returns:
            Initial observation. A zero vector if the physics state is unusable.
        """
        self._reset_tracking()
        try:
            self.physics.set_position(self.layout.start_position)
            self.physics.set_velocity((0.0, 0.0, 0.0))
            position = np.asarray(self.physics.get_position(), dtype=np.float64)
        except Exception as e:
            return self._invalid_observation(f"physics reset failed: {e}")

        if position.shape != (3,) or not np.all(np.isfinite(position)):
            return self._invalid_observation("non-finite start position")

        self.support_index = self.detect_support(position)
        self.last_support_index = self.support_index
        return self._observe()

    def step(self, action: int) -> Tuple[np.ndarray, float, bool, Dict]:
        """
        Execute action and return next observation.

        Args:
            action: Action index (0-5)

        Returns:
            observation: Next observation
            reward: Reward for this transition
            done: Whether the episode ended
            info: Support/termination bookkeeping
        """
        if self.termination is not None:
            raise RuntimeError("step() called on a finished episode; call reset() first")

        action = Action(int(action))
        self._apply_action(action)
        self.physics.advance()
        self.step_count += 1

        position = np.asarray(self.physics.get_position(), dtype=np.float64)
        if position.shape != (3,) or not np.all(np.isfinite(position)):
            return self._invalid_step(action, "non-finite position after physics step")

        support = self.detect_support(position)
        if support >= 0:
            landing = support
        elif self.physics.is_grounded():
            landing = -1
        else:
            landing = None

        if support >= 0:
            self.off_support_ticks = 0
            self.safety_remaining = self.reward_config.safety_buffer_ticks
        else:
            self.off_support_ticks += 1
            self.safety_remaining = max(0, self.safety_remaining - 1)

        termination = self._check_termination(position, support)
        outcome = StepOutcome(
            support_index=support,
            highest_support=self.highest_support,
            last_support_index=self.last_support_index,
            landing_index=landing,
            off_support_ticks=self.off_support_ticks,
            termination=termination,
        )
        reward = calculate_reward(outcome, self.reward_config)
        if not np.isfinite(reward):
            return self._invalid_step(action, f"non-finite reward {reward}")

        if support > self.highest_support:
            self.highest_support = support
        if landing is not None:
            self.last_support_index = landing
        if support >= 0:
            self.supports_visited.add(support)
        self.support_index = support
        self.total_reward += reward
        self.termination = termination

        observation = self._observe()
        done = termination is not None
        return observation, float(reward), done, self._info(action, position)

    def is_terminal(self) -> bool:
        return self.termination is not None

    def episode_stats(self) -> EpisodeStats:
        return EpisodeStats(
            total_reward=self.total_reward,
            steps=self.step_count,
            highest_support=self.highest_support,
            success=self.termination == GOAL,
            termination=self.termination,
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def detect_support(self, position: Sequence[float]) -> int:
        """
        Index of the support the agent stands on, or -1.

        Position-based rather than contact-based so the result is a pure
        function of the body position.
        """
        x, y, z = position
        for support in reversed(self.layout.supports):
            if support.contains(x, z) and abs(y - support.top) <= SUPPORT_HEIGHT_TOLERANCE:
                return support.index
        return -1

    def _apply_action(self, action: Action):
        move = self.forces.move
        if action == Action.FORWARD:
            self.physics.apply_force((0.0, 0.0, -move))
        elif action == Action.BACKWARD:
            self.physics.apply_force((0.0, 0.0, move))
        elif action == Action.LEFT:
            self.physics.apply_force((-move, 0.0, 0.0))
        elif action == Action.RIGHT:
            self.physics.apply_force((move, 0.0, 0.0))
        elif action == Action.JUMP:
            if self.physics.is_grounded():
                self.physics.apply_impulse((0.0, self.forces.jump, 0.0))
        elif action == Action.GRAB:
            if self.physics.is_touching_support():
                self.physics.apply_force((0.0, self.forces.grab, 0.0))

    def _check_termination(self, position: np.ndarray, support: int) -> Optional[str]:
        if support >= 0 and support >= self.goal_index:
            return GOAL
        if position[1] < self.layout.fall_threshold:
            return FALLEN
        if not self.layout.in_bounds(position):
            return OUT_OF_BOUNDS
        if self.safety_remaining <= 0:
            return SAFETY_BUFFER
        if self.step_count >= self.max_steps:
            return MAX_STEPS
        return None

    def _observe(self) -> np.ndarray:
        """Build the observation vector from the current physics state."""
        try:
            position = np.asarray(self.physics.get_position(), dtype=np.float64)
            velocity = np.asarray(self.physics.get_velocity(), dtype=np.float64)
        except Exception as e:
            return self._invalid_observation(f"physics query failed: {e}")
        if (position.shape != (3,) or velocity.shape != (3,) or
                not np.all(np.isfinite(position)) or not np.all(np.isfinite(velocity))):
            return self._invalid_observation("malformed physics state")

        supports = self.layout.supports
        goal = supports[self.goal_index]
        to_goal = goal.center - position
        horizontal = np.array([to_goal[0], to_goal[2]])
        horizontal_norm = np.linalg.norm(horizontal)
        direction = horizontal / horizontal_norm if horizontal_norm > 1e-8 else np.zeros(2)

        next_support = supports[min(self.support_index + 1, len(supports) - 1)]
        to_next = np.linalg.norm(next_support.center - position)

        observation = np.array([
            np.clip(position[0] / POSITION_SCALE, -1.0, 1.0),
            np.clip(position[1] / POSITION_SCALE, -1.0, 1.0),
            np.clip(position[2] / POSITION_SCALE, -1.0, 1.0),
            *np.clip(velocity / VELOCITY_SCALE, -1.0, 1.0),
            np.clip(np.linalg.norm(to_goal) / DISTANCE_SCALE, 0.0, 1.0),
            direction[0],
            direction[1],
            (self.support_index + 1) / len(supports),
            np.clip(to_next / DISTANCE_SCALE, 0.0, 1.0),
            1.0 if self.support_index >= 0 else 0.0,
            self.safety_remaining / self.reward_config.safety_buffer_ticks,
        ], dtype=np.float32)

        if observation.shape != (OBSERVATION_DIM,) or not np.all(np.isfinite(observation)):
            return self._invalid_observation("non-finite observation")
        return observation

    def _invalid_observation(self, reason: str) -> np.ndarray:
        if not self._invalid_state_logged:
            logger.warning(f"Invalid environment state ({reason}); returning zero observation")
            self._invalid_state_logged = True
        return np.zeros(OBSERVATION_DIM, dtype=np.float32)

    def _invalid_step(self, action: Action, reason: str) -> Tuple[np.ndarray, float, bool, Dict]:
        self.termination = INVALID_STATE
        observation = self._invalid_observation(reason)
        info = {
            'step': self.step_count,
            'action': action.name,
            'support_index': -1,
            'highest_support': self.highest_support,
            'safety_remaining': self.safety_remaining,
            'off_support_ticks': self.off_support_ticks,
            'position': None,
            'termination': INVALID_STATE,
            'truncated': False,
            'success': False,
            'error': reason,
        }
        return observation, 0.0, True, info

    def _info(self, action: Action, position: np.ndarray) -> Dict:
        return {
            'step': self.step_count,
            'action': action.name,
            'support_index': self.support_index,
            'highest_support': self.highest_support,
            'safety_remaining': self.safety_remaining,
            'off_support_ticks': self.off_support_ticks,
            'position': position.tolist(),
            'termination': self.termination,
            'truncated': self.termination == MAX_STEPS,
            'success': self.termination == GOAL,
        }


__all__ = [
    'Action',
    'ActionForces',
    'ClimbingEnv',
    'CurriculumLevel',
    'DEFAULT_CURRICULUM',
    'EpisodeStats',
]
