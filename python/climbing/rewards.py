"""
Reward Calculation for the Staircase Climbing Environment

Defines the reward signal for one environment transition:
- Terminal rewards for goal / fall / out-of-bounds / safety buffer / timeout
- Diminishing progress reward for reaching a new highest support
- Regression penalty for dropping to a lower support
- Accumulating off-support penalty
- Constant per-tick cost

Design principles:
- Terminal outcomes short-circuit all shaping so the goal is always worth
  exactly goal_reward
- Progress pays less the higher the support, which keeps early steps the
  most informative and caps positive feedback
- Standing on the ground is never reward-neutral: the off-support penalty
  grows with time and the safety buffer ends the episode
"""

from dataclasses import dataclass, asdict, replace
from typing import Dict, Optional

from .config import SAFETY_BUFFER_TICKS

REWARD_CONFIG_VERSION = 1

GOAL = 'goal'
FALLEN = 'fallen'
OUT_OF_BOUNDS = 'out_of_bounds'
SAFETY_BUFFER = 'safety_buffer'
MAX_STEPS = 'max_steps'
INVALID_STATE = 'invalid_state'

TERMINATION_REASONS = (GOAL, FALLEN, OUT_OF_BOUNDS, SAFETY_BUFFER, MAX_STEPS, INVALID_STATE)


@dataclass
class RewardConfig:
    """Configuration for reward calculation.

    Penalties are stored as negative numbers and added as-is.
    """
    version: int = REWARD_CONFIG_VERSION

    # Terminal rewards
    goal_reward: float = 100.0
    fall_reward: float = -50.0
    out_of_bounds_reward: float = -50.0
    safety_buffer_penalty: float = -25.0
    timeout_reward: float = 0.0      # Running out of time is not failure
    terminal_clip: float = 100.0     # Terminal rewards clamped to +/- this

    # Progress: max(progress_min, progress_base - progress_decay * index)
    progress_base: float = 50.0
    progress_decay: float = 5.0
    progress_min: float = 5.0

    # Regression, per support index dropped
    regression_penalty: float = -10.0

    # Off-support: base + growth * (n - 1) for the n-th consecutive tick, floored at cap
    off_support_base: float = -0.05
    off_support_growth: float = -0.01
    off_support_cap: float = -1.0

    # Safety buffer budget in ticks
    safety_buffer_ticks: int = SAFETY_BUFFER_TICKS

    # Applied on every non-terminal, non-progress tick
    time_penalty: float = -0.01

    def progress_reward(self, index: int) -> float:
        """Reward for reaching support `index` as a new episode high."""
        return max(self.progress_min, self.progress_base - self.progress_decay * index)

    def off_support_penalty(self, ticks: int) -> float:
        """Penalty for the `ticks`-th consecutive tick off every support."""
        if ticks <= 0:
            return 0.0
        return max(self.off_support_cap, self.off_support_base + self.off_support_growth * (ticks - 1))

    def terminal_reward(self, reason: str) -> float:
        """Clamped reward for a terminal transition."""
        rewards = {
            GOAL: self.goal_reward,
            FALLEN: self.fall_reward,
            OUT_OF_BOUNDS: self.out_of_bounds_reward,
            SAFETY_BUFFER: self.safety_buffer_penalty,
            MAX_STEPS: self.timeout_reward,
            INVALID_STATE: 0.0,
        }
        if reason not in rewards:
            raise ValueError(f"Unknown termination reason: {reason}")
        return max(-self.terminal_clip, min(self.terminal_clip, rewards[reason]))

    def validate(self) -> 'RewardConfig':
        """Check the reward-design invariants. Returns self for chaining."""
        if self.goal_reward <= 0:
            raise ValueError(f"goal_reward must be positive, got {self.goal_reward}")
        for name in ('fall_reward', 'out_of_bounds_reward', 'safety_buffer_penalty',
                     'regression_penalty', 'time_penalty'):
            if getattr(self, name) >= 0:
                raise ValueError(f"{name} must be negative, got {getattr(self, name)}")
        if self.off_support_base > 0 or self.off_support_growth > 0 or self.off_support_cap >= 0:
            raise ValueError("off-support penalty terms must be non-positive with a negative cap")
        if self.progress_decay < 0:
            raise ValueError("progress_decay must be non-negative")
        if self.progress_min <= abs(self.off_support_cap):
            raise ValueError(
                f"progress_min ({self.progress_min}) must exceed the largest off-support "
                f"penalty ({abs(self.off_support_cap)})"
            )
        if self.safety_buffer_ticks < 1:
            raise ValueError("safety_buffer_ticks must be at least 1")
        if self.terminal_clip <= 0:
            raise ValueError("terminal_clip must be positive")
        return self

    def to_dict(self) -> Dict:
        return asdict(self)


@dataclass
class StepOutcome:
    """Everything the reward function needs to know about one transition."""
    support_index: int                    # Support stood on after the tick, -1 if none
    highest_support: int                  # Episode high *before* this tick, -1 if none
    last_support_index: int               # Last landing index before this tick (ground = -1)
    landing_index: Optional[int] = None   # Landing index after the tick, None if airborne
    off_support_ticks: int = 0            # Consecutive off-support ticks including this one
    termination: Optional[str] = None


DEFAULT_CONFIG = RewardConfig()


def calculate_reward(outcome: StepOutcome, config: RewardConfig = DEFAULT_CONFIG) -> float:
    """
    Calculate reward for a single transition.

    Args:
        outcome: Support/termination bookkeeping for the transition
        config: Reward configuration

    Returns:
        Total reward for this transition
    """
    # Terminal conditions dominate everything else
    if outcome.termination is not None:
        return config.terminal_reward(outcome.termination)

    # New episode high is a milestone and pays exactly the progress reward
    if outcome.support_index >= 0 and outcome.support_index > outcome.highest_support:
        return config.progress_reward(outcome.support_index)

    reward = config.time_penalty
    reward += _regression_penalty(outcome, config)
    if outcome.support_index < 0:
        reward += config.off_support_penalty(outcome.off_support_ticks)
    return reward


def _regression_penalty(outcome: StepOutcome, config: RewardConfig) -> float:
    if outcome.landing_index is None:
        return 0.0
    dropped = outcome.last_support_index - outcome.landing_index
    if dropped <= 0:
        return 0.0
    return config.regression_penalty * dropped


# Reward presets for different training phases

EXPLORATION_CONFIG = RewardConfig(
    # Generous milestones, gentle off-support pressure
    progress_base=60.0,
    progress_min=10.0,
    off_support_base=-0.02,
    off_support_growth=-0.005,
    off_support_cap=-0.5,
    safety_buffer_ticks=240,
)

BALANCED_CONFIG = RewardConfig()

SPARSE_CONFIG = RewardConfig(
    # Mostly terminal signal
    progress_base=10.0,
    progress_decay=1.0,
    progress_min=2.0,
    regression_penalty=-2.0,
    off_support_base=-0.01,
    off_support_growth=-0.001,
    off_support_cap=-0.2,
)


def get_config(preset: str = 'balanced') -> RewardConfig:
    """Get a fresh copy of a reward configuration preset."""
    presets = {
        'exploration': EXPLORATION_CONFIG,
        'balanced': BALANCED_CONFIG,
        'sparse': SPARSE_CONFIG,
    }
    return replace(presets.get(preset, BALANCED_CONFIG))
