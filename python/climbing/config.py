"""
Central Configuration for the Staircase Climbing RL Trainer

Single source of truth for shared dimensions and default hyperparameters.
Component dataclasses (RewardConfig, DQNConfig, PPOConfig, TrainingConfig)
take their defaults from here.
"""

import os
from pathlib import Path

# =============================================================================
# Dimensions
# =============================================================================
# position(3) + velocity(3) + distance_to_goal + goal_direction(2)
# + support_index + distance_to_next_support + on_support + safety_remaining
OBSERVATION_DIM = 13
ACTION_DIM = 6

# =============================================================================
# Physics
# =============================================================================
PHYSICS_TIMESTEP = 1.0 / 60.0
GRAVITY = -9.81

# Vertical distance from a support's top surface within which the agent still
# counts as standing on it. Too tight and solver jitter drops the agent off the
# support between ticks; too loose and mid-air states just above a step read
# as grounded.
SUPPORT_HEIGHT_TOLERANCE = 0.15

# =============================================================================
# Episode
# =============================================================================
MAX_EPISODE_STEPS = 1000
SAFETY_BUFFER_TICKS = 180     # 3 seconds at 60 Hz off any support

# =============================================================================
# DQN Hyperparameters
# =============================================================================
DQN_LEARNING_RATE = 3e-4
GAMMA = 0.99
EPSILON_START = 1.0
EPSILON_MIN = 0.01
EPSILON_DECAY = 0.995     # Per episode
REPLAY_CAPACITY = 10000
BATCH_SIZE = 32
TARGET_UPDATE_INTERVAL = 100  # Training steps between target syncs
TARGET_CLIP = 100.0       # Bootstrap targets clamped to +/- this
DQN_MAX_GRAD_NORM = 1.0

# =============================================================================
# PPO Hyperparameters
# =============================================================================
PPO_LEARNING_RATE = 3e-4
GAE_LAMBDA = 0.95
CLIP_EPSILON = 0.2
ENTROPY_COEF = 0.01
PPO_EPOCHS = 4
PPO_MAX_GRAD_NORM = 0.5

# =============================================================================
# Network Architecture
# =============================================================================
HIDDEN_DIM = 64

# =============================================================================
# Training Loop
# =============================================================================
AUTO_SAVE_INTERVAL = 10   # Save every N episodes
YIELD_EVERY_STEPS = 50
YIELD_INTERVAL_S = 1.0 / 60.0
SUCCESS_WINDOW = 20
CURRICULUM_THRESHOLD = 0.8

# =============================================================================
# Paths (configurable via environment variables)
# =============================================================================
_DEFAULT_BASE = Path.home() / '.climbing-ai'
_env_dir = os.environ.get('CLIMBING_AI_DIR')

if _env_dir:
    BASE_DIR = Path(_env_dir)
    if BASE_DIR.exists() and not BASE_DIR.is_dir():
        raise ValueError(
            f"CLIMBING_AI_DIR='{_env_dir}' is not a directory. "
            f"Set it to a valid directory path."
        )
else:
    BASE_DIR = _DEFAULT_BASE

CHECKPOINT_DIR = BASE_DIR / 'checkpoints'
LOG_DIR = BASE_DIR / 'logs'
TRAJECTORY_LOG_PATH = LOG_DIR / 'trajectories.jsonl'
