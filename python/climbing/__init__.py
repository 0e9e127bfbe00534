# Staircase climbing reinforcement-learning trainer

from .config import OBSERVATION_DIM, ACTION_DIM
from .rewards import RewardConfig, StepOutcome, calculate_reward, get_config as get_reward_config
from .physics import PhysicsBackend, StaircaseLayout, StaircaseSimulator, Support, build_staircase
from .env import Action, ClimbingEnv, CurriculumLevel, DEFAULT_CURRICULUM, EpisodeStats
from .model import DivergenceError
from .agent import Agent
from .dqn import DQNAgent, DQNConfig, ReplayBuffer
from .ppo import PPOAgent, PPOConfig, Trajectory, ActionSample
from .metrics import TrainingStats
from .persistence import (
    CheckpointStore, EpisodeSummary, JsonlTrajectoryRecorder, ModelStore,
    TrajectoryHistory, TrajectoryRecorder,
)
from .orchestrator import EpisodeResult, TrainerState, TrainingConfig, TrainingOrchestrator

__all__ = [
    'OBSERVATION_DIM',
    'ACTION_DIM',
    'RewardConfig',
    'StepOutcome',
    'calculate_reward',
    'get_reward_config',
    'PhysicsBackend',
    'StaircaseLayout',
    'StaircaseSimulator',
    'Support',
    'build_staircase',
    'Action',
    'ClimbingEnv',
    'CurriculumLevel',
    'DEFAULT_CURRICULUM',
    'EpisodeStats',
    'DivergenceError',
    'Agent',
    'DQNAgent',
    'DQNConfig',
    'ReplayBuffer',
    'PPOAgent',
    'PPOConfig',
    'Trajectory',
    'ActionSample',
    'TrainingStats',
    'CheckpointStore',
    'EpisodeSummary',
    'JsonlTrajectoryRecorder',
    'ModelStore',
    'TrajectoryHistory',
    'TrajectoryRecorder',
    'EpisodeResult',
    'TrainerState',
    'TrainingConfig',
    'TrainingOrchestrator',
]
