#!/usr/bin/env python3
"""
Headless training for the staircase climbing agent.

Usage:
    python -m climbing.train --agent dqn --episodes 500
    python -m climbing.train --agent ppo --episodes 1000 --curriculum
    python -m climbing.train --agent ppo --resume climbing-ppo
"""

import argparse
import asyncio
import logging
import os
import sys
from datetime import datetime
from typing import List, Optional

import numpy as np
import torch

from .agent import Agent
from .config import CHECKPOINT_DIR, LOG_DIR, TRAJECTORY_LOG_PATH
from .dqn import DQNAgent, DQNConfig
from .env import DEFAULT_CURRICULUM, ClimbingEnv
from .orchestrator import TrainingConfig, TrainingOrchestrator
from .persistence import CheckpointStore, JsonlTrajectoryRecorder
from .ppo import PPOAgent, PPOConfig
from .rewards import get_config as get_reward_config


def setup_logging(log_dir: str = str(LOG_DIR), verbose: bool = False) -> str:
    """Configure logging to file and console."""
    os.makedirs(log_dir, exist_ok=True)
    log_file = os.path.join(log_dir, f"train_{datetime.now().strftime('%Y%m%d_%H%M%S')}.log")

    formatter = logging.Formatter('%(asctime)s [%(levelname)s] %(message)s')

    file_handler = logging.FileHandler(log_file)
    file_handler.setFormatter(formatter)

    logger = logging.getLogger()
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    logger.addHandler(file_handler)

    try:
        if sys.stdout is not None and hasattr(sys.stdout, 'write'):
            console_handler = logging.StreamHandler(sys.stdout)
            console_handler.setFormatter(formatter)
            logger.addHandler(console_handler)
    except (AttributeError, OSError) as e:
        logging.debug(f"Could not add console handler: {e}")

    return log_file


def build_agent(kind: str, lr: Optional[float] = None, seed: Optional[int] = None,
                device: str = 'cpu') -> Agent:
    """Create a DQN or PPO agent with default hyperparameters."""
    if kind == 'dqn':
        config = DQNConfig(seed=seed)
        if lr is not None:
            config.lr = lr
        return DQNAgent(config, device=device)
    if kind == 'ppo':
        config = PPOConfig(seed=seed)
        if lr is not None:
            config.lr = lr
        return PPOAgent(config, device=device)
    raise ValueError(f"Unknown agent type: {kind}")


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description='Train a staircase climbing agent')

    parser.add_argument('--agent', type=str, default='dqn', choices=['dqn', 'ppo'],
                        help='Learning algorithm (default: dqn)')
    parser.add_argument('--episodes', type=int, default=1000,
                        help='Number of episodes to train (default: 1000)')
    parser.add_argument('--curriculum', action='store_true',
                        help='Start on the easiest curriculum level')
    parser.add_argument('--reward-preset', type=str, default='balanced',
                        choices=['exploration', 'balanced', 'sparse'],
                        help='Reward configuration preset')
    parser.add_argument('--lr', type=float, default=None,
                        help='Learning rate (default: per-agent)')
    parser.add_argument('--seed', type=int, default=None,
                        help='Random seed for reproducibility')

    parser.add_argument('--checkpoint-dir', type=str, default=str(CHECKPOINT_DIR),
                        help='Checkpoint directory')
    parser.add_argument('--checkpoint-interval', type=int, default=10,
                        help='Save checkpoint every N episodes (default: 10)')
    parser.add_argument('--model-id', type=str, default=None,
                        help='Checkpoint name (default: climbing-<agent>)')
    parser.add_argument('--resume', type=str, default=None,
                        help='Resume from the named checkpoint')
    parser.add_argument('--log-dir', type=str, default=str(LOG_DIR),
                        help='Log directory')
    parser.add_argument('--trajectory-log', type=str, default=str(TRAJECTORY_LOG_PATH),
                        help='JSONL file receiving one line per episode')
    parser.add_argument('--log-transitions', action='store_true',
                        help='Write every transition into the trajectory log')
    parser.add_argument('--verbose', action='store_true',
                        help='Debug-level logging')

    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None):
    args = parse_args(argv)

    log_file = setup_logging(args.log_dir, args.verbose)
    logging.info(f"Training starting, log file: {log_file}")

    if args.seed is not None:
        np.random.seed(args.seed)
        torch.manual_seed(args.seed)

    device = 'cuda' if torch.cuda.is_available() else 'cpu'
    env = ClimbingEnv(
        reward_config=get_reward_config(args.reward_preset),
        curriculum=DEFAULT_CURRICULUM if args.curriculum else None,
    )
    agent = build_agent(args.agent, lr=args.lr, seed=args.seed, device=device)

    config = TrainingConfig(
        num_episodes=args.episodes,
        auto_save_interval=args.checkpoint_interval,
        model_id=args.model_id or args.resume or f'climbing-{args.agent}',
    )
    orchestrator = TrainingOrchestrator(
        env, agent, config,
        store=CheckpointStore(args.checkpoint_dir),
        recorder=JsonlTrajectoryRecorder(args.trajectory_log,
                                         include_transitions=args.log_transitions),
    )
    if args.resume:
        orchestrator.resume_from(args.resume)

    try:
        stats = asyncio.run(orchestrator.train())
    except KeyboardInterrupt:
        logging.info("Training interrupted by user")
        return 130

    logging.info(f"Episodes: {stats.episodes_completed} | "
                 f"Successes: {stats.successes} | "
                 f"Best support: {stats.best_support} | "
                 f"Avg reward: {stats.average_reward():.2f}")
    return 1 if stats.diverged else 0


if __name__ == '__main__':
    sys.exit(main())
