"""
Training orchestrator.

Runs episodes of an Agent against a ClimbingEnv on a single asyncio event
loop, sharing it with whatever else the host runs. Per episode:

    IDLE -> RESET -> STEPPING* -> TERMINAL -> AGGREGATING -> (RESET | STOPPED)

The loop yields with a zero-delay `asyncio.sleep(0)` every
`yield_every_steps` steps or `yield_interval` seconds, whichever comes first.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional

import numpy as np

from .agent import Agent
from .config import (
    AUTO_SAVE_INTERVAL, CURRICULUM_THRESHOLD, SUCCESS_WINDOW, YIELD_EVERY_STEPS,
    YIELD_INTERVAL_S,
)
from .env import ClimbingEnv
from .metrics import RunningStats, TrainingStats
from .model import DivergenceError
from .persistence import EpisodeSummary, ModelStore, TrajectoryRecorder

logger = logging.getLogger(__name__)


@dataclass
class TrainingConfig:
    """Training loop configuration."""
    num_episodes: int = 1000
    auto_save_interval: int = AUTO_SAVE_INTERVAL   # Save every N episodes, 0 disables
    model_id: str = 'climbing-agent'

    # Cooperative yielding
    yield_every_steps: int = YIELD_EVERY_STEPS
    yield_interval: float = YIELD_INTERVAL_S

    # Curriculum
    success_window: int = SUCCESS_WINDOW
    curriculum_threshold: float = CURRICULUM_THRESHOLD

    explore: bool = True
    record_transitions: bool = False   # Collect transitions even without a recorder
    log_interval: int = 10


class TrainerState(Enum):
    IDLE = 'idle'
    RESET = 'reset'
    STEPPING = 'stepping'
    TERMINAL = 'terminal'
    AGGREGATING = 'aggregating'
    STOPPED = 'stopped'


@dataclass
class EpisodeResult:
    """Result of a single training episode."""
    episode: int
    total_reward: float
    steps: int
    highest_support: int
    success: bool
    termination: Optional[str]
    interrupted: bool = False
    train_stats: Dict[str, float] = field(default_factory=dict)
    transitions: List[Dict] = field(default_factory=list)


EpisodeCallback = Callable[[TrainingStats, EpisodeResult], None]


class TrainingOrchestrator:
    """
    Drives an agent through many episodes without blocking the event loop.

    Only DivergenceError stops a run early; any other per-episode exception
    is logged and counted in stats.episodes_failed.
    """

    def __init__(self, env: ClimbingEnv, agent: Agent,
                 config: Optional[TrainingConfig] = None,
                 store: Optional[ModelStore] = None,
                 recorder: Optional[TrajectoryRecorder] = None,
                 clock: Callable[[], float] = time.monotonic):
        self.env = env
        self.agent = agent
        self.config = config or TrainingConfig()
        self.store = store
        self.recorder = recorder
        self.clock = clock

        self.stats = TrainingStats(recent_successes=RunningStats(self.config.success_window))
        self.state = TrainerState.IDLE
        self.yield_count = 0

        self._stop_requested = False
        self._running = False
        self._resume_event: Optional[asyncio.Event] = None
        self._paused = False
        self._last_yield = 0.0
        self._steps_since_yield = 0

        self._episode_callbacks: List[EpisodeCallback] = []
        self._complete_callbacks: List[Callable[[TrainingStats], None]] = []

    # ------------------------------------------------------------------
    # Control
    # ------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def is_paused(self) -> bool:
        return self._paused

    def stop(self):
        """Request a stop. Checked between steps and between episodes."""
        self._stop_requested = True
        self.resume()
        logger.info("Training stop requested")

    def pause(self):
        self._paused = True
        if self._resume_event is not None:
            self._resume_event.clear()
        logger.info("Training paused")

    def resume(self):
        self._paused = False
        if self._resume_event is not None:
            self._resume_event.set()

    def on_episode_complete(self, callback: EpisodeCallback):
        self._episode_callbacks.append(callback)

    def on_training_complete(self, callback: Callable[[TrainingStats], None]):
        self._complete_callbacks.append(callback)

    # ------------------------------------------------------------------
    # Episode loop
    # ------------------------------------------------------------------

    async def _cooperative_yield(self, force: bool = False):
        self._steps_since_yield += 1
        now = self.clock()
        if (force or self._steps_since_yield >= self.config.yield_every_steps or
                now - self._last_yield >= self.config.yield_interval):
            await asyncio.sleep(0)
            self.yield_count += 1
            self._steps_since_yield = 0
            self._last_yield = self.clock()

    async def _wait_if_paused(self):
        if self._paused:
            if self._resume_event is None:
                self._resume_event = asyncio.Event()
            await self._resume_event.wait()

    async def run_episode(self) -> EpisodeResult:
        """
        Run one episode: act/step/observe until done, then end_episode().

        A stop request ends the episode early with interrupted=True; the
        agent's per-episode state is then dropped instead of trained on.
        """
        self.state = TrainerState.RESET
        observation = self.env.reset()
        self.state = TrainerState.STEPPING

        record = self.recorder is not None or self.config.record_transitions
        transitions = []
        interrupted = False
        last_stats: Dict[str, float] = {}

        while True:
            await self._wait_if_paused()
            if self._stop_requested:
                interrupted = True
                break

            action = self.agent.act(observation, explore=self.config.explore)
            next_observation, reward, done, info = self.env.step(action)
            train_stats = self.agent.observe(observation, action, reward, next_observation, done)
            if train_stats:
                last_stats = train_stats

            if record:
                transitions.append({
                    'step': info.get('step'),
                    'state': np.asarray(observation).tolist(),
                    'action': int(action),
                    'reward': reward,
                    'next_state': np.asarray(next_observation).tolist(),
                    'done': bool(done),
                    'support_index': info.get('support_index'),
                    'position': info.get('position'),
                })

            observation = next_observation
            if done or self.env.step_count >= self.env.max_steps:
                break
            await self._cooperative_yield()

        self.state = TrainerState.TERMINAL
        if interrupted:
            self.agent.abort_episode()
        else:
            end_stats = self.agent.end_episode()
            if end_stats:
                last_stats = {**last_stats, **end_stats}

        episode = self.env.episode_stats()
        return EpisodeResult(
            episode=self.stats.episodes_completed + 1,
            total_reward=episode.total_reward,
            steps=episode.steps,
            highest_support=episode.highest_support,
            success=episode.success,
            termination=episode.termination,
            interrupted=interrupted,
            train_stats=last_stats,
            transitions=transitions,
        )

    async def train(self, num_episodes: Optional[int] = None) -> TrainingStats:
        """
        Main training loop.

        Args:
            num_episodes: Episodes to attempt in this call (defaults to config)

        Returns:
            The run's TrainingStats
        """
        num_episodes = self.config.num_episodes if num_episodes is None else num_episodes
        self._stop_requested = False
        self._running = True
        self._resume_event = asyncio.Event()
        if not self._paused:
            self._resume_event.set()
        self._last_yield = self.clock()
        self._steps_since_yield = 0

        logger.info(f"Training {self.agent.name} for {num_episodes} episodes")
        attempted = 0
        try:
            while attempted < num_episodes and not self._stop_requested:
                attempted += 1
                try:
                    result = await self.run_episode()
                except DivergenceError as e:
                    self.stats.diverged = True
                    self.agent.abort_episode()
                    logger.error(f"Training halted, network diverged: {e}")
                    break
                except Exception:
                    self.stats.episodes_failed += 1
                    self.agent.abort_episode()
                    logger.exception(f"Episode {self.stats.episodes_completed + 1} failed")
                    await self._cooperative_yield(force=True)
                    continue

                if result.interrupted:
                    self.stats.episodes_interrupted += 1
                    break

                self.state = TrainerState.AGGREGATING
                self._aggregate(result)
                await self._cooperative_yield(force=True)
        finally:
            self._running = False
            self.state = TrainerState.STOPPED

        if self.stats.diverged:
            logger.error("Skipping final save of diverged model")
        else:
            self.save()

        logger.info(f"Training finished: {self.stats.episodes_completed} episodes, "
                    f"{self.stats.successes} successes, {self.stats.episodes_failed} failed")
        for callback in self._complete_callbacks:
            try:
                callback(self.stats)
            except Exception:
                logger.exception("Training-complete callback failed")
        return self.stats

    # ------------------------------------------------------------------
    # Aggregation
    # ------------------------------------------------------------------

    def _aggregate(self, result: EpisodeResult):
        loss = result.train_stats.get('loss', result.train_stats.get('policy_loss'))
        self.stats.record_episode(result.total_reward, result.steps, result.highest_support,
                                  result.success, loss)

        episode = self.stats.episodes_completed
        if self.config.log_interval and episode % self.config.log_interval == 0:
            logger.info(f"Episode {episode}: reward {result.total_reward:.2f}, "
                        f"steps {result.steps}, support {result.highest_support}, "
                        f"{result.termination} | avg {self.stats.average_reward():.2f}, "
                        f"success {self.stats.success_rate():.1%}")
        else:
            logger.debug(f"Episode {episode}: reward {result.total_reward:.2f}, "
                         f"{result.termination}")

        if self.recorder is not None:
            summary = EpisodeSummary(
                episode=result.episode,
                total_reward=result.total_reward,
                steps=result.steps,
                highest_support=result.highest_support,
                success=result.success,
                termination=result.termination,
                transitions=result.transitions,
            )
            try:
                self.recorder.record(summary)
            except Exception as e:
                logger.error(f"Trajectory recording failed: {e}")

        for callback in self._episode_callbacks:
            try:
                callback(self.stats, result)
            except Exception:
                logger.exception("Episode-complete callback failed")

        self._maybe_advance_curriculum()

        interval = self.config.auto_save_interval
        if interval and episode % interval == 0:
            self.save()

    def _maybe_advance_curriculum(self):
        if not self.env.curriculum_enabled or not self.stats.window_full():
            return
        if self.stats.success_rate() < self.config.curriculum_threshold:
            return
        if self.env.advance_curriculum():
            self.stats.curriculum_level = self.env.curriculum_level
            self.stats.reset_success_window()

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def save(self) -> bool:
        """Hand parameters and stats to the model store. Failures are logged, not raised."""
        if self.store is None:
            return False
        metadata = {
            'agent': self.agent.name,
            'stats': self.stats.to_metadata(),
            'hyperparameters': self.agent.get_hyperparameters(),
            'reward_config': self.env.reward_config.to_dict(),
        }
        try:
            self.store.save(self.config.model_id, self.agent.state_dict(), metadata)
        except Exception as e:
            logger.error(f"Failed to save model '{self.config.model_id}': {e}")
            return False
        return True

    def resume_from(self, model_id: Optional[str] = None):
        """Load parameters and stats counters saved under model_id."""
        if self.store is None:
            raise ValueError("No model store configured")
        model_id = model_id or self.config.model_id
        parameters, metadata = self.store.load(model_id)
        self.agent.load_state_dict(parameters)
        self.stats.restore(metadata.get('stats', {}))
        if self.env.curriculum_enabled:
            level = min(self.stats.curriculum_level, len(self.env.curriculum) - 1)
            self.env.set_curriculum_level(level)
            self.stats.curriculum_level = level
        logger.info(f"Resumed '{model_id}' at episode {self.stats.episodes_completed}")
