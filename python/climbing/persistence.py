"""
Persistence collaborators for the training orchestrator.

- ModelStore: save/load agent parameters plus JSON metadata
- TrajectoryRecorder: receives one EpisodeSummary per completed episode

The orchestrator treats both as fallible: it catches and logs their errors
and keeps training with in-memory state.
"""

import json
import logging
import os
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import asdict, dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

import torch

logger = logging.getLogger(__name__)


class ModelStore(ABC):
    """Save and load agent parameters by model id."""

    @abstractmethod
    def save(self, model_id: str, parameters: Dict[str, Any], metadata: Dict[str, Any]):
        pass

    @abstractmethod
    def load(self, model_id: str) -> Tuple[Dict[str, Any], Dict[str, Any]]:
        """Return (parameters, metadata). Raises FileNotFoundError if missing."""
        pass

    @abstractmethod
    def exists(self, model_id: str) -> bool:
        pass


class CheckpointStore(ModelStore):
    """
    Checkpoints on local disk.

    Each model id maps to `<id>.pt` (torch.save of the parameters) and
    `<id>_state.json` (metadata, save version and timestamp). The version
    counts saves of that id.
    """

    def __init__(self, directory: Union[str, Path]):
        self.directory = Path(directory)

    def _paths(self, model_id: str) -> Tuple[Path, Path]:
        if not model_id or os.sep in model_id or model_id.startswith('.'):
            raise ValueError(f"Invalid model id: {model_id!r}")
        return self.directory / f'{model_id}.pt', self.directory / f'{model_id}_state.json'

    def exists(self, model_id: str) -> bool:
        model_path, _ = self._paths(model_id)
        return model_path.exists()

    def version(self, model_id: str) -> int:
        _, state_path = self._paths(model_id)
        if not state_path.exists():
            return 0
        with open(state_path) as f:
            return json.load(f).get('version', 0)

    def save(self, model_id: str, parameters: Dict[str, Any], metadata: Dict[str, Any]):
        """Save checkpoint."""
        model_path, state_path = self._paths(model_id)
        os.makedirs(self.directory, exist_ok=True)

        version = self.version(model_id) + 1
        torch.save(parameters, model_path)
        with open(state_path, 'w') as f:
            json.dump({
                'model_id': model_id,
                'version': version,
                'saved_at': datetime.now().isoformat(),
                'metadata': metadata,
            }, f, indent=2)

        logger.info(f"Saved checkpoint {model_path} (v{version})")

    def load(self, model_id: str) -> Tuple[Dict[str, Any], Dict[str, Any]]:
        """Load checkpoint."""
        model_path, state_path = self._paths(model_id)
        if not model_path.exists():
            raise FileNotFoundError(f"No checkpoint for model '{model_id}' in {self.directory}")

        parameters = torch.load(model_path, map_location='cpu', weights_only=False)
        metadata = {}
        if state_path.exists():
            with open(state_path) as f:
                metadata = json.load(f).get('metadata', {})
        return parameters, metadata

    def list_models(self) -> List[str]:
        if not self.directory.exists():
            return []
        return sorted(p.stem for p in self.directory.glob('*.pt'))


@dataclass
class EpisodeSummary:
    """Summary of one completed episode, with its transitions."""
    episode: int
    total_reward: float
    steps: int
    highest_support: int
    success: bool
    termination: Optional[str]
    transitions: List[Dict] = field(default_factory=list)
    timestamp: str = field(default_factory=lambda: datetime.now().isoformat())

    def to_dict(self, include_transitions: bool = True) -> Dict:
        data = asdict(self)
        if not include_transitions:
            data.pop('transitions')
        return data


class TrajectoryRecorder(ABC):
    """Receives completed episodes. Never read back by the trainer."""

    @abstractmethod
    def record(self, summary: EpisodeSummary):
        pass


class TrajectoryHistory(TrajectoryRecorder):
    """Keeps the most recent episodes in memory."""

    def __init__(self, max_episodes: int = 100):
        self.episodes = deque(maxlen=max_episodes)

    def record(self, summary: EpisodeSummary):
        self.episodes.append(summary)

    def best(self) -> Optional[EpisodeSummary]:
        if not self.episodes:
            return None
        return max(self.episodes, key=lambda s: s.total_reward)

    def successful(self) -> List[EpisodeSummary]:
        return [s for s in self.episodes if s.success]

    def clear(self):
        self.episodes.clear()

    def __len__(self):
        return len(self.episodes)


class JsonlTrajectoryRecorder(TrajectoryRecorder):
    """Appends one JSON line per episode."""

    def __init__(self, path: Union[str, Path], include_transitions: bool = False):
        self.path = Path(path)
        self.include_transitions = include_transitions

    def record(self, summary: EpisodeSummary):
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, 'a') as f:
            f.write(json.dumps(summary.to_dict(self.include_transitions)) + '\n')


def load_trajectory_log(path: Union[str, Path]) -> List[Dict]:
    """Load episode summaries from a JSONL file."""
    logs = []
    with open(path) as f:
        for line in f:
            line = line.strip()
            if line:
                logs.append(json.loads(line))
    return logs
