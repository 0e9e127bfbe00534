"""Tests for TrainingStats and RunningStats."""

import json

import pytest
import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from climbing.metrics import RunningStats, TrainingStats


class TestRunningStats:

    def test_window(self):
        stats = RunningStats(window_size=3)
        for value in [1.0, 2.0, 3.0, 4.0]:
            stats.add(value)
        assert len(stats) == 3
        assert stats.mean() == pytest.approx(3.0)
        assert stats.max() == 4.0

    def test_empty(self):
        stats = RunningStats()
        assert stats.mean() == 0.0
        assert stats.std() == 0.0


class TestTrainingStats:

    @pytest.fixture
    def stats(self):
        return TrainingStats(recent_successes=RunningStats(4))

    def test_record_episode(self, stats):
        stats.record_episode(10.0, 100, 2, success=False, loss=0.3)
        stats.record_episode(50.0, 80, 5, success=True)
        assert stats.episodes_completed == 2
        assert stats.total_steps == 180
        assert stats.successes == 1
        assert stats.best_reward == 50.0
        assert stats.best_support == 5
        assert stats.average_reward() == pytest.approx(30.0)
        assert stats.success_rate() == pytest.approx(0.5)
        assert stats.losses.mean() == pytest.approx(0.3)

    def test_non_finite_loss_ignored(self, stats):
        stats.record_episode(0.0, 10, -1, success=False, loss=float('nan'))
        assert len(stats.losses) == 0

    def test_success_window(self, stats):
        for _ in range(3):
            stats.record_episode(0.0, 1, -1, success=True)
        assert not stats.window_full()
        stats.record_episode(0.0, 1, -1, success=True)
        assert stats.window_full()
        stats.reset_success_window()
        assert stats.success_rate() == 0.0
        assert stats.successes == 4

    def test_metadata_is_json_safe(self, stats):
        json.dumps(stats.to_metadata())
        stats.record_episode(1.0, 10, 0, success=False)
        metadata = stats.to_metadata()
        assert json.loads(json.dumps(metadata)) == metadata

    def test_restore(self, stats):
        stats.record_episode(7.0, 10, 3, success=True)
        stats.curriculum_level = 2
        restored = TrainingStats()
        restored.restore(stats.to_metadata())
        assert restored.episodes_completed == 1
        assert restored.best_reward == 7.0
        assert restored.best_support == 3
        assert restored.curriculum_level == 2

    def test_restore_without_best_reward(self):
        restored = TrainingStats()
        restored.restore(TrainingStats().to_metadata())
        assert restored.best_reward == float('-inf')


if __name__ == '__main__':
    pytest.main([__file__, '-v'])
