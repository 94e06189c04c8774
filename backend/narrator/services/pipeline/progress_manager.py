"""
Progress management for pipeline stages.

Overall progress is a weighted sum: completed stages contribute their full
weight, the active stage contributes weight * stage_progress / 100. Within
analyzing and synthesizing, stage progress is settled / total.
"""

import logging

from narrator.models.schemas import JobKind, ProcessingStatus

logger = logging.getLogger(__name__)


class ProgressManager:
    """
    Calculates overall job progress from stage weights.

    Analysis dominates: each unit is one provider call, while compiling is
    local text work.

    Example:
        manager = ProgressManager()
        overall = manager.calculate_overall_progress(
            JobKind.VIDEO, ProcessingStatus.ANALYZING, 50
        )  # Returns 40 (10 + 30)
    """

    # Progress weights per job kind (each must sum to 100)
    STAGE_WEIGHTS = {
        JobKind.VIDEO: {
            ProcessingStatus.CHUNKING: 10,
            ProcessingStatus.ANALYZING: 60,
            ProcessingStatus.COMPILING: 10,
            ProcessingStatus.SYNTHESIZING: 20,
        },
        JobKind.IMAGE: {
            ProcessingStatus.ANALYZING: 70,
            ProcessingStatus.COMPILING: 10,
            ProcessingStatus.SYNTHESIZING: 20,
        },
        JobKind.BATCH: {
            ProcessingStatus.ANALYZING: 70,
            ProcessingStatus.COMPILING: 10,
            ProcessingStatus.SYNTHESIZING: 20,
        },
    }

    STAGE_ORDER = [
        ProcessingStatus.CHUNKING,
        ProcessingStatus.ANALYZING,
        ProcessingStatus.COMPILING,
        ProcessingStatus.SYNTHESIZING,
    ]

    def calculate_overall_progress(
        self,
        kind: JobKind,
        current_stage: ProcessingStatus,
        stage_progress: float = 100,
    ) -> float:
        """
        Calculate overall progress percentage.

        Args:
            kind: Job kind (selects the weight table)
            current_stage: Current processing stage
            stage_progress: Progress within current stage (0-100)

        Returns:
            Overall progress (0-100)
        """
        if current_stage.is_terminal and current_stage != ProcessingStatus.FAILED:
            return 100.0

        weights = self.STAGE_WEIGHTS[kind]
        stage_progress = max(0.0, min(stage_progress, 100.0))

        base_progress = 0.0
        for stage in self.STAGE_ORDER:
            if stage == current_stage:
                break
            base_progress += weights.get(stage, 0)
        else:
            # PENDING or FAILED: not a weighted stage
            return 0.0

        stage_contribution = (stage_progress / 100) * weights.get(current_stage, 0)
        return min(base_progress + stage_contribution, 100.0)

    def fraction_progress(
        self,
        kind: JobKind,
        stage: ProcessingStatus,
        settled: int,
        total: int,
    ) -> float:
        """Overall progress when `settled` of `total` items of a stage are done."""
        stage_progress = 100.0 if total == 0 else settled * 100.0 / total
        return self.calculate_overall_progress(kind, stage, stage_progress)

    def get_stage_start_percent(self, kind: JobKind, stage: ProcessingStatus) -> float:
        """Get the starting percentage for a stage."""
        return self.calculate_overall_progress(kind, stage, 0)

    def get_stage_end_percent(self, kind: JobKind, stage: ProcessingStatus) -> float:
        """Get the ending percentage for a stage."""
        return self.calculate_overall_progress(kind, stage, 100)
