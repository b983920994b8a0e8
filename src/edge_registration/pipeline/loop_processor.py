"""
Per-loop processing.

Aligns the frames of one loop relative to its start edge, optionally runs
loop closure correction, and returns a new Loop with the inner results.
Processing reads nothing but the loop, the frame source and the
configuration, so different loops can run in separate processes.
"""

from __future__ import annotations

from dataclasses import replace
from typing import List, Optional

from .loop import Loop
from ..alignment.chain import AlignmentChain
from ..correction.corrector import LoopClosureCorrector
from ..preprocessing.filters import FrameFilter
from ..preprocessing.frame_source import Frame, FrameSource
from ..utils.logging import setup_logger

logger = setup_logger(__name__)


class LoopProcessor:
    def __init__(
        self,
        config,
        frame_source: FrameSource,
        chain: Optional[AlignmentChain] = None,
        frame_filter: Optional[FrameFilter] = None,
        corrector: Optional[LoopClosureCorrector] = None,
    ):
        self.config = config
        self.frame_source = frame_source
        self.chain = chain or AlignmentChain.from_config(config)
        self.frame_filter = frame_filter or FrameFilter.from_config(config)
        self.corrector = corrector or LoopClosureCorrector.from_config(config)

    def read_inner_frames(self, loop: Loop) -> List[Frame]:
        """Read and filter every frame of the loop's inclusive span."""
        frames = list(self.frame_source.read(loop.start, loop.end, self.config.frames.read_step))
        return self.frame_filter.apply(frames)

    def process(self, loop: Loop) -> Loop:
        """
        Align one loop.

        Args:
            loop: Loop with edge fields filled by edge-level alignment.

        Returns:
            A new Loop with inner indices, transforms, fitness scores and keypoints
            for the frames it owns. The input loop is not modified.
        """
        frames = self.read_inner_frames(loop)
        logger.info(f"Processing loop {loop.start}->{loop.end} ({len(frames)} frames)")

        aligned = self.chain.align(frames, seed=loop.edge_transforms[0])
        transforms = aligned.transforms
        keypoints = aligned.transformed_keypoints

        if self.config.registration.loop_closure_correction:
            if loop.edge_keypoints is None:
                logger.warning(
                    f"Loop {loop.start}->{loop.end} has no edge keypoints; skipping loop closure correction"
                )
            else:
                outcome = self.corrector.correct(
                    aligned.frames, aligned.transformed_keypoints, transforms, loop.edge_keypoints
                )
                transforms = outcome.transforms
                keypoints = outcome.transformed_keypoints

        owned = len(frames)
        if not loop.includes_end_edge and frames and frames[-1].index == loop.end:
            # The end edge belongs to the next loop
            owned -= 1

        return replace(
            loop,
            inner_frame_indices=[f.index for f in frames[:owned]],
            inner_transforms=list(transforms[:owned]),
            inner_fitness_scores=list(aligned.fitness_scores[:owned]),
            inner_keypoints=list(keypoints[:owned]),
        )


def process_loop(loop: Loop, processor: LoopProcessor) -> Loop:
    """Module-level worker so loop tasks can be pickled."""
    return processor.process(loop)
