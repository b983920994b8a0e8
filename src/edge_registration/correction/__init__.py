"""
Loop Closure Correction Module

Drift correction for aligned loops: an explicit loop-constraint pass that
spreads the closing error along the loop, followed by a global relaxation
pass, combined by LoopClosureCorrector.
"""

from .base import CorrectionPass, CorrectionResult
from .loop_drift import LoopDriftCorrection
from .relaxation import PoseGraphRelaxation
from .corrector import LoopClosureCorrector, CorrectionOutcome, fold_correctives

__all__ = [
    "CorrectionPass",
    "CorrectionResult",
    "LoopDriftCorrection",
    "PoseGraphRelaxation",
    "LoopClosureCorrector",
    "CorrectionOutcome",
    "fold_correctives",
]
