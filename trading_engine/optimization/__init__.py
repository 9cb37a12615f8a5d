"""Optimization: search spaces, objectives, parallel candidate sweeps, walk-forward."""

from trading_engine.optimization.objectives import OBJECTIVES, score
from trading_engine.optimization.optimizer import (
    CandidateResult,
    Optimizer,
    WalkForwardResult,
    rank_results,
    run_candidate,
    walk_forward,
)
from trading_engine.optimization.spaces import build_candidates, candidate_list, grid_space, random_space

__all__ = [
    "OBJECTIVES",
    "CandidateResult",
    "Optimizer",
    "WalkForwardResult",
    "build_candidates",
    "candidate_list",
    "grid_space",
    "random_space",
    "rank_results",
    "run_candidate",
    "score",
    "walk_forward",
]
