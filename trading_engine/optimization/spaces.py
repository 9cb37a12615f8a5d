"""
Parameter search spaces. A candidate is a plain dict of overrides applied with
Config.with_overrides (Config field names, or strategy parameters).
"""

from __future__ import annotations
import itertools
import random
from typing import Any, Dict, List, Mapping, Optional, Sequence

from trading_engine.core.errors import ConfigError


def _stepped(spec: Mapping[str, Any]) -> List[Any]:
    """Every point of a stepped range, max included (float noise rounded away)."""
    lo, step = spec["min"], spec["step"]
    steps = int(round((spec["max"] - lo) / step))
    return [round(lo + i * step, 10) for i in range(steps + 1)]


def _values(key: str, spec: Any) -> List[Any]:
    if isinstance(spec, (list, tuple)):
        if not spec:
            raise ConfigError(f"grid for {key!r} is empty")
        return list(spec)
    if isinstance(spec, Mapping):
        kind = spec.get("type")
        if kind == "fixed":
            return [spec["value"]]
        if kind == "choice":
            return list(spec["values"])
        if kind == "range" and "step" in spec:
            return _stepped(spec)
        raise ConfigError(f"cannot enumerate {key!r}: {dict(spec)}")
    return [spec]


def grid_space(params: Mapping[str, Any]) -> List[Dict[str, Any]]:
    """Cartesian product of the value lists, in key order then value order."""
    keys = list(params)
    axes = [_values(k, params[k]) for k in keys]
    return [dict(zip(keys, combo)) for combo in itertools.product(*axes)]


def _sample(key: str, spec: Any, rng: random.Random) -> Any:
    if isinstance(spec, (list, tuple)):
        return rng.choice(list(spec))
    if not isinstance(spec, Mapping):
        return spec
    kind = spec.get("type")
    if kind == "fixed":
        return spec["value"]
    if kind == "choice":
        return rng.choice(list(spec["values"]))
    if kind == "range":
        lo, hi = spec["min"], spec["max"]
        if isinstance(lo, int) and isinstance(hi, int) and "step" not in spec:
            return rng.randint(lo, hi)
        if "step" in spec:
            return rng.choice(_stepped(spec))
        return rng.uniform(lo, hi)
    raise ConfigError(f"unknown parameter spec for {key!r}: {dict(spec)}")


def random_space(params: Mapping[str, Any], samples: int, seed: Optional[int] = None) -> List[Dict[str, Any]]:
    """samples random candidates; the same seed always gives the same list."""
    if samples < 1:
        raise ConfigError(f"samples must be >= 1, got {samples}")
    rng = random.Random(seed)
    return [{k: _sample(k, spec, rng) for k, spec in params.items()} for _ in range(samples)]


def candidate_list(candidates: Sequence[Mapping[str, Any]]) -> List[Dict[str, Any]]:
    """Explicit candidates, copied."""
    out = []
    for i, c in enumerate(candidates):
        if not isinstance(c, Mapping):
            raise ConfigError(f"candidate #{i} is not a mapping: {c!r}")
        out.append(dict(c))
    return out


def build_candidates(
    mode: str,
    params: Any,
    samples: int = 20,
    seed: Optional[int] = None,
) -> List[Dict[str, Any]]:
    """Candidates for a configured mode: grid, random or list."""
    if mode == "grid":
        return grid_space(params)
    if mode == "random":
        return random_space(params, samples, seed)
    if mode == "list":
        # from config.yaml the list sits under params.candidates
        if isinstance(params, Mapping):
            params = params.get("candidates", [])
        return candidate_list(params)
    raise ConfigError(f"unknown optimization mode {mode!r} (grid, random, list)")
