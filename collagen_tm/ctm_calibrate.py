#!/usr/bin/env python3
"""
================================================================================
Collagen-Tm Calibrate — Library Scoring & Coordinate Descent
================================================================================

"Which parameters fit the measured Tm values?" — bounded greedy search.

Objective:
  SSD = Σ_n deviation_n²       over the whole sample library

Eligibility:
  A scalar is tuned only when the library exercises it: more than
  `count_threshold` occurrences in a counting pass over every sample,
  every role assignment and every Yaa site. Pro/Hyp scalars that make no
  chemical sense stay pinned (ctm_params.apply_forced_exclusions).

Search (per round, fixed visiting order):
  v → v − δ   keep if inside [ref − maxDev, ref + maxDev] and SSD drops
  v → v + δ   otherwise, same test
  v           otherwise, restored exactly
  Stop after a round without change or after `max_rounds`.

Library scoring runs in two contiguous halves on a two-thread executor.
Each worker reads a frozen parameter snapshot and writes only its own
result slots; the caller joins both before summing.

License: MIT
================================================================================
"""

from __future__ import annotations

import logging
from collections import Counter
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Iterator, Optional, Sequence

import numpy as np

from .ctm_core import N_RESIDUES, TripleHelixSample, residue_letter
from .ctm_params import ParameterKey, ParameterSet, TuningMask, apply_forced_exclusions
from .ctm_score import HelixScore, score_helix

logger = logging.getLogger(__name__)


# ==============================================================================
# Configuration
# ==============================================================================

DEFAULT_DELTA = 0.1          # °C per trial step
DEFAULT_MAX_ROUNDS = 25
DEFAULT_MAX_DEV = 2.0        # max excursion from reference values
DEFAULT_COUNT_THRESHOLD = 25  # occurrences needed to tune a scalar
LOW_CONFIDENCE_CUT = 25
OUTLIER_DEVIATION = 9.0      # |deviation| reported as outlier
SCORING_WORKERS = 2


@dataclass
class CalibrationConfig:
    delta: float = DEFAULT_DELTA
    max_rounds: int = DEFAULT_MAX_ROUNDS
    max_dev: float = DEFAULT_MAX_DEV
    count_threshold: int = DEFAULT_COUNT_THRESHOLD
    workers: int = SCORING_WORKERS

    def __post_init__(self):
        if self.delta <= 0:
            raise ValueError(f"delta must be positive, got {self.delta}")
        if self.max_rounds < 0:
            raise ValueError(f"max_rounds must be >= 0, got {self.max_rounds}")
        if self.workers < 1:
            raise ValueError(f"workers must be >= 1, got {self.workers}")


# ==============================================================================
# Interaction Counting
# ==============================================================================

@dataclass
class InteractionCounts:
    prop_x: np.ndarray = field(default_factory=lambda: np.zeros(N_RESIDUES, dtype=int))
    prop_y: np.ndarray = field(default_factory=lambda: np.zeros(N_RESIDUES, dtype=int))
    axial: np.ndarray = field(
        default_factory=lambda: np.zeros((N_RESIDUES, N_RESIDUES), dtype=int))
    lateral: np.ndarray = field(
        default_factory=lambda: np.zeros((N_RESIDUES, N_RESIDUES), dtype=int))


def register_contacts(sample: TripleHelixSample, a: int, b: int,
                      c: int) -> Iterator[tuple[str, int, int]]:
    """
    Every contact a canonical {a b c} register could form, as
    (kind, Yaa residue, partner residue).
    """
    enc = sample.encoded
    lead, mid, trail = enc[a], enc[b], enc[c]
    n_aa = sample.num_aa
    for x in sample.yaa_positions():
        if x + 2 < n_aa:
            yield 'axial', int(lead[x]), int(mid[x + 2])
            yield 'axial', int(mid[x]), int(trail[x + 2])
        if x + 5 < n_aa:
            yield 'axial', int(trail[x]), int(lead[x + 5])
        if x > 1:
            yield 'lateral', int(lead[x]), int(mid[x - 1])
            yield 'lateral', int(mid[x]), int(trail[x - 1])
        if x + 2 < n_aa:
            yield 'lateral', int(trail[x]), int(lead[x + 2])


def count_interactions(library: Sequence[TripleHelixSample]) -> InteractionCounts:
    """Occurrences of each propensity and contact across the library."""
    counts = InteractionCounts()
    for sample in library:
        n = sample.num_pep
        for a in range(n):
            chain = sample.encoded[a]
            for p in range(sample.num_aa):
                if sample.is_xaa(p):
                    counts.prop_x[chain[p]] += 1
                elif sample.is_yaa(p):
                    counts.prop_y[chain[p]] += 1
            for b in range(n):
                for c in range(n):
                    for kind, i, j in register_contacts(sample, a, b, c):
                        getattr(counts, kind)[i, j] += 1
    return counts


def auto_tuning_mask(counts: InteractionCounts,
                     threshold: int = DEFAULT_COUNT_THRESHOLD,
                     base: Optional[TuningMask] = None) -> TuningMask:
    """Scalars seen more than `threshold` times (plus `base`), minus forced pins."""
    mask = TuningMask(False, counts.prop_x > threshold, counts.prop_y > threshold,
                      counts.axial > threshold, counts.lateral > threshold)
    if base is not None:
        mask = mask | base
    mask.length = False
    return apply_forced_exclusions(mask)


def low_confidence_interactions(sample: TripleHelixSample, counts: InteractionCounts,
                                cut: int = LOW_CONFIDENCE_CUT) -> tuple[int, Counter]:
    """
    Contacts of a sample that the library barely exercises.

    Returns the total number of weakly-supported contacts over all
    canonical registers, and a Counter keyed by (kind, 'Y', 'X') letters.
    """
    poor = Counter()
    total = 0
    n = sample.num_pep
    for a in range(n):
        for b in range(n):
            for c in range(n):
                for kind, i, j in register_contacts(sample, a, b, c):
                    if getattr(counts, kind)[i, j] < cut:
                        total += 1
                        poor[(kind, residue_letter(i), residue_letter(j))] += 1
    return total, poor


# ==============================================================================
# Library Scoring
# ==============================================================================

def split_ranges(n: int, parts: int = SCORING_WORKERS) -> list[tuple[int, int]]:
    """Contiguous, non-overlapping index ranges covering range(n)."""
    bounds = [n * k // parts for k in range(parts + 1)]
    return [(bounds[k], bounds[k + 1]) for k in range(parts)]


def score_library(library: Sequence[TripleHelixSample], params: ParameterSet,
                  workers: int = SCORING_WORKERS) -> list[HelixScore]:
    """
    Score every sample of a library.

    Parameters
    ----------
    library : sequence of TripleHelixSample
    params : ParameterSet
        Copied into a read-only snapshot shared by the workers.
    workers : int
        Number of contiguous index ranges scored concurrently.

    Returns
    -------
    list of HelixScore, aligned with `library`. Each worker fills a
    disjoint slice; the result does not depend on scheduling.
    """
    snapshot = params.frozen()
    results: list[Optional[HelixScore]] = [None] * len(library)

    def _score_range(start: int, stop: int):
        for n in range(start, stop):
            results[n] = score_helix(library[n], snapshot)

    with ThreadPoolExecutor(max_workers=workers) as pool:
        futures = [pool.submit(_score_range, start, stop)
                   for start, stop in split_ranges(len(library), workers)]
        for f in futures:
            f.result()
    return results


def sum_squared_deviation(scores: Sequence[HelixScore]) -> float:
    return float(sum(s.deviation * s.deviation for s in scores))


def library_statistics(scores: Sequence[HelixScore]) -> dict:
    """Aggregate deviation statistics, worst sample and outliers."""
    n = len(scores)
    if n == 0:
        return {'n_samples': 0, 'sum_deviation': 0.0, 'mean_deviation': 0.0,
                'sum_squared_deviation': 0.0, 'mean_squared_deviation': 0.0,
                'rmsd': 0.0, 'worst_index': None, 'worst_deviation': None,
                'outliers': []}

    dev = np.array([s.deviation for s in scores], dtype=float)
    ssd = sum_squared_deviation(scores)
    worst = int(np.argmax(np.abs(dev)))
    outliers = [int(i) for i in np.flatnonzero(np.abs(dev) > OUTLIER_DEVIATION)]
    return {
        'n_samples': n,
        'sum_deviation': float(dev.sum()),
        'mean_deviation': float(dev.mean()),
        'sum_squared_deviation': ssd,
        'mean_squared_deviation': ssd / n,
        'rmsd': float(np.sqrt(ssd / n)),
        'worst_index': worst,
        'worst_deviation': float(dev[worst]),
        'outliers': outliers,
    }


# ==============================================================================
# Coordinate Descent
# ==============================================================================

@dataclass
class Adjustment:
    round: int
    key: ParameterKey
    old: float
    new: float
    ssd: float


@dataclass
class CalibrationResult:
    params: ParameterSet
    initial_ssd: float
    final_ssd: float
    rounds: int
    adjustments: list[Adjustment]
    scores: list[HelixScore]
    round_ssd: list[float] = field(default_factory=list)

    @property
    def improved(self) -> bool:
        return bool(self.adjustments)


def _within(value: float, ref: float, max_dev: float) -> bool:
    return ref - max_dev <= value <= ref + max_dev


def _try_scalar(library, params: ParameterSet, reference: ParameterSet,
                key: ParameterKey, best_ssd: float,
                config: CalibrationConfig) -> Optional[tuple[float, float]]:
    """
    Test v − δ, then v + δ. Returns (new value, new SSD) for the first
    accepted trial, or None after restoring v.
    """
    original = params.get(key)
    ref = reference.get(key)
    down = original - config.delta
    up = down + 2 * config.delta

    for candidate in (down, up):
        if not _within(candidate, ref, config.max_dev):
            continue
        params.set(key, candidate)
        ssd = sum_squared_deviation(score_library(library, params, config.workers))
        if ssd < best_ssd:
            return candidate, ssd

    params.set(key, original)
    return None


def calibrate(library: Sequence[TripleHelixSample], params: ParameterSet,
              reference: Optional[ParameterSet] = None,
              mask: Optional[TuningMask] = None,
              config: Optional[CalibrationConfig] = None) -> CalibrationResult:
    """
    Greedy single-scalar search minimizing the library SSD.

    Parameters
    ----------
    library : sequence of TripleHelixSample
        Training samples with measured Tm.
    params : ParameterSet
        Starting parameters. Not modified.
    reference : ParameterSet, optional
        Centre of the [ref - max_dev, ref + max_dev] window each scalar
        must stay inside (default: the starting parameters).
    mask : TuningMask, optional
        Scalars to tune, in TuningMask.keys() order. Default: every scalar
        seen more than config.count_threshold times in the library, minus
        the forced Pro/Hyp pins.
    config : CalibrationConfig, optional
        Step size, round limit, window half-width, count threshold, workers.

    Returns
    -------
    CalibrationResult with the adjusted copy of the parameters, the SSD
    before and after, the accepted adjustments in order, the SSD after
    each round and the library rescored under the final parameters.
    """
    config = config or CalibrationConfig()
    params = params.copy()
    if reference is None:
        reference = params.copy()
    if mask is None:
        mask = auto_tuning_mask(count_interactions(library), config.count_threshold)
    keys = list(mask.keys())

    ssd = sum_squared_deviation(score_library(library, params, config.workers))
    initial_ssd = ssd
    n = max(len(library), 1)
    logger.info("Initial SSD = %.4f (mean %.4f) over %d samples, %d tunable scalars",
                ssd, ssd / n, len(library), len(keys))
    logger.info("delta = %g, max_dev = %g, max_rounds = %d",
                config.delta, config.max_dev, config.max_rounds)

    adjustments = []
    round_ssd = []
    rounds = 0
    while rounds < config.max_rounds:
        changed = False
        for key in keys:
            old = params.get(key)
            trial = _try_scalar(library, params, reference, key, ssd, config)
            if trial is None:
                continue
            new, ssd = trial
            changed = True
            adjustments.append(Adjustment(rounds + 1, key, old, new, ssd))
            logger.info("%s adjusted to %.4f. New SSD = %.4f", key, new, ssd)
        rounds += 1
        round_ssd.append(ssd)
        logger.info("End round #%d. Mean SSD = %.4f", rounds, ssd / n)
        if not changed:
            break

    scores = score_library(library, params, config.workers)
    return CalibrationResult(params=params, initial_ssd=initial_ssd,
                             final_ssd=sum_squared_deviation(scores),
                             rounds=rounds, adjustments=adjustments,
                             scores=scores, round_ssd=round_ssd)
