"""
Collagen-Tm: Triple Helix Stability from Sequence
==================================================

Additive melting-temperature model for collagen-like triple helices with
greedy calibration against measured Tm values.

Modules:
  ctm_core      — Residue alphabet, samples, triad roles, offset classes
  ctm_params    — Parameter tables and tuning masks
  ctm_pairwise  — Interaction selector (compatible stabilizing contacts)
  ctm_score     — Register enumeration, Tm, specificity, deviation
  ctm_calibrate — Library scoring and coordinate-descent calibration
  ctm_io        — Parameter / library files and reports

Quick start:
  >>> from collagen_tm import TripleHelixSample, ParameterSet, score_helix
  >>> sample = TripleHelixSample(("PPG" * 10,), n_term="Ac", c_term="Am", exp_tm=41.0)
  >>> result = score_helix(sample, ParameterSet())
  >>> print(f"Best {result.best.register}: Tm={result.best_tm:.1f}, dev={result.deviation:+.1f}")
"""

from .ctm_core import (
    TripleHelixSample, Register, OffsetClass, SampleError, PhaseWarning,
    composition_allowed, detect_phase, residue_index, NO_TRANSITION_TM,
)
from .ctm_params import ParameterSet, ParameterKey, TuningMask, apply_forced_exclusions
from .ctm_pairwise import max_stabilizing_sum, best_interaction_path, forced_destabilization
from .ctm_score import HelixScore, RegisterScore, score_helix, calc_deviation
from .ctm_calibrate import (
    CalibrationConfig, CalibrationResult, calibrate, count_interactions,
    auto_tuning_mask, score_library, sum_squared_deviation, low_confidence_interactions,
)
from .ctm_io import (
    LibraryFormatError, read_parameters, read_tuning_mask, read_library,
    write_parameters, write_composition_reports,
)

__version__ = "1.2.0"
