#!/usr/bin/env python3
"""
================================================================================
Collagen-Tm Score — Register Enumeration & Melting Temperature
================================================================================

"How stable is each register?" — additive Tm for every assignment of the
sample's chains to the leading / middle / trailing role.

Per register {a b c}:
  Propensity = length basis
             + terminal caps (free amine / free acid −1.8 each)
             + aromatic caps (Tyr or Trp on all three chains, +3 per end)
             + terminal H-bond (−1.8 if not Xaa-first, −1.8 if not Gly-last)
             + Σ residue propensities (⅓ weight near the ends)
             − charge penalty ((|net| − 6) // 3 when |net| > 6)
  PairWise   = Σ over three threads (lead→mid, mid→trail, trail→lead) of
               selected stabilizing contacts + all destabilizing contacts
  Tm         = Propensity + PairWise

Across registers:
  best / second best Tm  → specificity = best − second
  compositionally-correct (CC) register → best register using every
  declared chain (A2B: not a homotrimer, ABC: all distinct)
  deviation → predicted − experimental, with wrong-register penalty

License: MIT
================================================================================
"""

from __future__ import annotations

import itertools
from dataclasses import dataclass, field
from typing import Optional

import numpy as np

from .ctm_core import (
    ACTIVE_OFFSETS, MAX_CHAINS, N_OFFSETS, NO_TRANSITION_TM,
    OffsetClass, Register, TripleHelixSample,
    composition_allowed, residue_index, trim_for_offset,
)
from .ctm_pairwise import forced_destabilization, max_stabilizing_sum
from .ctm_params import ParameterSet


# ==============================================================================
# Model Constants
# ==============================================================================

LENGTH_CAP = 50               # residues; longer chains use the capped basis
TERMINAL_CHARGE_PENALTY = 1.8  # free amine / free acid, °C each
AROMATIC_CAP_BONUS = 3.0       # Tyr or Trp on all three chains at one end
HBOND_END_PENALTY = 1.8        # triad out of phase at either end
TIP_WEIGHT = 1.0 / 3.0         # propensity weight of the outermost residues
NET_CHARGE_TOLERANCE = 6       # |net| beyond this is penalized
NET_CHARGE_DIVISOR = 3
WRONG_REGISTER_WEIGHT = 0.5
NO_TRANSITION_CEILING = 10.0   # predictions ≤ this agree with "no transition"

# Thread geometry: (donor role, partner role, axial offset, lateral offset)
# Roles index the (lead, mid, trail) triple.
THREADS = (
    (0, 1, +2, -1),   # leading → middle
    (1, 2, +2, -1),   # middle → trailing
    (2, 0, +5, +2),   # trailing → leading
)

_TYR = residue_index('Y')
_TRP = residue_index('W')
_POSITIVE = frozenset(residue_index(c) for c in 'KR')
_NEGATIVE = frozenset(residue_index(c) for c in 'ED')

GRID_SHAPE = (MAX_CHAINS, MAX_CHAINS, MAX_CHAINS, N_OFFSETS)


# ==============================================================================
# Result Types
# ==============================================================================

@dataclass
class RegisterScore:
    register: Register
    propensity: float
    pairwise: float
    net_charge: int = 0
    total_charge: int = 0

    @property
    def tm(self) -> float:
        return self.propensity + self.pairwise


@dataclass
class HelixScore:
    """All register scores of one sample plus the derived summary values."""
    num_pep: int
    exp_tm: float
    registers: list[RegisterScore]
    best: RegisterScore
    second: Optional[RegisterScore]
    cc: RegisterScore
    deviation: float
    tm: np.ndarray = field(repr=False, default=None)
    propensity: np.ndarray = field(repr=False, default=None)
    pairwise: np.ndarray = field(repr=False, default=None)
    net_charge: np.ndarray = field(repr=False, default=None)
    total_charge: np.ndarray = field(repr=False, default=None)

    @property
    def best_tm(self) -> float:
        return self.best.tm

    @property
    def sec_tm(self) -> Optional[float]:
        return None if self.second is None else self.second.tm

    @property
    def cc_tm(self) -> float:
        return self.cc.tm

    @property
    def specificity(self) -> Optional[float]:
        """Gap between best and second-best register (None for one register)."""
        if self.second is None:
            return None
        return self.best.tm - self.second.tm

    @property
    def register_match(self) -> bool:
        return self.best.register.composition == self.cc.register.composition

    @property
    def composition_mismatch(self) -> bool:
        """The most stable register leaves out a declared chain."""
        return not composition_allowed(self.num_pep, self.best.register)

    def register_table(self) -> list[dict]:
        """Per-register Tm decomposition in enumeration order."""
        return [{'register': str(r.register), 'tm': float(r.tm),
                 'propensity': float(r.propensity), 'pairwise': float(r.pairwise),
                 'net_charge': int(r.net_charge), 'total_charge': int(r.total_charge)}
                for r in self.registers]

    def summary(self) -> dict:
        return {
            'num_pep': self.num_pep,
            'exp_tm': self.exp_tm,
            'best_register': str(self.best.register),
            'best_tm': float(self.best_tm),
            'best_propensity': float(self.best.propensity),
            'best_pairwise': float(self.best.pairwise),
            'sec_register': None if self.second is None else str(self.second.register),
            'sec_tm': None if self.sec_tm is None else float(self.sec_tm),
            'specificity': None if self.specificity is None else float(self.specificity),
            'cc_register': str(self.cc.register),
            'cc_tm': float(self.cc_tm),
            'deviation': float(self.deviation),
            'net_charge': int(self.best.net_charge),
            'total_charge': int(self.best.total_charge),
            'composition_mismatch': self.composition_mismatch,
            'registers': self.register_table(),
        }


# ==============================================================================
# Propensity Terms
# ==============================================================================

def length_basis(params: ParameterSet, n_aa: int,
                 offset: OffsetClass = OffsetClass.CANONICAL) -> float:
    """A + B·L + C·L², L capped at LENGTH_CAP (one-triplet staggers use L+1)."""
    if n_aa > LENGTH_CAP:
        L = LENGTH_CAP
    elif offset in (OffsetClass.T3, OffsetClass.M3, OffsetClass.M3_T3):
        L = n_aa + 1
    else:
        L = n_aa
    return params.A + params.B * L + params.C * L * L


def terminal_adjustment(sample: TripleHelixSample, chains) -> float:
    """Terminus chemistry plus aromatic caps shared by all three chains."""
    adj = 0.0
    if sample.free_amine:
        adj -= TERMINAL_CHARGE_PENALTY
    if sample.free_acid:
        adj -= TERMINAL_CHARGE_PENALTY

    firsts = {int(c[0]) for c in chains}
    lasts = {int(c[-1]) for c in chains}
    for aromatic in (_TYR, _TRP):
        if firsts == {aromatic}:
            adj += AROMATIC_CAP_BONUS
        if lasts == {aromatic}:
            adj += AROMATIC_CAP_BONUS
    return adj


def hbond_penalty(sample: TripleHelixSample, n_aa: int) -> float:
    penalty = 0.0
    if not sample.is_xaa(0):
        penalty -= HBOND_END_PENALTY
    if not sample.is_gly(n_aa - 1):
        penalty -= HBOND_END_PENALTY
    return penalty


def residue_propensity(sample: TripleHelixSample, chains,
                       params: ParameterSet) -> float:
    """Σ Xaa/Yaa propensities of all chains, ⅓ weight outside 3 ≤ p < L−2."""
    n_aa = len(chains[0])
    total = 0.0
    for p in range(n_aa):
        role = sample.role(p)
        if role == 0:
            table = params.prop_x
        elif role == 1:
            table = params.prop_y
        else:
            continue
        weight = 1.0 if 2 < p < n_aa - 2 else TIP_WEIGHT
        for chain in chains:
            total += table[chain[p]] * weight
    return float(total)


def charge_counts(chains) -> tuple[int, int]:
    """(net, total) formal charge over all residues of all chains."""
    net = 0
    total = 0
    for chain in chains:
        for aa in chain:
            aa = int(aa)
            if aa in _POSITIVE:
                net += 1
                total += 1
            elif aa in _NEGATIVE:
                net -= 1
                total += 1
    return net, total


def charge_penalty(net_charge: int) -> float:
    excess = abs(net_charge) - NET_CHARGE_TOLERANCE
    if excess > 0:
        return float(excess // NET_CHARGE_DIVISOR)
    return 0.0


# ==============================================================================
# Pairwise Terms
# ==============================================================================

def interaction_threads(sample: TripleHelixSample, chains,
                        params: ParameterSet) -> list[tuple[list[float], list[float]]]:
    """
    Axial and lateral contact values at each Yaa site for the three
    directional chain pairs. Partners beyond the chain end contribute 0.
    """
    n_aa = len(chains[0])
    yaa = [p for p in range(n_aa) if sample.is_yaa(p)]
    threads = []
    for donor_role, partner_role, ax_off, lat_off in THREADS:
        donor = chains[donor_role]
        partner = chains[partner_role]
        axial = []
        lateral = []
        for x in yaa:
            j = x + ax_off
            axial.append(float(params.axial[donor[x], partner[j]]) if 0 <= j < n_aa else 0.0)
            j = x + lat_off
            lateral.append(float(params.lateral[donor[x], partner[j]]) if 0 <= j < n_aa else 0.0)
        threads.append((axial, lateral))
    return threads


def pairwise_bonus(threads) -> float:
    """Best compatible stabilizing set per thread, then every destabilizing contact."""
    stabilizing = sum(max_stabilizing_sum(ax, lat) for ax, lat in threads)
    destabilizing = sum(forced_destabilization(ax, lat) for ax, lat in threads)
    return stabilizing + destabilizing


# ==============================================================================
# Register & Helix Scoring
# ==============================================================================

def score_register(sample: TripleHelixSample, params: ParameterSet,
                   register: Register) -> RegisterScore:
    enc = sample.encoded
    chains = trim_for_offset(enc[register.lead], enc[register.mid],
                             enc[register.trail], register.offset)
    n_aa = len(chains[0])

    net, total = charge_counts(chains)
    propensity = (length_basis(params, n_aa, register.offset)
                  + terminal_adjustment(sample, chains)
                  + hbond_penalty(sample, n_aa)
                  + residue_propensity(sample, chains, params)
                  - charge_penalty(net))
    pairwise = pairwise_bonus(interaction_threads(sample, chains, params))
    return RegisterScore(register, propensity, pairwise, net, total)


def enumerate_registers(num_pep: int, offsets=ACTIVE_OFFSETS) -> list[Register]:
    """All num_pep³ role assignments (lead outermost), per active offset."""
    return [Register(a, b, c, d)
            for a, b, c in itertools.product(range(num_pep), repeat=3)
            for d in offsets]


def calc_deviation(best_tm: float, cc_tm: float, exp_tm: float,
                   register_match: bool) -> float:
    """
    Signed prediction error against experiment.

    exp_tm == −10 means no transition was seen: predictions up to 10 °C
    agree, higher ones count from 10 °C. When the best register is not the
    CC register the CC prediction is scored and pushed away from zero by
    half its gap to the best register.
    """
    if exp_tm == NO_TRANSITION_TM:
        if best_tm <= NO_TRANSITION_CEILING:
            return 0.0
        return best_tm - NO_TRANSITION_CEILING
    if register_match:
        return best_tm - exp_tm

    deviation = cc_tm - exp_tm
    gap = WRONG_REGISTER_WEIGHT * abs(cc_tm - best_tm)
    if deviation < 0:
        return deviation - gap
    return deviation + gap


def score_helix(sample: TripleHelixSample, params: ParameterSet) -> HelixScore:
    """
    Score every register of a sample.

    Parameters
    ----------
    sample : TripleHelixSample
        One to three chains; roles follow the sample phase.
    params : ParameterSet
        Model tables; only read.

    Returns
    -------
    HelixScore with:
        registers   — RegisterScore per register, enumeration order
        best        — highest Tm (later register wins ties)
        second      — runner-up (None for a homotrimer)
        cc          — best register using every declared chain
        deviation   — signed error against exp_tm (see calc_deviation)
        tm, propensity, pairwise, net_charge, total_charge
                    — 3x3x3x9 grids indexed [lead, mid, trail, offset]

    Nothing is carried over between calls.
    """
    grids = {name: np.zeros(GRID_SHAPE) for name in ('tm', 'propensity', 'pairwise')}
    net_grid = np.zeros(GRID_SHAPE, dtype=int)
    total_grid = np.zeros(GRID_SHAPE, dtype=int)

    scores = []
    best = second = cc = None
    for register in enumerate_registers(sample.num_pep):
        rs = score_register(sample, params, register)
        scores.append(rs)
        idx = (register.lead, register.mid, register.trail, int(register.offset))
        grids['tm'][idx] = rs.tm
        grids['propensity'][idx] = rs.propensity
        grids['pairwise'][idx] = rs.pairwise
        net_grid[idx] = rs.net_charge
        total_grid[idx] = rs.total_charge

        # ties go to the later register
        if best is None or rs.tm >= best.tm:
            second = best
            best = rs
        elif second is None or rs.tm >= second.tm:
            second = rs

        if composition_allowed(sample.num_pep, register):
            if cc is None or rs.tm >= cc.tm:
                cc = rs

    match = best.register.composition == cc.register.composition
    deviation = calc_deviation(best.tm, cc.tm, sample.exp_tm, match)

    return HelixScore(
        num_pep=sample.num_pep, exp_tm=sample.exp_tm,
        registers=scores, best=best, second=second, cc=cc,
        deviation=deviation,
        tm=grids['tm'], propensity=grids['propensity'],
        pairwise=grids['pairwise'],
        net_charge=net_grid, total_charge=total_grid,
    )
