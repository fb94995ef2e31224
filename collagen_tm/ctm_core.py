#!/usr/bin/env python3
"""
================================================================================
Collagen-Tm Core — Residue Alphabet, Samples & Triad Roles
================================================================================

Shared foundation for the scoring and calibration modules.

Triple helix model:
  Chain       → one peptide strand, repeating (Gly-Xaa-Yaa)n triad
  Sample      → 1–3 distinct chains assembled into a trimer
  Phase       → offset locating Gly inside the triad
  Offset      → relative stagger between leading / middle / trailing chains

Residue alphabet:
  Index 0 is undefined, 1–26 are the letters A–Z (O = hydroxyproline).
  Parameter tables are dense arrays addressed by this index.

License: MIT
================================================================================
"""

from __future__ import annotations

import logging
import math
import warnings
from dataclasses import dataclass, field
from enum import IntEnum
from typing import NamedTuple

import numpy as np

logger = logging.getLogger(__name__)


# ==============================================================================
# Residue Alphabet & Classes
# ==============================================================================

N_RESIDUES = 27          # 0 undefined + A..Z
ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZ"

GLY = 'G'
PRO = 'P'
HYP = 'O'                # hydroxyproline
TYR = 'Y'
TRP = 'W'

# Formal charges used by the charge penalty
AA_POSITIVE = frozenset('KR')
AA_NEGATIVE = frozenset('ED')

# Structural limits of a chain
MIN_CHAIN_LENGTH = 21
MAX_CHAIN_LENGTH = 48
MAX_CHAINS = 3

# Experimental Tm sentinel: no transition was observed
NO_TRANSITION_TM = -10.0

DEFAULT_PHASE = 0


def residue_index(letter: str) -> int:
    """Dense table index of a residue letter (A=1 ... Z=26)."""
    letter = letter.upper()
    if len(letter) != 1 or letter not in ALPHABET:
        raise ValueError(f"Invalid residue code: {letter!r}")
    return ord(letter) - 64


def residue_letter(index: int) -> str:
    if not 1 <= index < N_RESIDUES:
        raise ValueError(f"Residue index out of range: {index}")
    return chr(index + 64)


def encode_chain(seq: str) -> np.ndarray:
    """Sequence string → int array of residue indices."""
    return np.array([residue_index(c) for c in seq], dtype=np.int16)


# ==============================================================================
# Errors & Warnings
# ==============================================================================

class SampleError(ValueError):
    """Structural violation in a triple helix sample (fatal on load)."""


class PhaseWarning(UserWarning):
    """Chain 0 has no unambiguous Gly track; roles may be misassigned."""


# ==============================================================================
# Phase Detection
# ==============================================================================

def gly_track_counts(chain: str) -> tuple[int, int, int]:
    """Gly occurrences on the three residue tracks (p mod 3 = 0, 1, 2)."""
    counts = [0, 0, 0]
    for p, aa in enumerate(chain):
        if aa == GLY:
            counts[p % 3] += 1
    return counts[0], counts[1], counts[2]


def detect_phase(chain: str) -> int | None:
    """
    Locate the Gly track of a chain.

    A track qualifies when it holds at least ceil(L/3) Gly. The phase is
    the offset for which `(p + 3 - phase) % 3 == 2` on that track.

    Returns None when no track, or more than one track, qualifies.
    """
    threshold = math.ceil(len(chain) / 3)
    counts = gly_track_counts(chain)
    tracks = [k for k in range(3) if counts[k] >= threshold]
    if len(tracks) != 1:
        return None
    return (tracks[0] + 1) % 3


# ==============================================================================
# Offset Classes (staggers)
# ==============================================================================

class OffsetClass(IntEnum):
    """
    Relative stagger of a trimer, named by the start residues {lead mid trail}.

    Only CANONICAL is evaluated by the scorer; the others are kept with
    their trimming rules so a staggered register can be scored on the
    overlapping canonical core.
    """
    CANONICAL = 0     # {012}
    T3 = 1            # {015} trailing +3
    M3 = 2            # {042} middle +3
    M3_T3 = 3         # {045} middle +3, trailing +3
    T6 = 4            # {018} trailing +6
    M3_T6 = 5         # {048} middle +3, trailing +6
    M6 = 6            # {072} middle +6
    M6_T3 = 7         # {075} middle +6, trailing +3
    M6_T6 = 8         # {078} middle +6, trailing +6

    @property
    def shifts(self) -> tuple[int, int, int]:
        """Extra residue shift of the leading, middle and trailing chain."""
        return _OFFSET_SHIFTS[self]

    @property
    def triplets_lost(self) -> int:
        """Whole triads removed from the aligned core by the stagger."""
        s = self.shifts
        return (max(s) - min(s)) // 3


_OFFSET_SHIFTS = {
    OffsetClass.CANONICAL: (0, 0, 0),
    OffsetClass.T3: (0, 0, 3),
    OffsetClass.M3: (0, 3, 0),
    OffsetClass.M3_T3: (0, 3, 3),
    OffsetClass.T6: (0, 0, 6),
    OffsetClass.M3_T6: (0, 3, 6),
    OffsetClass.M6: (0, 6, 0),
    OffsetClass.M6_T3: (0, 6, 3),
    OffsetClass.M6_T6: (0, 6, 6),
}

ACTIVE_OFFSETS = (OffsetClass.CANONICAL,)
N_OFFSETS = len(OffsetClass)


def trim_for_offset(lead, mid, trail, offset: OffsetClass) -> tuple:
    """
    Trim three equal-length chains (strings or index arrays) down to their
    overlapping canonical core.

    A chain shifted by s residues loses (S - s) residues at its N-side and
    (s - s_min) at its C-side, with S the largest shift.
    """
    shifts = offset.shifts
    s_max, s_min = max(shifts), min(shifts)
    trimmed = []
    for chain, s in zip((lead, mid, trail), shifts):
        start = s_max - s
        stop = len(chain) - (s - s_min)
        trimmed.append(chain[start:stop])
    return trimmed[0], trimmed[1], trimmed[2]


# ==============================================================================
# Triple Helix Sample
# ==============================================================================

@dataclass
class TripleHelixSample:
    """
    One entry of a sequence library: 1–3 distinct chains of equal length.

    Terminus codes follow the library files: N-terminus 'n' is a free
    amine (anything else, e.g. 'Ac', is capped); C-terminus 'c' is a free
    acid (anything else, e.g. 'Am', is capped).
    """
    chains: tuple[str, ...]
    n_term: str = 'Ac'
    c_term: str = 'Am'
    exp_tm: float = 0.0
    name: str = ''
    phase: int = field(default=DEFAULT_PHASE)
    conforming: bool = field(default=True, init=False)
    encoded: tuple[np.ndarray, ...] = field(default=(), init=False, repr=False)

    def __post_init__(self):
        self.chains = tuple(str(c).strip().upper() for c in self.chains)
        n_pep = len(self.chains)
        if not 1 <= n_pep <= MAX_CHAINS:
            raise SampleError(
                f"Number of distinct peptides must be 1-{MAX_CHAINS}, got {n_pep}")
        lengths = {len(c) for c in self.chains}
        if len(lengths) != 1:
            raise SampleError(f"Chains differ in length: {sorted(lengths)}")
        n_aa = lengths.pop()
        if not MIN_CHAIN_LENGTH <= n_aa <= MAX_CHAIN_LENGTH:
            raise SampleError(
                f"Chain length must be {MIN_CHAIN_LENGTH}-{MAX_CHAIN_LENGTH}, got {n_aa}")
        try:
            self.encoded = tuple(encode_chain(c) for c in self.chains)
        except ValueError as e:
            raise SampleError(str(e)) from e
        self.exp_tm = float(self.exp_tm)
        self._resolve_phase()

    def _resolve_phase(self):
        phase = detect_phase(self.chains[0])
        if phase is None:
            self.conforming = False
            counts = gly_track_counts(self.chains[0])
            msg = (f"Sample {self.label}: no single Gly track in chain 0 "
                   f"(track counts {counts}, need {math.ceil(self.num_aa / 3)}); "
                   f"keeping phase {self.phase}")
            logger.warning(msg)
            warnings.warn(msg, PhaseWarning, stacklevel=3)
        else:
            self.conforming = True
            self.phase = phase

    # --- Shape ---

    @property
    def num_pep(self) -> int:
        return len(self.chains)

    @property
    def num_aa(self) -> int:
        return len(self.chains[0])

    @property
    def label(self) -> str:
        return self.name or self.chains[0]

    @property
    def free_amine(self) -> bool:
        return self.n_term.lower() == 'n'

    @property
    def free_acid(self) -> bool:
        return self.c_term.lower() == 'c'

    @property
    def no_transition(self) -> bool:
        return self.exp_tm == NO_TRANSITION_TM

    # --- Triad roles ---

    def role(self, p: int) -> int:
        """0 = Xaa, 1 = Yaa, 2 = Gly."""
        return abs(p + (3 - self.phase)) % 3

    def is_xaa(self, p: int) -> bool:
        return self.role(p) == 0

    def is_yaa(self, p: int) -> bool:
        return self.role(p) == 1

    def is_gly(self, p: int) -> bool:
        return self.role(p) == 2

    def yaa_positions(self) -> list[int]:
        return [p for p in range(self.num_aa) if self.is_yaa(p)]

    # --- Edits ---

    def with_substitution(self, chain: int, position: int,
                          residue: str) -> TripleHelixSample:
        """Copy of this sample with one residue replaced."""
        if not 0 <= chain < self.num_pep:
            raise IndexError(f"Chain {chain} out of range for {self.num_pep} chains")
        if not 0 <= position < self.num_aa:
            raise IndexError(f"Position {position} out of range for length {self.num_aa}")
        residue_index(residue)
        chains = list(self.chains)
        seq = chains[chain]
        chains[chain] = seq[:position] + residue.upper() + seq[position + 1:]
        return TripleHelixSample(tuple(chains), n_term=self.n_term,
                                 c_term=self.c_term, exp_tm=self.exp_tm,
                                 name=self.name, phase=self.phase)


class Register(NamedTuple):
    """Chain indices in the leading, middle and trailing role plus stagger."""
    lead: int
    mid: int
    trail: int
    offset: OffsetClass = OffsetClass.CANONICAL

    @property
    def composition(self) -> tuple[int, int, int]:
        return self.lead, self.mid, self.trail

    def __str__(self) -> str:
        return f"{{{self.lead}{self.mid}{self.trail}}}.{int(self.offset)}"


def composition_allowed(num_pep: int, register: Register) -> bool:
    """
    Does the register use the declared chain diversity of the sample?

      1 chain  → homotrimer, always allowed
      2 chains → A2B, not all three roles from one chain
      3 chains → ABC, all three roles from distinct chains
    """
    a, b, c = register.composition
    if num_pep == 1:
        return True
    if num_pep == 2:
        return not (a == b == c)
    return a != b and a != c and b != c
