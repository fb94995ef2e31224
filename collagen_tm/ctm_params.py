#!/usr/bin/env python3
"""
================================================================================
Collagen-Tm Parameters — Additive Model Tables
================================================================================

Model:
  Tm = A + B·L + C·L²                      length basis
     + Σ prop_x[aa] (Xaa sites)            per-residue propensity
     + Σ prop_y[aa] (Yaa sites)
     + Σ axial[aa_i][aa_j]                 selected inter-chain contacts
     + Σ lateral[aa_i][aa_j]
     + terminal / charge corrections       fixed constants (ctm_score)

Tables are dense numpy arrays addressed by residue index (0 undefined,
1..26 = A..Z). A tuning mask of the same shape marks which scalars the
calibration loop may move; a reference set bounds how far they may move.

License: MIT
================================================================================
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterator, NamedTuple

import numpy as np

from .ctm_core import N_RESIDUES, HYP, PRO, residue_index, residue_letter


# Order in which calibration visits the tables
TUNABLE_TABLES = ('prop_x', 'prop_y', 'axial', 'lateral')
VECTOR_TABLES = ('prop_x', 'prop_y')
MATRIX_TABLES = ('axial', 'lateral')


class ParameterKey(NamedTuple):
    """Address of one scalar: table name plus row (and column for matrices)."""
    table: str
    row: int
    col: int = 0

    def __str__(self) -> str:
        if self.table == 'length':
            return f"length[{'ABC'[self.row]}]"
        if self.table in VECTOR_TABLES:
            return f"{self.table}[{residue_letter(self.row)}]"
        return f"{self.table}[{residue_letter(self.row)},{residue_letter(self.col)}]"


# ==============================================================================
# Parameter Set
# ==============================================================================

@dataclass
class ParameterSet:
    length: np.ndarray = field(default_factory=lambda: np.zeros(3))
    prop_x: np.ndarray = field(default_factory=lambda: np.zeros(N_RESIDUES))
    prop_y: np.ndarray = field(default_factory=lambda: np.zeros(N_RESIDUES))
    axial: np.ndarray = field(default_factory=lambda: np.zeros((N_RESIDUES, N_RESIDUES)))
    lateral: np.ndarray = field(default_factory=lambda: np.zeros((N_RESIDUES, N_RESIDUES)))
    title: str = ''

    def __post_init__(self):
        self.length = np.asarray(self.length, dtype=float).reshape(3)
        for name in VECTOR_TABLES:
            arr = np.asarray(getattr(self, name), dtype=float)
            if arr.shape != (N_RESIDUES,):
                raise ValueError(f"{name} must have shape ({N_RESIDUES},), got {arr.shape}")
            setattr(self, name, arr)
        for name in MATRIX_TABLES:
            arr = np.asarray(getattr(self, name), dtype=float)
            if arr.shape != (N_RESIDUES, N_RESIDUES):
                raise ValueError(
                    f"{name} must have shape ({N_RESIDUES}, {N_RESIDUES}), got {arr.shape}")
            setattr(self, name, arr)

    @property
    def A(self) -> float:
        return float(self.length[0])

    @property
    def B(self) -> float:
        return float(self.length[1])

    @property
    def C(self) -> float:
        return float(self.length[2])

    def copy(self) -> ParameterSet:
        return ParameterSet(self.length.copy(), self.prop_x.copy(),
                            self.prop_y.copy(), self.axial.copy(),
                            self.lateral.copy(), title=self.title)

    def frozen(self) -> ParameterSet:
        """Read-only snapshot for a scoring pass."""
        snap = self.copy()
        for name in ('length',) + TUNABLE_TABLES:
            getattr(snap, name).flags.writeable = False
        return snap

    def get(self, key: ParameterKey) -> float:
        arr = getattr(self, key.table)
        if arr.ndim == 2:
            return float(arr[key.row, key.col])
        return float(arr[key.row])

    def set(self, key: ParameterKey, value: float):
        arr = getattr(self, key.table)
        if arr.ndim == 2:
            arr[key.row, key.col] = value
        else:
            arr[key.row] = value

    def allclose(self, other: ParameterSet) -> bool:
        return all(np.allclose(getattr(self, n), getattr(other, n))
                   for n in ('length',) + TUNABLE_TABLES)


# ==============================================================================
# Tuning Mask
# ==============================================================================

@dataclass
class TuningMask:
    """Which scalars of a ParameterSet the calibration loop may adjust."""
    length: bool = False
    prop_x: np.ndarray = field(default_factory=lambda: np.zeros(N_RESIDUES, dtype=bool))
    prop_y: np.ndarray = field(default_factory=lambda: np.zeros(N_RESIDUES, dtype=bool))
    axial: np.ndarray = field(
        default_factory=lambda: np.zeros((N_RESIDUES, N_RESIDUES), dtype=bool))
    lateral: np.ndarray = field(
        default_factory=lambda: np.zeros((N_RESIDUES, N_RESIDUES), dtype=bool))

    def __post_init__(self):
        for name in TUNABLE_TABLES:
            setattr(self, name, np.asarray(getattr(self, name), dtype=bool).copy())
        # index 0 is never a residue
        self.prop_x[0] = self.prop_y[0] = False
        self.axial[0, :] = self.axial[:, 0] = False
        self.lateral[0, :] = self.lateral[:, 0] = False

    def __or__(self, other: TuningMask) -> TuningMask:
        return TuningMask(self.length or other.length,
                          self.prop_x | other.prop_x, self.prop_y | other.prop_y,
                          self.axial | other.axial, self.lateral | other.lateral)

    def keys(self) -> Iterator[ParameterKey]:
        """
        Tunable scalars in visiting order: X propensities, Y propensities,
        axial cells (row-major), lateral cells (row-major).
        Length coefficients are never yielded.
        """
        for name in VECTOR_TABLES:
            for i in np.flatnonzero(getattr(self, name)):
                yield ParameterKey(name, int(i))
        for name in MATRIX_TABLES:
            rows, cols = np.nonzero(getattr(self, name))
            for i, j in zip(rows, cols):
                yield ParameterKey(name, int(i), int(j))

    def count(self) -> int:
        return sum(int(getattr(self, n).sum()) for n in TUNABLE_TABLES)


def apply_forced_exclusions(mask: TuningMask) -> TuningMask:
    """
    Pin chemically meaningless scalars regardless of how often they occur.

      Pro  — no Xaa propensity; never an axial partner (row or column);
             never a lateral partner column
      Hyp  — no Yaa propensity; no axial or lateral row
    """
    p, o = residue_index(PRO), residue_index(HYP)
    mask.prop_x[p] = False
    mask.prop_y[o] = False
    mask.axial[o, :] = False
    mask.lateral[o, :] = False
    mask.axial[p, :] = False
    mask.axial[:, p] = False
    mask.lateral[:, p] = False
    return mask
