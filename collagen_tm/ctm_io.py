#!/usr/bin/env python3
"""
================================================================================
Collagen-Tm I/O — Parameter Tables, Sequence Libraries & Reports
================================================================================

Parameter table (parameters.txt, reference table, tuning mask):

  <title line>
  Length
  A
  B
  C
  XaaPropensity
  A <value>  ... Z <value>          (26 letter/value pairs)
  YaaPropensity
  ...
  PairwiseLateral
  <header of column letters>
  A <26 values>                      (26 rows, row = Yaa residue)
  ...
  PairwiseAxial
  ...
  EOF

  The tuning mask uses the same layout with 0/1 entries.

Sequence library (seq_input.txt):

  <title line>
  <number of samples>
  numPep numAA Nterm Cterm expTm
  <numPep sequences of numAA residues>
  ...

  Lines starting with '#' or '//' are comments. expTm = -10 marks
  "no transition observed". A JSON library
  {"samples": [{"chains": [...], "n_term", "c_term", "exp_tm", "name"}]}
  is accepted as well.

Any structural problem aborts the load with LibraryFormatError.

License: MIT
================================================================================
"""

from __future__ import annotations

import json
import logging
import math
from pathlib import Path
from typing import Sequence

import numpy as np

from .ctm_core import (
    ALPHABET, MAX_CHAIN_LENGTH, MAX_CHAINS, MIN_CHAIN_LENGTH, N_RESIDUES,
    SampleError, TripleHelixSample, residue_index,
)
from .ctm_params import ParameterSet, TuningMask
from .ctm_score import HelixScore

logger = logging.getLogger(__name__)

SECTION_LENGTH = 'Length'
SECTION_X = 'XaaPropensity'
SECTION_Y = 'YaaPropensity'
SECTION_LATERAL = 'PairwiseLateral'
SECTION_AXIAL = 'PairwiseAxial'
SECTION_EOF = 'EOF'

COMPOSITION_REPORTS = {1: 'A3', 2: 'A2B', 3: 'ABC'}


class LibraryFormatError(ValueError):
    """Unreadable or structurally invalid parameter or sequence file."""


# ==============================================================================
# Token Stream
# ==============================================================================

def _is_comment(line: str) -> bool:
    s = line.strip()
    return s.startswith('#') or s.startswith('//')


class _Tokens:
    """Whitespace tokens across lines, remembering the source line number."""

    def __init__(self, lines: Sequence[str], start: int, path: Path):
        self.lines = lines
        self.line_no = start
        self.path = path
        self.pending: list[str] = []

    def next(self) -> str:
        while not self.pending:
            if self.line_no >= len(self.lines):
                raise LibraryFormatError(f"{self.path}: unexpected end of file")
            line = self.lines[self.line_no]
            self.line_no += 1
            if _is_comment(line):
                continue
            self.pending = line.split()
        return self.pending.pop(0)

    def number(self) -> float:
        tok = self.next()
        try:
            value = float(tok)
        except ValueError as e:
            raise LibraryFormatError(
                f"{self.path}:{self.line_no}: expected a number, got {tok!r}") from e
        if not math.isfinite(value):
            raise LibraryFormatError(
                f"{self.path}:{self.line_no}: expected a finite number, got {tok!r}")
        return value

    def integer(self) -> int:
        value = self.number()
        if value != int(value):
            raise LibraryFormatError(
                f"{self.path}:{self.line_no}: expected an integer, got {value}")
        return int(value)

    def letter(self) -> int:
        tok = self.next()
        try:
            return residue_index(tok)
        except ValueError as e:
            raise LibraryFormatError(f"{self.path}:{self.line_no}: {e}") from e

    def skip_line(self):
        self.pending = []
        self.line_no += 1

    def at_end(self) -> bool:
        """No tokens left apart from blank and comment lines."""
        if self.pending:
            return False
        return all(not line.strip() or _is_comment(line)
                   for line in self.lines[self.line_no:])


def _read_lines(path) -> tuple[Path, list[str]]:
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"{path} not found")
    return path, path.read_text().splitlines()


# ==============================================================================
# Parameter Tables
# ==============================================================================

def _read_tables(path, dtype) -> tuple[str, dict]:
    path, lines = _read_lines(path)
    if not lines:
        raise LibraryFormatError(f"{path}: empty parameter file")
    title = lines[0].strip()
    tables = {
        'length': np.zeros(3, dtype=dtype),
        'prop_x': np.zeros(N_RESIDUES, dtype=dtype),
        'prop_y': np.zeros(N_RESIDUES, dtype=dtype),
        'axial': np.zeros((N_RESIDUES, N_RESIDUES), dtype=dtype),
        'lateral': np.zeros((N_RESIDUES, N_RESIDUES), dtype=dtype),
    }
    vectors = {SECTION_X: 'prop_x', SECTION_Y: 'prop_y'}
    matrices = {SECTION_LATERAL: 'lateral', SECTION_AXIAL: 'axial'}

    i = 1
    while i < len(lines):
        section = lines[i].strip()
        tokens = _Tokens(lines, i + 1, path)
        if section == SECTION_EOF:
            break
        if section == SECTION_LENGTH:
            for k in range(3):
                tables['length'][k] = tokens.number()
        elif section in vectors:
            arr = tables[vectors[section]]
            for _ in range(N_RESIDUES - 1):
                aa = tokens.letter()
                arr[aa] = tokens.number()
        elif section in matrices:
            arr = tables[matrices[section]]
            tokens.skip_line()          # column header
            for _ in range(N_RESIDUES - 1):
                row = tokens.letter()
                for col in range(1, N_RESIDUES):
                    arr[row, col] = tokens.number()
        else:
            i += 1
            continue
        i = tokens.line_no
    return title, tables


def read_parameters(path) -> ParameterSet:
    title, t = _read_tables(path, float)
    logger.info("Parameter file %s: %s", path, title)
    return ParameterSet(t['length'], t['prop_x'], t['prop_y'],
                        t['axial'], t['lateral'], title=title)


def read_tuning_mask(path) -> TuningMask:
    title, t = _read_tables(path, float)
    logger.info("Optimization list %s: %s", path, title)
    return TuningMask(bool(t['length'][2] == 1), t['prop_x'] == 1,
                      t['prop_y'] == 1, t['axial'] == 1, t['lateral'] == 1)


def _fmt(value: float) -> str:
    return format(float(value), '.10g')


def write_parameters(params: ParameterSet, path, title: str = '') -> Path:
    """Write a table that read_parameters reads back unchanged."""
    path = Path(path)
    out = [title or params.title or 'collagen_tm parameters', SECTION_LENGTH]
    out += [_fmt(v) for v in params.length]
    for section, arr in ((SECTION_X, params.prop_x), (SECTION_Y, params.prop_y)):
        out.append(section)
        out += [f"{ALPHABET[k - 1]}\t{_fmt(arr[k])}" for k in range(1, N_RESIDUES)]
    for section, arr in ((SECTION_LATERAL, params.lateral), (SECTION_AXIAL, params.axial)):
        out.append(section)
        out.append('\t' + '\t'.join(ALPHABET))
        for row in range(1, N_RESIDUES):
            values = '\t'.join(_fmt(arr[row, col]) for col in range(1, N_RESIDUES))
            out.append(f"{ALPHABET[row - 1]}\t{values}")
    out.append(SECTION_EOF)
    path.write_text('\n'.join(out) + '\n')
    return path


# ==============================================================================
# Sequence Libraries
# ==============================================================================

def _build_sample(path, n, chains, n_term, c_term, exp_tm, name='') -> TripleHelixSample:
    try:
        return TripleHelixSample(tuple(chains), n_term=n_term, c_term=c_term,
                                 exp_tm=exp_tm, name=name)
    except SampleError as e:
        raise LibraryFormatError(f"{path}: sample {n}: {e}") from e


def read_library(path) -> list[TripleHelixSample]:
    """
    Load a sequence library.

    Parameters
    ----------
    path : str or Path
        Text library (title, sample count, then per sample a
        `numPep numAA Nterm Cterm expTm` header and numPep sequences),
        or a `.json` file read by read_library_json().

    Returns
    -------
    list of TripleHelixSample, in file order.

    The whole load fails with LibraryFormatError on the first invalid
    sample, on non-finite numbers, and on residues or data left over after
    the declared samples; nothing partial is returned.
    """
    path = Path(path)
    if path.suffix.lower() == '.json':
        return read_library_json(path)

    path, lines = _read_lines(path)
    if not lines:
        raise LibraryFormatError(f"{path}: empty sequence library")
    logger.info("Sequence library %s: %s", path, lines[0].strip())

    tokens = _Tokens(lines, 1, path)
    total = tokens.integer()
    library = []
    for n in range(total):
        num_pep = tokens.integer()
        if not 1 <= num_pep <= MAX_CHAINS:
            raise LibraryFormatError(
                f"{path}:{tokens.line_no}: sample {n}: number of distinct peptides "
                f"must be 1-{MAX_CHAINS}, got {num_pep}")
        num_aa = tokens.integer()
        if not MIN_CHAIN_LENGTH <= num_aa <= MAX_CHAIN_LENGTH:
            raise LibraryFormatError(
                f"{path}:{tokens.line_no}: sample {n}: number of amino acids "
                f"must be {MIN_CHAIN_LENGTH}-{MAX_CHAIN_LENGTH}, got {num_aa}")
        n_term = tokens.next()
        c_term = tokens.next()
        exp_tm = tokens.number()

        chains = []
        for _ in range(num_pep):
            residues = ''
            while len(residues) < num_aa:
                residues += tokens.next()
            if len(residues) > num_aa:
                # residues of the next chain were glued to this one
                tokens.pending.insert(0, residues[num_aa:])
                residues = residues[:num_aa]
            chains.append(residues)
        library.append(_build_sample(path, n, chains, n_term, c_term, exp_tm))
    if not tokens.at_end():
        raise LibraryFormatError(
            f"{path}:{tokens.line_no}: unexpected data after {total} declared samples")
    logger.info("Loaded %d samples from %s", len(library), path)
    return library


def read_library_json(path) -> list[TripleHelixSample]:
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"{path} not found")
    try:
        with open(path) as f:
            data = json.load(f)
        entries = data['samples']
    except (json.JSONDecodeError, KeyError, TypeError) as e:
        raise LibraryFormatError(f"{path}: {e}") from e

    library = []
    for n, entry in enumerate(entries):
        try:
            chains = entry['chains']
            exp_tm = float(entry['exp_tm'])
        except (KeyError, TypeError, ValueError) as e:
            raise LibraryFormatError(f"{path}: sample {n}: {e}") from e
        if not math.isfinite(exp_tm):
            raise LibraryFormatError(f"{path}: sample {n}: exp_tm must be finite")
        library.append(_build_sample(path, n, chains, entry.get('n_term', 'Ac'),
                                     entry.get('c_term', 'Am'), exp_tm,
                                     name=entry.get('name', '')))
    logger.info("Loaded %d samples from %s", len(library), path)
    return library


# ==============================================================================
# Reports
# ==============================================================================

def write_composition_reports(out_dir, scores: Sequence[HelixScore]) -> list[Path]:
    """One table per composition class: n ExpTm CCTm HighTm Dev."""
    out_dir = Path(out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)
    written = []
    for num_pep, label in COMPOSITION_REPORTS.items():
        path = out_dir / f"{label}.txt"
        rows = [f"n ExpTm {label} HighTm Dev"]
        for n, s in enumerate(scores):
            if s.num_pep == num_pep:
                rows.append(f"{n} {_fmt(s.exp_tm)} {_fmt(s.cc_tm)} "
                            f"{_fmt(s.best_tm)} {_fmt(s.deviation)}")
        path.write_text('\n'.join(rows) + '\n')
        written.append(path)
    return written


def write_summary_json(path, library: Sequence[TripleHelixSample],
                       scores: Sequence[HelixScore], stats: dict,
                       extra: dict | None = None) -> Path:
    path = Path(path)
    samples = []
    for n, (sample, score) in enumerate(zip(library, scores)):
        samples.append({'index': n, 'name': sample.name, 'chains': list(sample.chains),
                        'phase': sample.phase, 'conforming': sample.conforming,
                        **score.summary()})
    payload = {'statistics': stats, 'samples': samples}
    if extra:
        payload.update(extra)
    with open(path, 'w') as f:
        json.dump(payload, f, indent=2)
    return path
