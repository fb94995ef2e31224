#!/usr/bin/env python3
"""
================================================================================
Collagen-Tm Pairwise — Interaction Selector
================================================================================

"Which contacts can form together?" — best compatible set of stabilizing
inter-chain contacts along one directional chain-pair thread.

Each Yaa site of the donor chain can make one of:
  NONE     no contact
  LATERAL  lateral contact (forbidden directly after an AXIAL site)
  AXIAL    axial contact (always allowed)
and two consecutive sites may not both be NONE.

Only positive contact values count toward the selected sum. Negative
values are not part of the search: the scorer adds them for every site
afterwards (forced destabilization).

The recurrence depends only on (site, previous state), so the search is a
forward dynamic program with three running maxima. Results are identical
to exhaustive enumeration of all feasible state sequences.

License: MIT
================================================================================
"""

from __future__ import annotations

from enum import IntEnum
from typing import Sequence


class ContactState(IntEnum):
    NONE = 0
    LATERAL = 1
    AXIAL = 2


_NEG_INF = float('-inf')


def allowed_after(previous: ContactState | None, state: ContactState) -> bool:
    """Adjacency rule between consecutive sites (previous=None at site 0)."""
    if previous is None:
        return True
    if state is ContactState.NONE:
        return previous is not ContactState.NONE
    if state is ContactState.LATERAL:
        return previous is not ContactState.AXIAL
    return True


def _gains(axial: Sequence[float], lateral: Sequence[float], i: int) -> tuple[float, float, float]:
    ax = float(axial[i])
    lat = float(lateral[i])
    return 0.0, (lat if lat > 0 else 0.0), (ax if ax > 0 else 0.0)


def _check(axial, lateral):
    if len(axial) != len(lateral):
        raise ValueError(
            f"axial and lateral threads differ in length: {len(axial)} vs {len(lateral)}")


def max_stabilizing_sum(axial: Sequence[float], lateral: Sequence[float]) -> float:
    """
    Maximum sum of positive contributions over all feasible state paths.

    For a single site this is max(0, axial[0], lateral[0]); for no sites 0.
    """
    _check(axial, lateral)
    m = len(axial)
    if m == 0:
        return 0.0

    g_none, g_lat, g_ax = _gains(axial, lateral, 0)
    best = [g_none, g_lat, g_ax]
    for i in range(1, m):
        g_none, g_lat, g_ax = _gains(axial, lateral, i)
        b_none, b_lat, b_ax = best
        best = [
            max(b_lat, b_ax) + g_none,
            max(b_none, b_lat) + g_lat,
            max(b_none, b_lat, b_ax) + g_ax,
        ]
    return max(best)


def best_interaction_path(axial: Sequence[float],
                          lateral: Sequence[float]) -> tuple[float, list[ContactState]]:
    """
    Same search as max_stabilizing_sum, also returning one optimal path.

    Ties prefer NONE, then LATERAL, then AXIAL at each site.
    """
    _check(axial, lateral)
    m = len(axial)
    if m == 0:
        return 0.0, []

    states = list(ContactState)
    score = [[_NEG_INF] * 3 for _ in range(m)]
    back: list[list[ContactState | None]] = [[None] * 3 for _ in range(m)]

    gains = _gains(axial, lateral, 0)
    for s in states:
        score[0][s] = gains[s]

    for i in range(1, m):
        gains = _gains(axial, lateral, i)
        for s in states:
            for prev in states:
                if not allowed_after(prev, s):
                    continue
                cand = score[i - 1][prev] + gains[s]
                if cand > score[i][s]:
                    score[i][s] = cand
                    back[i][s] = prev

    last = max(states, key=lambda s: (score[m - 1][s], -int(s)))
    total = score[m - 1][last]
    path = [last]
    for i in range(m - 1, 0, -1):
        path.append(back[i][path[-1]])
    path.reverse()
    return total, path


def forced_destabilization(axial: Sequence[float], lateral: Sequence[float]) -> float:
    """Sum of every strictly negative contact value on the thread."""
    _check(axial, lateral)
    total = 0.0
    for ax, lat in zip(axial, lateral):
        if ax < 0:
            total += float(ax)
        if lat < 0:
            total += float(lat)
    return total


def thread_bonus(axial: Sequence[float], lateral: Sequence[float]) -> float:
    """Selected stabilizing contacts plus all destabilizing ones."""
    return max_stabilizing_sum(axial, lateral) + forced_destabilization(axial, lateral)
