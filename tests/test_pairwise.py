import itertools

import numpy as np
import pytest

from collagen_tm.ctm_pairwise import (
    ContactState, allowed_after, best_interaction_path, forced_destabilization,
    max_stabilizing_sum, thread_bonus,
)


def brute_force(axial, lateral):
    """Exhaustive enumeration of every feasible state path."""
    best = 0.0
    for path in itertools.product(ContactState, repeat=len(axial)):
        prev = None
        total = 0.0
        ok = True
        for i, s in enumerate(path):
            if not allowed_after(prev, s):
                ok = False
                break
            if s is ContactState.AXIAL and axial[i] > 0:
                total += axial[i]
            elif s is ContactState.LATERAL and lateral[i] > 0:
                total += lateral[i]
            prev = s
        if ok:
            best = max(best, total)
    return best


def path_value(path, axial, lateral):
    total = 0.0
    for i, s in enumerate(path):
        if s is ContactState.AXIAL and axial[i] > 0:
            total += axial[i]
        elif s is ContactState.LATERAL and lateral[i] > 0:
            total += lateral[i]
    return total


def feasible(path):
    prev = None
    for s in path:
        if not allowed_after(prev, s):
            return False
        prev = s
    return True


class TestAdjacencyRule:
    def test_first_site_unconstrained(self):
        assert all(allowed_after(None, s) for s in ContactState)

    def test_no_double_none(self):
        assert not allowed_after(ContactState.NONE, ContactState.NONE)
        assert allowed_after(ContactState.LATERAL, ContactState.NONE)

    def test_no_lateral_after_axial(self):
        assert not allowed_after(ContactState.AXIAL, ContactState.LATERAL)
        assert allowed_after(ContactState.LATERAL, ContactState.LATERAL)

    def test_axial_always_allowed(self):
        assert all(allowed_after(s, ContactState.AXIAL) for s in ContactState)


class TestMaxStabilizingSum:
    def test_empty_thread(self):
        assert max_stabilizing_sum([], []) == 0.0

    def test_single_site(self):
        rng = np.random.default_rng(1)
        for _ in range(50):
            ax, lat = rng.normal(size=2)
            assert max_stabilizing_sum([ax], [lat]) == pytest.approx(max(0.0, ax, lat))

    def test_lateral_blocked_after_axial(self):
        # Axial then lateral is illegal; best is axial + axial or lateral + lateral
        assert max_stabilizing_sum([5.0, 0.0], [0.0, 4.0]) == pytest.approx(5.0)
        assert max_stabilizing_sum([0.0, 5.0], [4.0, 0.0]) == pytest.approx(9.0)

    def test_negative_values_never_selected(self):
        assert max_stabilizing_sum([-3.0, -1.0, -2.0], [-1.0, -5.0, -2.0]) == 0.0

    def test_matches_exhaustive_search(self):
        rng = np.random.default_rng(7)
        for m in range(1, 9):
            for _ in range(20):
                ax = list(rng.normal(size=m))
                lat = list(rng.normal(size=m))
                assert max_stabilizing_sum(ax, lat) == pytest.approx(brute_force(ax, lat))

    def test_bounds(self):
        rng = np.random.default_rng(11)
        for _ in range(100):
            m = int(rng.integers(1, 15))
            ax = rng.normal(size=m)
            lat = rng.normal(size=m)
            # feasible path: None whenever legal, Axial otherwise
            greedy = 0.0
            prev = None
            for i in range(m):
                if prev is not ContactState.NONE:
                    prev = ContactState.NONE
                else:
                    prev = ContactState.AXIAL
                    greedy += max(ax[i], 0.0)
            upper = ax[ax > 0].sum() + lat[lat > 0].sum()
            result = max_stabilizing_sum(ax, lat)
            assert greedy - 1e-12 <= result <= upper + 1e-12

    def test_mismatched_lengths(self):
        with pytest.raises(ValueError):
            max_stabilizing_sum([1.0, 2.0], [1.0])


class TestBestPath:
    def test_path_is_feasible_and_optimal(self):
        rng = np.random.default_rng(3)
        for m in range(1, 12):
            ax = list(rng.normal(size=m))
            lat = list(rng.normal(size=m))
            total, path = best_interaction_path(ax, lat)
            assert len(path) == m
            assert feasible(path)
            assert total == pytest.approx(max_stabilizing_sum(ax, lat))
            assert path_value(path, ax, lat) == pytest.approx(total)

    def test_all_lateral_thread(self):
        total, path = best_interaction_path([0.0] * 4, [1.0] * 4)
        assert total == pytest.approx(4.0)
        assert path == [ContactState.LATERAL] * 4

    def test_empty(self):
        assert best_interaction_path([], []) == (0.0, [])


class TestDestabilization:
    def test_only_negative_entries(self):
        assert forced_destabilization([1.0, -2.0, 0.0], [-0.5, 3.0, -1.0]) == pytest.approx(-3.5)

    def test_thread_bonus_combines_both(self):
        ax = [2.0, -1.0, 0.5]
        lat = [-0.5, 1.0, 0.0]
        assert thread_bonus(ax, lat) == pytest.approx(
            max_stabilizing_sum(ax, lat) + forced_destabilization(ax, lat))
