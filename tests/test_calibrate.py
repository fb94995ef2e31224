import numpy as np
import pytest

from collagen_tm.ctm_calibrate import (
    CalibrationConfig, InteractionCounts, auto_tuning_mask, calibrate,
    count_interactions, library_statistics, low_confidence_interactions,
    score_library, split_ranges, sum_squared_deviation,
)
from collagen_tm.ctm_core import TripleHelixSample
from collagen_tm.ctm_params import ParameterKey, ParameterSet, TuningMask
from collagen_tm.ctm_score import score_helix


@pytest.fixture
def pag_library():
    # Tm = 23 * prop_y[A] for every register of this homotrimer
    return [TripleHelixSample(("PAG" * 9,), exp_tm=10.0, name="(PAG)9")]


@pytest.fixture
def pag_mask(idx):
    mask = TuningMask()
    mask.prop_y[idx("A")] = True
    return mask


class TestSplitRanges:
    def test_two_halves(self):
        assert split_ranges(7, 2) == [(0, 3), (3, 7)]

    def test_small_libraries(self):
        assert split_ranges(1, 2) == [(0, 0), (0, 1)]
        assert split_ranges(0, 2) == [(0, 0), (0, 0)]

    @pytest.mark.parametrize("n,parts", [(10, 3), (5, 5), (3, 4)])
    def test_ranges_cover_every_index_once(self, n, parts):
        covered = [i for start, stop in split_ranges(n, parts) for i in range(start, stop)]
        assert covered == list(range(n))


class TestScoreLibrary:
    def test_matches_sequential_scoring(self, param_factory, library_factory):
        params = param_factory(seed=8)
        library = library_factory(seed=1, n=7)
        expected = [score_helix(s, params) for s in library]
        for workers in (1, 2, 3):
            scores = score_library(library, params, workers)
            assert len(scores) == len(library)
            for got, want in zip(scores, expected):
                assert np.array_equal(got.tm, want.tm)
                assert got.deviation == want.deviation

    def test_snapshot_is_read_only(self, param_factory):
        snap = param_factory(seed=0).frozen()
        with pytest.raises(ValueError):
            snap.prop_x[1] = 5.0

    def test_empty_library(self, zero_params):
        assert score_library([], zero_params) == []
        assert sum_squared_deviation([]) == 0.0


class TestStatistics:
    def test_single_sample(self, pog_homotrimer, zero_params):
        stats = library_statistics(score_library([pog_homotrimer], zero_params))
        assert stats['n_samples'] == 1
        assert stats['sum_squared_deviation'] == pytest.approx(1600.0)
        assert stats['rmsd'] == pytest.approx(40.0)
        assert stats['worst_index'] == 0
        assert stats['outliers'] == [0]

    def test_empty(self):
        stats = library_statistics([])
        assert stats['n_samples'] == 0
        assert stats['worst_index'] is None


class TestInteractionCounts:
    def test_pog_homotrimer(self, pog_homotrimer, idx):
        counts = count_interactions([pog_homotrimer])
        assert counts.prop_x[idx("P")] == 9
        assert counts.prop_y[idx("O")] == 9
        # 8 + 8 (x+2 < 27) + 7 (x+5 < 27)
        assert counts.axial[idx("O"), idx("P")] == 23
        # 8 + 8 (x > 1) + 8 (x+2 < 27)
        assert counts.lateral[idx("O"), idx("P")] == 24
        assert counts.axial.sum() == 23
        assert counts.lateral.sum() == 24

    def test_heterotrimer_counts_every_register(self, a2b_sample, idx):
        counts = count_interactions([a2b_sample])
        # Yaa propensity is counted once per chain
        assert counts.prop_y[idx("P")] == 9
        assert counts.prop_y[idx("A")] == 9
        # 8 registers of three threads each
        assert counts.axial.sum() == 8 * 23

    def test_low_confidence_with_empty_counts(self, pog_homotrimer):
        total, poor = low_confidence_interactions(pog_homotrimer, InteractionCounts())
        assert total == 47
        assert poor[('axial', 'O', 'P')] == 23
        assert poor[('lateral', 'O', 'P')] == 24

    def test_well_supported_contacts_are_not_reported(self, pog_homotrimer):
        counts = count_interactions([pog_homotrimer] * 2)
        total, poor = low_confidence_interactions(pog_homotrimer, counts, cut=25)
        assert total == 0
        assert not poor


class TestTuningMask:
    def test_threshold_is_strict(self, idx):
        counts = InteractionCounts()
        counts.prop_x[idx("A")] = 26
        counts.prop_x[idx("C")] = 25
        counts.axial[idx("A"), idx("K")] = 30
        mask = auto_tuning_mask(counts, threshold=25)
        assert mask.prop_x[idx("A")]
        assert not mask.prop_x[idx("C")]
        assert mask.axial[idx("A"), idx("K")]
        assert mask.count() == 2

    def test_forced_exclusions_override_counts(self, idx):
        counts = InteractionCounts()
        counts.prop_x[idx("P")] = 100
        counts.prop_y[idx("O")] = 100
        counts.axial[idx("O"), idx("A")] = 100
        counts.axial[idx("A"), idx("P")] = 100
        counts.lateral[idx("A"), idx("P")] = 100
        counts.lateral[idx("P"), idx("A")] = 100
        mask = auto_tuning_mask(counts, threshold=25)
        # Pro may still head a lateral row
        assert list(mask.keys()) == [ParameterKey('lateral', idx("P"), idx("A"))]

    def test_base_mask_is_merged(self, idx):
        base = TuningMask(length=True)
        base.prop_y[idx("E")] = True
        mask = auto_tuning_mask(InteractionCounts(), threshold=25, base=base)
        assert mask.prop_y[idx("E")]
        assert not mask.length

    def test_visiting_order(self):
        mask = TuningMask()
        mask.lateral[1, 2] = True
        mask.axial[3, 1] = True
        mask.axial[2, 5] = True
        mask.prop_y[5] = True
        mask.prop_x[7] = True
        assert list(mask.keys()) == [
            ParameterKey('prop_x', 7), ParameterKey('prop_y', 5),
            ParameterKey('axial', 2, 5), ParameterKey('axial', 3, 1),
            ParameterKey('lateral', 1, 2)]


class TestCalibrate:
    def test_walks_to_the_minimum(self, pag_library, pag_mask, zero_params, idx):
        result = calibrate(pag_library, zero_params, ParameterSet(), pag_mask,
                           CalibrationConfig(delta=0.1))
        # 23 * 0.4 = 9.2 is the closest reachable prediction to 10
        assert result.params.prop_y[idx("A")] == pytest.approx(0.4)
        assert len(result.adjustments) == 4
        assert result.rounds == 5
        assert result.initial_ssd == pytest.approx(100.0)
        assert result.final_ssd == pytest.approx(0.8 ** 2)
        assert result.improved

    def test_input_parameters_are_not_modified(self, pag_library, pag_mask,
                                               zero_params, idx):
        calibrate(pag_library, zero_params, ParameterSet(), pag_mask)
        assert zero_params.prop_y[idx("A")] == 0.0

    def test_reference_window_bounds_values(self, pag_library, pag_mask,
                                            zero_params, idx):
        result = calibrate(pag_library, zero_params, ParameterSet(), pag_mask,
                           CalibrationConfig(delta=0.1, max_dev=0.25))
        assert result.params.prop_y[idx("A")] == pytest.approx(0.2)
        assert result.rounds == 3

    def test_window_is_centered_on_reference(self, pag_library, pag_mask, idx):
        start = ParameterSet()
        start.prop_y[idx("A")] = 0.9
        reference = ParameterSet()
        reference.prop_y[idx("A")] = 1.0
        # 0.9 - 0.1 falls below 1.0 - 0.15
        result = calibrate(pag_library, start, reference, pag_mask,
                           CalibrationConfig(delta=0.1, max_dev=0.15))
        assert result.params.prop_y[idx("A")] == pytest.approx(0.9)
        assert not result.improved
        assert result.rounds == 1

    def test_round_limit(self, pag_library, pag_mask, zero_params, idx):
        result = calibrate(pag_library, zero_params, ParameterSet(), pag_mask,
                           CalibrationConfig(delta=0.1, max_rounds=2))
        assert result.rounds == 2
        assert result.params.prop_y[idx("A")] == pytest.approx(0.2)

    def test_zero_rounds_only_scores(self, pag_library, pag_mask, zero_params):
        result = calibrate(pag_library, zero_params, ParameterSet(), pag_mask,
                           CalibrationConfig(max_rounds=0))
        assert result.rounds == 0
        assert result.final_ssd == result.initial_ssd
        assert result.params.allclose(zero_params)

    def test_empty_mask_changes_nothing(self, pag_library, zero_params):
        result = calibrate(pag_library, zero_params, ParameterSet(), TuningMask())
        assert result.rounds == 1
        assert not result.adjustments
        assert result.params.allclose(zero_params)

    def test_ssd_never_increases(self, param_factory, library_factory):
        library = library_factory(seed=3, n=4, max_pep=1)
        params = param_factory(seed=6, scale=0.3)
        mask = auto_tuning_mask(count_interactions(library), threshold=10)
        result = calibrate(library, params, params.copy(), mask,
                           CalibrationConfig(delta=0.1, max_rounds=2))
        history = [result.initial_ssd] + result.round_ssd
        assert all(b <= a for a, b in zip(history, history[1:]))
        assert result.final_ssd <= result.initial_ssd
        assert result.final_ssd == pytest.approx(history[-1])
        for adj in result.adjustments:
            assert abs(adj.new - params.get(adj.key)) <= 2.0 + 1e-9
            assert abs(adj.new - adj.old) == pytest.approx(0.1)

    @pytest.mark.parametrize("kwargs", [{'delta': 0.0}, {'max_rounds': -1}, {'workers': 0}])
    def test_config_validation(self, kwargs):
        with pytest.raises(ValueError):
            CalibrationConfig(**kwargs)


class TestCalibrateDefaults:
    def test_worker_count_does_not_change_trajectory(self, param_factory, library_factory):
        library = library_factory(seed=5, n=5)
        params = param_factory(seed=4, scale=0.3)
        mask = auto_tuning_mask(count_interactions(library), threshold=15)
        runs = [calibrate(library, params, params.copy(), mask,
                          CalibrationConfig(delta=0.1, max_rounds=2, workers=w))
                for w in (1, 2)]
        one, two = runs
        assert [(a.key, a.new, a.ssd) for a in one.adjustments] == \
            [(a.key, a.new, a.ssd) for a in two.adjustments]
        assert one.round_ssd == two.round_ssd
        assert one.params.allclose(two.params)

    def test_default_mask_uses_count_threshold(self, pag_library, zero_params):
        # (PAG)9 exercises prop_y[A] 9 times and axial[A,P] 23 times
        none = calibrate(pag_library, zero_params,
                         config=CalibrationConfig(max_rounds=3, count_threshold=25))
        assert not none.improved
        some = calibrate(pag_library, zero_params,
                         config=CalibrationConfig(max_rounds=3, count_threshold=5))
        tuned = {a.key.table for a in some.adjustments}
        assert tuned == {'prop_y', 'axial'}
        assert some.final_ssd < some.initial_ssd

    def test_default_reference_is_start(self, pag_library, pag_mask, zero_params, idx):
        result = calibrate(pag_library, zero_params, mask=pag_mask,
                           config=CalibrationConfig(delta=0.1, max_dev=0.25))
        assert result.params.prop_y[idx("A")] == pytest.approx(0.2)
