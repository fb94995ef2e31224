"""
Test fixtures for the collagen_tm scoring and calibration tests.

Sequences are written Xaa-Yaa-Gly (e.g. "PPG" repeats), so Gly sits on
track 2 and the detected phase is 0: Xaa at p % 3 == 0, Yaa at 1, Gly at 2.
For L = 27 the Yaa sites are 1, 4, ..., 25; sites 1 and 25 fall inside the
end triads and carry 1/3 propensity weight.
"""
import numpy as np
import pytest

from collagen_tm.ctm_core import TripleHelixSample, residue_index
from collagen_tm.ctm_params import ParameterSet


@pytest.fixture
def zero_params():
    return ParameterSet()


@pytest.fixture
def pog_homotrimer():
    return TripleHelixSample(("POG" * 9,), n_term="Ac", c_term="Am", exp_tm=40.0,
                             name="(POG)9")


@pytest.fixture
def a2b_sample():
    return TripleHelixSample(("PPG" * 9, "PAG" * 9), exp_tm=20.0, name="A2B")


@pytest.fixture
def abc_sample():
    return TripleHelixSample(("PPG" * 9, "PAG" * 9, "PSG" * 9), exp_tm=15.0, name="ABC")


@pytest.fixture
def param_factory():
    """Random parameter sets with a fixed seed."""
    def _make(seed=0, scale=1.0):
        rng = np.random.default_rng(seed)
        p = ParameterSet(
            length=[-10.0, 1.5, -0.01],
            prop_x=rng.normal(0, scale, 27),
            prop_y=rng.normal(0, scale, 27),
            axial=rng.normal(0, scale, (27, 27)),
            lateral=rng.normal(0, scale, (27, 27)),
        )
        p.prop_x[0] = p.prop_y[0] = 0.0
        p.axial[0, :] = p.axial[:, 0] = 0.0
        p.lateral[0, :] = p.lateral[:, 0] = 0.0
        return p
    return _make


def random_chain(rng, n_triads, xaa="PAEKLR", yaa="OAKESR"):
    return "".join(rng.choice(list(xaa)) + rng.choice(list(yaa)) + "G"
                   for _ in range(n_triads))


@pytest.fixture
def library_factory():
    """Small mixed libraries of valid, phase-conforming samples."""
    def _make(seed=0, n=6, max_pep=3):
        rng = np.random.default_rng(seed)
        library = []
        for k in range(n):
            n_triads = int(rng.integers(7, 12))
            num_pep = 1 + k % max_pep
            chains = tuple(random_chain(rng, n_triads) for _ in range(num_pep))
            library.append(TripleHelixSample(
                chains, n_term="Ac", c_term="Am",
                exp_tm=float(rng.uniform(10, 60)), name=f"s{k}"))
        return library
    return _make


@pytest.fixture
def idx():
    return residue_index
