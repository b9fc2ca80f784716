import numpy as np
import pytest

from pydeform.energies import StickyVertex
from pydeform.mesh import DeformableMesh
from pydeform.sticky import pair_vertices, stick_close_vertices, stick_vertices


def _grid(x, n=4):
    y, z = np.meshgrid(np.arange(n, dtype=float), np.arange(n, dtype=float), indexing="ij")
    return np.column_stack([np.full(n * n, x), y.ravel(), z.ravel()])


def _points(X):
    return DeformableMesh(np.asarray(X, dtype=float), np.zeros((0, 3), dtype=int))


def test_parallel_grids_pair_one_to_one():
    A = _grid(0.0)
    perm = np.random.default_rng(2).permutation(A.shape[0])
    B = _grid(0.03)[perm]

    pairs = pair_vertices(A, B)
    assert len(pairs) == A.shape[0]
    ia = [i for i, _ in pairs]
    jb = [j for _, j in pairs]
    assert len(set(ia)) == len(ia)
    assert len(set(jb)) == len(jb)
    for i, j in pairs:
        assert np.array_equal(A[i, 1:], B[j, 1:])


def test_pairing_respects_half_spaces():
    A = np.vstack([_grid(0.0, n=2), [[-1.0, 0.0, 0.0]]])
    B = np.vstack([_grid(0.02, n=2), [[1.0, 0.0, 0.0]]])
    pairs = pair_vertices(A, B)
    assert len(pairs) == 4
    assert all(i != 4 for i, _ in pairs)
    assert all(j != 4 for _, j in pairs)


def test_pairing_stops_when_one_side_is_exhausted():
    A = _grid(0.0, n=3)
    B = _grid(0.0, n=2)
    pairs = pair_vertices(A, B)
    assert len(pairs) == 4
    assert len({j for _, j in pairs}) == 4


def test_pairing_along_other_axis():
    A = _grid(0.0)[:, [1, 0, 2]]
    B = _grid(0.01)[:, [1, 0, 2]]
    pairs = pair_vertices(A, B, axis=1)
    assert sorted(pairs) == [(i, i) for i in range(A.shape[0])]


def test_pairing_without_candidates():
    A = _grid(-1.0)
    assert pair_vertices(A, _grid(0.0)) == []
    with pytest.raises(ValueError):
        pair_vertices(A, A, axis=3)


def test_stick_vertices_registers_links_on_both_meshes():
    a = _points(_grid(0.0, n=2))
    b = _points(_grid(0.01, n=2))
    pairs = stick_vertices(a, b, 2.0)
    assert len(pairs) == 4
    assert len(a.external_energies) == 4
    assert len(b.external_energies) == 4
    link = a.external_energies[0]
    assert isinstance(link, StickyVertex)
    i, j = pairs[0]
    assert link.node == i
    assert link.partner is b
    assert link.partner_node == j
    assert link.k == 2.0


def test_stick_close_vertices_claims_each_node_once():
    a = _points([[0.0, 0.0, 0.0], [1.0, 0.0, 0.0]])
    b = _points([[0.005, 0.0, 0.0], [0.006, 0.0, 0.0], [5.0, 5.0, 5.0]])
    stuck_a, stuck_b = set(), set()

    linked = stick_close_vertices(a, b, 1.0, 1e-4, stuck_a, stuck_b)
    assert linked == [(0, 0)]
    assert stuck_a == {0}
    assert stuck_b == {0}
    assert len(a.external_energies) == 1
    assert len(b.external_energies) == 1

    # already claimed nodes are not linked again
    assert stick_close_vertices(a, b, 1.0, 1e-4, stuck_a, stuck_b) == []

    a.set_coordinates(1, [0.0055, 0.0, 0.0])
    linked = stick_close_vertices(a, b, 1.0, 1e-4, stuck_a, stuck_b)
    assert linked == [(1, 1)]
    assert len(a.external_energies) == 2


def test_stick_close_vertices_disabled_by_zero_cutoff():
    a = _points([[0.0, 0.0, 0.0]])
    b = _points([[0.0, 0.0, 0.0]])
    assert stick_close_vertices(a, b, 1.0, 0.0, set(), set()) == []
