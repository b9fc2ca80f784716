import numpy as np
import scipy.sparse as sp
import trimesh as tm

from pydeform.laplacian import (
    corner_geometry,
    cotangent_laplacian,
    face_areas,
    signed_volume,
    umbrella_laplacian,
    unique_edges,
)


def test_laplacian_basic_properties():
    # Create a simple sphere mesh
    mesh = tm.primitives.Sphere(radius=1.0, subdivisions=2)
    V = np.asarray(mesh.vertices)
    F = np.asarray(mesh.faces)

    L = cotangent_laplacian(V, F)
    assert sp.isspmatrix_csr(L)

    # Row-sum should be ~0
    rowsum = np.array(L.sum(axis=1)).ravel()
    assert np.allclose(rowsum, 0.0, atol=1e-8)

    # Symmetry
    assert abs(L - L.T).max() < 1e-12

    # Diagonal positive on a well-shaped mesh
    assert np.all(L.diagonal() > 0)


def test_laplacian_annihilates_translation():
    mesh = tm.creation.icosphere(subdivisions=1)
    V = np.asarray(mesh.vertices)
    F = np.asarray(mesh.faces)
    L = cotangent_laplacian(V, F)
    assert np.allclose(L @ (V + [3.0, -1.0, 2.0]), L @ V, atol=1e-10)


def test_umbrella_laplacian_properties():
    mesh = tm.creation.icosphere(subdivisions=1)
    F = np.asarray(mesh.faces)
    n = len(mesh.vertices)
    E = unique_edges(F)
    assert E.shape == (len(mesh.edges_unique), 2)
    assert np.all(E[:, 0] < E[:, 1])

    L = umbrella_laplacian(n, E)
    assert sp.isspmatrix_csr(L)
    rowsum = np.array(L.sum(axis=1)).ravel()
    assert np.allclose(rowsum, 0.0)
    assert (L - L.T).nnz == 0
    degree = np.bincount(E.ravel(), minlength=n)
    assert np.array_equal(L.diagonal(), degree)


def test_umbrella_laplacian_without_edges():
    L = umbrella_laplacian(4, np.zeros((0, 2), dtype=np.int64))
    assert L.shape == (4, 4)
    assert L.nnz == 0


def test_corner_cotangents_right_triangle():
    V = np.array([[0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [0.0, 1.0, 0.0]])
    F = np.array([[0, 1, 2]])
    g = corner_geometry(V, F)
    # corner 0: b = node 1, c = node 2, both at 45 degrees
    assert np.allclose(g.cot_b[0, 0], 1.0)
    assert np.allclose(g.cot_c[0, 0], 1.0)
    # corner 1: b = node 2 (45 degrees), c = node 0 (right angle)
    assert np.allclose(g.cot_b[0, 1], 1.0)
    assert np.allclose(g.cot_c[0, 1], 0.0)
    assert np.allclose(g.mab[0], [1.0, 2.0, 1.0])
    assert not g.degenerate[0]
    assert np.allclose(face_areas(V, F), [0.5])


def test_degenerate_triangle_has_zero_cotangents():
    V = np.array([[0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [2.0, 0.0, 0.0]])
    F = np.array([[0, 1, 2]])
    g = corner_geometry(V, F)
    assert g.degenerate[0]
    assert np.all(g.cot_b == 0.0)
    assert np.all(g.cot_c == 0.0)

    L = cotangent_laplacian(V, F)
    assert np.all(np.isfinite(L.toarray()))


def test_signed_volume_matches_trimesh():
    mesh = tm.creation.icosphere(subdivisions=2, radius=1.5)
    V = np.asarray(mesh.vertices)
    F = np.asarray(mesh.faces)
    assert np.isclose(signed_volume(V, F), mesh.volume, rtol=1e-9)
    assert np.isclose(signed_volume(V, F[:, ::-1]), -mesh.volume, rtol=1e-9)
    assert signed_volume(V, np.zeros((0, 3), dtype=np.int64)) == 0.0
