import numpy as np
import pytest
import trimesh as tm

from pydeform.energies import UniformField
from pydeform.mesh import DeformableMesh, StaleGeometryError, TopologyError


@pytest.fixture
def sphere():
    return DeformableMesh.from_trimesh(tm.creation.icosphere(subdivisions=2, radius=1.0))


def _tetrahedron():
    V = np.array([[0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [0.0, 1.0, 0.0], [0.0, 0.0, 1.0]])
    F = np.array([[0, 2, 1], [0, 1, 3], [0, 3, 2], [1, 2, 3]])
    return V, F


def test_construct_from_trimesh(sphere):
    ref = tm.creation.icosphere(subdivisions=2, radius=1.0)
    assert sphere.node_count == len(ref.vertices)
    assert sphere.triangle_count == len(ref.faces)
    assert sphere.edges.shape == (len(ref.edges_unique), 2)
    assert sphere.geometry_current


def test_volume_and_area_match_trimesh(sphere):
    ref = tm.creation.icosphere(subdivisions=2, radius=1.0)
    assert sphere.calculate_volume() == pytest.approx(ref.volume, rel=1e-9)
    assert sphere.calculate_area() == pytest.approx(ref.area, rel=1e-9)
    assert np.allclose(sphere.triangle_areas, ref.area_faces)
    assert np.allclose(sphere.triangle_normals, ref.face_normals)


def test_tetrahedron_volume_sign():
    V, F = _tetrahedron()
    mesh = DeformableMesh(V, F)
    assert mesh.calculate_volume() == pytest.approx(1.0 / 6.0)
    flipped = DeformableMesh(V, F[:, ::-1])
    assert flipped.calculate_volume() == pytest.approx(-1.0 / 6.0)


def test_to_trimesh_round_trip(sphere):
    out = sphere.to_trimesh()
    assert isinstance(out, tm.Trimesh)
    assert np.array_equal(out.faces, sphere.triangles)
    assert np.allclose(out.vertices, sphere.positions)


@pytest.mark.parametrize(
    "F, message",
    [
        ([[0, 1, 4]], "outside"),
        ([[0, -1, 2]], "outside"),
        ([[0, 1, 1]], "repeats"),
        ([[0, 1, 2], [0, 1, 3]], "winding"),
        ([[0, 1, 2], [1, 0, 3], [0, 1, 3]], "winding"),
    ],
)
def test_topology_errors(F, message):
    V, _ = _tetrahedron()
    with pytest.raises(TopologyError, match=message):
        DeformableMesh(V, np.array(F))


def test_edge_shared_by_three_triangles_rejected():
    V = np.random.default_rng(0).random((5, 3))
    F = np.array([[0, 1, 2], [1, 0, 3], [1, 0, 4]])
    with pytest.raises(TopologyError):
        DeformableMesh(V, F)


def test_non_integer_triangles_rejected():
    V, _ = _tetrahedron()
    with pytest.raises(TopologyError):
        DeformableMesh(V, np.array([[0.0, 1.5, 2.0]]))


def test_bad_positions_rejected():
    with pytest.raises(ValueError):
        DeformableMesh(np.zeros((3, 2)), np.array([[0, 1, 2]]))
    with pytest.raises(ValueError):
        DeformableMesh(np.array([[0.0, 0.0, np.nan]] * 3), np.array([[0, 1, 2]]))


def test_coefficient_validation():
    V, F = _tetrahedron()
    with pytest.raises(ValueError):
        DeformableMesh(V, F, gamma=0.0)
    mesh = DeformableMesh(V, F)
    with pytest.raises(ValueError):
        mesh.alpha = np.inf
    mesh.beta = 0.5
    assert mesh.beta == 0.5


def test_node_index_errors(sphere):
    n = sphere.node_count
    with pytest.raises(IndexError):
        sphere.get_coordinates(n)
    with pytest.raises(IndexError):
        sphere.set_coordinates(-1, [0.0, 0.0, 0.0])
    with pytest.raises(IndexError):
        sphere.incident_triangles(n)
    with pytest.raises(IndexError):
        sphere.get_triangle(sphere.triangle_count)


def test_positions_are_read_only(sphere):
    with pytest.raises(ValueError):
        sphere.positions[0, 0] = 10.0
    with pytest.raises(ValueError):
        sphere.triangles[0, 0] = 1
    flat = sphere.positions_flat
    assert flat.shape == (3 * sphere.node_count,)
    assert np.array_equal(flat[3:6], sphere.positions[1])


def test_geometry_goes_stale_after_moving(sphere):
    sphere.set_coordinates(0, [0.0, 0.0, 2.0])
    assert not sphere.geometry_current
    with pytest.raises(StaleGeometryError):
        sphere.triangle_areas
    with pytest.raises(StaleGeometryError):
        sphere.get_triangle(0)
    sphere.refresh_triangles()
    assert sphere.geometry_current
    assert np.all(sphere.triangle_areas > 0)

    sphere.translate([1.0, 0.0, 0.0])
    with pytest.raises(StaleGeometryError):
        sphere.triangle_normals


def test_get_triangle(sphere):
    t = sphere.get_triangle(3)
    assert t.index == 3
    assert t.nodes == tuple(int(i) for i in sphere.triangles[3])
    assert t.area == pytest.approx(sphere.triangle_areas[3])
    assert np.linalg.norm(t.normal) == pytest.approx(1.0)


def test_adjacency(sphere):
    counts = np.bincount(sphere.triangles.ravel(), minlength=sphere.node_count)
    for i in range(sphere.node_count):
        incident = sphere.incident_triangles(i)
        assert incident.size == counts[i]
        assert np.all(np.any(sphere.triangles[incident] == i, axis=1))


def test_isolated_node_has_no_triangles():
    V, F = _tetrahedron()
    V = np.vstack([V, [[5.0, 5.0, 5.0]]])
    mesh = DeformableMesh(V, F)
    assert mesh.incident_triangles(4).size == 0


def test_point_cloud_without_triangles():
    mesh = DeformableMesh(np.zeros((2, 3)), np.zeros((0, 3), dtype=int))
    assert mesh.triangle_count == 0
    assert mesh.edges.shape == (0, 2)
    assert mesh.calculate_volume() == 0.0
    assert mesh.umbrella_laplacian().shape == (2, 2)


def test_set_positions_shape_checked(sphere):
    with pytest.raises(ValueError):
        sphere.set_positions(np.zeros((3, 3)))


def test_copy_is_independent(sphere):
    sphere.add_external_energy(UniformField(1.0))
    dup = sphere.copy()
    dup.translate([0.0, 0.0, 1.0])
    assert not np.allclose(dup.positions, sphere.positions)
    assert dup.external_energies == ()
    assert dup.alpha == sphere.alpha


def test_energy_registry(sphere):
    e = UniformField(1.0)
    sphere.add_external_energy(e)
    assert sphere.external_energies == (e,)
    sphere.remove_external_energy(e)
    assert sphere.external_energies == ()
    with pytest.raises(ValueError):
        sphere.remove_external_energy(e)
    sphere.add_external_energy(e)
    sphere.clear_external_energies()
    assert len(sphere.external_energies) == 0
    assert "energies=0" in repr(sphere)
