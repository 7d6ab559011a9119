"""
Tests for transition patches stitched onto chunk faces.
"""

import numpy as np
import pytest

from isoterrain.world.chunk import TransitionNeeds
from isoterrain.world.density import MissingDensityError, PlaneField, SphereField
from isoterrain.world.mesh_builder import build_regular_mesh
from isoterrain.world.transition import (
    FACES,
    TRANSITION_WIDTH,
    build_face_geometry,
    build_transition_mesh,
    flagged_faces,
    stencil_positions,
    stencil_samples,
)

from conftest import triangle_normals

FACE_BY_NAME = {f.name: f for f in FACES}


@pytest.fixture
def big_sphere():
    """Pokes through every face of an 8-cell chunk at the origin."""
    return SphereField(center=(4.0, 4.0, 4.0), radius=4.5)


def _needs(name):
    return TransitionNeeds(**{name: True})


class TestStencil:
    def test_block_count(self, make_chunk):
        ch = make_chunk(cells=8)
        for face in FACES:
            assert stencil_positions(ch, face).shape == (16, 13, 3)

    def test_odd_trailing_row_has_no_block(self, make_chunk):
        ch = make_chunk(cells=5)
        assert stencil_positions(ch, FACES[0]).shape == (4, 13, 3)

    def test_fine_layer_on_face_coarse_layer_outside(self, make_chunk):
        ch = make_chunk(cells=8, cell_size=1.0)
        pos = stencil_positions(ch, FACE_BY_NAME["px"])
        np.testing.assert_allclose(pos[:, :9, 0], 8.0)
        np.testing.assert_allclose(pos[:, 9:, 0], 8.0 + TRANSITION_WIDTH)
        pos = stencil_positions(ch, FACE_BY_NAME["nz"])
        np.testing.assert_allclose(pos[:, :9, 2], 0.0)
        np.testing.assert_allclose(pos[:, 9:, 2], -TRANSITION_WIDTH)

    def test_coarse_points_span_two_fine_cells(self, make_chunk):
        ch = make_chunk(cells=8, cell_size=0.5)
        pos = stencil_positions(ch, FACE_BY_NAME["py"])
        face = FACE_BY_NAME["py"]
        # points 9 and 10 differ by two fine cells along u
        np.testing.assert_allclose(pos[:, 10, face.u] - pos[:, 9, face.u], 1.0)

    def test_flagged_faces_follow_needs_order(self):
        names = [f.name for f in flagged_faces(TransitionNeeds(px=True, ny=True, nz=True))]
        assert names == ["px", "ny", "nz"]


# Faces paired with a plane that crosses them: solid on the low side of `axis`.
PLANE_CASES = [
    ("px", 1), ("nx", 1), ("pz", 1), ("nz", 1),
    ("py", 0), ("ny", 0), ("px", 2), ("py", 2),
]


class TestFacePatches:
    @pytest.mark.parametrize("name,axis", PLANE_CASES)
    def test_patch_faces_the_air(self, make_chunk, name, axis):
        ch = make_chunk(cells=8, cell_size=1.0)
        normal = [0.0, 0.0, 0.0]
        normal[axis] = 1.0
        field = PlaneField(normal=tuple(normal), offset=3.3)
        verts, norms, idx = build_face_geometry(ch, FACE_BY_NAME[name], field)

        assert idx.shape[0] > 0
        assert idx.shape[0] % 3 == 0
        np.testing.assert_allclose(verts[:, axis], 3.3, atol=1e-5)
        n = triangle_normals(verts, idx)
        assert np.all(n[:, axis] >= -1e-6)
        assert np.any(n[:, axis] > 0.0)

    @pytest.mark.parametrize("name", [f.name for f in FACES])
    def test_vertices_stay_in_the_transition_slab(self, make_chunk, big_sphere, name):
        ch = make_chunk(cells=8, cell_size=1.0)
        face = FACE_BY_NAME[name]
        verts, _, _ = build_face_geometry(ch, face, big_sphere)
        plane = 8.0 if face.sign > 0 else 0.0
        along = (verts[:, face.axis] - plane) * face.sign
        assert np.all(along >= -1e-6)
        assert np.all(along <= TRANSITION_WIDTH + 1e-6)

    def test_normals_match_regular_convention(self, make_chunk, plane_field):
        ch = make_chunk(origin=(0.0, -4.5, 0.0), cells=8, cell_size=1.0)
        _, norms, idx = build_face_geometry(ch, FACE_BY_NAME["px"], plane_field)
        assert idx.shape[0] > 0
        np.testing.assert_allclose(norms, np.tile([0.0, -1.0, 0.0], (norms.shape[0], 1)), atol=1e-5)


class TestTransitionMesh:
    def test_appends_after_regular_geometry(self, make_chunk, big_sphere):
        ch = make_chunk(cells=8)
        regular = build_regular_mesh(ch, big_sphere)
        needs = TransitionNeeds(px=True, nx=True, py=True, ny=True, pz=True, nz=True)
        mesh = build_transition_mesh(ch, needs, big_sphere, regular)

        n = regular.n_vertices
        assert mesh.n_vertices > n
        assert np.array_equal(mesh.vertices[:n], regular.vertices)
        assert np.array_equal(mesh.normals[:n], regular.normals)
        assert np.array_equal(mesh.indices[:regular.indices.shape[0]], regular.indices)
        assert mesh.indices.max() < mesh.n_vertices
        assert mesh.indices[regular.indices.shape[0]:].min() >= n

    def test_no_flags_leaves_mesh_alone(self, make_chunk, big_sphere):
        ch = make_chunk(cells=8)
        regular = build_regular_mesh(ch, big_sphere)
        mesh = build_transition_mesh(ch, TransitionNeeds(), big_sphere, regular)
        assert mesh.n_vertices == regular.n_vertices
        assert np.array_equal(mesh.indices, regular.indices)

    def test_single_face_adds_only_that_face(self, make_chunk, big_sphere):
        ch = make_chunk(cells=8)
        mesh = build_transition_mesh(ch, _needs("pz"), big_sphere)
        assert mesh.n_triangles > 0
        assert np.all(mesh.vertices[:, 2] >= 8.0 - 1e-6)

    def test_deterministic(self, make_chunk, big_sphere):
        needs = TransitionNeeds(px=True, ny=True)
        a = build_transition_mesh(make_chunk(cells=8), needs, big_sphere)
        b = build_transition_mesh(make_chunk(cells=8), needs, big_sphere)
        assert np.array_equal(a.vertices, b.vertices)
        assert np.array_equal(a.indices, b.indices)

    def test_missing_density_raises(self, make_chunk):
        with pytest.raises(MissingDensityError):
            build_transition_mesh(make_chunk(cells=8), _needs("px"), None)


class TestCurvedSurface:
    """Sphere cutting every face: patch vertices follow the surface."""

    @pytest.mark.parametrize("name", [f.name for f in FACES])
    def test_coarse_points_take_fine_corner_samples(self, make_chunk, big_sphere, name):
        ch = make_chunk(cells=8, cell_size=1.0)
        pos = stencil_positions(ch, FACE_BY_NAME[name])
        samples = stencil_samples(ch, pos, big_sphere)
        assert samples.shape == (16, 13)
        np.testing.assert_array_equal(samples[:, 9:], samples[:, [0, 2, 6, 8]])

    @pytest.mark.parametrize("name", [f.name for f in FACES])
    def test_vertices_lie_on_the_surface(self, make_chunk, big_sphere, name):
        ch = make_chunk(cells=8, cell_size=1.0)
        face = FACE_BY_NAME[name]
        verts, _, idx = build_face_geometry(ch, face, big_sphere)
        assert idx.shape[0] > 0

        plane = 8.0 if face.sign > 0 else 0.0
        along = (verts[:, face.axis] - plane) * face.sign
        on_fine = np.abs(along) < 1e-5
        on_coarse = np.abs(along - TRANSITION_WIDTH) < 1e-5
        # no vertex sits on a side edge between the layers
        assert np.all(on_fine | on_coarse)

        # coarse vertices are the face crossing pushed out by the slab width
        flat = verts.astype(np.float64)
        flat[:, face.axis] = plane
        dist = np.abs(big_sphere.sample_grid(flat[:, 0], flat[:, 1], flat[:, 2]))
        assert np.all(dist[on_fine] < 0.05)
        assert np.all(dist[on_coarse] < 0.15)

    @pytest.mark.parametrize("name", [f.name for f in FACES])
    def test_no_zero_area_triangles(self, make_chunk, big_sphere, name):
        ch = make_chunk(cells=8, cell_size=1.0)
        verts, _, idx = build_face_geometry(ch, FACE_BY_NAME[name], big_sphere)
        area = 0.5 * np.linalg.norm(triangle_normals(verts, idx), axis=1)
        assert np.all(area > 1e-6)
