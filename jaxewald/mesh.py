import numpy as np
import jax
import jax.numpy as jnp

from functools import partial

from .errors import InvalidParameterError
from .utils import as_box, check_cubic

# -- cubic cardinal B-spline --
#
# S is defined piecewise on [0, 2] and zero beyond. The spline used for charge
# spreading is shifted so that it is symmetric about zero: a mesh point u mesh
# spacings away from a particle receives the fraction w(u) = S(2 - |u|) of its
# charge, with support |u| < 2. The weights of the four mesh points around a
# particle always add up to one.


def spline(x):
    x2 = x * x
    x3 = x * x2
    lower = x3 / 6.0
    upper = -0.5 * x3 + 2.0 * x2 - 2.0 * x + 2.0 / 3.0

    return jnp.where(
        (x >= 0.0) & (x < 1.0), lower, jnp.where((x >= 1.0) & (x <= 2.0), upper, 0.0)
    )


def spline_derivative(x):
    lower = 0.5 * x * x
    upper = -1.5 * x * x + 4.0 * x - 2.0

    return jnp.where(
        (x >= 0.0) & (x < 1.0), lower, jnp.where((x >= 1.0) & (x <= 2.0), upper, 0.0)
    )


def weight(u):
    return spline(2.0 - jnp.abs(u))


def weight_derivative(u):
    # d/du S(2 - |u|); antisymmetric in u
    return -jnp.sign(u) * spline_derivative(2.0 - jnp.abs(u))


def euler_spline(k, width):
    # Squared modulus |b(k)|^2 of the 1D Euler exponential spline, the part of
    # the lattice structure factor that undoes the B-spline smoothing:
    #   b(k) = exp(2 pi i 3 k / M) / sum_{l=0,2} S(l + 1) exp(2 pi i k l / M)
    # The numerator has modulus one.
    l = jnp.arange(3)
    coefficients = spline(jnp.minimum(3.0 - l, l + 1.0))
    phase = 2.0 * jnp.pi * jnp.asarray(k)[..., None] * l / width

    real = jnp.sum(coefficients * jnp.cos(phase), axis=-1)
    imag = jnp.sum(coefficients * jnp.sin(phase), axis=-1)

    return 1.0 / (real * real + imag * imag)


def bspline():
    # mesh interpolation (cubic B-splines)
    #
    # We define a bundle of tightly-coupled functions that perform the tasks of mapping
    # real-space positions <=> fixed-size periodic mesh in a stateless way.
    #
    # compute_weights: For each particle, determine the 4x4x4 stencil of mesh points
    #   within two mesh spacings and their weights (and weight derivatives). We
    #   return the stencil "specification", not the mesh itself.
    # points_to_mesh: Spread a per-particle scalar (the charge) onto the mesh.
    #   This is a scatter-add: the mesh is a commutative accumulation target, so
    #   the result does not depend on the order in which particles are visited.
    # mesh_to_points: Interpolate mesh values back to the particles.
    # mesh_to_points_gradient: Gradient of that interpolation with respect to
    #   the particle positions, used to gather forces.

    nodes = 4

    def compute_weights(positions, box_length, width):
        spacing = box_length / width
        positions_rel = positions / spacing

        positions_rel_idx = jnp.floor(positions_rel)

        # offsets -1, 0, 1, 2 around the lower neighbouring mesh point
        offsets = jnp.arange(-1, nodes - 1, dtype=positions.dtype)
        indices = positions_rel_idx[None, ...] + offsets[:, None, None]  # -> [4, i, 3]

        # distance in mesh units; |u| <= 2, so this is the minimum image as long
        # as the mesh has at least four points per axis
        u = positions_rel[None, ...] - indices

        interpolation_weights = weight(u)
        interpolation_derivatives = weight_derivative(u)

        indices = jnp.mod(indices, width).astype(int)

        # generate shifts for x, y, z axes and flatten for indexing
        x_shifts, y_shifts, z_shifts = jnp.meshgrid(
            jnp.arange(nodes),
            jnp.arange(nodes),
            jnp.arange(nodes),
            indexing="ij",
        )
        x_shifts = x_shifts.flatten()
        y_shifts = y_shifts.flatten()
        z_shifts = z_shifts.flatten()

        return (
            interpolation_weights,
            interpolation_derivatives,
            indices[x_shifts, :, 0],
            indices[y_shifts, :, 1],
            indices[z_shifts, :, 2],
            x_shifts,
            y_shifts,
            z_shifts,
            spacing,
            width,
        )

    def _stencil(stencil):
        weights, _, _, _, _, xs, ys, zs, _, _ = stencil
        return weights[xs, :, 0] * weights[ys, :, 1] * weights[zs, :, 2]  # -> [64, i]

    def points_to_mesh(particle_weights, stencil):
        _, _, x_indices, y_indices, z_indices, _, _, _, _, width = stencil

        rho_mesh = jnp.zeros((width, width, width), dtype=particle_weights.dtype)
        rho_mesh = rho_mesh.at[x_indices, y_indices, z_indices].add(
            particle_weights * _stencil(stencil)
        )

        return rho_mesh

    def mesh_to_points(mesh_vals, stencil):
        _, _, x_indices, y_indices, z_indices, _, _, _, _, _ = stencil

        return (mesh_vals[x_indices, y_indices, z_indices] * _stencil(stencil)).sum(
            axis=0
        )

    def mesh_to_points_gradient(mesh_vals, stencil):
        w, dw, x_indices, y_indices, z_indices, xs, ys, zs, spacing, _ = stencil

        vals = mesh_vals[x_indices, y_indices, z_indices]

        gx = dw[xs, :, 0] * w[ys, :, 1] * w[zs, :, 2]
        gy = w[xs, :, 0] * dw[ys, :, 1] * w[zs, :, 2]
        gz = w[xs, :, 0] * w[ys, :, 1] * dw[zs, :, 2]

        grad = jnp.stack([(vals * g).sum(axis=0) for g in (gx, gy, gz)], axis=-1)

        # u is measured in mesh spacings
        return grad / spacing

    return compute_weights, points_to_mesh, mesh_to_points, mesh_to_points_gradient


# -- mesh container --
#
# Uniform cubic mesh used by SPME. Holds the mesh point positions, the charge
# spread onto every point and the complex reciprocal-space amplitudes. The
# geometry is fixed at construction; charges and amplitudes are overwritten by
# every evaluation.
class Mesh:
    def __init__(self, box_length, width):
        if width < 4:
            raise InvalidParameterError("mesh_width", width, "need at least 4 points")

        self.box_length = float(box_length)
        self.width = int(width)
        self.spacing = self.box_length / self.width

        points = np.arange(self.width) * self.spacing
        x, y, z = np.meshgrid(points, points, points, indexing="ij")
        self.positions = np.stack([x, y, z], axis=-1)

        self.charges = np.zeros(self.shape)
        self.amplitudes = np.zeros(self.shape, dtype=np.complex128)

    @property
    def shape(self):
        return (self.width, self.width, self.width)

    @property
    def size(self):
        return self.width**3

    def __repr__(self):
        return f"Mesh(box_length={self.box_length}, width={self.width})"


def create_mesh(box, width):
    box = as_box(box)
    check_cubic(box)

    return Mesh(box[0], width)


@partial(jax.jit, static_argnums=(3,))
def spread_charges(charges, positions, box_length, width):
    # charge spreading on its own, as the SPME solver does it
    compute_weights, points_to_mesh, _, _ = bspline()
    stencil = compute_weights(positions, box_length, width)
    return points_to_mesh(charges, stencil)
