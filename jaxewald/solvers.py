import jax
import jax.numpy as jnp

from collections import namedtuple

from .kspace import mesh_frequencies
from .mesh import bspline, euler_spline
from .utils import safe_norm

# solvers: actual method implementations
#
# This is the core of the package. Each solver has a real-space part, which is
# always the same: the screened Coulomb interaction for every pair of a half
# neighbor list, added to both particles of the pair in a big segment_sum. The
# reciprocal-space part differs from method to method: Ewald sums over
# k-vectors, SPME does everything on a mesh using FFTs. Both reciprocal parts
# need a blocking reduction across processes halfway through (structure factor
# sums, mesh charge), so they are split into stages around it; the calculators
# run the stages and the communication in between.
#
# Every stage returns per-particle potentials (energy shares, summing to the
# energy) and forces (negative gradients). All accumulation goes through
# segment_sum or .at[].add(), which are order-independent sums: it doesn't
# matter which pair, particle or mesh point is visited first.
#
# Therefore:
Solver = namedtuple("Solver", ("rspace", "kspace"))


# -- shared real-space part --
def _rspace(potential, charges, positions, i, j):
    # charges, positions: local particles first, then ghosts
    # i, j: half neighbor list, every unordered pair exactly once
    N = charges.shape[0]

    R = positions[j] - positions[i]
    r = safe_norm(R, axis=-1)

    qq = charges[i] * charges[j]

    # each particle of the pair carries half of the pair energy
    pair = 0.5 * qq * potential.sr(r)
    pot = jax.ops.segment_sum(pair, i, num_segments=N)
    pot += jax.ops.segment_sum(pair, j, num_segments=N)

    # F_i = -dE/dr_i = qq * phi'(r) * R / r, and F_j = -F_i
    masked = jnp.where(r == 0.0, 1.0, r)
    f = (qq * potential.sr_derivative(r) / masked)[:, None] * R
    forces = jax.ops.segment_sum(f, i, num_segments=N)
    forces -= jax.ops.segment_sum(f, j, num_segments=N)

    return pot, forces


def rspace(potential):
    def _wrapped(charges, positions, i, j):
        return _rspace(potential, charges, positions, i, j)

    return _wrapped


# -- different solvers for reciprocal-space part --
EwaldStages = namedtuple("EwaldStages", ("partial_sums", "kspace"))


def ewald(potential):
    def partial_sums(charges, positions, kvectors):
        # kvectors : [k, 3]
        # positions: [i, 3]
        # -> [2k]: real parts, then imaginary parts of the local structure factor
        trig_args = kvectors @ (positions.T)  # -> [k, i]

        cos_summed = jnp.sum(jnp.cos(trig_args) * charges, axis=-1)
        sin_summed = jnp.sum(jnp.sin(trig_args) * charges, axis=-1)

        return jnp.concatenate([cos_summed, sin_summed])

    def kspace(charges, positions, kvectors, sums, volume):
        # sums: output of partial_sums, reduced over all processes
        K = kvectors.shape[0]
        real = sums[:K]
        imag = sums[K:]

        k2 = jax.lax.square(kvectors).sum(axis=-1)
        G = potential.lr(k2)  # -> [k]

        trig_args = kvectors @ (positions.T)  # -> [k, i]
        cos_all = jnp.cos(trig_args)
        sin_all = jnp.sin(trig_args)

        coeff = 4.0 * jnp.pi / volume

        # sum_i pot_i = coeff / 2 * sum_k G |S(k)|^2
        pot = 0.5 * coeff * charges * ((G * real) @ cos_all + (G * imag) @ sin_all)

        # F_i = coeff * q_i * sum_k G k (Re sin(k.r_i) - Im cos(k.r_i))
        weights = (G * real)[:, None] * sin_all - (G * imag)[:, None] * cos_all  # [k, i]
        forces = coeff * charges[:, None] * (weights.T @ kvectors)

        return pot, forces

    return Solver(rspace(potential), EwaldStages(partial_sums, kspace))


SPMEStages = namedtuple("SPMEStages", ("structure_factor", "spread", "energy", "convolve", "gather"))


def spme(potential, alpha, width):
    compute_weights, points_to_mesh, mesh_to_points, mesh_to_points_gradient = bspline()

    def structure_factor(box_length):
        # B.C: Euler spline moduli times the screened Coulomb kernel on the mesh,
        #   exp(-pi^2 m^2 / alpha^2) / (pi V m^2), m shifted into [-M/2, M/2)
        # depends only on mesh geometry and alpha, so it is computed once
        m = mesh_frequencies(box_length, width)
        m2 = jax.lax.square(m).sum(axis=-1)

        b = euler_spline(jnp.arange(width), width)
        B = b[:, None, None] * b[None, :, None] * b[None, None, :]

        volume = box_length**3
        mask = m2 == 0.0
        masked = jnp.where(mask, 1.0, m2)
        C = jnp.exp(-(jnp.pi**2) * masked / alpha**2) / (jnp.pi * volume * masked)

        return jnp.where(mask, 0.0, B * C)

    def spread(charges, positions, box_length):
        stencil = compute_weights(positions, box_length, width)
        return points_to_mesh(charges, stencil)

    def energy(bc, amplitudes):
        return 0.5 * jnp.sum(bc * jnp.abs(amplitudes) ** 2)

    def convolve(bc, amplitudes):
        return amplitudes * jnp.real(bc)

    def gather(charges, positions, box_length, convolved):
        # convolved: forward transform of B.C times the reciprocal charge mesh,
        # i.e. dE/dQ on every mesh point
        stencil = compute_weights(positions, box_length, width)
        theta = jnp.real(convolved)

        pot = 0.5 * charges * mesh_to_points(theta, stencil)
        forces = -charges[:, None] * mesh_to_points_gradient(theta, stencil)

        return pot, forces

    stages = SPMEStages(structure_factor, spread, energy, convolve, gather)

    return Solver(rspace(potential), stages)


# -- corrections --
def self_energy(potential, charges):
    # -alpha / sqrt(pi) * q_i^2, per particle, no communication
    return potential.correction_self(charges)


def background(potential, charges, charge_total, volume):
    # uniform neutralising background, zero for neutral systems
    return potential.correction_background(charges, charge_total, volume)
