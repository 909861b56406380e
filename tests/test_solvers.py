import numpy as np
import jax
import jax.numpy as jnp

import math

import pytest

from jaxewald.kspace import generate_kvectors
from jaxewald.potentials import potential
from jaxewald.solvers import background, ewald, rspace, self_energy, spme

jax.config.update("jax_enable_x64", True)

ALPHA = 0.5
R_MAX = 3.0


def pair(d):
    positions = jnp.array([[0.0, 0.0, 0.0], [d, 0.0, 0.0]])
    charges = jnp.array([1.0, -1.0])
    return charges, positions, jnp.array([0]), jnp.array([1])


def test_rspace_pair():
    """Each particle of the pair carries half of the pair energy."""
    d = 1.2
    pot, forces = rspace(potential(ALPHA, R_MAX))(*pair(d))

    expected = -0.5 * math.erfc(ALPHA * d) / d
    np.testing.assert_allclose(pot, [expected, expected], rtol=1e-12)

    # attractive, along the separation, Newton's third law
    magnitude = math.erfc(ALPHA * d) / d**2 + 2 * ALPHA / math.sqrt(math.pi) * math.exp(
        -((ALPHA * d) ** 2)
    ) / d
    np.testing.assert_allclose(forces[0], [magnitude, 0.0, 0.0], rtol=1e-12)
    np.testing.assert_allclose(forces[1], -forces[0], rtol=1e-12)


@pytest.mark.parametrize("d", [0.0, R_MAX + 0.1])
def test_rspace_masked(d):
    pot, forces = rspace(potential(ALPHA, R_MAX))(*pair(d))

    np.testing.assert_allclose(pot, 0.0)
    np.testing.assert_allclose(forces, 0.0)
    assert np.all(np.isfinite(np.asarray(forces)))


def test_rspace_forces_are_gradients():
    rng = np.random.default_rng(3)
    positions = jnp.asarray(rng.uniform(0.0, 4.0, size=(6, 3)))
    charges = jnp.asarray([1.0, -1.0, 0.5, -0.5, 1.5, -1.5])
    i, j = np.triu_indices(6, k=1)

    kernel = rspace(potential(ALPHA, 10.0))

    def energy(positions):
        return kernel(charges, positions, i, j)[0].sum()

    _, forces = kernel(charges, positions, i, j)
    np.testing.assert_allclose(forces, -jax.grad(energy)(positions), rtol=1e-10, atol=1e-12)


def test_self_energy():
    charges = jnp.full(5, 0.7)
    pot = self_energy(potential(ALPHA, R_MAX), charges)

    np.testing.assert_allclose(pot.sum(), -5 * ALPHA / math.sqrt(math.pi) * 0.49, rtol=1e-12)


def test_background():
    pot = potential(ALPHA, R_MAX)

    charges = jnp.array([1.0, -1.0])
    np.testing.assert_allclose(background(pot, charges, 0.0, 1000.0), 0.0)

    charges = jnp.array([1.0, 1.0])
    expected = -math.pi * 4.0 / (2 * 1000.0 * ALPHA**2)
    np.testing.assert_allclose(background(pot, charges, 2.0, 1000.0).sum(), expected)


def test_ewald_kspace_forces_are_gradients(random_neutral):
    positions, charges, box = random_neutral
    positions = jnp.asarray(positions)
    charges = jnp.asarray(charges)

    solver = ewald(potential(ALPHA, R_MAX))
    kvectors = generate_kvectors(jnp.asarray(box), 6)
    volume = float(np.prod(box))

    def energy(positions):
        sums = solver.kspace.partial_sums(charges, positions, kvectors)
        return solver.kspace.kspace(charges, positions, kvectors, sums, volume)[0].sum()

    sums = solver.kspace.partial_sums(charges, positions, kvectors)
    _, forces = solver.kspace.kspace(charges, positions, kvectors, sums, volume)

    np.testing.assert_allclose(forces, -jax.grad(energy)(positions), rtol=1e-8, atol=1e-12)
    np.testing.assert_allclose(forces.sum(axis=0), 0.0, atol=1e-12)


def spme_energy(stages, bc, charges, positions, box_length):
    rho = stages.spread(charges, positions, box_length)
    amplitudes = jnp.fft.ifftn(rho, norm="forward")
    return stages.energy(bc, amplitudes)


def test_spme_forces_are_gradients(random_neutral):
    positions, charges, box = random_neutral
    positions = jnp.asarray(positions)
    charges = jnp.asarray(charges)
    length = float(box[0])

    stages = spme(potential(ALPHA, R_MAX), ALPHA, 16).kspace
    bc = stages.structure_factor(length)

    rho = stages.spread(charges, positions, length)
    amplitudes = jnp.fft.ifftn(rho, norm="forward")
    convolved = jnp.fft.fftn(stages.convolve(bc, amplitudes))
    pot, forces = stages.gather(charges, positions, length, convolved)

    # potentials are shares of the mesh energy
    np.testing.assert_allclose(pot.sum(), stages.energy(bc, amplitudes), rtol=1e-10)

    def energy(positions):
        return spme_energy(stages, bc, charges, positions, length)

    expected = -jax.grad(energy)(positions)
    np.testing.assert_allclose(forces, expected, rtol=1e-8, atol=1e-12)


def test_spme_converges_to_ewald(random_neutral):
    positions, charges, box = random_neutral
    positions = jnp.asarray(positions)
    charges = jnp.asarray(charges)
    length = float(box[0])

    solver = ewald(potential(ALPHA, R_MAX))
    kvectors = generate_kvectors(jnp.asarray(box), 12)
    sums = solver.kspace.partial_sums(charges, positions, kvectors)
    reference = solver.kspace.kspace(charges, positions, kvectors, sums, length**3)[0].sum()

    errors = []
    for width in (16, 32):
        stages = spme(potential(ALPHA, R_MAX), ALPHA, width).kspace
        bc = stages.structure_factor(length)
        energy = spme_energy(stages, bc, charges, positions, length)
        errors.append(abs(float(energy) - float(reference)) / abs(float(reference)))

    assert errors[1] < errors[0]
    assert errors[1] < 5e-3
