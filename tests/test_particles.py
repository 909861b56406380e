import numpy as np
import jax

import pytest
from ase import Atoms

from jaxewald import Ewald, Parameters
from jaxewald.errors import ConcurrentAccessError, InvalidParameterError
from jaxewald.particles import Particles
from jaxewald.utils import wrap_positions

jax.config.update("jax_enable_x64", True)

BOX = np.array([10.0, 10.0, 10.0])


def make_particles():
    positions = np.array([[1.0, 2.0, 3.0], [4.0, 5.0, 6.0]])
    return Particles(positions, [1.0, -1.0], BOX)


def test_accumulate_writes_back():
    particles = make_particles()

    with particles.accumulate() as acc:
        acc.add(potentials=np.array([0.5, 0.25]))
        acc.add(forces=np.ones((2, 3)))
        acc.add(np.array([0.5, 0.25]), np.ones((2, 3)))

    np.testing.assert_allclose(particles.potentials, [1.0, 0.5])
    np.testing.assert_allclose(particles.forces, 2.0 * np.ones((2, 3)))


def test_accumulate_is_exclusive():
    particles = make_particles()

    with particles.accumulate():
        with pytest.raises(ConcurrentAccessError):
            with particles.accumulate():
                pass

    # released afterwards
    with particles.accumulate():
        pass


def test_accumulate_released_on_error():
    particles = make_particles()

    with pytest.raises(RuntimeError):
        with particles.accumulate() as acc:
            acc.add(potentials=np.ones(2))
            raise RuntimeError("boom")

    # nothing written, access released
    np.testing.assert_allclose(particles.potentials, 0.0)
    with particles.accumulate():
        pass


def test_append_and_resize():
    particles = make_particles()

    particles.append(np.array([[9.0, 9.0, 9.0]]), np.array([2.0]), np.array([0]), [[1, 0, 0]])

    assert particles.n_max == 3
    assert particles.n_ghost == 1
    assert len(particles) == 2
    np.testing.assert_allclose(particles.total_charge, 0.0)

    particles.resize(2)
    assert particles.n_max == 2
    assert particles.n_ghost == 0

    with pytest.raises(InvalidParameterError):
        particles.resize(5)


def test_invalid_input():
    with pytest.raises(InvalidParameterError):
        Particles(np.zeros((3, 3)), [1.0, -1.0], BOX)

    with pytest.raises(InvalidParameterError):
        Particles(np.zeros((2, 3)), [1.0, -1.0], [10.0, -10.0, 10.0])


def test_from_atoms():
    atoms = Atoms(
        "NaCl", positions=[[-1.0, 5.0, 5.0], [5.0, 5.0, 12.0]], cell=[10.0, 10.0, 10.0], pbc=True
    )
    particles = Particles.from_atoms(atoms, charges=[1.0, -1.0])

    np.testing.assert_allclose(particles.box, BOX)
    np.testing.assert_allclose(particles.positions, [[9.0, 5.0, 5.0], [5.0, 5.0, 2.0]])
    np.testing.assert_allclose(particles.charges, [1.0, -1.0])

    atoms.set_initial_charges([2.0, -2.0])
    particles = Particles.from_atoms(atoms)
    np.testing.assert_allclose(particles.charges, [2.0, -2.0])


def test_wrap_stays_below_box():
    # np.mod(-1e-17, 10.0) rounds up to 10.0
    positions = wrap_positions(np.array([[-1e-17, 5.0, 5.0], [10.0, -10.0, 25.0]]), BOX)

    np.testing.assert_array_equal(positions, [[0.0, 5.0, 5.0], [0.0, 0.0, 5.0]])
    assert np.all(positions < BOX)

    atoms = Atoms("NaCl", positions=[[-1e-17, 5.0, 5.0], [5.0, 5.0, 5.0]], cell=BOX, pbc=True)
    particles = Particles.from_atoms(atoms, charges=[1.0, -1.0])
    assert np.all(particles.positions < BOX)

    # accepted by a calculator, whose subdomain is half-open
    energy = Ewald(Parameters(0.5, 4.0, 5.0, 1.0), BOX).compute(particles)
    assert np.isfinite(energy)
