import numpy as np
import jax

import queue
import threading

import pytest

from jaxewald import SPME, Ewald, Parameters, Particles
from jaxewald.topology import decompose, dims_create, owns

jax.config.update("jax_enable_x64", True)

BOX = np.array([10.0, 10.0, 10.0])
# r_max longer than a subdomain once an axis is split: ghosts need two hops
PARAMETERS = Parameters(0.5, 7.0, 5.0, 1.0)
TIMEOUT = 60


# In-process stand-in for a periodic MPI Cartesian communicator: one thread per
# rank, point-to-point messages through one FIFO queue per (source, dest) pair,
# and a barrier-based all-reduce. Every rank issues the same sequence of calls,
# so FIFO order matches sends to receives.
class Hub:
    def __init__(self, size):
        self.size = size
        self.dims = dims_create(size)
        self.barrier = threading.Barrier(size, timeout=TIMEOUT)
        self.slots = [None] * size
        self.queues = {(a, b): queue.Queue() for a in range(size) for b in range(size)}


class ThreadTopology:
    def __init__(self, rank, hub):
        self.hub = hub
        self.rank = rank
        self.size = hub.size
        self.dims = hub.dims
        self.coords = tuple(int(c) for c in np.unravel_index(rank, hub.dims))

    def shift(self, dim, disp=1):
        def neighbor(d):
            coords = list(self.coords)
            coords[dim] = (coords[dim] + d) % self.dims[dim]
            return int(np.ravel_multi_index(coords, self.dims))

        return neighbor(-disp), neighbor(disp)

    def allreduce_sum(self, array):
        self.hub.slots[self.rank] = np.array(array, dtype=np.float64)
        self.hub.barrier.wait()
        result = np.sum(self.hub.slots, axis=0)
        self.hub.barrier.wait()
        return result

    def sendrecv(self, obj, dest, source):
        self.hub.queues[(self.rank, dest)].put(obj)
        return self.hub.queues[(source, self.rank)].get(timeout=TIMEOUT)

    def free(self):
        pass


def run_ranks(size, make_calculator, positions, charges):
    hub = Hub(size)
    results = [None] * size
    errors = []

    def run(rank):
        try:
            topology = ThreadTopology(rank, hub)
            mask = owns(decompose(BOX, topology), positions)
            particles = Particles(
                positions[mask], charges[mask], BOX, ids=np.nonzero(mask)[0]
            )

            energy = make_calculator(topology).compute(particles)
            results[rank] = (energy, particles.ids, particles.potentials, particles.forces)
        except Exception as e:
            errors.append(e)
            hub.barrier.abort()

    threads = [threading.Thread(target=run, args=(rank,)) for rank in range(size)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    if errors:
        raise errors[0]

    energies = [r[0] for r in results]
    potentials = np.zeros(len(charges))
    forces = np.zeros((len(charges), 3))
    for _, ids, pot, f in results:
        # every particle is owned by exactly one rank
        assert np.all(potentials[ids] == 0.0)
        potentials[ids] = pot
        forces[ids] = f

    return energies, potentials, forces


def serial(calculator, positions, charges):
    particles = Particles(positions, charges, BOX)
    energy = calculator.compute(particles)
    return energy, particles.potentials, particles.forces


def random_system(n=24, seed=7):
    rng = np.random.default_rng(seed)
    positions = rng.uniform(0.0, 10.0, size=(n, 3))
    charges = np.tile([1.0, -1.0], n // 2)
    return positions, charges


@pytest.mark.parametrize("size", [2, 4, 8])
def test_ewald_matches_serial(size):
    positions, charges = random_system()
    energy_ref, pot_ref, forces_ref = serial(Ewald(PARAMETERS, BOX), positions, charges)

    energies, pot, forces = run_ranks(
        size, lambda topology: Ewald(PARAMETERS, BOX, topology=topology), positions, charges
    )

    # the returned energy is global, identical on every rank
    np.testing.assert_allclose(energies, energy_ref, rtol=1e-10)
    np.testing.assert_allclose(pot, pot_ref, rtol=1e-9, atol=1e-12)
    np.testing.assert_allclose(forces, forces_ref, rtol=1e-9, atol=1e-10)


def test_spme_matches_serial():
    positions, charges = random_system()
    energy_ref, pot_ref, forces_ref = serial(
        SPME(PARAMETERS, BOX, mesh_width=32), positions, charges
    )

    energies, pot, forces = run_ranks(
        4,
        lambda topology: SPME(PARAMETERS, BOX, mesh_width=32, topology=topology),
        positions,
        charges,
    )

    np.testing.assert_allclose(energies, energy_ref, rtol=1e-10)
    np.testing.assert_allclose(pot, pot_ref, rtol=1e-9, atol=1e-12)
    np.testing.assert_allclose(forces, forces_ref, rtol=1e-9, atol=1e-10)


def test_pair_across_ranks():
    # the pair straddles the x boundary between ranks; most ranks own nothing
    positions = np.array([[4.5, 1.0, 1.0], [5.5, 1.0, 1.0]])
    charges = np.array([1.0, -1.0])
    energy_ref, _, forces_ref = serial(Ewald(PARAMETERS, BOX), positions, charges)

    energies, _, forces = run_ranks(
        8, lambda topology: Ewald(PARAMETERS, BOX, topology=topology), positions, charges
    )

    np.testing.assert_allclose(energies, energy_ref, rtol=1e-10)
    np.testing.assert_allclose(forces, forces_ref, rtol=1e-9, atol=1e-12)
    np.testing.assert_allclose(forces[0], -forces[1], atol=1e-10)
