import numpy as np

from absl import logging
from collections import namedtuple

from .errors import GhostCompactionError
from .topology import num_hops

# halo: ghost particles for the real-space sum
#
# gather() appends, behind the local particles of the container, copies of every
# particle (of this or a neighbouring process, or a periodic image) that lies
# within the cutoff of this subdomain. The exchange runs axis by axis, upwards
# and downwards, and forwards ghosts received in the previous step, so that edge
# and corner regions are filled and cutoffs longer than a subdomain work too.
# Positions of ghosts that cross the periodic boundary are shifted by one box
# length, and the crossing is recorded in their image shift.
#
# scatter() walks the exchanges backwards: the force and potential accumulated
# on each ghost is sent back to the process it came from and added onto the
# particle it was copied from. The container is compacted back to its local
# particles; anything else is a bookkeeping bug and fatal.

Exchange = namedtuple(
    "Exchange", ("dim", "direction", "send_indices", "recv_start", "recv_count", "source", "dest")
)
Halo = namedtuple("Halo", ("exchanges", "n_local"))


def select_for_neighbor(positions, candidates, domain, cutoff, dim, direction):
    x = positions[candidates, dim]
    if direction > 0:
        return candidates[x >= domain.hi[dim] - cutoff]
    else:
        return candidates[x <= domain.lo[dim] + cutoff]


def gather(particles, domain, topology, cutoff):
    exchanges = []
    hops = num_hops(domain, cutoff)

    for dim in range(3):
        n_start = particles.n_max

        for direction in (1, -1):
            source, dest = topology.shift(dim, direction)

            # crossing the periodic boundary when sending out of the last (first) cell
            crosses = (direction > 0 and domain.coords[dim] == domain.dims[dim] - 1) or (
                direction < 0 and domain.coords[dim] == 0
            )

            candidates = np.arange(n_start)
            for _ in range(hops[dim]):
                send = select_for_neighbor(
                    particles.positions, candidates, domain, cutoff, dim, direction
                )

                positions = particles.positions[send].copy()
                image_shifts = particles.image_shifts[send].copy()
                if crosses:
                    positions[:, dim] -= direction * domain.box[dim]
                    image_shifts[:, dim] -= direction

                payload = (positions, particles.charges[send], particles.ids[send], image_shifts)
                received = topology.sendrecv(payload, dest=dest, source=source)

                recv_start = particles.n_max
                particles.append(*received)
                recv_count = particles.n_max - recv_start

                exchanges.append(
                    Exchange(dim, direction, send, recv_start, recv_count, source, dest)
                )

                candidates = np.arange(recv_start, particles.n_max)

    logging.debug(
        f"halo: {particles.n_ghost} ghosts for {particles.n_local} local particles "
        f"in {len(exchanges)} exchanges"
    )

    return Halo(exchanges, particles.n_local)


def scatter(halo, particles, topology, potentials, forces):
    # potentials: [n_max], forces: [n_max, 3]; returns the same for n_local
    potentials = np.array(potentials)
    forces = np.array(forces)

    for exchange in reversed(halo.exchanges):
        received = slice(exchange.recv_start, exchange.recv_start + exchange.recv_count)

        payload = (potentials[received], forces[received])
        back_potentials, back_forces = topology.sendrecv(
            payload, dest=exchange.source, source=exchange.dest
        )

        np.add.at(potentials, exchange.send_indices, back_potentials)
        np.add.at(forces, exchange.send_indices, back_forces)

        particles.resize(exchange.recv_start)
        potentials = potentials[: exchange.recv_start]
        forces = forces[: exchange.recv_start]

    if particles.n_max != halo.n_local or particles.n_max != particles.n_local:
        raise GhostCompactionError(particles.n_max, particles.n_local)

    return potentials, forces
