import numpy as np
import jax.numpy as jnp

from contextlib import contextmanager

from .errors import ConcurrentAccessError, InvalidParameterError
from .utils import as_box, wrap_positions


# Accumulator: write-accumulate view on the forces and potentials of local
# particles, handed out by Particles.accumulate(). Contributions are only ever
# added, so the kernels that feed it can run in any order.
class Accumulator:
    def __init__(self, n_local, dtype=jnp.float64):
        self.potentials = jnp.zeros(n_local, dtype=dtype)
        self.forces = jnp.zeros((n_local, 3), dtype=dtype)

    def add(self, potentials=None, forces=None):
        if potentials is not None:
            self.potentials = self.potentials + potentials
        if forces is not None:
            self.forces = self.forces + forces


# Particles: positions, charges, ids, potentials and forces in host memory.
#
# The first n_local particles are owned by this process. During the real-space
# part of an evaluation, ghost particles are appended behind them (n_max grows)
# and removed again afterwards with resize().
#
# potentials are per-particle energy shares: their sum over all particles of all
# processes is the total electrostatic energy.
class Particles:
    def __init__(self, positions, charges, box, ids=None):
        self.box = as_box(box)

        self.positions = np.array(positions, dtype=np.float64).reshape(-1, 3)
        self.charges = np.array(charges, dtype=np.float64).flatten()

        n = self.positions.shape[0]
        if self.charges.shape[0] != n:
            raise InvalidParameterError(
                "charges", self.charges.shape, f"expected {n} charges"
            )

        if ids is None:
            ids = np.arange(n)
        self.ids = np.array(ids, dtype=np.int64).flatten()

        # periodic image of each particle, in units of the box; zero for locals
        self.image_shifts = np.zeros((n, 3), dtype=np.int64)

        self.potentials = np.zeros(n)
        self.forces = np.zeros((n, 3))

        self.n_local = n
        self._acquired = False

    @classmethod
    def from_atoms(cls, atoms, charges=None):
        cell = atoms.get_cell().array
        box = as_box(cell)

        if charges is None:
            charges = atoms.get_initial_charges()

        positions = wrap_positions(atoms.get_positions(), box)

        return cls(positions, charges, box)

    @property
    def n_max(self):
        return self.positions.shape[0]

    @property
    def n_ghost(self):
        return self.n_max - self.n_local

    @property
    def local_positions(self):
        return self.positions[: self.n_local]

    @property
    def local_charges(self):
        return self.charges[: self.n_local]

    @property
    def total_charge(self):
        return float(self.local_charges.sum())

    def append(self, positions, charges, ids, image_shifts):
        n = len(charges)

        self.positions = np.concatenate([self.positions, np.reshape(positions, (n, 3))])
        self.charges = np.concatenate([self.charges, charges])
        self.ids = np.concatenate([self.ids, ids])
        self.image_shifts = np.concatenate(
            [self.image_shifts, np.reshape(image_shifts, (n, 3))]
        )
        self.potentials = np.concatenate([self.potentials, np.zeros(n)])
        self.forces = np.concatenate([self.forces, np.zeros((n, 3))])

    def resize(self, n):
        if n > self.n_max:
            raise InvalidParameterError("n", n, f"can only shrink, n_max={self.n_max}")

        self.positions = self.positions[:n]
        self.charges = self.charges[:n]
        self.ids = self.ids[:n]
        self.image_shifts = self.image_shifts[:n]
        self.potentials = self.potentials[:n]
        self.forces = self.forces[:n]

    @contextmanager
    def accumulate(self):
        # exclusive write-accumulate access to forces and potentials for the
        # duration of one evaluation; results are written back on success
        if self._acquired:
            raise ConcurrentAccessError()

        self._acquired = True
        try:
            accumulator = Accumulator(self.n_local)
            yield accumulator

            self.potentials[: self.n_local] = np.asarray(accumulator.potentials)
            self.forces[: self.n_local] = np.asarray(accumulator.forces)
        finally:
            self._acquired = False

    def __len__(self):
        return self.n_local

    def __repr__(self):
        return f"Particles(n_local={self.n_local}, n_max={self.n_max}, box={self.box.tolist()})"
