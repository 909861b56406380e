import numpy as np

from collections import namedtuple

from .errors import InvalidParameterError, UnknownBackendError
from .utils import as_box

# topology: periodic 3D Cartesian grid of cooperating processes
#
# The solvers need very little from the process layer: who am I (rank, grid
# coordinates), who are my neighbours along each axis, a blocking element-wise
# sum over a flat float64 array, and a blocking point-to-point exchange for the
# halo. SerialTopology provides all of this for a single process (every
# neighbour is the process itself), MPITopology wraps an mpi4py communicator.
# Both are used through exactly the same code paths.


def prime_factors(n):
    factors = []
    f = 2
    while f * f <= n:
        while n % f == 0:
            factors.append(f)
            n //= f
        f += 1
    if n > 1:
        factors.append(n)
    return factors


def dims_create(n_ranks, ndims=3):
    # balanced grid with prod(dims) == n_ranks, sorted in non-increasing order
    if n_ranks < 1:
        raise InvalidParameterError("n_ranks", n_ranks, "need at least one process")

    dims = [1] * ndims
    for f in sorted(prime_factors(n_ranks), reverse=True):
        dims[int(np.argmin(dims))] *= f

    return tuple(sorted(dims, reverse=True))


class SerialTopology:
    def __init__(self):
        self.rank = 0
        self.size = 1
        self.dims = dims_create(1)
        self.coords = (0, 0, 0)

    def shift(self, dim, disp=1):
        # -> (source, dest)
        return self.rank, self.rank

    def allreduce_sum(self, array):
        return np.array(array, dtype=np.float64)

    def sendrecv(self, obj, dest, source):
        return obj

    def free(self):
        pass

    def __repr__(self):
        return "SerialTopology()"


class MPITopology:
    def __init__(self, comm=None):
        from mpi4py import MPI

        if comm is None:
            comm = MPI.COMM_WORLD

        dims = dims_create(comm.Get_size())
        self.comm = comm.Create_cart(dims, periods=[True, True, True], reorder=False)

        self.rank = self.comm.Get_rank()
        self.size = self.comm.Get_size()
        self.dims = tuple(self.comm.dims)
        self.coords = tuple(self.comm.Get_coords(self.rank))

    def shift(self, dim, disp=1):
        # -> (source, dest)
        return self.comm.Shift(dim, disp)

    def allreduce_sum(self, array):
        from mpi4py import MPI

        send = np.ascontiguousarray(array, dtype=np.float64)
        recv = np.empty_like(send)
        self.comm.Allreduce(send, recv, op=MPI.SUM)

        return recv

    def sendrecv(self, obj, dest, source):
        return self.comm.sendrecv(obj, dest=dest, source=source)

    def free(self):
        self.comm.Free()

    def __repr__(self):
        return f"MPITopology(rank={self.rank}, dims={self.dims}, coords={self.coords})"


topologies = {"serial": SerialTopology, "mpi": MPITopology}


def create_topology(kind="serial", comm=None):
    if not isinstance(kind, str):
        # already a topology
        return kind

    if kind not in topologies:
        raise UnknownBackendError("topology", kind, topologies.keys())

    if kind == "mpi":
        return MPITopology(comm)

    return SerialTopology()


# -- spatial decomposition --
Domain = namedtuple("Domain", ("box", "dims", "coords", "lo", "hi"))


def decompose(box, topology):
    # rectangular subdomain owned by this process
    box = as_box(box)
    dims = np.array(topology.dims)
    coords = np.array(topology.coords)

    sub = box / dims
    lo = coords * sub
    hi = lo + sub

    return Domain(box, tuple(topology.dims), tuple(topology.coords), lo, hi)


def subdomain_lengths(domain):
    return domain.hi - domain.lo


def ghost_extents(domain, cutoff):
    # region covered by local and ghost particles: [lo - cutoff, hi + cutoff)
    return domain.lo - cutoff, domain.hi + cutoff


def num_hops(domain, cutoff):
    # number of neighbour-to-neighbour exchanges per axis direction needed to
    # collect every particle within cutoff of the subdomain
    return tuple(int(n) for n in np.ceil(cutoff / subdomain_lengths(domain)))


def owns(domain, positions):
    positions = np.asarray(positions)
    return np.all((positions >= domain.lo) & (positions < domain.hi), axis=-1)
