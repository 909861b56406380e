import numpy as np

from absl import logging
from collections import namedtuple

from .errors import UnknownBackendError

# neighbors: half neighbor list over local + ghost particles
#
# The real-space kernel visits every unordered pair once and adds the result to
# both particles. Ghosts are already placed at their periodic image positions,
# so the list is built without periodicity. A pair (i, j) of a local particle i
# and any particle j is kept if id_i < id_j, or, for a periodic image of i
# itself (id_i == id_j), if the image shift of j is lexicographically positive.
# Every physical pair then shows up exactly once, on exactly one process.
#
# Storage is CSR-like: the neighbors of local particle i are
#   others[offsets[i]:offsets[i + 1]]
# and pairs are sorted by (i, j), so the list is reproducible.
NeighborList = namedtuple("NeighborList", ("centers", "others", "offsets"))


def vesin_pairs(points, cutoff):
    import vesin

    if len(points) == 0:
        return np.zeros(0, dtype=np.int64), np.zeros(0, dtype=np.int64)

    # pairs don't depend on the origin; move everything into a bounding box
    points = points - points.min(axis=0)
    box = np.diag(points.max(axis=0) + cutoff)

    nl = vesin.NeighborList(cutoff=cutoff, full_list=True)
    i, j = nl.compute(points=points, box=box, periodic=False, quantities="ij")

    return np.asarray(i, dtype=np.int64), np.asarray(j, dtype=np.int64)


def brute_force_pairs(points, cutoff):
    # all-pairs reference, O(N^2) memory
    R = points[None, :, :] - points[:, None, :]
    d2 = np.sum(R * R, axis=-1)
    np.fill_diagonal(d2, np.inf)

    i, j = np.nonzero(d2 < cutoff * cutoff)
    return i.astype(np.int64), j.astype(np.int64)


builders = {"vesin": vesin_pairs, "brute_force": brute_force_pairs}


def positive_shift(shifts):
    # True where the first non-zero component is positive
    first = np.where(
        shifts[:, 0] != 0, shifts[:, 0], np.where(shifts[:, 1] != 0, shifts[:, 1], shifts[:, 2])
    )
    return first > 0


def half_list(i, j, n_local, ids, image_shifts):
    keep = i < n_local

    ids_i = ids[i]
    ids_j = ids[j]
    keep &= (ids_i < ids_j) | ((ids_i == ids_j) & positive_shift(image_shifts[j]))

    return i[keep], j[keep]


def build(
    positions,
    cutoff,
    n_local,
    ids,
    image_shifts,
    grid_min=None,
    grid_max=None,
    builder="vesin",
):
    if builder not in builders:
        raise UnknownBackendError("neighbor list builder", builder, builders.keys())

    positions = np.asarray(positions, dtype=np.float64)
    n_max = positions.shape[0]

    # only points inside the ghost region take part
    inside = np.ones(n_max, dtype=bool)
    if grid_min is not None:
        inside &= np.all(positions >= grid_min, axis=-1)
    if grid_max is not None:
        inside &= np.all(positions <= grid_max, axis=-1)
    subset = np.nonzero(inside)[0]

    i, j = builders[builder](positions[subset], cutoff)
    i, j = half_list(subset[i], subset[j], n_local, ids, image_shifts)

    order = np.lexsort((j, i))
    centers = i[order]
    others = j[order]

    offsets = np.zeros(n_local + 1, dtype=np.int64)
    np.cumsum(np.bincount(centers, minlength=n_local), out=offsets[1:])

    logging.debug(f"neighbor list: {len(centers)} pairs for {n_local} local particles")

    return NeighborList(centers, others, offsets)


def num_neighbors(neighbor_list, i):
    return int(neighbor_list.offsets[i + 1] - neighbor_list.offsets[i])


def get_neighbor(neighbor_list, i, n):
    return int(neighbor_list.others[neighbor_list.offsets[i] + n])
