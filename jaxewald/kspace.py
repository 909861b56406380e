import numpy as np
import jax
import jax.numpy as jnp

from functools import partial

from .utils import as_box


def get_k_int(k_max, box):
    # largest integer wave-vector index along any axis such that the cube of
    # indices contains the sphere |k| <= k_max
    box = as_box(box)
    return int(np.ceil(k_max * box.max() / (2 * np.pi)))


def get_mesh_width(box, mesh_spacing):
    # number of mesh points per axis for the SPME mesh, padded to powers of 2
    box = as_box(box)
    start = int(np.ceil(box.max() / mesh_spacing))
    return int(2 ** np.ceil(np.log2(max(start, 4))))


@partial(jax.jit, static_argnums=(1,))
def generate_kvectors(box, k_int):
    # All k = 2 pi n / L with n in [-k_int, k_int]^3, except the origin.
    # The ordering is fixed (C order over nx, ny, nz), so the flat arrays of
    # partial sums can be reduced element-wise across processes.
    ns = jnp.arange(-k_int, k_int + 1, dtype=box.dtype)
    nx, ny, nz = jnp.meshgrid(ns, ns, ns, indexing="ij")
    n = jnp.stack([nx.flatten(), ny.flatten(), nz.flatten()], axis=-1)

    # the origin sits exactly in the middle of the flattened grid
    center = n.shape[0] // 2
    n = jnp.concatenate([n[:center], n[center + 1 :]])

    return (2 * jnp.pi / box) * n


def num_kvectors(k_int):
    return (2 * k_int + 1) ** 3 - 1


@partial(jax.jit, static_argnums=(1,))
def mesh_frequencies(box_length, width):
    # Reciprocal mesh vectors m = index / L, shifted into [-M/2, M/2).
    # The frequencies from the fftfreq function are of the form [0, 1/n, 2/n, ...]
    # These are then converted to [0, 1, 2, ...] by multiplying with n.
    m = jnp.fft.fftfreq(width) * width / box_length

    mx, my, mz = jnp.meshgrid(m, m, m, indexing="ij")

    return jnp.stack([mx, my, mz], axis=-1)
