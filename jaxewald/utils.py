import numpy as np
import jax
import jax.numpy as jnp

from .errors import InvalidParameterError, NonCubicDomainError


def as_box(box):
    # box: edge lengths of the orthorhombic domain; a (3, 3) cell is accepted
    # if it is diagonal (that's what ase hands us)
    box = np.asarray(box, dtype=np.float64)

    if box.shape == (3, 3):
        if not np.allclose(box, np.diag(np.diag(box))):
            raise InvalidParameterError("box", box.tolist(), "cell must be orthorhombic")
        box = np.diag(box)

    if box.shape != (3,) or (box <= 0.0).any():
        raise InvalidParameterError("box", box.tolist(), "need three positive lengths")

    return box


def is_cubic(box, rtol=1e-12):
    box = as_box(box)
    return bool(np.allclose(box, box[0], rtol=rtol, atol=0.0))


def check_cubic(box, what="SPME"):
    if not is_cubic(box):
        raise NonCubicDomainError(as_box(box), what=what)


def wrap_positions(positions, box):
    # map into [0, L) in every direction; np.mod rounds tiny negatives up to L
    wrapped = np.mod(positions, box)
    return np.where(wrapped >= box, 0.0, wrapped)


def safe_norm(x, axis=None):
    # derivatives of norm are NaN if x is zero,
    # this fixes that
    x2 = jnp.sum(jax.lax.square(x), axis=axis)
    mask = x2 == 0.0
    masked = jnp.where(mask, 1e-6, x2)
    return jnp.where(mask, 0.0, jnp.sqrt(masked))
