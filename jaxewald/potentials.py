import jax
import jax.numpy as jnp

from collections import namedtuple

# -- high-level interface --
Potential = namedtuple(
    "Potential", ("sr", "sr_derivative", "lr", "correction_self", "correction_background")
)


def potential(alpha, r_max):
    # potential: higher-level interface to be consumed by solvers
    #
    # Bundles the screened Coulomb interaction, split by the screening parameter
    # alpha into a short-range part in real space (.sr, .sr_derivative), a
    # long-range part in reciprocal space (.lr), and the closed-form corrections
    # for the self-interaction of the Gaussian screening charge and for a
    # neutralising background (.correction_self, .correction_background).
    #
    # Zero distances, distances beyond r_max and k=0 are masked out and
    # contribute zero, also in the backward pass, see
    # https://github.com/jax-ml/jax/issues/1052.

    pot = coulomb(alpha)

    def outside(r):
        return (r == 0.0) | (r > r_max)

    def sr(r):
        mask = outside(r)
        masked = jnp.where(mask, 1.0, r)
        return jnp.where(mask, 0.0, pot.sr_r(masked))

    def sr_derivative(r):
        mask = outside(r)
        masked = jnp.where(mask, 1.0, r)
        return jnp.where(mask, 0.0, pot.sr_dr(masked))

    def lr(k2):
        mask = k2 == 0.0
        masked = jnp.where(mask, 1.0, k2)
        return jnp.where(mask, 0.0, pot.lr_k2(masked))

    def correction_self(charges):
        return -pot.correction_self * jax.lax.square(charges)

    def correction_background(charges, charge_total, volume):
        # the background energy -pi Q^2 / (2 V alpha^2) is shared out in
        # proportion to q_i / Q, which is well defined for Q == 0
        return -pot.correction_background * charges * charge_total / volume

    return Potential(sr, sr_derivative, lr, correction_self, correction_background)


# -- low-level implementation --
RawPotential = namedtuple(
    "RawPotential",
    ("sr_r", "sr_dr", "lr_k2", "correction_self", "correction_background"),
)


def coulomb(alpha):
    def sr_r(r):
        return jax.scipy.special.erfc(alpha * r) / r

    def sr_dr(r):
        gauss = 2.0 * alpha / jnp.sqrt(jnp.pi) * jnp.exp(-jax.lax.square(alpha * r))
        return -(sr_r(r) + gauss) / r

    def lr_k2(k2):
        return jnp.exp(-k2 / (4.0 * alpha**2)) / k2

    correction_self = alpha / jnp.sqrt(jnp.pi)
    correction_background = jnp.pi / (2.0 * alpha**2)

    return RawPotential(sr_r, sr_dr, lr_k2, correction_self, correction_background)
