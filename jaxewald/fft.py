import numpy as np
import jax.numpy as jnp

from collections import namedtuple

from .errors import UnknownBackendError

# fft: 3D complex-to-complex transforms for the SPME mesh
#
# The SPME solver does not care where the transform runs, it only needs
# {plan, forward, inverse, destroy}. Both transforms are unnormalised:
#   forward: sum_x f(x) exp(-2 pi i k x / M)
#   inverse: sum_k F(k) exp(+2 pi i k x / M)
# (FFTW_FORWARD / FFTW_BACKWARD conventions). A plan owns the transform
# buffers for one force evaluation and must be destroyed afterwards.
#
# "jax" keeps the data wherever jax puts it (accelerator if there is one),
# "numpy" runs on the host and works on its own complex128 buffer.
FFTBackend = namedtuple("FFTBackend", ("name", "plan", "forward", "inverse", "destroy"))


class Plan:
    def __init__(self, width, buffer=None):
        self.shape = (width, width, width)
        self.buffer = buffer
        self.alive = True

    def check(self):
        if not self.alive:
            raise RuntimeError("FFT plan was used after it was destroyed")


def jax_backend():
    def plan(width):
        return Plan(width)

    def forward(plan, x):
        plan.check()
        return jnp.fft.fftn(x, s=plan.shape, norm="backward")

    def inverse(plan, x):
        plan.check()
        return jnp.fft.ifftn(x, s=plan.shape, norm="forward")

    def destroy(plan):
        plan.alive = False

    return FFTBackend("jax", plan, forward, inverse, destroy)


def numpy_backend():
    def plan(width):
        return Plan(width, buffer=np.zeros((width, width, width), dtype=np.complex128))

    def forward(plan, x):
        plan.check()
        plan.buffer[...] = np.asarray(x)
        return np.fft.fftn(plan.buffer, norm="backward")

    def inverse(plan, x):
        plan.check()
        plan.buffer[...] = np.asarray(x)
        return np.fft.ifftn(plan.buffer, norm="forward")

    def destroy(plan):
        plan.buffer = None
        plan.alive = False

    return FFTBackend("numpy", plan, forward, inverse, destroy)


backends = {"jax": jax_backend, "numpy": numpy_backend}


def get_backend(name="jax"):
    if isinstance(name, FFTBackend):
        return name

    if name not in backends:
        raise UnknownBackendError("FFT backend", name, backends.keys())

    return backends[name]()
