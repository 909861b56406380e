import numpy as np
import jax

import pytest

jax.config.update("jax_enable_x64", True)

BOX = np.array([10.0, 10.0, 10.0])


@pytest.fixture
def ion_pair():
    # +1 and -1, one unit apart, in the middle of a 10 x 10 x 10 box
    positions = np.array([[4.5, 5.0, 5.0], [5.5, 5.0, 5.0]])
    charges = np.array([1.0, -1.0])
    return positions, charges, BOX.copy()


@pytest.fixture
def random_neutral():
    rng = np.random.default_rng(42)
    positions = rng.uniform(0.0, 10.0, size=(8, 3))
    charges = np.array([1.0, -1.0, 0.5, -0.5, 2.0, -2.0, 1.0, -1.0])
    return positions, charges, BOX.copy()
