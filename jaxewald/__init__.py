from .calculators import SPME, Ewald, from_config
from .config import get_config
from .particles import Particles
from .prefactors import prefactors
from .tuning import Parameters, init_coeff, tune

__all__ = [
    "SPME",
    "Ewald",
    "Parameters",
    "Particles",
    "from_config",
    "get_config",
    "init_coeff",
    "prefactors",
    "tune",
]
