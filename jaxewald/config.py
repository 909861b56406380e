from typing import Optional, Union

import yaml
from ml_collections import ConfigDict


class EwaldConfigDict(ConfigDict):
    solver: str
    accuracy: float
    alpha: Optional[float]
    r_max: Optional[float]
    k_max: Optional[float]
    eps_r: float
    prefactor: Union[str, float]
    mesh_width: Optional[int]
    mesh_spacing: Optional[float]
    fft_backend: str
    topology: str
    neighbor_builder: str
    full_neighbor_list: bool
    neutralize: bool
    jax_enable_x64: bool


default_config = {
    "solver": "ewald",  # "ewald" or "spme"
    # either an accuracy to tune for, or explicit alpha, r_max and k_max
    "accuracy": 1e-5,
    "alpha": None,
    "r_max": None,
    "k_max": None,
    "eps_r": 1.0,
    "prefactor": "unity",
    # SPME mesh: width wins over spacing; neither -> derived from alpha
    "mesh_width": None,
    "mesh_spacing": None,
    "fft_backend": "jax",
    "topology": "serial",
    "neighbor_builder": "vesin",
    "full_neighbor_list": False,
    "neutralize": True,
    "jax_enable_x64": True,
}


def get_config(config_file: Optional[str] = None) -> EwaldConfigDict:
    if config_file is not None:
        with open(config_file, "r") as file:
            overrides = yaml.safe_load(file) or {}
        config = EwaldConfigDict({**default_config, **overrides})

    else:
        config = EwaldConfigDict(default_config)

    return config
