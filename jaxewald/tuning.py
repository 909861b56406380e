import numpy as np

from absl import logging
from collections import namedtuple

from .errors import InvalidParameterError
from .utils import as_box, check_cubic

Parameters = namedtuple("Parameters", ("alpha", "r_max", "k_max", "eps_r"))

# Fincham 1994, Optimisation of the Ewald Sum for Large Systems:
# ratio of execution times of reciprocal- and real-space parts
EXECUTION_TIME_RATIO_K_R = 2.0


def tune(accuracy, n_particles, box, eps_r=1.0, time_ratio=EXECUTION_TIME_RATIO_K_R):
    # Choose alpha, r_max and k_max for a target relative accuracy by balancing
    # the cost of the real- and reciprocal-space sums. Only valid for cubic
    # domains (needs adjustment for non-cubic ones).
    box = as_box(box)
    check_cubic(box, what="accuracy tuning")

    if not 0.0 < accuracy < 1.0:
        raise InvalidParameterError("accuracy", accuracy, "must be in (0, 1)")
    if n_particles < 1:
        raise InvalidParameterError("n_particles", n_particles, "need at least one")

    length = box[0]

    p = -np.log(accuracy)
    r_max = time_ratio ** (1.0 / 6.0) * np.sqrt(p / np.pi) / n_particles ** (1.0 / 6.0)
    r_max *= length
    alpha = np.sqrt(p) / r_max
    k_max = 2.0 * np.sqrt(p) * alpha

    parameters = Parameters(float(alpha), float(r_max), float(k_max), float(eps_r))
    logging.info(
        f"tuned for accuracy={accuracy} with {n_particles} particles: "
        f"alpha={parameters.alpha:.6g}, r_max={parameters.r_max:.6g}, "
        f"k_max={parameters.k_max:.6g}"
    )

    return parameters


def check_parameters(parameters):
    for name in Parameters._fields:
        value = getattr(parameters, name)
        if value is None or not np.isfinite(value) or value <= 0.0:
            raise InvalidParameterError(name, value, "must be a positive number")

    return parameters


def init_coeff(args, eps_r=1.0):
    # Solver parameters from configuration.
    #
    # args: either a mapping with alpha, r_max, k_max (and optionally eps_r), or
    #   the tokens of an input deck line "coeff <i> <j> alpha r_max k_max".
    if hasattr(args, "keys"):
        parameters = Parameters(
            float(args["alpha"]),
            float(args["r_max"]),
            float(args["k_max"]),
            float(args.get("eps_r", eps_r) or eps_r),
        )
    else:
        if len(args) < 6:
            raise InvalidParameterError(
                "args", list(args), "expected 'coeff <i> <j> alpha r_max k_max'"
            )
        parameters = Parameters(float(args[3]), float(args[4]), float(args[5]), float(eps_r))

    return check_parameters(parameters)
