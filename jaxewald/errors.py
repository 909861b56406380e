"""Error classes.

(follows Flax: https://github.com/google/flax/blob/main/flax/errors.py)

Configuration errors are raised when a solver is built, or at the start of a
computation whose inputs are invalid; nothing is computed afterwards.
Post-condition errors mean that the halo bookkeeping or the accumulation
contract was broken and the result cannot be trusted, they must never be
caught and ignored.

Numerical degeneracies (zero separation, the k=0 mode) are *not* errors: the
kernels mask them out and define the contribution to be zero.
"""


class JaxEwaldError(Exception):
    def __init__(self, message):
        super().__init__(message)


# -- configuration --
class ConfigurationError(JaxEwaldError):
    pass


class HalfNeighborListRequiredError(ConfigurationError):
    """The real-space kernel visits each pair once and adds the contribution to
    both particles (Newton's third law). A full neighbor list would count every
    pair twice, so it is rejected when the solver is constructed.
    """

    def __init__(self):
        super().__init__(
            "the real-space kernel requires a half neighbor list, "
            "got full_neighbor_list=True"
        )


class NonCubicDomainError(ConfigurationError):
    """SPME and accuracy tuning are only implemented for cubic domains, i.e. all
    three edge lengths must be equal.
    """

    def __init__(self, box, what="SPME"):
        super().__init__(f"{what} needs a cubic domain, got edge lengths {list(box)}")


class InvalidParameterError(ConfigurationError):
    def __init__(self, name, value, reason):
        super().__init__(f"invalid {name}={value}: {reason}")


class UnknownBackendError(ConfigurationError):
    def __init__(self, kind, name, available):
        super().__init__(
            f"unknown {kind} '{name}', available: {', '.join(sorted(available))}"
        )


# -- post-conditions --
class GhostCompactionError(JaxEwaldError):
    """After ghost contributions are scattered back to their owners, the particle
    container must be compacted to exactly its local particles. A mismatch points
    to a bug in the halo exchange.
    """

    def __init__(self, n_max, n_local):
        super().__init__(
            f"particle container holds {n_max} particles after the ghost scatter, "
            f"expected {n_local} local particles"
        )


class ConcurrentAccessError(JaxEwaldError):
    """Forces and potentials of a particle container can only be accumulated by
    one force evaluation at a time.
    """

    def __init__(self):
        super().__init__(
            "forces/potentials of this particle container are already acquired "
            "by another evaluation"
        )
