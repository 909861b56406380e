import numpy as np
import jax
import jax.numpy as jnp

from absl import logging
from collections import namedtuple

from . import halo, neighbors
from .errors import (
    HalfNeighborListRequiredError,
    InvalidParameterError,
    UnknownBackendError,
)
from .fft import get_backend
from .kspace import generate_kvectors, get_k_int, get_mesh_width, num_kvectors
from .mesh import create_mesh
from .potentials import potential
from .prefactors import coulomb_prefactor
from .solvers import background, ewald, self_energy, spme
from .topology import create_topology, decompose, ghost_extents, owns
from .tuning import check_parameters, init_coeff, tune
from .utils import as_box, check_cubic

# calculators: high-level interface
#
# The user-facing part of this library. Ewald and SPME build a Calculator once
# (parameters, process grid, k-vectors or mesh are fixed from then on) and
# expose the same capability: compute(particles) runs one force evaluation,
# writes potentials and forces into the particle container, and returns the
# total energy, summed over all processes.
#
# One evaluation goes like this:
#   1. acquire the forces/potentials of the container exclusively
#   2. halo gather -> real-space kernel -> halo scatter (back to local particles)
#   3. reciprocal-space stages, with the blocking reduction in between
#   4. self-energy and background corrections
#   5. release, which writes the accumulated results into the container
#
# Thus:
Calculator = namedtuple("Calculator", ("name", "parameters", "compute", "mesh"))


# -- shared helpers --
def _prepare(parameters, box, topology, comm, full_neighbor_list, neighbor_builder):
    if full_neighbor_list:
        raise HalfNeighborListRequiredError()
    if neighbor_builder not in neighbors.builders:
        raise UnknownBackendError(
            "neighbor list builder", neighbor_builder, neighbors.builders.keys()
        )

    parameters = check_parameters(parameters)
    box = as_box(box)

    topology = create_topology(topology, comm=comm)
    domain = decompose(box, topology)

    return parameters, box, topology, domain


def _check_particles(particles, box, domain):
    if not np.allclose(particles.box, box):
        raise InvalidParameterError(
            "particles.box", particles.box.tolist(), f"solver was built for {box.tolist()}"
        )

    if particles.n_ghost != 0:
        raise InvalidParameterError(
            "particles", particles, "container still holds ghost particles"
        )

    outside = int(np.sum(~owns(domain, particles.local_positions)))
    if outside > 0:
        raise InvalidParameterError(
            "particles.positions",
            f"<{outside} outside>",
            "local particles must lie inside the subdomain of this process",
        )


def _real_space(rspace_fn, particles, domain, topology, r_max, builder):
    ghosts = halo.gather(particles, domain, topology, r_max)

    try:
        grid_min, grid_max = ghost_extents(domain, r_max)
        nl = neighbors.build(
            particles.positions,
            r_max,
            particles.n_local,
            particles.ids,
            particles.image_shifts,
            grid_min=grid_min,
            grid_max=grid_max,
            builder=builder,
        )

        pot, forces = rspace_fn(
            jnp.asarray(particles.charges),
            jnp.asarray(particles.positions),
            jnp.asarray(nl.centers),
            jnp.asarray(nl.others),
        )

        return halo.scatter(ghosts, particles, topology, pot, forces)
    except Exception:
        # drop the ghosts so the container can be used again
        particles.resize(ghosts.n_local)
        raise


def _corrections(pot, particles, topology, volume, neutralize):
    charges = jnp.asarray(particles.local_charges)

    pot_self = self_energy(pot, charges)

    if neutralize:
        charge_total = topology.allreduce_sum([particles.total_charge])[0]
        pot_background = background(pot, charges, charge_total, volume)
    else:
        pot_background = jnp.zeros_like(charges)

    return pot_self, pot_background


def _report(name, topology, scale, contributions):
    # contributions: name -> per-particle potentials of the local particles
    labels = list(contributions.keys())
    local = [float(jnp.sum(p)) for p in contributions.values()]
    energies = scale * topology.allreduce_sum(local)

    logging.info(
        f"{name} energy: "
        + ", ".join(f"{label}={e:.12g}" for label, e in zip(labels, energies))
    )

    return float(np.sum(energies))


def _summary(name, parameters, topology, extra):
    logging.info(
        f"{name}: alpha={parameters.alpha:.6g}, r_max={parameters.r_max:.6g}, "
        f"k_max={parameters.k_max:.6g}, eps_r={parameters.eps_r:.6g}, "
        f"grid={topology.dims}, {extra}"
    )


# -- Ewald --
def Ewald(
    parameters,
    box,
    topology="serial",
    comm=None,
    full_neighbor_list=False,
    prefactor=1.0,
    neutralize=True,
    neighbor_builder="vesin",
):
    parameters, box, topology, domain = _prepare(
        parameters, box, topology, comm, full_neighbor_list, neighbor_builder
    )
    alpha, r_max, k_max, eps_r = parameters

    pot = potential(alpha, r_max)
    solver = ewald(pot)

    rspace_fn = jax.jit(solver.rspace)
    partial_sums_fn = jax.jit(solver.kspace.partial_sums)
    kspace_fn = jax.jit(solver.kspace.kspace)

    k_int = get_k_int(k_max, box)
    kvectors = generate_kvectors(jnp.asarray(box), k_int)
    volume = float(np.prod(box))
    scale = coulomb_prefactor(prefactor, eps_r)

    _summary("Ewald", parameters, topology, f"k_int={k_int} ({num_kvectors(k_int)} k-vectors)")

    def compute(particles, mesh=None):
        _check_particles(particles, box, domain)

        with particles.accumulate() as acc:
            pot_r, forces_r = _real_space(
                rspace_fn, particles, domain, topology, r_max, neighbor_builder
            )
            acc.add(scale * pot_r, scale * forces_r)

            charges = jnp.asarray(particles.local_charges)
            positions = jnp.asarray(particles.local_positions)

            sums = partial_sums_fn(charges, positions, kvectors)
            # blocking: afterwards every process holds the global structure factor
            sums = topology.allreduce_sum(np.asarray(sums))

            pot_k, forces_k = kspace_fn(charges, positions, kvectors, jnp.asarray(sums), volume)
            acc.add(scale * pot_k, scale * forces_k)

            pot_self, pot_background = _corrections(pot, particles, topology, volume, neutralize)
            acc.add(scale * (pot_self + pot_background))

        return _report(
            "Ewald",
            topology,
            scale,
            {"real": pot_r, "reciprocal": pot_k, "self": pot_self, "background": pot_background},
        )

    return Calculator("Ewald", parameters, compute, None)


# -- SPME --
def default_mesh_spacing(alpha):
    # a quarter of the width of the screening Gaussian
    return 1.0 / (np.sqrt(2.0) * alpha) / 4.0


def SPME(
    parameters,
    box,
    mesh_width=None,
    mesh_spacing=None,
    fft_backend="jax",
    topology="serial",
    comm=None,
    full_neighbor_list=False,
    prefactor=1.0,
    neutralize=True,
    neighbor_builder="vesin",
):
    check_cubic(box)

    parameters, box, topology, domain = _prepare(
        parameters, box, topology, comm, full_neighbor_list, neighbor_builder
    )
    alpha, r_max, k_max, eps_r = parameters
    length = float(box[0])

    if mesh_width is None:
        if mesh_spacing is None:
            mesh_spacing = default_mesh_spacing(alpha)
        mesh_width = get_mesh_width(box, mesh_spacing)

    default_mesh = create_mesh(box, mesh_width)
    backend = get_backend(fft_backend)

    pot = potential(alpha, r_max)
    rspace_fn = jax.jit(spme(pot, alpha, mesh_width).rspace)

    volume = float(np.prod(box))
    scale = coulomb_prefactor(prefactor, eps_r)

    # stages and B.C array per mesh width; B.C only depends on the mesh
    # geometry and alpha, so it is reused across evaluations
    cache = {}

    def stages_for(width):
        if width not in cache:
            stages = spme(pot, alpha, width).kspace
            cache[width] = (
                jax.jit(stages.spread),
                jax.jit(stages.convolve),
                jax.jit(stages.gather),
                stages.structure_factor(length),
            )
        return cache[width]

    stages_for(mesh_width)

    _summary("SPME", parameters, topology, f"mesh={default_mesh}, fft={backend.name}")

    def compute(particles, mesh=None):
        check_cubic(particles.box)
        _check_particles(particles, box, domain)

        if mesh is None:
            mesh = default_mesh
        if not np.isclose(mesh.box_length, length):
            raise InvalidParameterError(
                "mesh.box_length", mesh.box_length, f"domain has edge length {length}"
            )

        spread_fn, convolve_fn, gather_fn, bc = stages_for(mesh.width)

        with particles.accumulate() as acc:
            pot_r, forces_r = _real_space(
                rspace_fn, particles, domain, topology, r_max, neighbor_builder
            )
            acc.add(scale * pot_r, scale * forces_r)

            charges = jnp.asarray(particles.local_charges)
            positions = jnp.asarray(particles.local_positions)

            rho = spread_fn(charges, positions, length)
            # blocking: every process spreads its own particles
            rho = topology.allreduce_sum(np.asarray(rho)).reshape(mesh.shape)
            mesh.charges = rho

            plan = backend.plan(mesh.width)
            try:
                amplitudes = backend.inverse(plan, rho.astype(np.complex128))
                mesh.amplitudes = np.asarray(amplitudes)

                convolved = backend.forward(plan, convolve_fn(bc, jnp.asarray(amplitudes)))
            finally:
                backend.destroy(plan)

            pot_k, forces_k = gather_fn(charges, positions, length, jnp.asarray(convolved))
            acc.add(scale * pot_k, scale * forces_k)

            pot_self, pot_background = _corrections(pot, particles, topology, volume, neutralize)
            acc.add(scale * (pot_self + pot_background))

        return _report(
            "SPME",
            topology,
            scale,
            {"real": pot_r, "reciprocal": pot_k, "self": pot_self, "background": pot_background},
        )

    return Calculator("SPME", parameters, compute, default_mesh)


# -- from configuration --
def from_config(config, box, n_particles=None, comm=None):
    if config.jax_enable_x64:
        jax.config.update("jax_enable_x64", True)

    if config.alpha is None or config.r_max is None or config.k_max is None:
        if n_particles is None:
            raise InvalidParameterError(
                "n_particles", n_particles, "needed to tune parameters for an accuracy"
            )
        parameters = tune(config.accuracy, n_particles, box, eps_r=config.eps_r)
    else:
        parameters = init_coeff(config, eps_r=config.eps_r)

    common = dict(
        topology=config.topology,
        comm=comm,
        full_neighbor_list=config.full_neighbor_list,
        prefactor=config.prefactor,
        neutralize=config.neutralize,
        neighbor_builder=config.neighbor_builder,
    )

    if config.solver == "ewald":
        return Ewald(parameters, box, **common)
    elif config.solver == "spme":
        return SPME(
            parameters,
            box,
            mesh_width=config.mesh_width,
            mesh_spacing=config.mesh_spacing,
            fft_backend=config.fft_backend,
            **common,
        )
    else:
        raise UnknownBackendError("solver", config.solver, ("ewald", "spme"))
