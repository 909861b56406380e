from collections import namedtuple

from .errors import UnknownBackendError

# Coulomb constant 1/(4 pi eps_0) in various unit systems, charges in units of e
Prefactors = namedtuple("Prefactors", ("unity", "SI", "eV_A", "kcalmol_A", "kJmol"))

prefactors = Prefactors(
    unity=1.0,  # -> Gaussian units, 1/r
    SI=2.3070775523417355e-28,  # -> SI units
    eV_A=14.399645478425667,  # -> electron volt / Ångstrom
    kcalmol_A=332.0637132991921,  # -> kilocalories per mole / Ångstrom
    kJmol=1389.3545764438197,  # -> kilojoule per mole / Ångstrom
)


def coulomb_prefactor(prefactor=1.0, eps_r=1.0):
    # prefactor: a float, or the name of one of the unit systems above
    # eps_r: relative permittivity of the medium, screens all contributions
    if isinstance(prefactor, str):
        if prefactor not in Prefactors._fields:
            raise UnknownBackendError("unit system", prefactor, Prefactors._fields)
        prefactor = getattr(prefactors, prefactor)

    return float(prefactor) / float(eps_r)
