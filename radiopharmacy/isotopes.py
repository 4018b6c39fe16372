"""
Isotope reference data

Half-lives for the reference table are the values the department works
with; isotopes added through settings are looked up in the
radioactivedecay nuclear data set (ICRP-107 by default).
"""

import logging
from dataclasses import dataclass
from typing import Optional

import radioactivedecay as rd

from .conf import get_setting
from .exceptions import InvalidRequest, UnknownEntity

logger = logging.getLogger(__name__)

UPTAKE_LONG = 'long'
UPTAKE_SHORT = 'short'


@dataclass(frozen=True)
class Isotope:
    id: str
    name: str
    nuclide: str
    half_life_hours: float
    parent: Optional['Isotope'] = None
    uptake_class: Optional[str] = None

    @property
    def has_generator(self):
        return self.parent is not None

    @property
    def has_uptake_workflow(self):
        return self.uptake_class is not None


MO99 = Isotope('mo99', 'Molybdenum-99', 'Mo-99', 66.02)
GE68 = Isotope('ge68', 'Germanium-68', 'Ge-68', 6502.8)

# Format: {id: Isotope}
REFERENCE_ISOTOPES = {
    iso.id: iso for iso in (
        Isotope('f18', 'Fluorine-18 (FDG)', 'F-18', 1.8295, uptake_class=UPTAKE_LONG),   # 109.77 min
        Isotope('tc99m', 'Technetium-99m', 'Tc-99m', 6.0067, parent=MO99),
        MO99,
        Isotope('ga68', 'Gallium-68', 'Ga-68', 1.1285, uptake_class=UPTAKE_SHORT),       # 67.7 min
        GE68,
        Isotope('i131', 'Iodine-131', 'I-131', 192.48),                                 # ~8.02 days
        Isotope('lu177', 'Lutetium-177', 'Lu-177', 159.528),                            # ~6.647 days
    )
}


def nuclide_half_life_hours(nuclide):
    """
    Half-life of a nuclide in hours from the radioactivedecay data set

    Args:
        nuclide: nuclide string in any form radioactivedecay accepts ('Tc-99m', 'Tc99m', '99mTc')

    Raises:
        InvalidRequest: unknown or stable nuclide
    """
    try:
        half_life = rd.Nuclide(nuclide).half_life('h')
    except ValueError as e:
        raise InvalidRequest(f"Unknown nuclide '{nuclide}': {e}") from e

    if not isinstance(half_life, float) or half_life == float('inf'):
        raise InvalidRequest(f"Nuclide '{nuclide}' is stable")
    return half_life


def build_isotope(isotope_id, nuclide, name=None, parent=None, uptake_class=None, half_life_hours=None):
    """Create an Isotope, looking up its half-life when none is given"""
    if uptake_class not in (None, UPTAKE_LONG, UPTAKE_SHORT):
        raise InvalidRequest(f"Unknown uptake class '{uptake_class}'")

    parent_isotope = None
    if parent:
        parent_isotope = REFERENCE_ISOTOPES.get(parent)
        if parent_isotope is None:
            parent_isotope = Isotope(parent, parent, parent, nuclide_half_life_hours(parent))

    if half_life_hours is None:
        half_life_hours = nuclide_half_life_hours(nuclide)

    return Isotope(
        id=isotope_id,
        name=name or nuclide,
        nuclide=nuclide,
        half_life_hours=float(half_life_hours),
        parent=parent_isotope,
        uptake_class=uptake_class,
    )


def load_isotopes():
    """Reference table plus EXTRA_ISOTOPES from settings"""
    isotopes = dict(REFERENCE_ISOTOPES)
    for isotope_id, data in get_setting('EXTRA_ISOTOPES').items():
        try:
            isotopes[isotope_id] = build_isotope(isotope_id, **data)
        except InvalidRequest as e:
            logger.warning(f"Skipping configured isotope '{isotope_id}': {e}")
    return isotopes


def get_isotope(isotope_id, isotopes=None):
    """Look up an isotope by id"""
    table = isotopes if isotopes is not None else REFERENCE_ISOTOPES
    try:
        return table[isotope_id]
    except KeyError:
        raise UnknownEntity(f"Unknown isotope '{isotope_id}'") from None
