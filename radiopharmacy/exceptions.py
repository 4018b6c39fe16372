"""
Error kinds raised by the radiopharmacy core.

Internal components raise these; IsotopeContext converts them into
result dicts so nothing escapes the command surface.
"""


class RadiopharmacyError(Exception):
    """Base class for all core errors"""

    kind = 'RadiopharmacyError'
    http_status = 400


class RoomUnavailable(RadiopharmacyError):
    """Room is already occupied by another patient"""

    kind = 'RoomUnavailable'
    http_status = 409


class InvalidRequest(RadiopharmacyError):
    """Malformed command parameters"""

    kind = 'InvalidRequest'
    http_status = 400


class UnknownEntity(RadiopharmacyError):
    """Referenced patient, vial, bin, room, generator or isotope does not exist"""

    kind = 'UnknownEntity'
    http_status = 404


class ArithmeticPrecondition(RadiopharmacyError):
    """Decay math called outside its domain (equal or non-positive half-lives, negative activity)"""

    kind = 'ArithmeticPrecondition'
    http_status = 422
