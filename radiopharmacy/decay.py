"""
Radioactive Decay Model

Pure functions for the activity of dispensed radiopharmaceuticals:
- Single-exponential decay of vials and waste items
- Parent -> daughter accumulation in a generator (two-compartment Bateman)
- Time to reach a clearance threshold
- mCi <-> MBq conversion

Physics:
  Decay:        A(t) = A0 * 2^(-t / t_1/2)
  Constant:     λ = ln(2) / t_1/2
  Accumulation: A_d(h) = A_p * (λ2 / (λ2 - λ1)) * (e^(-λ1 h) - e^(-λ2 h)) * efficiency
  Clearance:    t = -ln(A_threshold / A0) / λ

All times are in hours. Nothing here holds state.
"""

import math

import numpy as np

from .exceptions import ArithmeticPrecondition, InvalidRequest

# Decay constant: λ = ln(2) / t_1/2
LAMBDA_LN2 = 0.693147180559945

# 1 mCi = 37 MBq
MBQ_PER_MCI = 37.0

UNIT_MCI = 'mCi'
UNIT_MBQ = 'MBq'
ACTIVITY_UNITS = (UNIT_MCI, UNIT_MBQ)


def _check_half_life(half_life_hours, label='half-life'):
    if half_life_hours is None or not math.isfinite(half_life_hours) or half_life_hours <= 0:
        raise ArithmeticPrecondition(f"{label} must be positive, got {half_life_hours!r}")


def _check_activity(activity, label='activity'):
    if activity is None or not math.isfinite(activity) or activity < 0:
        raise ArithmeticPrecondition(f"{label} must be a non-negative number, got {activity!r}")


def decay_constant(half_life_hours):
    """λ in 1/hours"""
    _check_half_life(half_life_hours)
    return LAMBDA_LN2 / half_life_hours


def elapsed_hours(start, end):
    """
    Hours from start to end, clamped at zero.

    Activity is never extrapolated backwards past the moment a vial or
    waste item was recorded.
    """
    seconds = (end - start).total_seconds()
    return max(0.0, seconds / 3600.0)


def activity_at(initial_activity, half_life_hours, elapsed):
    """
    Activity remaining after `elapsed` hours

    Args:
        initial_activity: activity at t=0 (any unit)
        half_life_hours: half-life of the isotope
        elapsed: hours since t=0

    Returns:
        float: decayed activity, never below zero
    """
    _check_half_life(half_life_hours)
    _check_activity(initial_activity, 'initial activity')

    # exp2 underflows smoothly to 0.0 for large ratios instead of raising
    remaining = initial_activity * np.exp2(-elapsed / half_life_hours)
    return max(0.0, float(remaining))


def activities_at(initial_activities, half_life_hours, elapsed):
    """Vectorised activity_at over arrays of initial activities and elapsed hours"""
    _check_half_life(half_life_hours)
    initial = np.asarray(initial_activities, dtype=float)
    hours = np.asarray(elapsed, dtype=float)
    if initial.size and (not np.all(np.isfinite(initial)) or np.any(initial < 0)):
        raise ArithmeticPrecondition("initial activities must be non-negative numbers")
    return np.clip(initial * np.exp2(-hours / half_life_hours), 0.0, None)


def generator_accumulation(parent_initial, parent_half_life_hours, daughter_half_life_hours,
                           hours_since_source_received, hours_since_last_extraction, efficiency):
    """
    Daughter activity available for extraction from a generator

    Args:
        parent_initial: parent activity when the generator was received
        parent_half_life_hours: e.g. 66.02 for Mo-99
        daughter_half_life_hours: e.g. 6.0067 for Tc-99m
        hours_since_source_received: hours since the generator was received
        hours_since_last_extraction: hours since the last extraction (or receipt)
        efficiency: extraction efficiency as a fraction (0-1)

    Returns:
        float: extractable daughter activity

    Raises:
        ArithmeticPrecondition: equal or non-positive half-lives, non-positive parent activity
    """
    _check_half_life(parent_half_life_hours, 'parent half-life')
    _check_half_life(daughter_half_life_hours, 'daughter half-life')
    if parent_initial is None or not math.isfinite(parent_initial) or parent_initial <= 0:
        raise ArithmeticPrecondition(f"parent activity must be positive, got {parent_initial!r}")

    lambda1 = LAMBDA_LN2 / parent_half_life_hours
    lambda2 = LAMBDA_LN2 / daughter_half_life_hours
    if math.isclose(lambda1, lambda2, rel_tol=1e-12):
        raise ArithmeticPrecondition("parent and daughter half-lives must differ")

    current_parent = parent_initial * np.exp(-lambda1 * hours_since_source_received)

    h = hours_since_last_extraction
    factor = (lambda2 / (lambda2 - lambda1)) * (np.exp(-lambda1 * h) - np.exp(-lambda2 * h))

    return max(0.0, float(current_parent * factor * efficiency))


def hours_until(initial_activity, half_life_hours, threshold):
    """
    Hours needed for `initial_activity` to decay down to `threshold`

    Returns 0.0 when the activity is already at or below the threshold.
    """
    _check_half_life(half_life_hours)
    _check_activity(initial_activity, 'initial activity')
    if threshold is None or threshold <= 0:
        raise ArithmeticPrecondition(f"threshold must be positive, got {threshold!r}")

    if initial_activity <= threshold:
        return 0.0

    return -math.log(threshold / initial_activity) / decay_constant(half_life_hours)


def convert_activity(value, from_unit, to_unit):
    """Convert between mCi and MBq"""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise InvalidRequest(f"Activity must be a number, got {value!r}")
    for unit in (from_unit, to_unit):
        if unit not in ACTIVITY_UNITS:
            raise InvalidRequest(f"Unknown activity unit: {unit}")
    if from_unit == to_unit:
        return value
    if from_unit == UNIT_MCI:
        return value * MBQ_PER_MCI
    return value / MBQ_PER_MCI
