"""
Inventory Ledger

Vials and waste bins for one isotope context. Nothing is mutated by the
passage of time: every activity is recomputed from the recorded initial
activity and timestamp against the `now` the caller supplies.
"""

import logging
import math
from datetime import timedelta

import numpy as np

from . import decay
from .conf import get_setting
from .diagnostics import Diagnostics
from .exceptions import ArithmeticPrecondition, InvalidRequest, UnknownEntity
from .isotopes import get_isotope
from .records import (
    LOAD_ERRORS, Vial, WasteBin, WasteItem, new_id, record_id, require_text, require_timestamp,
)

logger = logging.getLogger(__name__)

TIER_CLEARED = 'cleared'

BIN_CATEGORIES = ('solid', 'sharp', 'liquid')
WASTE_SOURCES = ('vial', 'preparation', 'patient', 'other')

# Below this concentration (mCi/mL) no draw volume is suggested
MIN_DRAW_CONCENTRATION = 0.001
# Draws needing more than a litre mean the stock is effectively spent
MAX_DRAW_VOLUME_ML = 1000.0

# Errors a corrupt record can raise while being recomputed
RECOMPUTE_ERRORS = (ArithmeticPrecondition, UnknownEntity, TypeError, ValueError, AttributeError)


class InventoryLedger:
    """
    Vials and waste for a single isotope

    Args:
        isotope: Isotope this ledger tracks
        isotopes: isotope table used to decay waste items by their own isotope
        waste_tiers: [(tier, min_activity), ...] checked top-down
        clearance_threshold: activity below which waste is cleared
        diagnostics: side channel for skipped records
    """

    def __init__(self, isotope, isotopes=None, waste_tiers=None, clearance_threshold=None,
                 diagnostics=None):
        self.isotope = isotope
        self.isotopes = isotopes if isotopes is not None else {isotope.id: isotope}
        self.waste_tiers = list(waste_tiers if waste_tiers is not None else get_setting('WASTE_TIERS'))
        self.clearance_threshold = (clearance_threshold if clearance_threshold is not None
                                    else get_setting('CLEARANCE_THRESHOLD'))
        self.diagnostics = diagnostics if diagnostics is not None else Diagnostics()
        self.vials = {}
        self.bins = {}

    # ------------------------------------------------------------------
    # Vials
    # ------------------------------------------------------------------

    def add_vial(self, initial_activity, initial_volume_ml, received_at, label=''):
        """Record a delivered or eluted vial"""
        if initial_activity is None or not math.isfinite(initial_activity) or initial_activity <= 0:
            raise InvalidRequest("Vial activity must be positive")
        if initial_volume_ml is None or initial_volume_ml < 0:
            raise InvalidRequest("Vial volume cannot be negative")
        received_at = require_timestamp(received_at, "Receipt time")
        label = require_text(label, "Vial label", required=False)

        vial = Vial(
            id=new_id('vial'),
            isotope_id=self.isotope.id,
            initial_activity=float(initial_activity),
            initial_volume_ml=float(initial_volume_ml),
            received_at=received_at,
            label=label,
        )
        self.vials[vial.id] = vial
        logger.info(f"Added vial {vial.id} ({vial.initial_activity:.3f} mCi {self.isotope.id})")
        return vial

    def get_vial(self, vial_id):
        try:
            return self.vials[vial_id]
        except KeyError:
            raise UnknownEntity(f"Unknown vial '{vial_id}'") from None

    def current_activity(self, vial, now):
        return decay.activity_at(
            vial.initial_activity,
            self.isotope.half_life_hours,
            decay.elapsed_hours(vial.received_at, now),
        )

    def _healthy_vials(self, now):
        """Vials whose fields can be decayed, reporting the rest"""
        healthy = []
        for vial in self.vials.values():
            try:
                if not vial.initial_activity > 0:
                    raise ArithmeticPrecondition(f"initial activity must be positive, got {vial.initial_activity!r}")
                decay.activity_at(vial.initial_activity, self.isotope.half_life_hours,
                                  decay.elapsed_hours(vial.received_at, now))
            except RECOMPUTE_ERRORS as e:
                self.diagnostics.report('inventory', vial.id, e)
                continue
            healthy.append(vial)
        return healthy

    def total_active_inventory(self, now):
        """Sum of current activity over all vials still in stock"""
        vials = self._healthy_vials(now)
        if not vials:
            return 0.0
        initial = np.array([v.initial_activity for v in vials])
        elapsed = np.array([decay.elapsed_hours(v.received_at, now) for v in vials])
        return float(decay.activities_at(initial, self.isotope.half_life_hours, elapsed).sum())

    def total_volume(self):
        return sum(v.initial_volume_ml or 0.0 for v in self.vials.values())

    def concentration(self, now):
        """Current stock activity per mL (mCi/mL), 0 when no volume is recorded"""
        volume = self.total_volume()
        if volume <= 0:
            return 0.0
        return self.total_active_inventory(now) / volume

    def required_volume(self, amount, now):
        """
        Volume to draw for a dose of `amount` mCi at the current concentration

        Returns 0 when the stock is too dilute to draw from, or when the
        draw would exceed a litre.
        """
        if amount is None or not math.isfinite(amount) or amount < 0:
            raise InvalidRequest("Dose activity must be a non-negative number")
        concentration = self.concentration(now)
        if concentration < MIN_DRAW_CONCENTRATION or amount == 0:
            return 0.0
        volume = amount / concentration
        return volume if volume <= MAX_DRAW_VOLUME_ML else 0.0

    def vial_report(self, now):
        """Current activity of every vial, oldest first"""
        report = []
        for vial in sorted(self._healthy_vials(now), key=lambda v: v.received_at):
            current = self.current_activity(vial, now)
            report.append({
                'id': vial.id,
                'label': vial.label,
                'initial_activity': vial.initial_activity,
                'initial_volume_ml': vial.initial_volume_ml,
                'received_at': vial.received_at.isoformat(),
                'current_activity': current,
                'percent_remaining': 100.0 * current / vial.initial_activity,
            })
        return report

    def dispose_vial(self, vial_id, bin_id, now):
        """
        Move a vial into a waste bin

        The waste item carries the vial's activity at `now`, not its
        original activity.
        """
        vial = self.get_vial(vial_id)
        waste_bin = self._open_bin(bin_id)
        activity = self.current_activity(vial, now)

        item = WasteItem(
            id=new_id('waste'),
            isotope_id=vial.isotope_id,
            bin_id=waste_bin.id,
            activity=activity,
            disposed_at=now,
            source='vial',
            description=vial.label,
        )
        del self.vials[vial.id]
        waste_bin.items.append(item)
        logger.info(f"Disposed vial {vial.id} into {waste_bin.id} at {activity:.4f} mCi")
        return item

    # ------------------------------------------------------------------
    # Waste bins
    # ------------------------------------------------------------------

    def add_bin(self, name, category='solid'):
        name = require_text(name, "Waste bin name")
        if category not in BIN_CATEGORIES:
            raise InvalidRequest(f"Unknown waste category '{category}'")
        waste_bin = WasteBin(id=new_id('bin'), name=name, category=category)
        self.bins[waste_bin.id] = waste_bin
        return waste_bin

    def get_bin(self, bin_id):
        try:
            return self.bins[bin_id]
        except KeyError:
            raise UnknownEntity(f"Unknown waste bin '{bin_id}'") from None

    def default_bin(self, category='solid'):
        """First open bin of a category, created on demand"""
        for waste_bin in self.bins.values():
            if waste_bin.category == category and not waste_bin.is_sealed:
                return waste_bin
        return self.add_bin(f"{category.title()} waste", category)

    def _open_bin(self, bin_id):
        waste_bin = self.get_bin(bin_id)
        if waste_bin.is_sealed:
            raise InvalidRequest(f"Waste bin '{waste_bin.name}' is sealed")
        return waste_bin

    def dispose_activity(self, bin_id, activity, now, source='other', description=''):
        """Log residual activity (syringes, swabs, gloves) into a bin"""
        if activity is None or not math.isfinite(activity) or activity < 0:
            raise InvalidRequest("Disposed activity must be a non-negative number")
        if source not in WASTE_SOURCES:
            raise InvalidRequest(f"Unknown waste source '{source}'")
        description = require_text(description, "Waste description", required=False)
        waste_bin = self._open_bin(bin_id)

        item = WasteItem(
            id=new_id('waste'),
            isotope_id=self.isotope.id,
            bin_id=waste_bin.id,
            activity=float(activity),
            disposed_at=now,
            source=source,
            description=description,
        )
        waste_bin.items.append(item)
        return item

    def seal_bin(self, bin_id, now):
        waste_bin = self.get_bin(bin_id)
        waste_bin.is_sealed = True
        waste_bin.sealed_at = now
        return waste_bin

    def empty_bin(self, bin_id):
        """Bulk clear; the only way waste items leave the ledger"""
        waste_bin = self.get_bin(bin_id)
        removed = len(waste_bin.items)
        waste_bin.items = []
        waste_bin.is_sealed = False
        waste_bin.sealed_at = None
        logger.info(f"Emptied waste bin {waste_bin.id} ({removed} items)")
        return removed

    def classify(self, activity):
        for tier, minimum in self.waste_tiers:
            if activity >= minimum:
                return tier
        return TIER_CLEARED

    def _half_life_for(self, item):
        return get_isotope(item.isotope_id, self.isotopes).half_life_hours

    def waste_item_activity(self, item, now):
        return decay.activity_at(
            item.activity,
            self._half_life_for(item),
            decay.elapsed_hours(item.disposed_at, now),
        )

    def disposal_ready_at(self, item, now, threshold=None):
        """
        When an item falls below the clearance threshold

        Returns `now` if it already has.
        """
        threshold = threshold if threshold is not None else self.clearance_threshold
        if self.waste_item_activity(item, now) <= threshold:
            return now
        hours = decay.hours_until(item.activity, self._half_life_for(item), threshold)
        return item.disposed_at + timedelta(hours=hours)

    def bin_summary(self, waste_bin, now):
        """Current state of a bin; its tier follows the aggregate activity"""
        items = []
        for item in waste_bin.items:
            try:
                current = self.waste_item_activity(item, now)
                ready_at = self.disposal_ready_at(item, now)
            except RECOMPUTE_ERRORS as e:
                self.diagnostics.report('waste', item.id, e)
                continue
            items.append({
                'id': item.id,
                'isotope_id': item.isotope_id,
                'source': item.source,
                'description': item.description,
                'activity_at_disposal': item.activity,
                'disposed_at': item.disposed_at.isoformat(),
                'current_activity': current,
                'tier': self.classify(current),
                'disposal_ready_at': ready_at,
                'is_ready': current < self.clearance_threshold,
            })

        total = sum(i['current_activity'] for i in items)
        return {
            'id': waste_bin.id,
            'name': waste_bin.name,
            'category': waste_bin.category,
            'is_sealed': waste_bin.is_sealed,
            'sealed_at': waste_bin.sealed_at.isoformat() if waste_bin.sealed_at else None,
            'items': items,
            'total_activity': total,
            'tier': self.classify(total),
            'ready_count': sum(1 for i in items if i['is_ready']),
        }

    def waste_report(self, now, upcoming_hours=24):
        """Per-bin summaries, facility totals and disposals due soon"""
        bins = [self.bin_summary(b, now) for b in self.bins.values()]
        items = [i for b in bins for i in b['items']]

        horizon = now + timedelta(hours=upcoming_hours)
        upcoming = sorted(
            (i for i in items if not i['is_ready'] and i['disposal_ready_at'] <= horizon),
            key=lambda i: i['disposal_ready_at'],
        )

        for item in items:
            item['disposal_ready_at'] = item['disposal_ready_at'].isoformat()

        stats = {
            'total_items': len(items),
            'total_activity': sum(i['current_activity'] for i in items),
            'ready_for_disposal': sum(1 for i in items if i['is_ready']),
        }
        for tier, _ in self.waste_tiers:
            stats[f'{tier}_items'] = sum(1 for i in items if i['tier'] == tier)

        return {'bins': bins, 'stats': stats, 'upcoming_disposals': upcoming}

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def dump(self):
        return {
            'vials': [v.to_dict() for v in self.vials.values()],
            'bins': [b.to_dict() for b in self.bins.values()],
        }

    def restore(self, data):
        self.vials = {}
        self.bins = {}
        for raw in data.get('vials', []):
            try:
                vial = Vial.from_dict(raw)
            except LOAD_ERRORS as e:
                self.diagnostics.report('inventory', record_id(raw), e)
                continue
            self.vials[vial.id] = vial
        for raw in data.get('bins', []):
            try:
                waste_bin = WasteBin.from_dict(raw)
            except LOAD_ERRORS as e:
                self.diagnostics.report('waste', record_id(raw), e)
                continue
            for raw_item in raw.get('items', []):
                try:
                    waste_bin.items.append(WasteItem.from_dict(raw_item))
                except LOAD_ERRORS as e:
                    self.diagnostics.report('waste', record_id(raw_item), e)
            self.bins[waste_bin.id] = waste_bin
