"""
Estimate calculation for hardwood flooring jobs

Each room produces one material line and one installation line, priced from
the selected tier and species. Money is rounded to cents at every step.
"""

import math
import re
import uuid
from dataclasses import dataclass
from typing import Dict, List, Optional, Any

from flooring_crm.models import EstimateItem

MAX_ROOM_DIMENSION_FT = 200

NUMBER_RE = re.compile(r"-?\d+(?:\.\d+)?")

PRICING_TIERS: Dict[str, Dict[str, Any]] = {
    'basic': {
        'name': 'Basic',
        'description': 'Quality hardwood flooring essentials',
        'priceRange': '$8-10/sqft',
        'materialGrade': '#1 Common',
        'installRate': 3.50,
        'trimRate': 4.50,
    },
    'premium': {
        'name': 'Premium',
        'description': 'Enhanced quality and customization',
        'priceRange': '$11-13/sqft',
        'materialGrade': 'Select',
        'installRate': 4.50,
        'trimRate': 5.50,
    },
    'elite': {
        'name': 'Elite',
        'description': 'Luxury materials and premium service',
        'priceRange': '$14-18/sqft',
        'materialGrade': 'Clear',
        'installRate': 5.50,
        'trimRate': 6.50,
    },
}

HARDWOOD_SPECIES: Dict[str, Dict[str, float]] = {
    'White Oak': {'basic': 8, 'premium': 11, 'elite': 14},
    'Red Oak': {'basic': 7.5, 'premium': 10.5, 'elite': 13.5},
    'Maple': {'basic': 8.5, 'premium': 11.5, 'elite': 14.5},
    'Hickory': {'basic': 9, 'premium': 12, 'elite': 15},
    'Walnut': {'basic': 10, 'premium': 13, 'elite': 16},
}


@dataclass
class PricingConfig:
    material_price: float
    install_rate: float
    tax_rate: float

    @classmethod
    def for_tier(cls, tier: str, species: str, tax_rate: float) -> 'PricingConfig':
        if tier not in PRICING_TIERS:
            raise ValueError(f"Unknown pricing tier: {tier}")
        if species not in HARDWOOD_SPECIES:
            raise ValueError(f"Unknown hardwood species: {species}")
        return cls(
            material_price=HARDWOOD_SPECIES[species][tier],
            install_rate=PRICING_TIERS[tier]['installRate'],
            tax_rate=tax_rate,
        )


@dataclass
class EstimateTotals:
    items: List[EstimateItem]
    subtotal: float
    tax: float
    total: float


def _round_cents(value: float) -> float:
    # Half a cent rounds up, never to even
    return math.floor(value * 100 + 0.5) / 100


def _to_number(value: Any) -> float:
    """Read a number out of model output such as 500, "500 sqft" or "$4.50"; 0 when there is none"""
    if isinstance(value, bool) or value is None:
        return 0.0
    if isinstance(value, (int, float)):
        return float(value)
    match = NUMBER_RE.search(str(value).replace(',', ''))
    return float(match.group(0)) if match else 0.0


def room_sqft(dimensions: Dict[str, Any]) -> float:
    sqft = dimensions.get('sqft')
    if sqft:
        return float(sqft)
    return float(dimensions.get('length', 0)) * float(dimensions.get('width', 0))


def validate_estimate(rooms: List[str], dimensions: Dict[str, Dict[str, Any]]) -> Optional[str]:
    """Return an error message for the first invalid room, or None"""
    # No rooms is still a valid (empty) estimate
    for room in rooms or []:
        dims = dimensions.get(room)
        if not dims:
            return f"Please add dimensions for {room}"

        length = dims.get('length')
        width = dims.get('width')
        if not isinstance(length, (int, float)) or isinstance(length, bool) or length <= 0:
            return f"Please enter a valid length for {room}"
        if not isinstance(width, (int, float)) or isinstance(width, bool) or width <= 0:
            return f"Please enter a valid width for {room}"

        if length > MAX_ROOM_DIMENSION_FT or width > MAX_ROOM_DIMENSION_FT:
            return f"Room dimensions for {room} seem unusually large (max {MAX_ROOM_DIMENSION_FT}ft). Please verify."

    return None


def calculate_estimate_items(rooms: List[str], dimensions: Dict[str, Dict[str, Any]], config: PricingConfig,
                             material_type: str, material_grade: str) -> EstimateTotals:
    material_items: List[EstimateItem] = []
    labor_items: List[EstimateItem] = []

    for room in rooms or []:
        sqft = room_sqft(dimensions.get(room, {}))
        material_total = _round_cents(sqft * config.material_price)
        labor_total = _round_cents(sqft * config.install_rate)
        hours = math.ceil(sqft / 100)  # 1 hour per 100 sqft

        material_items.append(EstimateItem(
            id=str(uuid.uuid4()),
            description=f"{material_type} Hardwood Flooring - {room}",
            area=sqft,
            unitPrice=config.material_price,
            quantity=sqft,
            total=material_total,
            type='material',
            materialType=material_type,
            brand=f"Premium {material_grade}",
            room=room,
        ))

        labor_items.append(EstimateItem(
            id=str(uuid.uuid4()),
            description=f"Professional Installation - {room}",
            area=sqft,
            unitPrice=config.install_rate,
            quantity=sqft,
            total=labor_total,
            type='labor',
            laborType='Installation',
            hourlyRate=config.install_rate,
            hours=hours,
            room=room,
        ))

    items = material_items + labor_items
    subtotal = _round_cents(sum(item.total for item in items))
    tax = _round_cents(subtotal * config.tax_rate)
    total = _round_cents(subtotal + tax)

    return EstimateTotals(items=items, subtotal=subtotal, tax=tax, total=total)


def totals_from_items(items: Any, tax_rate: float) -> EstimateTotals:
    """
    Price free-form line items (e.g. dictated by voice).

    Items may be dicts or plain phrases like "500 sqft white oak"; numbers are
    read out of strings and anything else is skipped.
    """
    if isinstance(items, (str, dict)):
        items = [items]
    elif not isinstance(items, list):
        items = []

    priced: List[EstimateItem] = []
    for raw in items:
        if isinstance(raw, str) and raw.strip():
            raw = {'description': raw.strip(), 'quantity': raw}
        elif not isinstance(raw, dict):
            continue

        quantity = _to_number(raw.get('quantity'))
        unit_price = _to_number(raw.get('unitPrice') or raw.get('unit_price'))
        total = raw.get('total')
        if total is not None:
            total = _to_number(total)
        priced.append(EstimateItem(
            id=str(raw.get('id') or uuid.uuid4()),
            description=str(raw.get('description') or raw.get('name') or 'Line item'),
            area=_to_number(raw.get('area')) or quantity,
            unitPrice=unit_price,
            quantity=quantity,
            total=_round_cents(total if total is not None else quantity * unit_price),
            type='labor' if raw.get('type') == 'labor' else 'material',
            room=str(raw.get('room') or ''),
        ))

    subtotal = _round_cents(sum(item.total for item in priced))
    tax = _round_cents(subtotal * tax_rate)
    return EstimateTotals(items=priced, subtotal=subtotal, tax=tax, total=_round_cents(subtotal + tax))
