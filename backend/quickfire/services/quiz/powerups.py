"""Powerup economy and in-session activation.

Inventory is the one contended resource. Every decrement is a conditional
UPDATE (``quantity > 0``) executed inside the per-user lock and a single
transaction together with the activation record and the effect, so a
failed check or a rejected effect leaves nothing behind.
"""

import json
from decimal import Decimal, ROUND_FLOOR

from flask import current_app

from quickfire import db
from quickfire.models import (
    PowerupDefinition, PowerupInventoryEntry, PowerupPurchase, PowerupActivation, UserQuizStats,
)
from . import clock, sessions
from .effects import parse_effect
from .errors import (
    PowerupNotFound, InsufficientInventory, MaxUsesReached, OnCooldown,
    InsufficientPoints, InvalidQuantity, QuizError,
)
from .locks import user_lock
from .stats import ensure_stats

DEFAULT_CATALOG = (
    {'slug': 'freeze', 'name': 'Time Freeze', 'cost': 150, 'effect_type': 'freeze_time',
     'effect_params': {'duration': 10}, 'max_uses_per_session': 1, 'cooldown_sec': None},
    {'slug': 'extra_time', 'name': 'Extra Time', 'cost': 100, 'effect_type': 'add_time',
     'effect_params': {'seconds': 15}, 'max_uses_per_session': 2, 'cooldown_sec': 20},
    {'slug': 'double_next', 'name': 'Double Down', 'cost': 120, 'effect_type': 'multiplier',
     'effect_params': {'value': 2.0, 'scope': 'next_question'}, 'max_uses_per_session': 3, 'cooldown_sec': 10},
    {'slug': 'boost', 'name': 'Score Boost', 'cost': 300, 'effect_type': 'multiplier',
     'effect_params': {'value': 1.5, 'scope': 'all_remaining'}, 'max_uses_per_session': 1, 'cooldown_sec': None},
    {'slug': 'shield', 'name': 'Shield', 'cost': 120, 'effect_type': 'block_penalty',
     'effect_params': {'count': 1}, 'max_uses_per_session': 2, 'cooldown_sec': None},
    {'slug': 'fifty_fifty', 'name': '50/50', 'cost': 80, 'effect_type': 'remove_options',
     'effect_params': {'count': 2}, 'max_uses_per_session': 2, 'cooldown_sec': 10},
    {'slug': 'skip', 'name': 'Skip', 'cost': 60, 'effect_type': 'skip_question',
     'effect_params': {}, 'max_uses_per_session': 3, 'cooldown_sec': 5},
)


def seed_catalog() -> int:
    """Insert missing default catalog entries; returns how many were created."""
    created = 0
    for entry in DEFAULT_CATALOG:
        parse_effect(entry['effect_type'], entry['effect_params'])
        if PowerupDefinition.query.filter_by(slug=entry['slug']).first():
            continue
        db.session.add(PowerupDefinition(
            slug=entry['slug'],
            name=entry['name'],
            cost=entry['cost'],
            effect_type=entry['effect_type'],
            effect_params=json.dumps(entry['effect_params']),
            max_uses_per_session=entry['max_uses_per_session'],
            cooldown_sec=entry['cooldown_sec'],
            is_active=True,
        ))
        created += 1
    db.session.commit()
    return created


def catalog():
    return PowerupDefinition.query.filter_by(is_active=True).order_by(PowerupDefinition.cost).all()


def get_definition(slug_or_id) -> PowerupDefinition:
    definition = None
    if isinstance(slug_or_id, int) or (isinstance(slug_or_id, str) and slug_or_id.isdigit()):
        definition = db.session.get(PowerupDefinition, int(slug_or_id))
    if definition is None:
        definition = PowerupDefinition.query.filter_by(slug=str(slug_or_id)).first()
    if definition is None or not definition.is_active:
        raise PowerupNotFound(powerup=slug_or_id)
    return definition


def inventory(user_id: int) -> list:
    rows = PowerupInventoryEntry.query.filter_by(user_id=user_id).all()
    return [{'powerup': row.powerup.slug, 'quantity': row.quantity} for row in rows if row.quantity > 0]


# ---- purchase ----

def bulk_discount_pct(quantity: int) -> int:
    for minimum, pct in current_app.config.get('POWERUP_BULK_DISCOUNTS', ((10, 25), (5, 15), (3, 10))):
        if quantity >= minimum:
            return pct
    return 0


def quote(unit_cost: int, quantity: int) -> dict:
    pct = bulk_discount_pct(quantity)
    total = Decimal(unit_cost * quantity) * (Decimal(100 - pct) / Decimal(100))
    return {
        'unit_cost': unit_cost,
        'quantity': quantity,
        'discount_pct': pct,
        'total': int(total.to_integral_value(rounding=ROUND_FLOOR)),
    }


def purchase(user, powerup, quantity) -> dict:
    try:
        quantity = int(quantity)
    except (TypeError, ValueError):
        raise InvalidQuantity(quantity=quantity)
    max_qty = int(current_app.config.get('POWERUP_MAX_PURCHASE_QUANTITY', 50))
    if quantity < 1 or quantity > max_qty:
        raise InvalidQuantity(quantity=quantity, max_quantity=max_qty)

    with user_lock(user.id):
        definition = get_definition(powerup)
        price = quote(definition.cost, quantity)
        total = price['total']
        stats = ensure_stats(user.id)
        available = stats.available_points

        debited = UserQuizStats.query.filter(
            UserQuizStats.user_id == user.id,
            UserQuizStats.available_points >= total,
        ).update({
            'available_points': UserQuizStats.available_points - total,
            'spent_points': UserQuizStats.spent_points + total,
        }, synchronize_session=False)
        if debited != 1:
            db.session.rollback()
            raise InsufficientPoints(required=total, available=available)

        credited = PowerupInventoryEntry.query.filter_by(user_id=user.id, powerup_id=definition.id).update({
            'quantity': PowerupInventoryEntry.quantity + quantity,
            'version': PowerupInventoryEntry.version + 1,
        }, synchronize_session=False)
        if credited == 0:
            db.session.add(PowerupInventoryEntry(user_id=user.id, powerup_id=definition.id, quantity=quantity, version=1))
        db.session.add(PowerupPurchase(
            user_id=user.id,
            powerup_id=definition.id,
            quantity=quantity,
            unit_cost=definition.cost,
            discount_pct=price['discount_pct'],
            total_cost=total,
            created_at=clock.now(),
        ))
        db.session.commit()

        stats = db.session.get(UserQuizStats, user.id, populate_existing=True)
        owned = PowerupInventoryEntry.query.filter_by(user_id=user.id, powerup_id=definition.id).first()
        current_app.logger.info(
            f"[powerup-purchase] user={user.id} powerup={definition.slug} qty={quantity} total={total} discount={price['discount_pct']}%"
        )
        price.update({
            'powerup': definition.slug,
            'owned': owned.quantity,
            'available_points': stats.available_points,
        })
        return price


# ---- activation ----

def activate(user, session_id, powerup, client_remaining=None, question_id=None) -> dict:
    """Spend one unit of ``powerup`` in ``session_id`` and apply its effect.

    Checks run in order: inventory, per-session cap, cooldown. Any failure
    (including a rejected effect) rolls the whole transaction back.
    """
    now = clock.now()
    with user_lock(user.id):
        session = sessions._load_owned(user, session_id)
        try:
            definition = get_definition(powerup)
            effect = parse_effect(definition.effect_type, definition.params())
            sessions.ensure_usable_for_powerup(session, now)

            entry = PowerupInventoryEntry.query.filter_by(user_id=user.id, powerup_id=definition.id).first()
            if entry is None or entry.quantity <= 0:
                raise InsufficientInventory(powerup=definition.slug)

            previous = (
                PowerupActivation.query
                .filter_by(session_id=session.id, powerup_id=definition.id)
                .order_by(PowerupActivation.activated_at.desc())
                .all()
            )
            if len(previous) >= definition.max_uses_per_session:
                raise MaxUsesReached(powerup=definition.slug, max_uses=definition.max_uses_per_session)
            if definition.cooldown_sec and previous:
                elapsed = now - previous[0].activated_at
                if elapsed <= definition.cooldown_sec:
                    raise OnCooldown(
                        f'{definition.name} is ready in {int(definition.cooldown_sec - elapsed) + 1}s',
                        powerup=definition.slug,
                        remaining_seconds=round(definition.cooldown_sec - elapsed, 3),
                    )

            decremented = PowerupInventoryEntry.query.filter(
                PowerupInventoryEntry.id == entry.id,
                PowerupInventoryEntry.quantity > 0,
            ).update({
                'quantity': PowerupInventoryEntry.quantity - 1,
                'version': PowerupInventoryEntry.version + 1,
            }, synchronize_session=False)
            if decremented != 1:
                raise InsufficientInventory(powerup=definition.slug)

            server_remaining = sessions.remaining_seconds(session, now)
            descriptor = sessions.apply_effect(session, effect, now)
            db.session.add(PowerupActivation(
                session_id=session.id,
                powerup_id=definition.id,
                user_id=user.id,
                question_id=str(question_id) if question_id is not None else session.current_question_id,
                client_remaining=float(client_remaining) if isinstance(client_remaining, (int, float)) else None,
                server_remaining=server_remaining,
                effect=json.dumps(descriptor),
                activated_at=now,
            ))
            db.session.flush()
        except QuizError:
            db.session.rollback()
            raise

        remaining_units = entry.quantity - 1
        completion = sessions.finalize_if_due(session, now)
        if completion is None:
            db.session.commit()
        current_app.logger.info(
            f"[powerup-activate] user={user.id} session={session.id} powerup={definition.slug} left={remaining_units}"
        )
        return {
            'success': True,
            'powerup': definition.slug,
            'effect': descriptor,
            'remaining_quantity': remaining_units,
            'remaining': round(sessions.remaining_seconds(session, now), 3),
            'status': session.status,
            'completion': completion,
        }
