import threading

import pytest

from quickfire import db
from quickfire.models import User, PowerupActivation, PowerupInventoryEntry, PowerupDefinition, QuizSession
from quickfire.services.quiz import powerups, sessions
from quickfire.services.quiz.errors import (
    QuizError, InsufficientInventory, InsufficientPoints, InvalidQuantity, InvalidPowerupTarget,
    MaxUsesReached, OnCooldown, PowerupNotFound, SessionNotAnswerable,
)
from quickfire.services.quiz.stats import ensure_stats
from conftest import TRUE_FALSE_ARTIST, give_points


ARTIST = 'artist-1'


@pytest.fixture()
def catalog_ctx(app_ctx):
    powerups.seed_catalog()
    return app_ctx


def _owned(user_id, slug):
    definition = PowerupDefinition.query.filter_by(slug=slug).one()
    entry = PowerupInventoryEntry.query.filter_by(user_id=user_id, powerup_id=definition.id).first()
    return entry.quantity if entry else 0


def _stock(user, slug, quantity):
    give_points(user.id, 10000)
    powerups.purchase(user, slug, quantity)


def _active_session(user, clock, artist=ARTIST):
    payload = sessions.start_session(user, artist)
    clock.advance(3)
    return payload['id']


def test_seed_catalog_is_idempotent(app_ctx):
    assert powerups.seed_catalog() == 7
    assert powerups.seed_catalog() == 0
    slugs = [p.slug for p in powerups.catalog()]
    assert {'freeze', 'extra_time', 'double_next', 'boost', 'shield', 'fifty_fifty', 'skip'} == set(slugs)


@pytest.mark.parametrize('quantity,pct,total', [
    (1, 0, 100), (2, 0, 200), (3, 10, 270), (5, 15, 425), (9, 15, 765), (10, 25, 750),
])
def test_bulk_discount_quote(app_ctx, quantity, pct, total):
    quote = powerups.quote(100, quantity)
    assert quote['discount_pct'] == pct
    assert quote['total'] == total


def test_purchase_debits_points_and_credits_inventory(catalog_ctx, make_user, clock):
    alice = make_user('alice')
    give_points(alice.id, 500)
    result = powerups.purchase(alice, 'extra_time', 3)
    assert result['total'] == 270
    assert result['owned'] == 3
    assert result['available_points'] == 230
    stats = ensure_stats(alice.id)
    assert stats.spent_points == 270

    powerups.purchase(alice, 'extra_time', 1)
    assert _owned(alice.id, 'extra_time') == 4
    assert powerups.inventory(alice.id) == [{'powerup': 'extra_time', 'quantity': 4}]


def test_purchase_without_enough_points_changes_nothing(catalog_ctx, make_user, clock):
    alice = make_user('alice')
    give_points(alice.id, 100)
    with pytest.raises(InsufficientPoints) as excinfo:
        powerups.purchase(alice, 'freeze', 1)
    assert excinfo.value.details == {'required': 150, 'available': 100}
    assert ensure_stats(alice.id).available_points == 100
    assert _owned(alice.id, 'freeze') == 0


def test_purchase_rejects_bad_quantity_and_unknown_powerup(catalog_ctx, make_user, clock):
    alice = make_user('alice')
    give_points(alice.id, 100000)
    with pytest.raises(InvalidQuantity):
        powerups.purchase(alice, 'freeze', 0)
    with pytest.raises(InvalidQuantity):
        powerups.purchase(alice, 'freeze', 51)
    with pytest.raises(InvalidQuantity):
        powerups.purchase(alice, 'freeze', 'lots')
    with pytest.raises(PowerupNotFound):
        powerups.purchase(alice, 'teleport', 1)


def test_activation_requires_inventory(catalog_ctx, make_user, clock):
    alice = make_user('alice')
    sid = _active_session(alice, clock)
    with pytest.raises(InsufficientInventory):
        powerups.activate(alice, sid, 'freeze')
    assert PowerupActivation.query.count() == 0


def test_activation_not_allowed_during_countdown(catalog_ctx, make_user, clock):
    alice = make_user('alice')
    _stock(alice, 'shield', 1)
    sid = sessions.start_session(alice, ARTIST)['id']
    with pytest.raises(SessionNotAnswerable):
        powerups.activate(alice, sid, 'shield')
    assert _owned(alice.id, 'shield') == 1


def test_freeze_activation_pauses_and_spends_one(catalog_ctx, make_user, clock):
    alice = make_user('alice')
    _stock(alice, 'freeze', 2)
    sid = _active_session(alice, clock)
    clock.advance(5)
    result = powerups.activate(alice, sid, 'freeze')
    assert result['success'] is True
    assert result['effect']['type'] == 'freeze_time'
    assert result['status'] == 'paused'
    assert result['remaining_quantity'] == 1
    assert result['remaining'] == 55
    assert _owned(alice.id, 'freeze') == 1

    with pytest.raises(MaxUsesReached):
        powerups.activate(alice, sid, 'freeze')
    assert _owned(alice.id, 'freeze') == 1
    assert PowerupActivation.query.filter_by(session_id=sid).count() == 1


def test_cooldown_reports_remaining_seconds(catalog_ctx, make_user, clock):
    alice = make_user('alice')
    _stock(alice, 'extra_time', 2)
    sid = _active_session(alice, clock)
    first = powerups.activate(alice, sid, 'extra_time')
    assert first['effect']['seconds_added'] == 15
    clock.advance(5)
    with pytest.raises(OnCooldown) as excinfo:
        powerups.activate(alice, sid, 'extra_time')
    assert excinfo.value.details['remaining_seconds'] == 15
    assert _owned(alice.id, 'extra_time') == 1

    # Exactly at the cooldown is still too early
    clock.advance(15)
    with pytest.raises(OnCooldown):
        powerups.activate(alice, sid, 'extra_time')
    clock.advance(0.5)
    second = powerups.activate(alice, sid, 'extra_time')
    # Capped at 30 bonus seconds per session
    assert second['effect']['seconds_added'] == 15
    assert db.session.get(QuizSession, sid).bonus_seconds == 30


def test_fifty_fifty_on_true_false_question_is_refunded(catalog_ctx, make_user, clock):
    alice = make_user('alice')
    _stock(alice, 'fifty_fifty', 1)
    sid = _active_session(alice, clock, artist=TRUE_FALSE_ARTIST)
    with pytest.raises(InvalidPowerupTarget) as excinfo:
        powerups.activate(alice, sid, 'fifty_fifty')
    assert excinfo.value.details['refunded'] is True
    assert excinfo.value.to_dict()['error'] == 'invalid_target'
    assert _owned(alice.id, 'fifty_fifty') == 1
    assert PowerupActivation.query.count() == 0


def test_fifty_fifty_keeps_answer_and_one_wrong_option(catalog_ctx, make_user, clock):
    alice = make_user('alice')
    _stock(alice, 'fifty_fifty', 1)
    sid = _active_session(alice, clock)
    result = powerups.activate(alice, sid, 'fifty_fifty')
    removed = result['effect']['removed']
    assert len(removed) == 2
    assert 'a' not in removed
    choices = result['effect']['question']['choices']
    assert 'a' in choices and len(choices) == 2

    state = sessions.get_session_state(alice, sid)
    assert state['question']['choices'] == choices


def test_double_next_applies_to_one_answer(catalog_ctx, make_user, clock):
    alice = make_user('alice')
    _stock(alice, 'double_next', 1)
    sid = _active_session(alice, clock)
    powerups.activate(alice, sid, 'double_next')
    clock.advance(1)
    first = sessions.submit_answer(alice, sid, f'{ARTIST}-q0', 'a')
    assert first['breakdown']['net'] == 10
    assert first['breakdown']['multiplier_bonus'] == 5
    clock.advance(1)
    second = sessions.submit_answer(alice, sid, f'{ARTIST}-q1', 'a')
    assert second['breakdown']['net'] == 5


def test_boost_replaces_next_question_multiplier_for_the_rest(catalog_ctx, make_user, clock):
    alice = make_user('alice')
    _stock(alice, 'double_next', 1)
    _stock(alice, 'boost', 1)
    sid = _active_session(alice, clock)
    powerups.activate(alice, sid, 'double_next')
    powerups.activate(alice, sid, 'boost')
    for i in range(2):
        clock.advance(1)
        result = sessions.submit_answer(alice, sid, f'{ARTIST}-q{i}', 'a')
        # floor(5 * 1.5)
        assert result['breakdown']['net'] == 7


def test_shield_absorbs_one_wrong_answer(catalog_ctx, make_user, clock):
    alice = make_user('alice')
    _stock(alice, 'shield', 1)
    sid = _active_session(alice, clock)
    powerups.activate(alice, sid, 'shield')
    clock.advance(1)
    blocked = sessions.submit_answer(alice, sid, f'{ARTIST}-q0', 'b')
    assert blocked['shield_used'] is True
    assert blocked['breakdown']['net'] == 0
    assert blocked['time_penalty'] == 0
    assert blocked['streak'] == 0
    clock.advance(1)
    unblocked = sessions.submit_answer(alice, sid, f'{ARTIST}-q1', 'b')
    assert unblocked['shield_used'] is False
    assert unblocked['breakdown']['net'] == -3


def test_skip_powerup_moves_to_next_question(catalog_ctx, make_user, clock):
    alice = make_user('alice')
    _stock(alice, 'skip', 1)
    sid = _active_session(alice, clock)
    result = powerups.activate(alice, sid, 'skip')
    assert result['effect']['skipped_question_id'] == f'{ARTIST}-q0'
    clock.advance(1)
    answer = sessions.submit_answer(alice, sid, f'{ARTIST}-q1', 'a')
    assert answer['correct'] is True


def _run_concurrently(app, user_id, session_id, slug, attempts):
    barrier = threading.Barrier(attempts)
    results = []
    lock = threading.Lock()

    def worker():
        with app.app_context():
            user = db.session.get(User, user_id)
            barrier.wait()
            try:
                powerups.activate(user, session_id, slug)
                outcome = 'ok'
            except QuizError as exc:
                outcome = exc.code
            with lock:
                results.append(outcome)

    threads = [threading.Thread(target=worker) for _ in range(attempts)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)
    return sorted(results)


def _prepare(app, clock, make_user, slug, quantity):
    with app.app_context():
        powerups.seed_catalog()
        alice = make_user('alice')
        _stock(alice, slug, quantity)
        sid = _active_session(alice, clock)
        return alice.id, sid


def test_simultaneous_activations_spend_single_unit_once(file_app, clock, make_user):
    user_id, sid = _prepare(file_app, clock, make_user, 'shield', 1)
    results = _run_concurrently(file_app, user_id, sid, 'shield', 2)
    assert results == ['insufficient_inventory', 'ok']
    with file_app.app_context():
        assert _owned(user_id, 'shield') == 0
        assert PowerupActivation.query.filter_by(session_id=sid).count() == 1


def test_k_of_n_concurrent_activations_succeed(file_app, clock, make_user):
    user_id, sid = _prepare(file_app, clock, make_user, 'shield', 2)
    results = _run_concurrently(file_app, user_id, sid, 'shield', 5)
    assert results.count('ok') == 2
    assert results.count('insufficient_inventory') == 3
    with file_app.app_context():
        assert _owned(user_id, 'shield') == 0
        assert db.session.get(QuizSession, sid).shield_charges == 2
