import pytest

from quickfire import db
from quickfire.models import LeaderboardSnapshot, LeaderboardEntry
from quickfire.services.quiz import sessions
from quickfire.services.quiz.errors import InvalidLeaderboardQuery
from quickfire.services.leaderboard import aggregator
from quickfire.services.leaderboard.aggregator import (
    rank_rows, assign_tier, query_leaderboard, rebuild_snapshot, rebuild_dirty_snapshots,
)


ARTIST = 'artist-1'


def _row(user_id, total, best, correct=10, accuracy=1.0, played=1, first=100.0):
    return {
        'user_id': user_id,
        'total_score': total,
        'best_single_quiz': best,
        'total_correct': correct,
        'accuracy': accuracy,
        'quizzes_played': played,
        'first_quiz_at': first,
    }


def _play(user, clock, correct=1, wrong=0, artist=ARTIST, complete=True):
    sid = sessions.start_session(user, artist)['id']
    clock.advance(3)
    choices = ['a'] * correct + ['b'] * wrong
    for i, choice in enumerate(choices):
        clock.advance(1)
        sessions.submit_answer(user, sid, f'{artist}-q{i}', choice)
    if complete:
        return sessions.complete_session(user, sid)
    return sid


def test_best_single_quiz_breaks_score_tie():
    ranked = rank_rows([_row(1, 500, 250), _row(2, 500, 300)])
    assert [(rank, row['user_id']) for rank, row in ranked] == [(1, 2), (2, 1)]


def test_tie_chain_order():
    rows = [
        _row(1, 100, 50, correct=10, accuracy=0.5),
        _row(2, 100, 50, correct=10, accuracy=0.9),
        _row(3, 100, 50, correct=12, accuracy=0.5),
        _row(4, 100, 50, correct=10, accuracy=0.9, played=2),
        _row(5, 100, 50, correct=10, accuracy=0.9, first=50.0),
    ]
    ranked = rank_rows(rows)
    assert [row['user_id'] for _, row in ranked] == [3, 5, 2, 4, 1]
    assert [rank for rank, _ in ranked] == [1, 2, 3, 4, 5]


def test_full_ties_share_rank_and_consume_slots():
    ranked = rank_rows([_row(3, 10, 10), _row(1, 90, 90), _row(2, 90, 90)])
    assert [(rank, row['user_id']) for rank, row in ranked] == [(1, 1), (1, 2), (3, 3)]


def test_ranking_is_deterministic_regardless_of_input_order():
    rows = [_row(i, 100 - (i % 3), 50, first=float(i % 2)) for i in range(1, 12)]
    assert rank_rows(rows) == rank_rows(list(reversed(rows)))


def test_tiers_from_rank_and_percentile(app_ctx):
    assert assign_tier(1, 1000) == 'legend'
    assert assign_tier(10, 1000) == 'legend'
    assert assign_tier(11, 1000) == 'diamond'
    assert assign_tier(50, 1000) == 'diamond'
    assert assign_tier(51, 1000) == 'platinum'
    assert assign_tier(300, 1000) == 'gold'
    assert assign_tier(600, 1000) == 'silver'
    assert assign_tier(601, 1000) == 'bronze'
    assert assign_tier(1000, 1000) == 'bronze'
    assert assign_tier(3, 100, top_rank=2) == 'diamond'


def test_completed_sessions_ranked_across_scopes(app_ctx, make_user, clock):
    alice = make_user('alice', country='US')
    bob = make_user('bob', country='GB')
    carol = make_user('carol', country='US')
    _play(alice, clock, correct=3)
    _play(bob, clock, correct=2)
    _play(carol, clock, correct=1)

    board = query_leaderboard('global', 'weekly')
    assert [(e['username'], e['rank'], e['total_score']) for e in board['entries']] == [
        ('alice', 1, 17), ('bob', 2, 10), ('carol', 3, 5),
    ]
    assert board['total'] == 3
    assert all(e['tier'] == 'legend' for e in board['entries'])

    us = query_leaderboard('country', 'daily', country='us')
    assert [e['username'] for e in us['entries']] == ['alice', 'carol']
    gb = query_leaderboard('artist_country', 'all_time', country='GB', artist_id=ARTIST)
    assert [e['username'] for e in gb['entries']] == ['bob']
    assert query_leaderboard('artist_global', 'monthly', artist_id='other-artist')['entries'] == []


def test_open_sessions_not_ranked(app_ctx, make_user, clock):
    alice = make_user('alice')
    _play(alice, clock, correct=2, complete=False)
    assert query_leaderboard('global', 'weekly')['entries'] == []


def test_sessions_without_answers_are_not_ranked(app_ctx, make_user, clock):
    alice = make_user('alice')
    bob = make_user('bob')
    for artist in ('obscure-1', 'obscure-2'):
        _play(alice, clock, correct=0, artist=artist)
    _play(bob, clock, correct=1)

    entries = query_leaderboard('global', 'weekly')['entries']
    assert [e['user_id'] for e in entries] == [bob.id]
    assert query_leaderboard('artist_global', 'weekly', artist_id='obscure-1')['entries'] == []


def test_abandoned_sessions_are_ranked(app_ctx, make_user, clock):
    alice = make_user('alice')
    sid = _play(alice, clock, correct=2, complete=False)
    sessions.force_complete(sid, 'stale', terminal_status='abandoned')
    entries = query_leaderboard('global', 'weekly')['entries']
    assert [(e['user_id'], e['total_score']) for e in entries] == [(alice.id, 10)]


def test_identical_players_share_rank(app_ctx, make_user, clock):
    alice = make_user('alice')
    bob = make_user('bob')
    carol = make_user('carol')
    # Same start instant, same answers: identical on every tie-break key
    a = sessions.start_session(alice, ARTIST)['id']
    b = sessions.start_session(bob, ARTIST)['id']
    clock.advance(4)
    sessions.submit_answer(alice, a, f'{ARTIST}-q0', 'a')
    sessions.submit_answer(bob, b, f'{ARTIST}-q0', 'a')
    sessions.complete_session(alice, a)
    sessions.complete_session(bob, b)
    _play(carol, clock, correct=1, wrong=1)

    entries = query_leaderboard('global', 'weekly')['entries']
    assert [e['rank'] for e in entries] == [1, 1, 3]
    assert [e['user_id'] for e in entries] == sorted([alice.id, bob.id]) + [carol.id]


def test_completion_reports_rank_delta(app_ctx, make_user, clock):
    app_ctx.config['LEADERBOARD_REBUILD_ON_COMPLETE'] = True
    alice = make_user('alice')
    bob = make_user('bob')
    _play(alice, clock, correct=2)
    first = _play(bob, clock, correct=1)
    global_weekly = [d for d in first['leaderboard'] if d['scope'] == 'global' and d['period'] == 'weekly'][0]
    assert global_weekly['rank'] == 2
    assert global_weekly['previous_rank'] is None

    second = _play(bob, clock, correct=2)
    global_weekly = [d for d in second['leaderboard'] if d['scope'] == 'global' and d['period'] == 'weekly'][0]
    assert global_weekly['previous_rank'] == 2
    assert global_weekly['rank'] == 1
    assert global_weekly['delta'] == 1
    assert global_weekly['tier'] == 'legend'


def test_rebuild_is_idempotent(app_ctx, make_user, clock):
    users = {}
    for name, correct in (('alice', 3), ('bob', 1), ('carol', 2)):
        users[name] = make_user(name)
        _play(users[name], clock, correct=correct)
    snapshot = LeaderboardSnapshot.query.filter_by(scope='global', period='weekly').one()

    def state():
        return [
            (e.user_id, e.rank, e.previous_rank, e.tier, e.total_score)
            for e in snapshot.entries.order_by(LeaderboardEntry.rank).all()
        ]

    rebuild_snapshot(snapshot)
    db.session.commit()
    before = state()
    assert [row[0] for row in before] == [users['alice'].id, users['carol'].id, users['bob'].id]
    rebuild_snapshot(snapshot)
    db.session.commit()
    rebuild_snapshot(snapshot)
    db.session.commit()
    assert state() == before


def test_completion_marks_snapshots_dirty_by_default(app_ctx, make_user, clock):
    alice = make_user('alice')
    result = _play(alice, clock, correct=1)
    assert result['leaderboard'] == []
    dirty = LeaderboardSnapshot.query.filter_by(dirty=True).count()
    assert dirty > 0
    assert rebuild_dirty_snapshots() == dirty
    assert LeaderboardSnapshot.query.filter_by(dirty=True).count() == 0
    entry = LeaderboardEntry.query.join(LeaderboardSnapshot).filter(
        LeaderboardSnapshot.scope == 'global', LeaderboardSnapshot.period == 'daily',
    ).one()
    assert entry.user_id == alice.id


def test_failing_snapshot_does_not_block_others(app_ctx, make_user, clock, monkeypatch):
    alice = make_user('alice')
    _play(alice, clock, correct=1)
    LeaderboardSnapshot.query.update({'dirty': True})
    db.session.commit()
    total = LeaderboardSnapshot.query.count()

    real_rebuild = aggregator.rebuild_snapshot

    def flaky(snapshot, now=None):
        if snapshot.scope == 'country':
            raise RuntimeError('boom')
        return real_rebuild(snapshot, now)

    monkeypatch.setattr(aggregator, 'rebuild_snapshot', flaky)
    country_count = LeaderboardSnapshot.query.filter_by(scope='country').count()
    assert rebuild_dirty_snapshots() == total - country_count
    assert LeaderboardSnapshot.query.filter_by(dirty=True).count() == country_count


def test_query_pagination_and_me(app_ctx, make_user, clock):
    users = [make_user(f'user{i}') for i in range(5)]
    for i, user in enumerate(users):
        _play(user, clock, correct=i + 1)
    page = query_leaderboard('global', 'weekly', page=2, per_page=2, user_id=users[0].id)
    assert page['page'] == 2
    assert page['total'] == 5
    assert [e['rank'] for e in page['entries']] == [3, 4]
    assert page['me']['rank'] == 5
    assert page['me']['tier'] == 'legend'


def test_query_rejects_unknown_scope_or_missing_keys(app_ctx):
    with pytest.raises(InvalidLeaderboardQuery):
        query_leaderboard('galaxy', 'weekly')
    with pytest.raises(InvalidLeaderboardQuery):
        query_leaderboard('global', 'yearly')
    with pytest.raises(InvalidLeaderboardQuery):
        query_leaderboard('country', 'weekly')
    with pytest.raises(InvalidLeaderboardQuery):
        query_leaderboard('artist_country', 'weekly', artist_id=ARTIST)
