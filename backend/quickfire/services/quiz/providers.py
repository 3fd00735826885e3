"""Adapters for the two external inputs of a session.

Question content and listening history live outside the quiz engine. The
app config may point ``QUESTION_PROVIDER`` / ``LISTENING_HOURS_PROVIDER`` at
callables; otherwise the defaults below are used.

A question record is a dict::

    {'id': 'q1', 'prompt': '...', 'choices': ['a', 'b', 'c', 'd'],
     'answer': 'b', 'difficulty': 'medium', 'type': 'multiple_choice'}

``type`` is ``multiple_choice`` or ``true_false``.
"""

import random
from typing import Callable, List, Optional

from flask import current_app

from .scoring import DIFFICULTIES

QUESTION_TYPES = ('multiple_choice', 'true_false')


def default_question_provider(artist_id: str, count: int) -> List[dict]:
    """Questions from the ``QUESTION_BANK`` config list, filtered by artist."""
    bank = current_app.config.get('QUESTION_BANK') or []
    pool = [q for q in bank if str(q.get('artist_id', artist_id)) == str(artist_id)]
    random.shuffle(pool)
    return pool[:count]


def default_listening_hours(user_id: int, artist_id: str) -> float:
    return 0.0


def _provider(key: str, fallback: Callable) -> Callable:
    configured = current_app.config.get(key)
    return configured if callable(configured) else fallback


def normalize_question(raw: dict) -> Optional[dict]:
    """Validate a provider record; returns None for records the engine cannot serve."""
    try:
        qid = str(raw['id'])
        choices = [str(c) for c in raw['choices']]
        answer = str(raw['answer'])
    except (KeyError, TypeError):
        return None
    difficulty = raw.get('difficulty', 'medium')
    qtype = raw.get('type') or ('true_false' if len(choices) == 2 else 'multiple_choice')
    if difficulty not in DIFFICULTIES or qtype not in QUESTION_TYPES or answer not in choices:
        return None
    return {
        'id': qid,
        'prompt': raw.get('prompt', ''),
        'choices': choices,
        'answer': answer,
        'difficulty': difficulty,
        'type': qtype,
    }


def fetch_questions(artist_id: str, count: int) -> List[dict]:
    provider = _provider('QUESTION_PROVIDER', default_question_provider)
    questions = []
    seen = set()
    for raw in provider(artist_id, count) or []:
        q = normalize_question(raw)
        if q is None:
            current_app.logger.warning(f"[questions-skip] artist={artist_id} invalid record id={raw.get('id') if isinstance(raw, dict) else None}")
            continue
        if q['id'] in seen:
            continue
        seen.add(q['id'])
        questions.append(q)
    return questions


def fetch_listening_hours(user_id: int, artist_id: str) -> float:
    provider = _provider('LISTENING_HOURS_PROVIDER', default_listening_hours)
    hours = provider(user_id, artist_id)
    return max(0.0, float(hours or 0))


def public_question(question: Optional[dict], removed=None) -> Optional[dict]:
    """The client view of a question: answer withheld, removed options dropped."""
    if not question:
        return None
    removed = set(removed or [])
    return {
        'id': question['id'],
        'prompt': question['prompt'],
        'choices': [c for c in question['choices'] if c not in removed],
        'difficulty': question['difficulty'],
        'type': question['type'],
    }
