"""Typed powerup effects.

The catalog stores an effect type and a JSON parameter blob; ``parse_effect``
turns that into one of the closed set of variants below. Unknown types are
rejected when the catalog row is read, not when the effect is applied.
"""

from dataclasses import dataclass, asdict
from typing import Union

MULTIPLIER_ALL_REMAINING = 'all_remaining'
MULTIPLIER_NEXT_QUESTION = 'next_question'


@dataclass(frozen=True)
class FreezeTime:
    duration: int
    kind = 'freeze_time'


@dataclass(frozen=True)
class AddTime:
    seconds: int
    kind = 'add_time'


@dataclass(frozen=True)
class Multiplier:
    value: float
    scope: str = MULTIPLIER_NEXT_QUESTION
    kind = 'multiplier'


@dataclass(frozen=True)
class BlockPenalty:
    count: int = 1
    kind = 'block_penalty'


@dataclass(frozen=True)
class RemoveOptions:
    count: int = 2
    kind = 'remove_options'


@dataclass(frozen=True)
class SkipQuestion:
    kind = 'skip_question'


Effect = Union[FreezeTime, AddTime, Multiplier, BlockPenalty, RemoveOptions, SkipQuestion]

EFFECT_TYPES = {
    'freeze_time': FreezeTime,
    'add_time': AddTime,
    'multiplier': Multiplier,
    'block_penalty': BlockPenalty,
    'remove_options': RemoveOptions,
    'skip_question': SkipQuestion,
}


def parse_effect(effect_type: str, params: dict) -> Effect:
    cls = EFFECT_TYPES.get(effect_type)
    if cls is None:
        raise ValueError(f'unknown powerup effect type: {effect_type!r}')
    params = params or {}
    if cls is FreezeTime:
        return FreezeTime(duration=int(params['duration']))
    if cls is AddTime:
        return AddTime(seconds=int(params['seconds']))
    if cls is Multiplier:
        scope = params.get('scope', MULTIPLIER_NEXT_QUESTION)
        if scope not in (MULTIPLIER_ALL_REMAINING, MULTIPLIER_NEXT_QUESTION):
            raise ValueError(f'unknown multiplier scope: {scope!r}')
        return Multiplier(value=float(params['value']), scope=scope)
    if cls is BlockPenalty:
        return BlockPenalty(count=int(params.get('count', 1)))
    if cls is RemoveOptions:
        return RemoveOptions(count=int(params.get('count', 2)))
    return SkipQuestion()


def describe(effect: Effect, **applied) -> dict:
    """Effect descriptor for the client: the variant, its params, and what was applied."""
    payload = {'type': effect.kind}
    payload.update(asdict(effect))
    payload.update(applied)
    return payload
