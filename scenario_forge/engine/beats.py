"""Beat sequencing for narrative pacing of simulated conversations.

Every conversation opens with ``setup`` and ends with ``close``. Interior
beats depend on length:

- 1-2 turns: setup/close only
- 3 turns: setup -> preclose -> close
- 4-6 turns: compressed interior from incident, tension, obstacle, progress
- 7-10 turns: standard interior distributed proportionally over
  incident, tension, midpoint, obstacle, progress
- more than 10: extended interior that repeats tension, obstacle and progress

Every length of 3 or more reserves ``preclose`` for the second to last turn.

Without a profile bias the interior is deterministic. With a bias, beats are
drawn from a shuffled weighted pool using the supplied random source.
"""

import itertools
import math
import random
from typing import Mapping, Optional

from .models import Beat, BeatName

ProfileBeatBias = Mapping[BeatName, float]

COMPRESSED_BEATS: tuple[BeatName, ...] = (
    BeatName.INCIDENT,
    BeatName.TENSION,
    BeatName.OBSTACLE,
    BeatName.PROGRESS,
)

STANDARD_BEATS: tuple[BeatName, ...] = (
    BeatName.INCIDENT,
    BeatName.TENSION,
    BeatName.MIDPOINT,
    BeatName.OBSTACLE,
    BeatName.PROGRESS,
)

EXTENDED_BEATS: tuple[BeatName, ...] = (
    BeatName.INCIDENT,
    BeatName.TENSION,
    BeatName.TENSION,
    BeatName.MIDPOINT,
    BeatName.OBSTACLE,
    BeatName.OBSTACLE,
    BeatName.PROGRESS,
    BeatName.PROGRESS,
)

# Weight given to each bias multiplier unit when building the pool
BIAS_WEIGHT_SCALE = 10


def pick_beat_for_turn(
    turn_index: int,
    max_turns: int,
    profile_bias: Optional[ProfileBeatBias] = None,
    rng: Optional[random.Random] = None,
) -> Beat:
    """Get the beat for a 0-based turn index.

    Args:
        turn_index: 0-based turn index, clamped into ``[0, max_turns - 1]``
        max_turns: Total number of turns (at least 1)
        profile_bias: Optional per-beat selection multipliers
        rng: Random source used only when a bias is supplied

    Returns:
        Beat with a 1-based index
    """
    total = max(1, max_turns)
    index = max(0, min(turn_index, total - 1))

    if index == 0:
        return Beat(name=BeatName.SETUP, index=1, total=total)
    if index == total - 1:
        return Beat(name=BeatName.CLOSE, index=total, total=total)

    sequence = generate_beat_sequence(total, profile_bias, rng)
    return sequence[index]


def generate_beat_sequence(
    max_turns: int,
    profile_bias: Optional[ProfileBeatBias] = None,
    rng: Optional[random.Random] = None,
) -> list[Beat]:
    """Build the full beat plan for a conversation of ``max_turns`` turns."""
    total = max(1, max_turns)
    names = _generate_names(total, profile_bias or None, rng or random.Random())
    return [Beat(name=name, index=i + 1, total=total) for i, name in enumerate(names)]


def describe_beat(beat: Beat, lang: str = "es") -> str:
    """Localized description such as ``obstáculo (5/8)``."""
    return beat.describe(lang)


def get_next_beat(
    current: Beat,
    max_turns: int,
    profile_bias: Optional[ProfileBeatBias] = None,
    rng: Optional[random.Random] = None,
) -> Optional[Beat]:
    """Get the beat following ``current``, or None after the last turn."""
    if current.index >= max_turns:
        return None
    return pick_beat_for_turn(current.index, max_turns, profile_bias, rng)


class BeatSequencer:
    """Beat plan for one conversation.

    Biased selection is random, so the plan is drawn once and reused for
    every turn of the conversation.
    """

    def __init__(
        self,
        max_turns: int,
        profile_bias: Optional[ProfileBeatBias] = None,
        rng: Optional[random.Random] = None,
    ):
        self.max_turns = max(1, max_turns)
        self._sequence = generate_beat_sequence(self.max_turns, profile_bias, rng)

    @property
    def sequence(self) -> list[Beat]:
        return list(self._sequence)

    def beat_for_turn(self, turn_index: int) -> Beat:
        """Get the beat for a 0-based turn index."""
        index = max(0, min(turn_index, self.max_turns - 1))
        return self._sequence[index]


def _generate_names(
    total: int,
    bias: Optional[ProfileBeatBias],
    rng: random.Random,
) -> list[BeatName]:
    # A single turn is both first and last; the opening wins
    if total == 1:
        return [BeatName.SETUP]
    if total == 2:
        return [BeatName.SETUP, BeatName.CLOSE]

    slots = total - 3
    if slots == 0:
        interior: list[BeatName] = []
    elif total <= 6:
        interior = _select(COMPRESSED_BEATS, slots, bias, rng)
    elif total <= 10:
        distributed = _distribute_proportionally(STANDARD_BEATS, slots)
        interior = _select_with_bias(distributed, slots, bias, rng) if bias else distributed
    else:
        interior = _select(EXTENDED_BEATS, slots, bias, rng)

    return [BeatName.SETUP, *interior, BeatName.PRECLOSE, BeatName.CLOSE]


def _select(
    beats: tuple[BeatName, ...],
    slots: int,
    bias: Optional[ProfileBeatBias],
    rng: random.Random,
) -> list[BeatName]:
    if bias:
        return _select_with_bias(beats, slots, bias, rng)
    if slots <= len(beats):
        return list(beats[:slots])
    return _distribute_proportionally(beats, slots)


def _distribute_proportionally(beats: tuple[BeatName, ...] | list[BeatName], slots: int) -> list[BeatName]:
    """Spread ``beats`` in order over ``slots`` positions."""
    if slots <= 0:
        return []
    step = len(beats) / slots
    return [beats[math.floor(i * step)] for i in range(slots)]


def _bias_weight(multiplier: float) -> int:
    # Round half up, never below one entry in the pool
    return max(1, math.floor(multiplier * BIAS_WEIGHT_SCALE + 0.5))


def _select_with_bias(
    beats: tuple[BeatName, ...] | list[BeatName],
    slots: int,
    bias: ProfileBeatBias,
    rng: random.Random,
) -> list[BeatName]:
    """Draw beats from a shuffled weighted pool.

    Unique beats are taken first; repeats are only used once every distinct
    beat in the pool has been placed.
    """
    pool: list[BeatName] = []
    for beat in beats:
        pool.extend([beat] * _bias_weight(bias.get(beat, 1.0)))
    rng.shuffle(pool)

    selected: list[BeatName] = []
    seen: set[BeatName] = set()
    for beat in pool:
        if len(selected) >= slots:
            break
        if beat not in seen:
            selected.append(beat)
            seen.add(beat)

    for beat in itertools.cycle(pool):
        if len(selected) >= slots:
            break
        selected.append(beat)

    return selected
