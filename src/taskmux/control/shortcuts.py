"""Letter shortcuts for addressing tasks from the keyboard.

Each label is reduced to the initials of its words ("web dev server" ->
"wds"). Every shortcut starts at one letter; colliding groups grow by one
letter per round. After ``MAX_ROUNDS`` the best partial result is kept,
so degenerate label sets (identical initials) can still tie.
"""

from __future__ import annotations

import re
from collections import defaultdict
from collections.abc import Sequence

MAX_ROUNDS = 5

_WORD_SPLIT = re.compile(r"[^a-z]+")


def initials(label: str) -> str:
    words = [w for w in _WORD_SPLIT.split(label.lower()) if w]
    return "".join(w[0] for w in words)


def compute_shortcuts(labels: Sequence[str], *, max_rounds: int = MAX_ROUNDS) -> list[str]:
    """Return one shortcut per label, in input order."""
    inits = [initials(label) for label in labels]
    lengths = [1] * len(inits)

    for _ in range(max_rounds):
        shortcuts = [_take(init, n) for init, n in zip(inits, lengths)]

        groups: dict[str, list[int]] = defaultdict(list)
        for i, sc in enumerate(shortcuts):
            groups[sc].append(i)

        collided = False
        for members in groups.values():
            if len(members) <= 1:
                continue
            collided = True
            for i in members:
                lengths[i] += 1

        if not collided:
            return _with_fallback(shortcuts)

    return _with_fallback([_take(init, n) for init, n in zip(inits, lengths)])


def _take(init: str, length: int) -> str:
    return init[:length] or init


def _with_fallback(shortcuts: list[str]) -> list[str]:
    # Labels without any letter get their 1-based position.
    return [sc or str(i + 1) for i, sc in enumerate(shortcuts)]
