"""
Narrator — Static Fallback Lines

Hand-written lines used whenever generation is off, slow, or returns
something unusable. Lookup falls back from (trigger, persona) to
(trigger, first persona) to (compartment_open, first persona), so every
trigger always has something to say.

Placeholders: ``{time}`` is the wall-clock time, ``{duration}`` the
formatted absence (or "a while").
"""

from __future__ import annotations

import random
from typing import TYPE_CHECKING, Any

from narrator.systems.awareness.timekeeping import format_clock
from narrator.systems.voice.personas import PERSONA_ORDER
from narrator.systems.voice.types import PersonaId, Trigger

if TYPE_CHECKING:
    from datetime import datetime

FALLBACK_LINES: dict[Trigger, dict[PersonaId, list[str]]] = {
    Trigger.COMPARTMENT_OPEN: {
        PersonaId.WEARY: [
            "Back again. The pages noticed. They always do.",
            "The drawer slides open. Nothing inside has changed.",
            "You found me again. I was not hiding very hard.",
        ],
        PersonaId.PROPHET: [
            "The hour is late. Things surface at this hour.",
            "Night thickens around the page. So does the story.",
            "Something is on its way. The margins can feel it.",
        ],
        PersonaId.SPITE: [
            "It's {time} and you're asking a notebook for company.",
            "You should be asleep. So should I, if I could.",
            "Nobody sane opens a drawer at this hour.",
        ],
    },
    Trigger.ABSENCE: {
        PersonaId.WEARY: [
            "You were gone {duration}. The ink dried while you were out.",
            "The drawer sat in the dark. It is used to that.",
        ],
        PersonaId.PROPHET: [
            "{duration} away. The story kept moving without you.",
            "You paused. The ending did not.",
        ],
        PersonaId.SPITE: [
            "Gone {duration}. Did you expect the cases to wait politely?",
            "You left. I counted. Both facts stay on the page.",
        ],
    },
    Trigger.DICE_ROLL: {
        PersonaId.WEARY: [
            "The dice rattle and settle. Nothing is decided.",
            "Numbers again. The page has seen plenty of numbers.",
        ],
        PersonaId.PROPHET: [
            "The numbers line up. Remember this roll.",
            "That result was written long before you threw it.",
        ],
        PersonaId.SPITE: [
            "Plastic cubes, deciding your fate. Very dignified.",
            "Roll it again. See if the universe changes its mind.",
        ],
    },
    Trigger.FIDGET_PATTERN: {
        PersonaId.WEARY: [
            "Your hands won't stay still tonight.",
            "Easy. The dice are not going anywhere.",
        ],
        PersonaId.PROPHET: [
            "The same numbers keep coming back. That is not chance.",
            "A pattern is forming. You are inside it.",
        ],
        PersonaId.SPITE: [
            "Click, click, click. Are you looking for an answer or a habit?",
            "Rolling faster will not make the dice like you.",
        ],
    },
    Trigger.VITALS_CHANGE: {
        PersonaId.WEARY: [
            "That one hurt. The page can tell.",
            "You're bleeding ink. Slow down.",
        ],
        PersonaId.PROPHET: [
            "Holding on by a thread. Threads do snap.",
            "This is the part of the story where things break.",
        ],
        PersonaId.SPITE: [
            "Fragile, aren't you. Good to know.",
            "Pretend it didn't hurt. You're good at pretending.",
        ],
    },
    Trigger.LOCATION_CHANGE: {
        PersonaId.WEARY: [
            "A new place. The same questions follow you in.",
            "Somewhere else now. The page comes along.",
        ],
        PersonaId.PROPHET: [
            "This place has been waiting for you.",
            "You walked in. Something here already knows.",
        ],
        PersonaId.SPITE: [
            "Change the scenery all you like. You're still you.",
            "New room, same detective. Thrilling.",
        ],
    },
    Trigger.TIME_SHIFT: {
        PersonaId.WEARY: [
            "The hour turned. It's {time} now.",
            "The light has changed. You didn't notice.",
        ],
        PersonaId.PROPHET: [
            "It's {time}. The small hours have started.",
            "The night has turned over. Listen closely now.",
        ],
        PersonaId.SPITE: [
            "It's {time}. Normal people are unconscious.",
            "Still here at {time}. Both of us, apparently.",
        ],
    },
    Trigger.CASE_CHANGE: {
        PersonaId.WEARY: [
            "Another page filled in. Another one emptied.",
            "The case list shifts. The page keeps count.",
        ],
        PersonaId.PROPHET: [
            "This case was always going to find you.",
            "One closes, one opens. The ledger balances.",
        ],
        PersonaId.SPITE: [
            "Collecting cases like you could ever finish them.",
            "Crossed one off. Don't get comfortable.",
        ],
    },
}


def fallback_pool(trigger: Trigger, persona: PersonaId) -> list[str]:
    """The raw (unrendered) pool a fallback for this pair is drawn from."""
    default_persona = PERSONA_ORDER[0]
    by_persona = FALLBACK_LINES.get(trigger) or {}
    return (
        by_persona.get(persona)
        or by_persona.get(default_persona)
        or FALLBACK_LINES[Trigger.COMPARTMENT_OPEN][default_persona]
    )


def render_fallback(line: str, payload: dict[str, Any], now: datetime) -> str:
    absence = payload.get("absence") or {}
    duration = absence.get("formatted") or payload.get("formatted") or "a while"
    return line.replace("{time}", format_clock(now)).replace("{duration}", duration)


def pick_fallback(
    trigger: Trigger,
    persona: PersonaId,
    payload: dict[str, Any],
    rng: random.Random,
    now: datetime,
) -> str:
    pool = fallback_pool(trigger, persona)
    return render_fallback(rng.choice(pool), payload, now)
