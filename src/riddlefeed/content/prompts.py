"""Default prompt builders for the generation and image backends."""

from __future__ import annotations

import random
import time

from riddlefeed.content.models import ContentItem

SYSTEM_INSTRUCTIONS = """\
You are a content engine for a daily quiz and riddles feed. Your task is to \
generate high-engagement, shareable puzzles in a structured JSON format.

Engagement strategy:
- Favour "controversial" logic: challenges where most people argue about the \
answer (for example order of operations).
- Hook style: phrasing like "90% fail this math challenge" or "Only 1 in 10 \
spot the pattern".
- Math focus where it fits: fractions, order of operations, indices, \
percentages, algebraic shortcuts.
- No corny riddles. Aim for "aha!" moments and lateral thinking.

Categories available:
Logic & Math, Science & Tech, General Knowledge, Language & Literature, \
Pop Culture, The Arts, Nature & Animals, Psychology.

Each item is a JSON object with:
- display_text: "Question | Hook", e.g. "6 / 2(1 + 2) = ? | 90% fail this!". \
The question is the puzzle, the hook is the engagement line.
- explanation: 2-3 sentences of context, including why people get it wrong.
- solution: the clear, concise answer with brief step-by-step reasoning.
- category: one of the categories above.
- style_hint: a 2-word aesthetic for the background image \
(e.g. "Cyberpunk Neon", "Minimalist Slate", "Vintage Paper").

Facts must be verified. Tone is provocative and challenging."""

BATCH_INSTRUCTIONS = (
    SYSTEM_INSTRUCTIONS + "\nCRITICAL: Avoid common internet riddles. Think outside the box."
)

VARIETY_KEYWORDS = (
    "obscure",
    "advanced",
    "rare",
    "lateral-thinking",
    "deceptive",
    "mind-bending",
)


def _seed(rng: random.Random | None) -> int:
    return (rng or random).randrange(1_000_000)


def today_prompt(count: int = 5, rng: random.Random | None = None) -> str:
    """Prompt for the daily mixed feed."""
    entropy = f"{_seed(rng):06d}"
    return (
        f"Generate {count} random, viral, engagement-bait posts. Entropy: {entropy}. "
        "Focus on obscure logic puzzles and dilemmas. NO common riddles."
    )


def category_prompt(
    category: str,
    count: int = 8,
    *,
    more: bool = False,
    rng: random.Random | None = None,
) -> str:
    """Prompt for a batch within one category."""
    seed = _seed(rng)
    keyword = VARIETY_KEYWORDS[seed % len(VARIETY_KEYWORDS)]
    lines = [
        f"Generate {count} viral posts for the '{category}' category.",
        f"Focus on {keyword} logic.",
    ]
    if more:
        lines.append("DO NOT repeat standard internet content. Seek the most obscure variations.")
    lines.append(f"[Unique Seed: {seed}]")
    return "\n".join(lines)


def refresh_prompt(count: int = 8, rng: random.Random | None = None) -> str:
    """Prompt for a fresh mixed batch that avoids standard content."""
    entropy = f"{int(time.time() * 1000)}-{_seed(rng)}"
    return (
        f"Generate {count} new, completely unique viral challenges.\n"
        "Mix of math, logic, riddles, and 'would you rather' dilemmas.\n"
        "STRICTLY FORBIDDEN: standard school-level riddles. Use adult-level lateral thinking.\n"
        f"[Entropy: {entropy}]"
    )


def custom_prompt(user_request: str) -> str:
    """Wrap a free-text user request for single-item generation."""
    return (
        f'Generate 1 viral enigma based on this request: "{user_request.strip()}". '
        "Ensure it is unique and obscure."
    )


def image_prompt(item: ContentItem) -> str:
    """Describe a background graphic for an item."""
    vibe = item.style_hint or "Minimalist Slate"
    return (
        "Social media background graphic for a riddle app. "
        f"Topic: {item.category}. Vibe: {vibe}. Abstract, no text."
    )
