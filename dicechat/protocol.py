"""Roll requests and results carried inside ordinary chat messages.

A request or result is a chat message whose content follows one of the
templates below. Every client renders them as normal text, and recognizes them
by matching the same template. The parse pattern is derived from the template
string, so the two cannot drift apart.
"""

from __future__ import annotations

import re
import string
import time

from dicechat.dice import DiceSelection, serialize
from dicechat.schemas import DiceRequest, DiceRollResult

REQUEST_TEMPLATE = (
    "🎲 **{requester} requests dice roll**: {expression}\n"
    "**Description**: {description}\n"
    "\n"
    "*Click this message to automatically set up the dice and roll!*"
)

RESULT_TEMPLATE = "🎯 **Rolled {total}** ({expression})\n**Breakdown**: {breakdown}"

# Literal text before the first placeholder: "🎯 **Rolled".
RESULT_MARKER = RESULT_TEMPLATE.split("{", 1)[0].rstrip()

_LINE_BREAK_RE = re.compile(r"\s*[\r\n]+\s*")
_LOCAL_EXPRESSION_RE = re.compile(r"^(.+?)=")
_LEADING_INT_RE = re.compile(r"^\s*([+-]?\d+)")


def _template_pattern(template: str) -> re.Pattern[str]:
    """Compile a format template into a regex with one named group per field.

    Fields match lazily within a single line.
    """
    parts: list[str] = []
    for literal, field_name, _spec, _conversion in string.Formatter().parse(template):
        parts.append(re.escape(literal))
        if field_name is not None:
            parts.append(f"(?P<{field_name}>.+?)")
    return re.compile("".join(parts))


_REQUEST_RE = _template_pattern(REQUEST_TEMPLATE)


def _single_line(text: str) -> str:
    return _LINE_BREAK_RE.sub(" ", text)


def build_request(requester: str, expression: str, description: str) -> str:
    """Render a roll request. Line breaks inside a field become single spaces."""
    return REQUEST_TEMPLATE.format(
        requester=_single_line(requester),
        expression=_single_line(expression),
        description=_single_line(description),
    )


def build_result(result: DiceRollResult) -> str:
    return RESULT_TEMPLATE.format(
        total=result.total, expression=result.expression, breakdown=result.breakdown
    )


def try_parse_request(content: str) -> DiceRequest | None:
    """Return the embedded request if content is exactly a request message.

    Anything other than a verbatim rendering of REQUEST_TEMPLATE (extra text,
    missing call-to-action line, multi-line fields) is ordinary chat.
    """
    m = _REQUEST_RE.fullmatch(content)
    if m is None:
        return None
    return DiceRequest(
        expression=m.group("expression"),
        description=m.group("description"),
        requester=m.group("requester"),
    )


def is_result(content: str) -> bool:
    return RESULT_MARKER in content


def result_from_local_roll(outcome: int | str, selection: DiceSelection) -> DiceRollResult:
    """Build a shareable result for a roll that happened on this client.

    Args:
        outcome: Either the plain total, or a breakdown string of the form
            "<expression>=<details>=<total>" as produced by the dice tray.
        selection: The dice that were rolled, used to name the expression
            when the outcome is a bare total.

    Returns:
        A DiceRollResult with no per-die detail, ready for build_result.
    """
    if isinstance(outcome, str):
        m = _LOCAL_EXPRESSION_RE.match(outcome)
        expression = m.group(1) if m else outcome
        total_match = _LEADING_INT_RE.match(outcome.rsplit("=", 1)[-1])
        total = int(total_match.group(1)) if total_match else 0
        breakdown = outcome
    else:
        expression = serialize(selection.with_modifier(0)) or "d20"
        total = outcome
        breakdown = f"{expression}={outcome}"

    return DiceRollResult(
        id=int(time.time() * 1000),
        expression=expression,
        total=total,
        breakdown=breakdown,
    )
