"""
提示词模板 - 分析、纠正、起草、校验与修订
Prompt templates - analysis, nudges, drafting, validation and refinement.

模板只组装文本；模型回复的解读全部交给 ``parser``。
Templates only assemble text; reading the model's reply is left to
``parser``.
"""

from __future__ import annotations

import json
from collections.abc import Sequence
from datetime import date

from toolloop.capabilities.types import CapabilityDescriptor

MARKER_INSTRUCTIONS = """\
Respond using these markers:
- CLASSIFY <intent>  (optional, one short phrase describing the request)
- EXECUTE <capability_name> PARAMETERS <json object>  (invoke exactly one capability)
- STOP <reason>  (when the gathered results are enough to answer)

Rules:
- Emit at most one EXECUTE per reply; it is run before you are asked again.
- PARAMETERS must be a single valid JSON object matching the capability's schema.
- Never describe an action as done; request it with EXECUTE instead.
- Use STOP as soon as the INVOCATIONS section holds what the user needs."""

NO_ACTION_NUDGE = (
    "Your previous reply could not be acted upon ({reason}). "
    "Reply with exactly one EXECUTE <capability_name> PARAMETERS <json object> "
    "line, or STOP <reason> if no capability is needed."
)

SYNTHESIS_RULES = """\
- Build the answer strictly from the INVOCATIONS and INVOCATION SUMMARY sections.
- Do not invent data that no capability returned.
- Never claim an action was completed unless a matching capability succeeded.
- If the user requested an action but no capabilities were called, clearly state that no action was performed.
- If a capability failed, explain briefly what could not be retrieved without exposing raw errors.
- Answer in the language of the user's request."""


def format_catalog(descriptors: Sequence[CapabilityDescriptor]) -> str:
    """按类别列出能力 / List capabilities grouped by category."""
    if not descriptors:
        return "(no capabilities available)"
    by_category: dict[str, list[CapabilityDescriptor]] = {}
    for descriptor in descriptors:
        by_category.setdefault(descriptor.category, []).append(descriptor)

    sections = []
    for category in sorted(by_category):
        lines = [f"**{category.upper()}**:"]
        for d in by_category[category]:
            schema = json.dumps(d.parameter_schema(), ensure_ascii=False, default=str)
            lines.append(f"  - {d.name}: {d.description}\n    Parameters: {schema}")
        sections.append("\n".join(lines))
    return "\n\n".join(sections)


def forced_directive(categories: Sequence[str], names: Sequence[str]) -> str:
    return (
        "DIRECTIVE: the request requires the "
        + ", ".join(categories)
        + " capabilities, but none of them has been invoked yet. "
        "Do not answer from memory. Reply with EXECUTE using one of: "
        + ", ".join(names)
        + "."
    )


def analysis_prompt(
    context: str,
    catalog: str,
    *,
    calls_remaining: int,
    intent: str | None = None,
    nudge: str | None = None,
    directive: str | None = None,
    today: date | None = None,
) -> str:
    today = today or date.today()
    parts = [
        f"Today is {today.strftime('%A, %B %d, %Y')}.",
        "You are an assistant that answers the user's request by invoking the "
        "capabilities listed below, one at a time.",
        "---START OF CONTEXT---",
        context,
        "---END OF CONTEXT---",
        f"Available capabilities by category:\n{catalog}",
        f"Capability calls remaining: {calls_remaining}",
    ]
    if intent:
        parts.append(f"Classified intent: {intent}")
    parts.append(MARKER_INSTRUCTIONS)
    if nudge:
        parts.append(nudge)
    if directive:
        parts.append(directive)
    return "\n\n".join(parts)


def draft_prompt(context: str, *, action_request: bool, draft_hint: str | None = None) -> str:
    parts = [
        "## RESPONSE SYNTHESIS TASK",
        context,
        "## INSTRUCTIONS",
        SYNTHESIS_RULES,
    ]
    if action_request:
        parts.append(
            "The user asked for an action. Confirm it only if the matching "
            "capability appears as succeeded above."
        )
    if draft_hint:
        parts.append(f"A preliminary answer was proposed earlier:\n{draft_hint}")
    parts.append("Write the final answer for the user now.")
    return "\n\n".join(parts)


def validation_prompt(user_message: str, draft: str) -> str:
    return f"""## RESPONSE FORMAT VALIDATION TASK

**User's Original Request:** "{user_message}"

**Generated Response:**
{draft}

## VALIDATION CRITERIA
1. Does the response format match what the user asked for (summary vs. detailed list)?
2. Does it only state facts supported by capability results?
3. Is it clear and helpful?

## RESPONSE FORMAT
If the response is acceptable, reply with:
FORMAT_ACCEPTABLE: <one sentence>

Otherwise reply with:
FORMAT_NEEDS_REFINEMENT: <what must change>
"""


def refinement_prompt(context: str, feedback: str) -> str:
    return "\n\n".join(
        [
            "## RESPONSE REFINEMENT TASK",
            context,
            f"**Validation Feedback:**\n{feedback}",
            "## INSTRUCTIONS",
            "The previous answer is listed above as the synthesis entry. "
            "Rewrite it so that every feedback point is addressed.",
            SYNTHESIS_RULES,
            "Write only the improved answer.",
        ]
    )
