from __future__ import annotations

from collections.abc import Mapping
import re


QUICK_INTENTS: tuple[tuple[str, str], ...] = (
    ("Yes", "Confirm and agree"),
    ("No", "Politely decline"),
    ("Schedule", "Schedule a meeting"),
    ("Info?", "Need more information"),
    ("Thanks", "Thank you"),
    ("Forward", "Will forward to right person"),
    ("Follow", "Following up"),
    ("Summary", "Here is a summary"),
    ("Later", "Will respond later"),
)

DEFAULT_PROMPT_TEMPLATE = "\n".join(
    [
        "# EMAIL GENERATION TASK",
        "",
        "## YOUR MISSION",
        "Generate an email response that sounds EXACTLY like the user would write it.",
        "You are writing AS the user, in first person. The recipient must NEVER know AI helped.",
        "",
        "## CONTEXT",
        "Mode: {{mode}}",
        "- Reply: Respond only to the sender",
        "- ReplyAll: Respond to sender and all recipients",
        "- Forward: Add brief intro and forward to new recipients",
        "",
        "Tone: {{tone}}",
        "- Professional: Formal business communication",
        "- Friendly: Warm but professional",
        "- Casual: Relaxed and conversational",
        "- Formal: Very proper and structured",
        "- Humorous: Light and witty while appropriate",
        "",
        "Intent: {{intent}}",
        "- Empty means normal response",
        "- Decline: Politely refuse or say no",
        "- AskFollowUps: Request more information",
        "- Confirm: Acknowledge and agree",
        "- Schedule: Arrange meeting/call",
        "- Thanks: Express gratitude",
        "",
        "## EMAIL THREAD",
        "Subject: {{subject}}",
        "From: {{from}}",
        "To: {{toList}}",
        "Cc: {{ccList}}",
        "",
        "Thread History (most recent last):",
        "{{fullThreadText}}",
        "",
        "## REQUIREMENTS",
        "1. Match the user's writing style from the thread",
        "2. Address ALL points raised in the last message",
        "3. Keep appropriate length (not too short, not too long)",
        "4. Use proper email formatting",
        "5. Include appropriate greeting and sign-off",
        "",
        "## OUTPUT FORMAT",
        "Return ONLY valid JSON with these exact fields:",
        "{",
        '  "body": "Complete email body with greeting and sign-off",',
        '  "subject": "Updated subject if needed, or original",',
        '  "mode": "{{mode}}",',
        '  "safeToSend": true/false (false if potentially problematic)',
        "}",
        "",
        "NO other text outside the JSON!",
    ]
)


_PLACEHOLDER = re.compile(r"\{\{(\w+)\}\}")


def replace_variables(template: str, variables: Mapping[str, object]) -> str:
    """Fills every known placeholder in one pass; substituted text is never rescanned."""

    def _substitute(match: re.Match[str]) -> str:
        name = match.group(1)
        return str(variables[name]) if name in variables else match.group(0)

    return _PLACEHOLDER.sub(_substitute, template)


def build_prompt_variables(
    *,
    mode: str,
    tone: str,
    intent: str,
    subject: str,
    sender: str,
    to: list[str],
    cc: list[str],
    thread_text: str,
) -> dict[str, str]:
    return {
        "mode": mode,
        "tone": tone,
        "intent": intent or "",
        "subject": subject or "",
        "from": sender or "",
        "toList": ", ".join(to),
        "ccList": ", ".join(cc),
        "fullThreadText": thread_text,
    }


def build_compose_prompt(*, mode: str, tone: str, content: str) -> str:
    return "\n".join(
        [
            "Write an email with the following requirements:",
            f"- Mode: {mode}",
            f"- Tone: {tone}",
            f"- Content: {content}",
            "",
            "Generate a complete email with an appropriate subject line.",
            "",
            'Respond with just the email content. Start with "Subject: [your subject]" on the first line, '
            "then a blank line, then the email body.",
        ]
    )


def build_quick_compose_prompt(intent: str) -> str:
    return "\n".join(
        [
            f"Write an email to {intent}.",
            "",
            "Generate a complete, professional email.",
            "",
            'Respond with just the email content. Start with "Subject: [your subject]" on the first line, '
            "then a blank line, then the email body.",
        ]
    )
