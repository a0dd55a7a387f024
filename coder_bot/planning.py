"""Detect planning requests and plan approvals in user prompts.

Planning mode lets the user review an implementation plan before the agent
touches the workspace. Detection is plain pattern matching: it will misfire on
some phrasings (a short "ok" always reads as approval) and that is accepted.
"""

import re

from coder_bot.instructions import InstructionLoader

# Approval only counts for short replies; longer messages are usually edits.
APPROVAL_MAX_WORDS = 5

_PLANNING_PATTERNS: list[re.Pattern[str]] = [
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"\bplan\s*(this\s+)?(first|out|it)\b",
        r"\bcreate\s+(a\s+)?plan\b",
        r"\boutline\s+(the\s+)?(approach|steps|plan)\b",
        r"\bwhat('s|\s+is)\s+your\s+plan\b",
        r"\bshow\s+(me\s+)?(the\s+)?plan\b",
        r"\bbefore\s+(you\s+)?(start|begin|code|implement)",
        r"\bplan\s+before\b",
        r"\bwalk\s+me\s+through\b",
        r"\blet('s|us)\s+(see|review)\s+(the\s+)?plan\b",
        r"\bstep[- ]by[- ]step\s+plan\b",
        r"\bplanning\s+phase\b",
        r"\bplanning\s+mode\b",
    )
]

_APPROVAL_PATTERNS: list[re.Pattern[str]] = [
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"\b(looks?\s+good|lgtm)\b",
        r"\b(proceed|go\s+ahead|approved?|continue)\b",
        r"\b(yes|yep|yeah|yup|sure|ok|okay)\b",
        r"\bdo\s+it\b",
        r"\bstart\s+(building|coding|implementing|working)\b",
        r"\bbegin\b",
        r"\bexecute\s+(the\s+)?plan\b",
        r"\bship\s+it\b",
        r"\blet('s|us)\s+(go|do\s+it|start)\b",
        r"\bmake\s+it\s+(so|happen)\b",
    )
]

PLANNING_INSTRUCTIONS = InstructionLoader().load("planning_instructions.md")


def is_planning_request(prompt: str) -> bool:
    """Return True when the prompt asks for a plan before execution.

    >>> is_planning_request("Create a todo app, but plan it out first")
    True
    >>> is_planning_request("Build me a calculator")
    False
    """
    text = str(prompt or "")
    return any(pattern.search(text) for pattern in _PLANNING_PATTERNS)


def is_plan_approval(prompt: str) -> bool:
    """Return True when a short prompt approves a previously presented plan."""
    text = str(prompt or "").strip()
    if not text or len(text.split()) > APPROVAL_MAX_WORDS:
        return False
    return any(pattern.search(text) for pattern in _APPROVAL_PATTERNS)
