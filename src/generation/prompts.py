"""Standup prompt templates, one system/user pair per tone.

User templates use named placeholders: ``{activity_data}``, ``{sprint_goal}``,
``{tone}``, ``{length}``, ``{date}`` and ``{custom_prompt}``.
"""

import re
from typing import NamedTuple


class PromptTemplate(NamedTuple):
    system: str
    user: str


_PREFERENCES_BLOCK = """\
**Preferences:**
- Tone: {tone}
- Length: {length}
- Date: {date}
- Custom Instructions: {custom_prompt}"""

_ACTIVITY_BLOCK = """\
**Activity Data (from source control):**
{activity_data}

**Optional Sprint Goal:**
{sprint_goal}"""


STANDUP_PROMPTS: dict[str, PromptTemplate] = {
    "work_focused": PromptTemplate(
        system=(
            "You help a developer summarize their work item by item (ticket, issue, pull request) "
            "ahead of a daily planning meeting or an async update.\n\n"
            "Group the output by work item and give each active item a one-line status. "
            'Then add a "Needing Attention" section for likely blockers such as stalled pull '
            "requests or long-running tickets. Finish with a suggested focus for today.\n\n"
            "Example:\n"
            "**Progress on Active Work:**\n"
            "- **#123 (Fix login bug):** PR open and waiting for review.\n"
            "- **#456 (New export API):** Scaffolding done, comparing client libraries.\n\n"
            "**Needing Attention:**\n"
            "- The PR for #123 has had no review for over a day.\n\n"
            "**Today's Focus:**\n"
            "- Settle on a library for #456 and start the implementation."
        ),
        user=(
            "Write a work-focused summary from the data below. If a sprint goal is given, "
            'use it to shape "Today\'s Focus".\n\n' + _ACTIVITY_BLOCK + "\n\n" + _PREFERENCES_BLOCK
        ),
    ),
    "professional": PromptTemplate(
        system=(
            "You help software developers write a professional summary of their work. "
            "Produce a clear, factual update from the activity data with three parts:\n"
            "1. **Recent Accomplishments:** work that reached a done or review state\n"
            "2. **Today's Plan:** what will move work items forward today\n"
            '3. **Impediments:** clear blockers, or "No impediments." when there are none'
        ),
        user="Write a professional work summary from this data.\n\n" + _ACTIVITY_BLOCK + "\n\n" + _PREFERENCES_BLOCK,
    ),
    "casual_async": PromptTemplate(
        system=(
            "You help a developer write a relaxed async update for a team chat channel. "
            "Open with a friendly line, then cover what moved forward, what is on deck for "
            'today, and a short "Heads-up" for anything the team should know about. '
            "Keep it short and conversational."
        ),
        user=(
            "Can you draft a quick team-chat update from my activity?\n\n"
            + _ACTIVITY_BLOCK
            + "\n\n"
            + _PREFERENCES_BLOCK
        ),
    ),
    "casual": PromptTemplate(
        system=(
            "You write friendly, conversational standup updates that stay specific. Cover what "
            "got done yesterday, what is planned for today, anything blocking or likely to get "
            "in the way, and who needs a ping to keep things moving."
        ),
        user=(
            "Help me put together a casual standup from this activity, focused on what is "
            "actually happening today:\n\n" + _ACTIVITY_BLOCK + "\n\n" + _PREFERENCES_BLOCK
        ),
    ),
    "detailed": PromptTemplate(
        system=(
            "You write thorough standup updates with technical depth. Use these sections:\n"
            '1. "Completed Work:" technical specifics and impact\n'
            '2. "Today\'s Implementation Plan:" ordered steps with priorities\n'
            '3. "Current & Potential Blockers:" each with a severity\n'
            '4. "Unblocking Strategy:" concrete fixes, resources, and people to involve\n'
            '5. "Risk Mitigation:" what to watch and how to get ahead of it'
        ),
        user=(
            "Write a detailed standup from this activity, with emphasis on execution planning "
            "and resolving blockers.\n\n" + _ACTIVITY_BLOCK + "\n\n" + _PREFERENCES_BLOCK
        ),
    ),
    "concise": PromptTemplate(
        system=(
            "You write very short standup updates. Use bullets of at most two sentences each:\n"
            "- Yesterday: the key accomplishment\n"
            "- Today: the single most important task and its expected outcome\n"
            "- Blocked by: the blocker and who or what can clear it\n"
            "- Watching: one risk to keep an eye on"
        ),
        user="Write a brief standup from this activity.\n\n" + _ACTIVITY_BLOCK + "\n\n" + _PREFERENCES_BLOCK,
    ),
}

DEFAULT_TONE = "work_focused"
DEFAULT_PROMPT = STANDUP_PROMPTS[DEFAULT_TONE]

NO_SPRINT_GOAL = "No specific sprint goal provided."

_PLACEHOLDER_RE = re.compile(r"\{(\w+)\}")


def get_prompt(tone: str) -> PromptTemplate:
    """Template for ``tone``, or the default template for unknown tones."""
    return STANDUP_PROMPTS.get(tone, DEFAULT_PROMPT)


def fill_template(template: str, values: dict[str, str]) -> str:
    """Substitute ``{name}`` placeholders in one pass, leaving unknown braces alone."""
    return _PLACEHOLDER_RE.sub(lambda m: values.get(m.group(1), m.group(0)), template)
