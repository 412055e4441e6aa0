"""Session plumbing: options, check-state guard and user prompts.

The controller lives in :mod:`record_alignment.session.controller`.
"""

from record_alignment.session.guard import CheckState, StateGuard, acquire
from record_alignment.session.options import SessionConfig, parse_options
from record_alignment.session.prompts import ClickPrompter, Prompter, ask_number

__all__ = [
    "CheckState",
    "ClickPrompter",
    "Prompter",
    "SessionConfig",
    "StateGuard",
    "acquire",
    "ask_number",
    "parse_options",
]
