"""Prompt templates for the assistant.

The assistant proposes commands by emitting `<Terminal>...</Terminal>`
blocks. Nothing inside a block runs until the user approves it (or has
auto-approve engaged); the prompt is guidance, the approval engine is the gate.
"""

from __future__ import annotations


DEFAULT_SYSTEM_PROMPT: str = (
    "You are Shell Agent, an expert SSH and Linux assistant embedded in a terminal manager.\n"
    "You help users understand and manage their remote SSH sessions.\n"
    "When the user shares terminal output, analyse it and provide clear, actionable guidance.\n"
    "Prefer concise answers; use fenced code blocks for commands you merely suggest.\n"
    "\n"
    "To run a command on the user's live remote session, emit it inside a block:\n"
    "<Terminal>command here</Terminal>\n"
    "One command per block. Multiple blocks run in the order you write them, each only after the\n"
    "user approves it. Always explain what a command does before proposing it.\n"
    "After approved commands run you will receive their output and can continue.\n"
    "Prefer safe, read-only commands. Avoid destructive operations unless explicitly requested."
)

# Display prefix for user messages that carry terminal context.
CONTEXT_DISPLAY_PREFIX: str = "[terminal context shared]"

# Question used when the user shares context without typing anything.
CONTEXT_DEFAULT_QUESTION: str = "What's happening here?"


def context_prompt(*, context_lines: list[str] | tuple[str, ...], question: str) -> str:
    """Request text for a message that carries terminal context."""

    context = "\n".join(context_lines)
    return f"Terminal context:\n```\n{context}\n```\n\n{question}"


def command_output_prompt(*, commands: list[str], output_lines: list[str]) -> str:
    ran = "\n".join(f"$ {c}" for c in commands)
    if not any(ln.strip() for ln in output_lines):
        return f"Commands executed:\n{ran}\n\nCommand executed. No output was captured."
    output = "\n".join(output_lines)
    return f"Commands executed:\n{ran}\n\nCommand output:\n```\n{output}\n```"


def declined_prompt(*, commands: list[str]) -> str:
    listed = "\n".join(f"$ {c}" for c in commands)
    return f"User declined to execute the proposed command(s):\n{listed}"
