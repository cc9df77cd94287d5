"""Instruction text wrapped around a work unit before it goes to an external editor."""

import logging
from typing import Mapping, Optional

from card_workbench.config.models import DEFAULT_INSTRUCTION

logger = logging.getLogger(__name__)

PROMPT_SEPARATOR = "\n\n---\n\n"
DEFAULT_TARGET = "default"


def build_external_prompt(
    target: str,
    content: str,
    instructions: Optional[Mapping[str, str]] = None,
) -> str:
    """
    Prefix a unit's content with the instruction for a named target.

    Args:
        target: Instruction name
        content: The unit's marked-up content
        instructions: Available instructions by name (only the built-in
            ``default`` when omitted)

    Raises:
        ValueError: If the target has no instruction
    """
    if instructions is None:
        instructions = {DEFAULT_TARGET: DEFAULT_INSTRUCTION}

    instruction = instructions.get(target)
    if instruction is None:
        available = ", ".join(sorted(instructions)) or "none"
        raise ValueError(f"Unknown prompt target '{target}' (available: {available})")

    logger.debug(f"Built '{target}' prompt for {len(content)} characters of content")
    return f"{instruction.strip()}{PROMPT_SEPARATOR}{content}"
