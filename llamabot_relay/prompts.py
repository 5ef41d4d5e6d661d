"""
Agent Prompt Provider

Supplies the system instructions sent with every StatePayload. The host
keeps them in a plain text file so they can be edited without a deploy.
"""

import logging
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_AGENT_PROMPT = "You are LlamaBot, a helpful assistant."


class PromptProvider:
    """Reads (and appends to) the agent prompt file."""

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def text(self) -> str:
        """Current prompt, or the built-in fallback when the file is missing."""
        try:
            return self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return DEFAULT_AGENT_PROMPT

    def add_instruction(self, instruction: str) -> None:
        """Append an instruction on its own line."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self.path.open("a", encoding="utf-8") as f:
            f.write(f"\n{instruction}")
        logger.info(f"Added instruction to agent prompt {self.path}")
