"""
Versioned prompt and reply templates.

Template text lives in ``<PROMPT_TEMPLATE_DIR>/<PROMPT_TEMPLATE_VERSION>/`` so the
instruction blocks injected into turns can change without touching code.
"""
from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from ..exceptions import ConfigurationError
from ..utils.logging import get_logger

logger = get_logger(__name__)

REPLY_KEYS = ("reset_ack", "technical_error", "unsupported_file", "blocked_fallback")


@dataclass(frozen=True)
class PromptTemplates:
    version: str
    system_prompt: str
    attachment_block: str
    field_instruction: str
    placeholder: str
    retry_phrasings: Tuple[str, ...]
    replies: Dict[str, str]

    def render_attachment_block(self, mime_type: str, excerpt: str) -> str:
        return self.attachment_block.format(mime_type=mime_type, excerpt=excerpt)

    def retry_phrasing(self, attempt: int) -> str:
        """Rephrasing for retry ``attempt`` (1-based), cycling through the fixed set."""
        return self.retry_phrasings[(attempt - 1) % len(self.retry_phrasings)]

    def reply(self, key: str) -> str:
        return self.replies[key]


def _read(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8").strip()
    except FileNotFoundError as e:
        raise ConfigurationError(f"Prompt template not found: {e.filename}")


def load_prompt_templates(config: Dict[str, Any], system_prompt_file: Optional[str] = None) -> PromptTemplates:
    """Load every template for the configured version."""
    version = config.get("PROMPT_TEMPLATE_VERSION", "v1")
    base = Path(config["PROMPT_TEMPLATE_DIR"]) / version

    system_path = Path(system_prompt_file or config.get("PROMPT_FILE") or base / "system.txt")
    phrasings = tuple(
        line.strip() for line in _read(base / "retry_phrasings.txt").splitlines() if line.strip()
    )
    if not phrasings:
        raise ConfigurationError(f"No retry phrasings defined in {base / 'retry_phrasings.txt'}")

    replies = json.loads(_read(base / "replies.json"))
    missing = [k for k in REPLY_KEYS if not replies.get(k)]
    if missing:
        raise ConfigurationError(f"Missing reply templates: {', '.join(missing)}")

    templates = PromptTemplates(
        version=version,
        system_prompt=_read(system_path),
        attachment_block=_read(base / "attachment_block.txt"),
        field_instruction=_read(base / "field_instruction.txt"),
        placeholder=_read(base / "placeholder.txt"),
        retry_phrasings=phrasings,
        replies=replies,
    )
    logger.info(f"✅ Loaded prompt templates {version} from {base}", extra={"subsys": "prompts"})
    return templates
