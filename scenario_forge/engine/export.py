"""JSON export of finished conversations."""

import json
import logging
from pathlib import Path
from typing import Optional, Union

from .models import ConversationResult

logger = logging.getLogger(__name__)


def save_conversation(result: ConversationResult, output_dir: Union[str, Path]) -> Optional[Path]:
    """Write a conversation as ``conversation_<id>.json`` into ``output_dir``.

    Returns:
        The written file, or None if it couldn't be written
    """
    output_dir = Path(output_dir)
    trace_file = output_dir / f"conversation_{result.conversation_id}.json"
    try:
        output_dir.mkdir(parents=True, exist_ok=True)
        with open(trace_file, "w", encoding="utf-8") as f:
            json.dump(result.to_dict(), f, indent=2, default=str, ensure_ascii=False)
    except OSError as e:
        logger.error(f"Failed to export conversation {result.conversation_id}: {e}")
        return None
    return trace_file
