"""
NoteStudio Backend — Activity Log
===================================

What:  One-line records of user-visible actions (projects saved, drafts
       written, AI calls answered), kept apart from the diagnostic log.
How:   Records go to the `notestudio.activity` logger. setup_logging() in
       main.py attaches a file handler to it when ACTIVITY_LOG_PATH is set.

Record format:
    [SAVE_PROJECT] {"id": "project-1718000000000", "version_count": 4}
"""

import json
import logging
from typing import Any

activity_logger = logging.getLogger("notestudio.activity")


def log_action(action: str, **details: Any) -> None:
    """Writes one activity record. Values that are not JSON-native are stringified."""
    activity_logger.info(
        "[%s] %s",
        action,
        json.dumps(details, ensure_ascii=False, default=str, sort_keys=True),
    )
