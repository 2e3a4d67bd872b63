"""
Header override file loading.

The override file is a JSON object of header names to values. It is re-read
for every request so edits take effect without a restart.
"""

import json
import logging
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


def load_headers_from_file(path: str) -> dict[str, Any]:
    """
    Load override headers.

    Relative paths resolve against the working directory. A missing file,
    invalid JSON or a non-object document yields no overrides.
    """
    if not path:
        return {}

    file_path = Path(path)
    if not file_path.is_absolute():
        file_path = Path.cwd() / file_path
    if not file_path.exists():
        return {}

    try:
        data = json.loads(file_path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        logger.warning("Ignoring unreadable header override file %s: %s", file_path, e)
        return {}

    return data if isinstance(data, dict) else {}
