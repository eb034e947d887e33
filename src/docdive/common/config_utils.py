"""Expansion of ${NAME} placeholders in configured paths."""

import os
import re
import tempfile
from pathlib import Path
from typing import Callable, Dict

import platformdirs

APP_NAME = "docdive"

_PLACEHOLDER_RE = re.compile(r'\$\{([A-Za-z_][A-Za-z0-9_]*)\}')

# Placeholder name -> resolver
PATH_VARIABLES: Dict[str, Callable[[], str]] = {
    "USER_HOME": lambda: str(Path.home()),
    "USER_DATA": lambda: platformdirs.user_data_dir(APP_NAME, appauthor=False),
    "USER_CONFIG": lambda: platformdirs.user_config_dir(APP_NAME, appauthor=False),
    "USER_CACHE": lambda: platformdirs.user_cache_dir(APP_NAME, appauthor=False),
    "TEMP": tempfile.gettempdir,
}


def expand_path_variables(path: str) -> str:
    """Expand ${NAME} placeholders in a configured path.

    Names in PATH_VARIABLES resolve to platform directories (${TEMP} is
    the system temp directory); any other name is looked up in the
    environment. Names found in neither are left in place, so a typo
    shows up in the resulting path instead of silently vanishing.

    Args:
        path: Path string with placeholders

    Returns:
        Expanded path string
    """
    if not isinstance(path, str):
        return path

    def replace(match: re.Match) -> str:
        name = match.group(1)
        if name in PATH_VARIABLES:
            return PATH_VARIABLES[name]()
        return os.environ.get(name, match.group(0))

    return _PLACEHOLDER_RE.sub(replace, path)
