"""Runtime settings for toolpipe.

Settings come from the environment (optionally a ``.env`` file loaded with
python-dotenv) so operators can tweak temp-file placement and logging without
touching Python. Tool definitions themselves are built by the host and are
not read here.
"""

import os

from dotenv import load_dotenv

load_dotenv()

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_list(name: str) -> list[str]:
    value = os.getenv(name, "")
    return [item.strip() for item in value.split(",") if item.strip()]


# Temp files for filename-mode tools: fixed prefix, OS temp dir by default.
TEMP_PREFIX = os.getenv("TOOLPIPE_TEMP_PREFIX", "toolpipe-")
TEMP_DIR = os.getenv("TOOLPIPE_TEMP_DIR") or None

# Resolved parameters are exported to the child as <prefix><NAME>.
PARAM_ENV_PREFIX = os.getenv("TOOLPIPE_PARAM_ENV_PREFIX", "TOOLPIPE_PARAM_")

# Developer mode logs the stderr of every tool run.
DEVELOPER = _env_bool("TOOLPIPE_DEVELOPER", False)

# Logging configuration. Redaction masks the values of tool parameters whose
# name contains one of the listed markers (api_key, auth_token, ...).
LOGGING = {
    "enabled": _env_bool("TOOLPIPE_LOG_ENABLED", True),
    "level": os.getenv("TOOLPIPE_LOG_LEVEL", "WARNING"),
    "console": _env_bool("TOOLPIPE_LOG_CONSOLE", True),
    "file": {
        "enabled": bool(os.getenv("TOOLPIPE_LOG_FILE")),
        "path": os.getenv("TOOLPIPE_LOG_FILE", "logs/toolpipe.log"),
        "max_bytes": int(os.getenv("TOOLPIPE_LOG_MAX_BYTES", str(5 * 1024 * 1024))),
        "backup_count": int(os.getenv("TOOLPIPE_LOG_BACKUP_COUNT", "5")),
    },
    "redact": {
        "enabled": _env_bool("TOOLPIPE_REDACT", True),
        "markers": _env_list("TOOLPIPE_REDACT_MARKERS") or ["key", "token", "secret", "password"],
    },
}
