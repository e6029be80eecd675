import sys
from collections.abc import Generator
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

import subgen.config as config

_PLAIN_SETTINGS = frozenset({"WHISPER_MODEL", "WHISPER_VAD", "DEFAULT_LANGUAGE"})


@pytest.fixture(autouse=True)
def _isolate_environment(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    """Drops host SUBGEN_* overrides so every test starts from default settings."""
    for name in list(config.os.environ):
        if name.startswith(("SUBGEN_", "OPENVINO_")) or name in _PLAIN_SETTINGS:
            monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr(config, "load_dotenv", lambda *args, **kwargs: False)
    config.reload_settings()
    yield
    config.reload_settings()
