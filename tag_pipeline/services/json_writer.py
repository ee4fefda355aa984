import json
import math
from pathlib import Path

from ..errors import OutputWriteError


class JsonWriter:
    """Write one complete JSON document, replacing whatever is at the path."""

    def __init__(self, json_path: str, indent=None):
        self.json_path = json_path
        self.indent = indent

    def _check(self, value):
        if isinstance(value, float) and not math.isfinite(value):
            raise OutputWriteError(f"non-finite number in output: {value}")
        if isinstance(value, dict):
            for v in value.values():
                self._check(v)
        elif isinstance(value, (list, tuple)):
            for v in value:
                self._check(v)

    def write(self, document) -> str:
        self._check(document)
        path = Path(self.json_path)
        try:
            text = json.dumps(document, indent=self.indent, allow_nan=False)
            path.write_text(text, encoding="utf-8")
        except (OSError, TypeError, ValueError) as exc:
            raise OutputWriteError(f"cannot write {path}: {exc}") from exc
        return str(path)
