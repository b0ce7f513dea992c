import json
import logging
import sys
from typing import Union

# Felder aus ``extra={...}``, die mit ausgegeben werden
EXTRA_FIELDS = ("request_id", "route", "file_name")


class JsonHandler(logging.StreamHandler):
    def emit(self, record: logging.LogRecord) -> None:
        msg = {
            "level": record.levelname,
            "name": record.name,
            "message": record.getMessage(),
        }
        for key in EXTRA_FIELDS:
            value = getattr(record, key, None)
            if value is not None:
                msg[key] = value
        if record.exc_info:
            msg["exc_info"] = logging.Formatter().formatException(record.exc_info)
        sys.stdout.write(json.dumps(msg, ensure_ascii=False) + "\n")


def setup(level: Union[int, str] = logging.INFO) -> None:
    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)
    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(level)
    root.addHandler(JsonHandler())
