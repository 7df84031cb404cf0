import logging
from collections import deque
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
import os
import sys
import traceback
from typing import Any, Deque, Dict, List, Optional


class ErrorEngine:
    def __init__(self, log_file: Optional[str] = "logs/ladderbot_errors.log", *, max_errors: int = 200):
        self.logger = logging.getLogger("LadderBotErrorEngine")
        self._errors: Deque[Dict[str, Any]] = deque(maxlen=max_errors)
        if log_file:
            # log directory may not exist on first run
            os.makedirs(os.path.dirname(log_file) or ".", exist_ok=True)
            # one file handler per path, even across several engines
            abs_path = os.path.abspath(log_file)
            has_handler = any(
                isinstance(h, RotatingFileHandler)
                and getattr(h, "baseFilename", None) == abs_path
                for h in self.logger.handlers
            )
            if not has_handler:
                handler = RotatingFileHandler(abs_path, maxBytes=1_000_000, backupCount=5)
                formatter = logging.Formatter('%(asctime)s %(levelname)s %(message)s')
                handler.setFormatter(formatter)
                self.logger.addHandler(handler)
        self.logger.setLevel(logging.ERROR)

    def log_exception(self, exc: BaseException, context: str = ""):
        tb = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
        self._errors.appendleft({
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "context": context,
            "message": str(exc),
            "trace": tb,
        })
        self.logger.error(f"Exception in {context}: {exc}\n{tb}")
        print(f"[LadderBot Error] {exc} in {context}", file=sys.stderr)

    def recent(self, limit: int = 20) -> List[Dict[str, Any]]:
        return list(self._errors)[:limit]

    def catch_uncaught(self):
        def handle_exception(exc_type, exc_value, exc_traceback):
            if issubclass(exc_type, KeyboardInterrupt):
                sys.__excepthook__(exc_type, exc_value, exc_traceback)
                return
            self.log_exception(exc_value, context="Uncaught Exception")
        sys.excepthook = handle_exception
