import sys

from ladder_bot.core.error_engine import ErrorEngine


def _reset_logger(engine: ErrorEngine):
    for handler in list(engine.logger.handlers):
        handler.close()
        engine.logger.removeHandler(handler)


def test_log_exception_persists_and_prints(tmp_path, capsys):
    log_file = tmp_path / "errors.log"
    engine = ErrorEngine(log_file=str(log_file))

    try:
        engine.log_exception(ValueError("boom"), context="ladder-poll")
    finally:
        _reset_logger(engine)

    captured = capsys.readouterr()
    assert "ladder-poll" in captured.err
    assert "boom" in log_file.read_text()


def test_recent_keeps_newest_first_and_is_bounded(capsys):
    engine = ErrorEngine(log_file=None, max_errors=2)
    for n in range(3):
        engine.log_exception(RuntimeError(f"error {n}"), context="tick")
    assert [e["message"] for e in engine.recent()] == ["error 2", "error 1"]
    assert engine.recent(1)[0]["context"] == "tick"


def test_catch_uncaught_installs_hook(tmp_path):
    engine = ErrorEngine(log_file=str(tmp_path / "errors.log"))
    calls = []

    def fake_log(exc, context=""):
        calls.append((exc, context))

    engine.log_exception = fake_log  # type: ignore[attr-defined]

    original = sys.excepthook
    engine.catch_uncaught()
    try:
        sys.excepthook(RuntimeError, RuntimeError("failure"), None)
    finally:
        sys.excepthook = original
        _reset_logger(engine)

    assert calls and calls[0][1] == "Uncaught Exception"


def test_tracker_timer_errors_reach_engine(tracker):
    engine = ErrorEngine(log_file=None)
    tracker._error_engine = engine
    tracker._log_error(ValueError("bad tick"), "ladder-poll")
    assert engine.recent()[0]["context"] == "ladder-poll"
