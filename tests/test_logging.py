import json
import logging
import os
import sys
import tempfile
import unittest
from datetime import datetime
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))

from recyclo.logging import log_event
from recyclo.logging_utils import JsonFormatter, _coerce_level, setup_logger


class LoggingTests(unittest.TestCase):
    def test_log_event_appends_jsonl(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            os.environ["RECYCLO_HOME"] = temp_dir
            try:
                log_event({"event": "trash_put", "entry_id": "note.txt", "original_path": b"/tmp/caf\xe9"})
                log_event({"event": "trash_remove", "entry_id": os.fsdecode(b"caf\xe9")})
            finally:
                os.environ.pop("RECYCLO_HOME", None)

            log_path = Path(temp_dir) / "logs" / "events.log"
            payloads = [json.loads(line) for line in log_path.read_text(encoding="utf-8").splitlines()]
            self.assertEqual([payload["event"] for payload in payloads], ["trash_put", "trash_remove"])
            self.assertEqual(payloads[0]["original_path"], "/tmp/caf\\xe9")
            self.assertEqual(payloads[1]["entry_id"], "caf\\xe9")
            self.assertEqual(payloads[0]["level"], "INFO")
            parsed_ts = datetime.fromisoformat(payloads[0]["ts"])
            self.assertIsNotNone(parsed_ts.tzinfo)

    def test_log_event_failure_only_warns(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            blocker = Path(temp_dir) / "not-a-dir"
            blocker.write_text("", encoding="utf-8")
            os.environ["RECYCLO_HOME"] = str(blocker)
            try:
                with self.assertLogs("recyclo.logging", level="WARNING"):
                    log_event({"event": "trash_put"})
            finally:
                os.environ.pop("RECYCLO_HOME", None)

    def test_setup_logger_writes_json_file(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            logger = setup_logger("recyclo-test-setup", Path(temp_dir) / "logs")
            try:
                self.assertIs(setup_logger("recyclo-test-setup", Path(temp_dir)), logger)
                self.assertEqual(len(logger.handlers), 2)
                logger.info("已移至回收桶：%s", "note.txt")
                for handler in logger.handlers:
                    handler.flush()
                lines = (Path(temp_dir) / "logs" / "recyclo.log").read_text(encoding="utf-8").splitlines()
                payload = json.loads(lines[-1])
                self.assertEqual(payload["level"], "INFO")
                self.assertEqual(payload["logger"], "recyclo-test-setup")
                self.assertEqual(payload["message"], "已移至回收桶：note.txt")
            finally:
                for handler in list(logger.handlers):
                    handler.close()
                    logger.removeHandler(handler)

    def test_json_formatter_includes_exception(self) -> None:
        try:
            raise RuntimeError("boom")
        except RuntimeError:
            record = logging.LogRecord("recyclo", logging.ERROR, __file__, 1, "failed", None, sys.exc_info())
        payload = json.loads(JsonFormatter().format(record))
        self.assertIn("RuntimeError: boom", payload["exc_info"])

    def test_coerce_level(self) -> None:
        self.assertEqual(_coerce_level("debug"), logging.DEBUG)
        self.assertEqual(_coerce_level(logging.ERROR), logging.ERROR)
        self.assertEqual(_coerce_level("bogus"), logging.WARNING)


if __name__ == "__main__":
    unittest.main()
