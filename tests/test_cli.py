import io
import json
import os
import sys
import tempfile
import unittest
from contextlib import redirect_stderr, redirect_stdout
from pathlib import Path
from unittest.mock import patch

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))

from recyclo import cli


class CliTests(unittest.TestCase):
    def setUp(self) -> None:
        self._temp = tempfile.TemporaryDirectory()
        self.addCleanup(self._temp.cleanup)
        self.root = Path(os.path.realpath(self._temp.name))
        self.work = self.root / "work"
        self.work.mkdir()
        self.data_home = self.root / "data"
        os.environ["RECYCLO_HOME"] = str(self.root / "state")
        self.addCleanup(os.environ.pop, "RECYCLO_HOME", None)
        mounts = patch("recyclo.trash.directories.list_mount_points", return_value=[])
        mounts.start()
        self.addCleanup(mounts.stop)

    def _run_cli(self, args: list[str]) -> str:
        original_argv = sys.argv
        sys.argv = ["recyclo", "--data-home", str(self.data_home), *args]
        buffer = io.StringIO()
        try:
            with redirect_stdout(buffer), redirect_stderr(io.StringIO()):
                cli.main()
        finally:
            sys.argv = original_argv
        return buffer.getvalue()

    def _note(self, name: str = "note.txt") -> Path:
        path = self.work / name
        path.write_text("hello", encoding="utf-8")
        return path

    def test_put_list_restore(self) -> None:
        path = self._note()
        output = self._run_cli(["put", str(path)])
        self.assertIn("已移至回收桶", output)
        self.assertFalse(path.exists())

        lines = self._run_cli(["list", "--simple", "--trash-location"]).splitlines()
        self.assertEqual(len(lines), 1)
        deleted_at, entry_id, original, location = lines[0].split("\t")
        self.assertEqual(entry_id, "note.txt")
        self.assertEqual(original, str(path))
        self.assertEqual(location, str(self.data_home / "Trash"))

        output = self._run_cli(["restore", entry_id])
        self.assertIn(f"已還原到：{path}", output)
        self.assertEqual(path.read_text(encoding="utf-8"), "hello")
        self.assertIn("回收桶是空的", self._run_cli(["list"]))

    def test_put_reports_failures_with_exit_code(self) -> None:
        good = self._note()
        with self.assertRaises(SystemExit) as ctx:
            self._run_cli(["put", str(good), str(self.work / "missing.txt")])
        self.assertEqual(ctx.exception.code, 1)
        self.assertFalse(good.exists())

    def test_restore_unknown_entry_fails(self) -> None:
        with self.assertRaises(SystemExit) as ctx:
            self._run_cli(["restore", "nothing"])
        self.assertEqual(ctx.exception.code, 1)

    def test_list_sorting(self) -> None:
        for name in ("b.txt", "a.txt", "c.txt"):
            self._run_cli(["put", str(self._note(name))])
        lines = self._run_cli(["list", "--simple", "--sort", "original_path", "--reverse"]).splitlines()
        self.assertEqual([line.split("\t")[1] for line in lines], ["c.txt", "b.txt", "a.txt"])

    def test_empty_dry_run_then_empty(self) -> None:
        self._run_cli(["put", str(self._note())])
        output = self._run_cli(["empty", "--dry-run"])
        self.assertIn("將刪除", output)
        self.assertEqual(len(self._run_cli(["list", "--simple"]).splitlines()), 1)

        output = self._run_cli(["clear"])
        self.assertIn("已刪除 1 個項目", output)
        self.assertEqual(self._run_cli(["list", "--simple"]), "")

        output = self._run_cli(["empty", "--before", "2000-01-01"])
        self.assertIn("已刪除 0 個項目", output)

    def test_invalid_before_is_an_error(self) -> None:
        errors = io.StringIO()
        with patch.object(sys, "argv", ["recyclo", "--data-home", str(self.data_home), "empty", "--before", "last tuesday"]):
            with redirect_stdout(io.StringIO()), redirect_stderr(errors):
                with self.assertRaises(SystemExit) as ctx:
                    cli.main()
        self.assertEqual(ctx.exception.code, 1)
        self.assertIn("時間格式錯誤：last tuesday", errors.getvalue())
        self.assertNotIn("recyclo.log", errors.getvalue())

    def test_remove_and_orphaned(self) -> None:
        self._run_cli(["put", str(self._note())])
        output = self._run_cli(["remove", "note.txt"])
        self.assertIn("已永久刪除：note.txt", output)

        stray = self.data_home / "Trash" / "files" / "stray"
        stray.write_text("?", encoding="utf-8")
        output = self._run_cli(["orphaned"])
        self.assertIn("已刪除 1 個項目", output)
        self.assertFalse(stray.exists())

    def test_list_trashes(self) -> None:
        self.assertIn("目前沒有任何回收桶", self._run_cli(["list-trashes"]))
        self._run_cli(["put", str(self._note())])
        output = self._run_cli(["list-trashes"])
        self.assertIn(str(self.data_home / "Trash"), output)
        self.assertIn("類型：home", output)

    def test_config_commands(self) -> None:
        self.assertIn("已更新設定", self._run_cli(["config", "set", "list.sort", "deleted_at"]))
        self.assertEqual(self._run_cli(["config", "get", "list.sort"]).strip(), "deleted_at")
        output = self._run_cli(["config", "show"])
        self.assertIn("source: global", output)
        self.assertIn("source: default", output)
        with self.assertRaises(SystemExit):
            self._run_cli(["config", "get", "no.such.key"])

    def test_events_are_logged(self) -> None:
        entry = self._note()
        self._run_cli(["put", str(entry)])
        self._run_cli(["remove", "note.txt"])
        log_path = self.root / "state" / "logs" / "events.log"
        events = [json.loads(line)["event"] for line in log_path.read_text(encoding="utf-8").splitlines()]
        self.assertEqual(events, ["trash_put", "trash_remove"])

    def test_parse_before(self) -> None:
        self.assertEqual(cli.parse_before("2024-02-01").isoformat(), "2024-02-01T00:00:00")
        self.assertEqual(cli.parse_before("2024-02-01T10:30:00").hour, 10)
        with self.assertRaises(ValueError):
            cli.parse_before("soon")


if __name__ == "__main__":
    unittest.main()
