"""Command line interface for recyclo."""

from __future__ import annotations

import argparse
import os
import sys
from datetime import datetime
from pathlib import Path
from typing import Any

import yaml

from .config import SORT_KEYS, ConfigLoader, get_config_value, resolve_state_dir
from .logging_utils import setup_logger
from .trash.engine import TrashEngine
from .trash.errors import Ambiguous, TrashError
from .trash.models import ClearReport, TrashEntry

DISPLAY_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="recyclo", description="recyclo 回收桶工具（FreeDesktop.org Trash 規格）")
    parser.add_argument(
        "--config-dir",
        default=None,
        help="指定設定資料夾位置（預設 $XDG_CONFIG_HOME/recyclo）",
    )
    parser.add_argument(
        "--data-home",
        default=None,
        help="覆寫 $XDG_DATA_HOME（家目錄回收桶位於其下的 Trash）",
    )
    parser.add_argument("--log-level", default=None, help="終端日誌等級（例如 INFO、DEBUG）")

    subparsers = parser.add_subparsers(dest="command")

    put_parser = subparsers.add_parser("put", help="將檔案或資料夾移到回收桶")
    put_parser.add_argument("paths", nargs="+", help="要刪除的路徑")

    list_parser = subparsers.add_parser("list", help="列出回收桶內容")
    list_parser.add_argument("--sort", choices=SORT_KEYS, default=None, help="排序欄位")
    list_parser.add_argument("--reverse", action="store_true", help="反向排序")
    list_parser.add_argument("--simple", action="store_true", help="以 tab 分隔輸出，方便腳本處理")
    list_parser.add_argument("--trash-location", action="store_true", help="顯示所在的回收桶")

    for name, help_text in (("restore", "還原回收桶項目"), ("remove", "永久刪除回收桶項目")):
        entry_parser = subparsers.add_parser(name, help=help_text)
        entry_parser.add_argument("key", help="項目 ID 或原始路徑")
        entry_parser.add_argument("--trash-dir", default=None, help="只在指定的回收桶中尋找")
        entry_parser.add_argument("--strict", action="store_true", help="ID 出現在多個回收桶時視為錯誤")

    for name, help_text in (("empty", "清空回收桶"), ("clear", "清空回收桶（同 empty）")):
        empty_parser = subparsers.add_parser(name, help=help_text)
        empty_parser.add_argument("--before", default=None, help="只刪除此時間之前刪除的項目（YYYY-MM-DD 或 ISO 時間）")
        empty_parser.add_argument("--dry-run", action="store_true", help="只列出將刪除的項目")

    orphaned_parser = subparsers.add_parser("orphaned", help="清除缺少另一半的孤立項目")
    orphaned_parser.add_argument("--dry-run", action="store_true", help="只列出將刪除的項目")

    subparsers.add_parser("list-trashes", help="列出所有回收桶資料夾")

    config_parser = subparsers.add_parser("config", help="設定管理")
    config_sub = config_parser.add_subparsers(dest="config_command")

    config_get = config_sub.add_parser("get", help="讀取設定")
    config_get.add_argument("key", help="設定鍵（例如 trash.home_fallback）")

    config_set = config_sub.add_parser("set", help="更新設定")
    config_set.add_argument("key", help="設定鍵（例如 trash.home_fallback）")
    config_set.add_argument("value", help="設定值（會以 YAML 解析）")

    config_sub.add_parser("show", help="顯示有效設定與來源")

    return parser


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return

    loader = ConfigLoader(config_dir=Path(args.config_dir).expanduser() if args.config_dir else None)
    log_dir = resolve_state_dir() / "logs"
    try:
        config = loader.resolve(cli_overrides=_cli_overrides(args)).effective
    except RuntimeError as exc:
        print(str(exc), file=sys.stderr)
        sys.exit(1)
    logger = setup_logger("recyclo", log_dir, level=args.log_level or config["logging"]["level"])

    try:
        if args.command == "config":
            _handle_config(loader, args)
            return
        engine = TrashEngine.from_config(config)
        if args.command == "put":
            failed = _handle_put(engine, args)
        elif args.command == "list":
            failed = _handle_list(engine, args, config)
        elif args.command in {"restore", "remove"}:
            failed = _handle_entry(engine, args)
        elif args.command in {"empty", "clear"}:
            failed = _handle_empty(engine, args)
        elif args.command == "orphaned":
            failed = _print_report(engine.purge_orphans(dry_run=args.dry_run), args.dry_run)
        elif args.command == "list-trashes":
            failed = _handle_list_trashes(engine)
        else:
            parser.print_help()
            return
    except Exception as exc:  # noqa: BLE001
        logger.error("執行失敗：%s", exc, exc_info=True)
        print(f"發生錯誤，請查看 {log_dir / 'recyclo.log'} 取得詳細資訊。", file=sys.stderr)
        sys.exit(1)
    if failed:
        sys.exit(1)


def _printable(value: str | bytes) -> str:
    # undecodable filename bytes would make print() raise on a UTF-8 terminal
    return os.fsencode(value).decode("utf-8", "backslashreplace")


def _cli_overrides(args: argparse.Namespace) -> dict[str, Any]:
    overrides: dict[str, Any] = {}
    if args.data_home:
        overrides["recyclo"] = {"data_home": args.data_home}
    return overrides


def _handle_put(engine: TrashEngine, args: argparse.Namespace) -> bool:
    failed = False
    for outcome in engine.put_many(args.paths):
        if outcome.ok:
            print(f"已移至回收桶：{_printable(outcome.path)}（ID：{_printable(outcome.entry_id)}）")
        else:
            failed = True
            print(f"無法移至回收桶：{_printable(outcome.path)}：{outcome.error}", file=sys.stderr)
    return failed


def _sort_key(sort: str):
    if sort == "deleted_at":
        return lambda entry: (entry.deleted_at, entry.original_path)
    if sort == "trash":
        return lambda entry: (entry.trash_dir.path, entry.original_path)
    return lambda entry: (entry.original_path, entry.deleted_at)


def _handle_list(engine: TrashEngine, args: argparse.Namespace, config: dict[str, Any]) -> bool:
    listing = engine.list()
    sort = args.sort or config["list"]["sort"]
    entries = sorted(listing.entries, key=_sort_key(sort), reverse=args.reverse)
    if not args.simple and not entries and not listing.orphans:
        print("回收桶是空的。")
    for entry in entries:
        print(_format_entry(entry, args.simple, args.trash_location))
    for orphan in listing.orphans:
        label = "缺少檔案" if orphan.missing == "files" else "缺少 trashinfo"
        print(f"孤立項目（{label}）：{_printable(orphan.present_path)}", file=sys.stderr)
    for problem in listing.problems:
        print(f"無法讀取：{problem.message}", file=sys.stderr)
    return False


def _format_entry(entry: TrashEntry, simple: bool, trash_location: bool) -> str:
    fields = [entry.deleted_at.strftime(DISPLAY_DATE_FORMAT), _printable(entry.entry_id), _printable(entry.display_path)]
    if trash_location:
        fields.append(_printable(entry.trash_dir.display_path))
    if simple:
        return "\t".join(fields)
    return "｜".join(fields)


def _handle_entry(engine: TrashEngine, args: argparse.Namespace) -> bool:
    try:
        if args.command == "restore":
            entry = engine.restore(args.key, trash_dir=args.trash_dir, strict=args.strict)
            print(f"已還原到：{_printable(entry.display_path)}")
        else:
            result = engine.remove(args.key, trash_dir=args.trash_dir, strict=args.strict)
            print(f"已永久刪除：{_printable(result.entry_id)}")
            if result.note:
                print(result.note)
    except Ambiguous as exc:
        print(str(exc), file=sys.stderr)
        for candidate in exc.candidates:
            print(f"  {candidate}", file=sys.stderr)
        return True
    except (TrashError, ValueError, OSError) as exc:
        print(str(exc), file=sys.stderr)
        return True
    return False


def _handle_empty(engine: TrashEngine, args: argparse.Namespace) -> bool:
    try:
        before = parse_before(args.before) if args.before else None
    except ValueError as exc:
        print(str(exc), file=sys.stderr)
        return True
    return _print_report(engine.empty(before=before, dry_run=args.dry_run), args.dry_run)


def parse_before(text: str) -> datetime:
    """A date (midnight) or an ISO datetime, as naive local time."""
    try:
        value = datetime.fromisoformat(text)
    except ValueError as exc:
        raise ValueError(f"時間格式錯誤：{text}") from exc
    if value.tzinfo is not None:
        value = value.astimezone().replace(tzinfo=None)
    return value


def _print_report(report: ClearReport, dry_run: bool) -> bool:
    if dry_run:
        for label in report.planned:
            print(f"將刪除：{label}")
        print(f"共 {len(report.planned)} 個項目（未實際刪除）")
    else:
        print(f"已刪除 {len(report.removed)} 個項目")
    for label, error in report.failures:
        print(f"刪除失敗：{label}：{error}", file=sys.stderr)
    return not report.ok


def _handle_list_trashes(engine: TrashEngine) -> bool:
    trash_dirs = engine.list_trashes()
    if not trash_dirs:
        print("目前沒有任何回收桶。")
        return False
    for trash_dir in trash_dirs:
        print(
            "｜".join(
                [
                    trash_dir.display_path,
                    f"類型：{trash_dir.kind}",
                    f"根目錄：{os.fsdecode(trash_dir.topdir)}",
                    f"裝置：{trash_dir.device}",
                    f"存在：{'是' if trash_dir.exists() else '否'}",
                ]
            )
        )
    return False


def _handle_config(loader: ConfigLoader, args: argparse.Namespace) -> None:
    if args.config_command == "get":
        value = get_config_value(loader.resolve().effective, args.key)
        print(value)
        return
    if args.config_command == "set":
        try:
            parsed_value = yaml.safe_load(args.value)
        except yaml.YAMLError as exc:
            raise ValueError("設定值格式錯誤") from exc
        loader.set_value(args.key, parsed_value)
        print("已更新設定")
        return
    if args.config_command == "show":
        resolution = loader.resolve()
        print(yaml.safe_dump(resolution.annotated(), allow_unicode=True, sort_keys=False))
        return
    raise ValueError("請指定 config 指令")


if __name__ == "__main__":
    main()
