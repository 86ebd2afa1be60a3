import os
import sys
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))

from recyclo.fs.safety import is_within
from recyclo.fs.transfer import COPY, RENAME, move_path
from recyclo.trash.errors import IncompleteMove, TransferError


class MovePathTests(unittest.TestCase):
    def setUp(self) -> None:
        self._temp = tempfile.TemporaryDirectory()
        self.addCleanup(self._temp.cleanup)
        self.root = os.fsencode(os.path.realpath(self._temp.name))
        self.src_dir = os.path.join(self.root, b"src")
        self.dst_dir = os.path.join(self.root, b"dst")
        os.mkdir(self.src_dir)
        os.mkdir(self.dst_dir)
        # the destination side pretends to be another filesystem
        self.cross_device = lambda path: 2 if is_within(os.path.abspath(path), self.dst_dir) else 1

    def _tree(self) -> bytes:
        tree = os.path.join(self.src_dir, b"project")
        os.makedirs(os.path.join(tree, b"nested"))
        Path(os.fsdecode(os.path.join(tree, b"a.txt"))).write_text("alpha", encoding="utf-8")
        Path(os.fsdecode(os.path.join(tree, b"nested", b"b.bin"))).write_bytes(b"\x00\x01\x02")
        os.symlink(b"a.txt", os.path.join(tree, b"link"))
        return tree

    def test_same_device_renames(self) -> None:
        source = os.path.join(self.src_dir, b"a.txt")
        Path(os.fsdecode(source)).write_text("hello", encoding="utf-8")
        destination = os.path.join(self.dst_dir, b"a.txt")
        self.assertEqual(move_path(source, destination), RENAME)
        self.assertFalse(os.path.lexists(source))
        self.assertEqual(Path(os.fsdecode(destination)).read_text(encoding="utf-8"), "hello")

    def test_cross_device_copies_tree_and_deletes_source(self) -> None:
        tree = self._tree()
        destination = os.path.join(self.dst_dir, b"project")
        self.assertEqual(move_path(tree, destination, device=self.cross_device), COPY)
        self.assertFalse(os.path.lexists(tree))
        self.assertEqual(Path(os.fsdecode(os.path.join(destination, b"a.txt"))).read_text(encoding="utf-8"), "alpha")
        self.assertEqual(Path(os.fsdecode(os.path.join(destination, b"nested", b"b.bin"))).read_bytes(), b"\x00\x01\x02")
        self.assertTrue(os.path.islink(os.path.join(destination, b"link")))
        self.assertEqual(os.readlink(os.path.join(destination, b"link")), b"a.txt")

    def test_cross_device_symlink_stays_a_link(self) -> None:
        link = os.path.join(self.src_dir, b"link")
        os.symlink(b"/nonexistent/target", link)
        destination = os.path.join(self.dst_dir, b"link")
        self.assertEqual(move_path(link, destination, device=self.cross_device), COPY)
        self.assertEqual(os.readlink(destination), b"/nonexistent/target")
        self.assertFalse(os.path.lexists(link))

    def test_existing_destination_is_never_overwritten(self) -> None:
        source = os.path.join(self.src_dir, b"a.txt")
        destination = os.path.join(self.dst_dir, b"a.txt")
        for path in (source, destination):
            Path(os.fsdecode(path)).write_text(os.fsdecode(path), encoding="utf-8")
        with self.assertRaises(FileExistsError):
            move_path(source, destination)
        self.assertEqual(Path(os.fsdecode(destination)).read_text(encoding="utf-8"), os.fsdecode(destination))

    def test_failed_verification_keeps_source_and_discards_copy(self) -> None:
        tree = self._tree()
        destination = os.path.join(self.dst_dir, b"project")
        with patch("recyclo.fs.transfer.verify_copy", side_effect=TransferError("mismatch")):
            with self.assertRaises(TransferError):
                move_path(tree, destination, device=self.cross_device)
        self.assertTrue(os.path.isdir(tree))
        self.assertFalse(os.path.lexists(destination))

    def test_copy_error_is_reported_as_transfer_error(self) -> None:
        source = os.path.join(self.src_dir, b"a.txt")
        Path(os.fsdecode(source)).write_text("hello", encoding="utf-8")
        destination = os.path.join(self.dst_dir, b"a.txt")
        with patch("recyclo.fs.transfer.copy_entry", side_effect=OSError(28, "No space left on device")):
            with self.assertRaises(TransferError):
                move_path(source, destination, device=self.cross_device)
        self.assertTrue(os.path.exists(source))
        self.assertFalse(os.path.lexists(destination))

    def test_verified_copy_is_kept_when_source_cannot_be_deleted(self) -> None:
        tree = self._tree()
        destination = os.path.join(self.dst_dir, b"project")
        with patch("recyclo.fs.transfer.remove_entry", side_effect=OSError(13, "Permission denied")):
            with self.assertRaises(IncompleteMove) as ctx:
                move_path(tree, destination, device=self.cross_device)
        self.assertEqual(ctx.exception.path, tree)
        self.assertTrue(os.path.isdir(tree))
        self.assertEqual(
            Path(os.fsdecode(os.path.join(destination, b"a.txt"))).read_text(encoding="utf-8"),
            "alpha",
        )

    def test_rename_exdev_falls_back_to_copy(self) -> None:
        source = os.path.join(self.src_dir, b"a.txt")
        Path(os.fsdecode(source)).write_text("hello", encoding="utf-8")
        destination = os.path.join(self.dst_dir, b"a.txt")
        with patch("recyclo.fs.transfer.os.rename", side_effect=OSError(18, "Invalid cross-device link")):
            self.assertEqual(move_path(source, destination), COPY)
        self.assertFalse(os.path.lexists(source))
        self.assertEqual(Path(os.fsdecode(destination)).read_text(encoding="utf-8"), "hello")


if __name__ == "__main__":
    unittest.main()
