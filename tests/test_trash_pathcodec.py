import sys
import unittest
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))

from recyclo.trash.errors import MalformedEntry
from recyclo.trash.pathcodec import decode_path, encode_path


class PathCodecTests(unittest.TestCase):
    def test_encode_keeps_slashes_and_escapes_the_rest(self) -> None:
        self.assertEqual(encode_path(b"/home/user/a b.txt"), "/home/user/a%20b.txt")
        self.assertEqual(encode_path(b"/tmp/caf\xc3\xa9"), "/tmp/caf%C3%A9")
        self.assertEqual(encode_path(b"/tmp/100%"), "/tmp/100%25")

    def test_non_utf8_bytes_survive(self) -> None:
        raw = b"/tmp/\xff\xfe name"
        encoded = encode_path(raw)
        self.assertTrue(encoded.isascii())
        self.assertEqual(decode_path(encoded), raw)

    def test_every_segment_byte_round_trips(self) -> None:
        segment = bytes(b for b in range(1, 256) if b != 0x2F)
        encoded = encode_path(b"/" + segment)
        self.assertTrue(encoded.isascii())
        self.assertNotIn("\n", encoded)
        self.assertEqual(decode_path(encoded), b"/" + segment)

    def test_each_byte_round_trips_as_its_own_segment(self) -> None:
        for value in range(1, 256):
            if value == 0x2F:
                continue
            raw = b"/tmp/" + bytes([value]) + b"/end"
            with self.subTest(byte=hex(value)):
                encoded = encode_path(raw)
                self.assertTrue(encoded.isprintable())
                self.assertEqual(decode_path(encoded), raw)

    def test_reserved_characters_are_escaped(self) -> None:
        self.assertEqual(encode_path(b"/a\nb"), "/a%0Ab")
        self.assertEqual(encode_path(b"/a=b[c]"), "/a%3Db%5Bc%5D")
        self.assertEqual(decode_path("/tmp/100%25"), b"/tmp/100%")

    def test_decode_accepts_unescaped_utf8(self) -> None:
        self.assertEqual(decode_path("/tmp/café"), b"/tmp/caf\xc3\xa9")
        self.assertEqual(decode_path("/tmp/caf%c3%a9"), b"/tmp/caf\xc3\xa9")

    def test_decode_rejects_broken_escapes(self) -> None:
        for text in ("/tmp/100%", "/tmp/%zz", "/tmp/%4"):
            with self.subTest(text=text):
                with self.assertRaises(MalformedEntry):
                    decode_path(text)

    def test_decode_rejects_nul_and_control_characters(self) -> None:
        with self.assertRaises(MalformedEntry):
            decode_path("/tmp/a%00b")
        with self.assertRaises(MalformedEntry):
            decode_path("/tmp/a\tb")

    def test_encode_rejects_nul(self) -> None:
        with self.assertRaises(ValueError):
            encode_path(b"/tmp/a\x00b")


if __name__ == "__main__":
    unittest.main()
