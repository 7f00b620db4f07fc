from __future__ import annotations

import unittest
from unittest.mock import patch

import numpy as np
import pytesseract

from ocr_types import BBox
from recognizer import RecognitionError, TesseractRecognizer, blocks_from_tsv


def _tsv(rows):
    keys = ("level", "block_num", "par_num", "line_num", "word_num",
            "left", "top", "width", "height", "conf", "text")
    data = {k: [] for k in keys}
    for row in rows:
        for k, v in zip(keys, row):
            data[k].append(v)
    return data


# level, block, par, line, word, left, top, width, height, conf, text
_ROWS = [
    (1, 0, 0, 0, 0, 0, 0, 200, 100, -1, ""),
    (2, 1, 0, 0, 0, 10, 10, 150, 40, -1, ""),
    (4, 1, 1, 1, 0, 10, 10, 120, 15, -1, ""),
    (5, 1, 1, 1, 1, 10, 10, 50, 15, 91, "Result"),
    (5, 1, 1, 1, 2, 70, 12, 60, 14, 88, "121.1"),
    (5, 1, 1, 2, 1, 12, 30, 40, 12, 80, "mg/dL"),
    (5, 1, 1, 2, 2, 60, 30, 5, 12, -1, "  "),
    (5, 2, 1, 1, 1, 100, 70, 30, 12, 95, "GLU"),
]


class TestTsvGrouping(unittest.TestCase):
    def test_blocks_and_lines(self) -> None:
        out = blocks_from_tsv(_tsv(_ROWS))
        self.assertEqual(len(out.blocks), 2)
        self.assertEqual([ln.text for ln in out.blocks[0].lines], ["Result 121.1", "mg/dL"])
        self.assertEqual(out.blocks[0].lines[0].bbox, BBox(10, 10, 130, 26))
        self.assertEqual(out.blocks[1].lines[0].text, "GLU")
        self.assertEqual(out.full_text, "Result 121.1\nmg/dL\nGLU")

    def test_no_words(self) -> None:
        out = blocks_from_tsv(_tsv(_ROWS[:3]))
        self.assertEqual(out.blocks, [])
        self.assertEqual(out.full_text, "")


class TestTesseractRecognizer(unittest.TestCase):
    def test_recognize_uses_image_to_data(self) -> None:
        rec = TesseractRecognizer(psm=7)
        with patch("recognizer.pytesseract.image_to_data", return_value=_tsv(_ROWS)) as m:
            out = rec.recognize(np.zeros((20, 40), np.uint8))
        self.assertIn("--psm 7", m.call_args.kwargs["config"])
        self.assertEqual(out.full_text, "Result 121.1\nmg/dL\nGLU")

    def test_engine_errors_are_wrapped(self) -> None:
        rec = TesseractRecognizer()
        failures = [pytesseract.TesseractError(1, "boom"), RuntimeError("Tesseract process timeout")]
        for exc in failures:
            with patch("recognizer.pytesseract.image_to_data", side_effect=exc):
                with self.assertRaises(RecognitionError):
                    rec.recognize(np.zeros((20, 40), np.uint8))

    def test_empty_image(self) -> None:
        with self.assertRaises(RecognitionError):
            TesseractRecognizer().recognize(np.zeros((0, 40), np.uint8))


if __name__ == "__main__":
    unittest.main()
