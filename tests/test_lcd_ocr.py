from __future__ import annotations

import tempfile
import unittest
from pathlib import Path
from typing import List, Union

import cv2
import numpy as np

import lcd_ocr
from lcd_ocr import MgDlOcrEngine, strip_bounds
from ocr_types import (BBox, DeviceFamily, RecognitionOutput, RecognizedBlock,
                       RecognizedLine, TestType)
from recognizer import RecognitionError, Recognizer

Scripted = Union[str, RecognitionOutput, Exception]


class _FakeRecognizer(Recognizer):
    """Replays scripted outputs in call order and records what it was shown."""

    def __init__(self, script: List[Scripted]):
        self.script = list(script)
        self.seen_shapes: List[tuple] = []
        self.closed = False

    def recognize(self, image: np.ndarray) -> RecognitionOutput:
        self.seen_shapes.append(image.shape)
        item = self.script.pop(0) if self.script else ""
        if isinstance(item, Exception):
            raise item
        if isinstance(item, RecognitionOutput):
            return item
        lines = [RecognizedLine(text=t) for t in item.splitlines() if t]
        return RecognitionOutput(full_text=item, blocks=[RecognizedBlock(lines=lines)] if lines else [])

    def close(self) -> None:
        self.closed = True


def _dark_image(h: int = 100, w: int = 60) -> np.ndarray:
    return np.full((h, w), 40, np.uint8)


def _light_image(h: int = 60, w: int = 80) -> np.ndarray:
    rng = np.random.default_rng(7)
    return rng.integers(0, 256, size=(h, w, 3), dtype=np.uint8)


class TestStripBounds(unittest.TestCase):
    def test_even_split(self) -> None:
        self.assertEqual(strip_bounds(100, 5), [(0, 20), (20, 40), (40, 60), (60, 80), (80, 100)])

    def test_last_strip_absorbs_remainder(self) -> None:
        bounds = strip_bounds(103, 5)
        self.assertEqual(bounds[-1], (80, 103))
        # contiguous, no gap or overlap
        for (_, bottom), (top, _) in zip(bounds, bounds[1:]):
            self.assertEqual(bottom, top)
        self.assertEqual(bounds[0][0], 0)

    def test_invalid_count(self) -> None:
        with self.assertRaises(ValueError):
            strip_bounds(100, 0)


class TestStripAssembly(unittest.TestCase):
    def test_one_call_per_strip_in_order(self) -> None:
        rec = _FakeRecognizer([f"band{i}" for i in range(5)])
        engine = MgDlOcrEngine(DeviceFamily.DARK_PANEL, recognizer=rec)
        result, text = engine.process(_dark_image(h=103))
        self.assertIsNone(result)
        self.assertEqual(text, "band0\nband1\nband2\nband3\nband4")
        self.assertEqual([s[0] for s in rec.seen_shapes], [20, 20, 20, 20, 23])

    def test_value_in_middle_strip(self) -> None:
        rec = _FakeRecognizer(["", "", "Result: 118 mg/dL", "", ""])
        engine = MgDlOcrEngine(DeviceFamily.DARK_PANEL, recognizer=rec)
        result, text = engine.process(_dark_image())
        self.assertEqual(len(rec.seen_shapes), 5)
        self.assertEqual(text, "Result: 118 mg/dL")
        self.assertIsNotNone(result)
        self.assertEqual(result.value, 118.0)
        self.assertGreaterEqual(result.confidence, 0.9)
        self.assertEqual(result.bbox, BBox(0, 40, 60, 60))
        self.assertEqual(len(result.strip_results), 1)
        self.assertEqual(result.strip_results[0].index, 2)

    def test_topmost_value_wins(self) -> None:
        rec = _FakeRecognizer(["GLU", "250 mg/dL", "", "99 mg/dL", ""])
        result, _ = MgDlOcrEngine(DeviceFamily.DARK_PANEL, recognizer=rec).process(_dark_image())
        self.assertEqual(result.value, 250.0)
        self.assertEqual(result.bbox, BBox(0, 20, 60, 40))
        self.assertEqual([s.index for s in result.strip_results], [0, 1, 3])

    def test_strip_failure_is_empty_text(self) -> None:
        rec = _FakeRecognizer(["GLU", RecognitionError("engine down"), "", "95 mg/dL", ""])
        result, text = MgDlOcrEngine(DeviceFamily.DARK_PANEL, recognizer=rec).process(_dark_image())
        self.assertEqual(len(rec.seen_shapes), 5)
        self.assertEqual(text, "GLU\n95 mg/dL")
        self.assertEqual(result.value, 95.0)

    def test_combined_text_fallback(self) -> None:
        rec = _FakeRecognizer(["Result 121", "mg/dL", "", "", ""])
        result, text = MgDlOcrEngine(DeviceFamily.DARK_PANEL, recognizer=rec).process(_dark_image())
        self.assertEqual(text, "Result 121\nmg/dL")
        self.assertEqual(result.value, 121.0)
        self.assertIsNone(result.bbox)
        self.assertEqual(result.raw_text, text)

    def test_rejected_strip_falls_back_to_combined(self) -> None:
        rec = _FakeRecognizer(["118 mgdi", "Result 118 mg/dL", "", "", ""])
        result, _ = MgDlOcrEngine(DeviceFamily.DARK_PANEL, recognizer=rec).process(_dark_image())
        self.assertEqual(result.value, 118.0)
        self.assertIsNone(result.bbox)

    def test_nothing_found_keeps_text(self) -> None:
        rec = _FakeRecognizer(["glucose 0 mg/dl", "", "", "", ""])
        result, text = MgDlOcrEngine(DeviceFamily.DARK_PANEL, recognizer=rec).process(_dark_image())
        self.assertIsNone(result)
        self.assertEqual(text, "glucose 0 mg/dl")

    def test_custom_strip_count(self) -> None:
        rec = _FakeRecognizer([])
        MgDlOcrEngine(DeviceFamily.DARK_PANEL, recognizer=rec, strip_count=3).process(_dark_image(h=90))
        self.assertEqual(len(rec.seen_shapes), 3)


class TestSingleShot(unittest.TestCase):
    def test_light_panel_uses_one_call(self) -> None:
        out = RecognitionOutput(
            full_text="GLU\nResult: 97 mg/dL",
            blocks=[RecognizedBlock(lines=[RecognizedLine("GLU"),
                                           RecognizedLine("Result: 97 mg/dL", BBox(5, 30, 70, 45))])],
        )
        rec = _FakeRecognizer([out])
        engine = MgDlOcrEngine(DeviceFamily.LIGHT_PANEL, recognizer=rec)
        result, text = engine.process(_light_image())
        self.assertEqual(len(rec.seen_shapes), 1)
        self.assertEqual(rec.seen_shapes[0], (60, 80))
        self.assertEqual(text, out.full_text)
        self.assertEqual(result.value, 97.0)
        self.assertEqual(result.bbox, BBox(5, 30, 70, 45))
        self.assertIsNone(result.strip_results)

    def test_dark_panel_without_strips(self) -> None:
        rec = _FakeRecognizer(["Result: 118 mg/dL"])
        engine = MgDlOcrEngine(DeviceFamily.DARK_PANEL, recognizer=rec, use_strip_processing=False)
        result, _ = engine.process(_dark_image())
        self.assertEqual(len(rec.seen_shapes), 1)
        self.assertEqual(result.value, 118.0)

    def test_engine_failure_propagates(self) -> None:
        rec = _FakeRecognizer([RecognitionError("engine down")])
        engine = MgDlOcrEngine(DeviceFamily.LIGHT_PANEL, recognizer=rec)
        with self.assertRaises(RecognitionError):
            engine.process(_light_image())

    def test_low_confidence_is_no_result(self) -> None:
        rec = _FakeRecognizer(["glucose 0 mg/dl"])
        result, text = MgDlOcrEngine(DeviceFamily.LIGHT_PANEL, recognizer=rec).process(_light_image())
        self.assertIsNone(result)
        self.assertEqual(text, "glucose 0 mg/dl")


class TestEngineLifecycle(unittest.TestCase):
    def test_injected_recognizer_is_not_closed(self) -> None:
        rec = _FakeRecognizer([])
        with MgDlOcrEngine(DeviceFamily.DARK_PANEL, recognizer=rec):
            pass
        self.assertFalse(rec.closed)

    def test_owned_recognizer_is_closed(self) -> None:
        rec = _FakeRecognizer([])
        with MgDlOcrEngine(DeviceFamily.DARK_PANEL, recognizer=rec, owns_recognizer=True):
            pass
        self.assertTrue(rec.closed)

    def test_invalid_strip_count(self) -> None:
        with self.assertRaises(ValueError):
            MgDlOcrEngine(DeviceFamily.DARK_PANEL, recognizer=_FakeRecognizer([]), strip_count=0)

    def test_classify(self) -> None:
        engine = MgDlOcrEngine(DeviceFamily.DARK_PANEL, recognizer=_FakeRecognizer([]))
        self.assertIs(engine.classify("CHOL 180 mg/dL"), TestType.CHOLESTEROL)


class TestRegions(unittest.TestCase):
    def test_read_regions(self) -> None:
        rec = _FakeRecognizer(["GLU", RecognitionError("blurred")])
        engine = MgDlOcrEngine(DeviceFamily.LIGHT_PANEL, recognizer=rec)
        self.assertEqual(engine.read_regions(_light_image(h=100, w=200)), {"test_type": "GLU", "value": ""})
        self.assertEqual(len(rec.seen_shapes), 2)


class TestFilePipeline(unittest.TestCase):
    def test_process_writes_debug_images(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "horiba.png"
            cv2.imwrite(str(path), np.full((100, 60, 3), 40, np.uint8))
            rec = _FakeRecognizer(["CHOL", "", "Result: 180 mg/dL", "", ""])
            res = lcd_ocr.process(str(path), DeviceFamily.DARK_PANEL, from_crop=True,
                                  save_debug=True, recognizer=rec)
            self.assertTrue(res["ok"])
            self.assertEqual(res["device"], "dark_panel")
            self.assertEqual(res["result"]["value"], 180.0)
            self.assertEqual(res["result"]["bbox"], {"x0": 0, "y0": 40, "x1": 60, "y1": 60})
            self.assertEqual(res["full_text"], "CHOL\nResult: 180 mg/dL")
            self.assertEqual(res["test_type"]["type"], "cholesterol")
            for key in ("crop", "preprocessed", "annotated"):
                self.assertTrue(Path(res["paths"][key]).is_file(), msg=key)
            self.assertFalse(rec.closed)

    def test_region_text_drives_test_type(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "robonik.png"
            cv2.imwrite(str(path), _light_image(h=200, w=300))
            rec = _FakeRecognizer(["CHOL 97 mg/dL", "CRE", "1.1"])
            res = lcd_ocr.process(str(path), DeviceFamily.LIGHT_PANEL, use_crop_regions=True, recognizer=rec)
            self.assertEqual(res["regions"], {"test_type": "CRE", "value": "1.1"})
            self.assertEqual(res["test_type"]["type"], "creatinine")
            self.assertEqual(res["result"]["value"], 97.0)
            self.assertEqual(res["paths"], {})

    def test_unreadable_image(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "broken.png"
            path.write_bytes(b"not an image")
            with self.assertRaises(FileNotFoundError):
                lcd_ocr.process(str(path), DeviceFamily.DARK_PANEL, recognizer=_FakeRecognizer([]))


if __name__ == "__main__":
    unittest.main()
