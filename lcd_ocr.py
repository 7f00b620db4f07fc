# lcd_ocr.py
# mg/dL reader for analyser LCDs: per-device preprocessing, strip assembly
# for dark panels, gated value extraction, test-type hint.
import argparse
import json
import logging
import os
from typing import Dict, List, Optional, Sequence, Tuple

import cv2
import numpy as np

from lcd_preprocess import (DEFAULT_LIGHT_PANEL_REGIONS, THRESHOLD_LEVELS,
                            crop_region, crop_to_guide_box, preprocess,
                            robust_imread)
from mgdl_text import (classify_test_type, extract_from_recognition,
                       extract_value, gated_result)
from ocr_types import (BBox, CropRegion, DeviceFamily, ExtractionResult,
                       StripResult, TestType)
from recognizer import RecognitionError, Recognizer, TesseractRecognizer

logger = logging.getLogger(__name__)

DEFAULT_STRIP_COUNT = 5

# ===================== Strips =====================
def strip_bounds(height: int, strip_count: int) -> List[Tuple[int, int]]:
    """Equal bands top to bottom; the last one takes the rounding remainder."""
    if strip_count < 1:
        raise ValueError("strip_count must be >= 1")
    step = height // strip_count
    bounds = []
    for i in range(strip_count):
        top = i * step
        bottom = height if i == strip_count - 1 else (i + 1) * step
        bounds.append((top, bottom))
    return bounds

# ===================== Engine =====================
class MgDlOcrEngine:
    """
    Reads one mg/dL value per image. Stateless between calls; the only thing
    it holds is the recognizer, which it closes if it created it.
    """

    def __init__(self, family: DeviceFamily,
                 recognizer: Optional[Recognizer] = None,
                 use_strip_processing: bool = True,
                 strip_count: int = DEFAULT_STRIP_COUNT,
                 threshold_levels: Sequence[int] = THRESHOLD_LEVELS,
                 owns_recognizer: Optional[bool] = None):
        if strip_count < 1:
            raise ValueError("strip_count must be >= 1")
        self.family = family
        self.use_strip_processing = use_strip_processing
        self.strip_count = strip_count
        self.threshold_levels = tuple(threshold_levels)
        self.recognizer = recognizer if recognizer is not None else TesseractRecognizer()
        self._owns_recognizer = (recognizer is None) if owns_recognizer is None else owns_recognizer

    def close(self) -> None:
        if self._owns_recognizer:
            self.recognizer.close()

    def __enter__(self) -> "MgDlOcrEngine":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    @property
    def strip_mode(self) -> bool:
        return self.family is DeviceFamily.DARK_PANEL and self.use_strip_processing

    def preprocess(self, image: np.ndarray) -> np.ndarray:
        return preprocess(image, self.family, self.threshold_levels)

    def process(self, image: np.ndarray) -> Tuple[Optional[ExtractionResult], str]:
        """
        (result or None, full recognized text). In single-shot mode a
        RecognitionError propagates: there is nothing to fall back to.
        """
        prepped = self.preprocess(image)
        if self.strip_mode:
            return self.assemble_by_strips(prepped)
        output = self.recognizer.recognize(prepped)
        return extract_from_recognition(output), output.full_text

    def _recognize_text(self, image: np.ndarray, what: str) -> str:
        try:
            return self.recognizer.recognize(image).full_text.strip()
        except RecognitionError as e:
            logger.warning("recognition failed for %s: %s", what, e)
            return ""

    def assemble_by_strips(self, prepped: np.ndarray,
                           strip_count: Optional[int] = None) -> Tuple[Optional[ExtractionResult], str]:
        n = strip_count or self.strip_count
        h, w = prepped.shape[:2]
        strips: List[StripResult] = []
        texts: List[str] = []
        for i, (top, bottom) in enumerate(strip_bounds(h, n)):
            text = self._recognize_text(prepped[top:bottom, :].copy(), f"strip {i}")
            if not text:
                continue
            texts.append(text)
            strips.append(StripResult(index=i, text=text, value=extract_value(text),
                                      bbox=BBox(0, top, w, bottom)))
        combined = "\n".join(texts)

        result = None
        best = next((s for s in strips if s.value is not None), None)
        if best is not None:
            # only the topmost strip with a number is considered on its own
            result = gated_result(best.text, best.value, bbox=best.bbox, strip_results=strips)
        if result is None:
            result = gated_result(combined, extract_value(combined), strip_results=strips)
        return result, combined

    def read_regions(self, image: np.ndarray,
                     regions: Sequence[CropRegion] = DEFAULT_LIGHT_PANEL_REGIONS) -> Dict[str, str]:
        out: Dict[str, str] = {}
        for region in regions:
            crop, _ = crop_region(image, region)
            out[region.name] = self._recognize_text(self.preprocess(crop), f"region {region.name}")
        return out

    def classify(self, full_text: str) -> TestType:
        return classify_test_type(full_text)

# ===================== Debug drawing =====================
def annotate(prepped: np.ndarray, result: Optional[ExtractionResult],
             strip_count: Optional[int]) -> np.ndarray:
    vis = cv2.cvtColor(prepped, cv2.COLOR_GRAY2BGR) if prepped.ndim == 2 else prepped.copy()
    h, w = vis.shape[:2]
    if strip_count:
        for top, _ in strip_bounds(h, strip_count)[1:]:
            cv2.line(vis, (0, top), (w - 1, top), (0, 255, 255), 1)
    if result is not None and result.bbox is not None:
        b = result.bbox
        cv2.rectangle(vis, (b.x0, b.y0), (b.x1 - 1, b.y1 - 1), (0, 255, 0), 2)
    overlay = f"{result.value:g} mg/dL ({result.confidence:.2f})" if result else "(no value)"
    cv2.putText(vis, overlay, (12, 24), cv2.FONT_HERSHEY_SIMPLEX, 0.7, (0, 0, 255), 2, cv2.LINE_AA)
    return vis

# ===================== Pipeline =====================
def process(input_path: str,
            family: DeviceFamily,
            out_dir: Optional[str] = None,
            from_crop: bool = False,
            use_strip_processing: bool = True,
            strip_count: int = DEFAULT_STRIP_COUNT,
            use_crop_regions: bool = False,
            save_debug: bool = False,
            recognizer: Optional[Recognizer] = None) -> dict:

    bgr = robust_imread(input_path)
    if bgr is None:
        raise FileNotFoundError(f"Cannot read image: {input_path}")
    base = os.path.splitext(os.path.basename(input_path))[0]

    # 1) frame to the camera guide box (or trust crop)
    crop = bgr if from_crop else crop_to_guide_box(bgr)

    with MgDlOcrEngine(family, recognizer=recognizer,
                       use_strip_processing=use_strip_processing,
                       strip_count=strip_count) as engine:
        # 2) preprocess + recognize + extract
        result, full_text = engine.process(crop)

        # 3) optional region reads (light panel layout)
        regions: Dict[str, str] = {}
        if use_crop_regions and family is DeviceFamily.LIGHT_PANEL:
            regions = engine.read_regions(crop)

        # 4) test type hint
        test_type = engine.classify(regions.get("test_type") or full_text)

        paths: Dict[str, str] = {}
        if save_debug:
            if out_dir is None:
                out_dir = os.path.dirname(os.path.abspath(input_path)) or "."
            os.makedirs(out_dir, exist_ok=True)
            prepped = engine.preprocess(crop)
            paths = {
                "crop": os.path.join(out_dir, base + "_crop.png"),
                "preprocessed": os.path.join(out_dir, base + "_prep.png"),
                "annotated": os.path.join(out_dir, base + "_annotated.png"),
            }
            cv2.imwrite(paths["crop"], crop)
            cv2.imwrite(paths["preprocessed"], prepped)
            cv2.imwrite(paths["annotated"],
                        annotate(prepped, result, strip_count if engine.strip_mode else None))

        tess_cmd = getattr(engine.recognizer, "tesseract_cmd", None)

    if result is None:
        logger.info("%s: no value cleared the confidence gate", base)

    return {
        "ok": True,
        "device": family.value,
        "tesseract_cmd": tess_cmd,
        "result": result.to_dict() if result else None,
        "full_text": full_text,
        "test_type": {"type": test_type.value, "display_name": test_type.display_name,
                      "unit": test_type.unit},
        "regions": regions,
        "paths": paths,
    }

# ===================== CLI =====================
def main(argv: Optional[List[str]] = None) -> int:
    ap = argparse.ArgumentParser(description="Read the mg/dL result from an analyser LCD photo")
    ap.add_argument("image", help="Input image path (camera photo or pre-cropped display)")
    ap.add_argument("--device", required=True, choices=[f.value for f in DeviceFamily],
                    help="Display family: dark_panel (Horiba) or light_panel (Robonik)")
    ap.add_argument("--out", help="Output directory for debug images (default: alongside input)")
    ap.add_argument("--from-crop", action="store_true", help="Treat input as already cropped to the display")
    ap.add_argument("--no-strips", action="store_true", help="Single-shot recognition for dark panels")
    ap.add_argument("--strips", type=int, default=DEFAULT_STRIP_COUNT, help="Horizontal strips for dark panels")
    ap.add_argument("--crop-regions", action="store_true", help="Also read the light-panel test-type/value regions")
    ap.add_argument("--debug", action="store_true", help="Save crop / preprocessed / annotated images")
    ap.add_argument("--psm", type=int, default=6, help="Tesseract page segmentation mode")
    ap.add_argument("-v", "--verbose", action="store_true")
    args = ap.parse_args(argv)

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING,
                        format="%(levelname)s %(name)s: %(message)s")

    rec = TesseractRecognizer(psm=args.psm)
    if rec.tesseract_cmd:
        print(f"[info] Tesseract at {rec.tesseract_cmd}")
    else:
        print("[warn] Tesseract binary not located; set TESSERACT_CMD")

    try:
        res = process(
            input_path=args.image,
            family=DeviceFamily.parse(args.device),
            out_dir=args.out,
            from_crop=args.from_crop,
            use_strip_processing=not args.no_strips,
            strip_count=args.strips,
            use_crop_regions=args.crop_regions,
            save_debug=args.debug,
            recognizer=rec,
        )
    except RecognitionError as e:
        print(json.dumps({"ok": False, "error": str(e)}, indent=2))
        return 2
    finally:
        rec.close()
    print(json.dumps(res, indent=2, ensure_ascii=False))
    return 0

if __name__ == "__main__":
    raise SystemExit(main())
