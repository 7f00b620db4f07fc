# mgdl_text.py
# Turning noisy recognized text into a trusted mg/dL value.
import logging
import re
from typing import Optional, Tuple

from ocr_types import (CONFIDENCE_GATE, ExtractionResult, RecognitionOutput,
                       RecognizedBlock, RecognizedLine, TestType)

logger = logging.getLogger(__name__)

# ===================== Normalization =====================
# Ordered: "resut" must run before "resutt", "mgdl" before "mg/d1", etc.
UNIT_CORRECTIONS = (
    ("resut", "result"),
    ("resutt", "result"),
    ("recut", "result"),
    ("resu1t", "result"),
    ("mgfdl", "mg/dl"),
    ("mgfdi", "mg/dl"),
    ("mgd1", "mg/dl"),
    ("mgdi", "mg/dl"),
    ("mgdl", "mg/dl"),
    ("ngdl", "mg/dl"),
    ("m9/dl", "mg/dl"),
    ("mgidl", "mg/dl"),
    ("mg/d1", "mg/dl"),
    ("mgd/", "mg/dl"),
)

_STRIP_CHARS = str.maketrans("", "", " :;,")


def normalize_ocr_text(text: str) -> str:
    return text.lower().translate(_STRIP_CHARS)


def normalize_units(text: str) -> str:
    for wrong, right in UNIT_CORRECTIONS:
        text = text.replace(wrong, right)
    return text


def normalize(text: str) -> str:
    out = normalize_units(normalize_ocr_text(text))
    # a correction can expose another one next to it; settle to a fixed point
    for _ in range(len(UNIT_CORRECTIONS)):
        nxt = normalize_units(out)
        if nxt == out:
            break
        out = nxt
    return out

# ===================== Value extraction =====================
_NUM = r"(\d+(?:\.\d+)?)"

MGDL_PATTERNS = (
    re.compile(r"(\d+\s*(?:\.\s*\d+)?)\s*mg\s*/\s*d[lL]", re.IGNORECASE),
    re.compile(_NUM + r"mg/dl", re.IGNORECASE),
    re.compile(_NUM + r"mg/dL", re.IGNORECASE),
    re.compile(_NUM + r"\s+mg\s+d[lL]", re.IGNORECASE),
    re.compile(r"result\s*:?\s*" + _NUM + r"\s*mg/dL", re.IGNORECASE),
)

_BARE_NUMBER = re.compile(r"\b" + _NUM + r"\b")


def _to_float(s: str) -> Optional[float]:
    try:
        return float(re.sub(r"\s+", "", s))
    except ValueError:
        return None


def extract_value(text: str) -> Optional[float]:
    normalized = normalize(text)
    for pat in MGDL_PATTERNS:
        m = pat.search(normalized)
        if m:
            return _to_float(m.group(1))
    return None


def extract_split_line(block: RecognizedBlock) -> Optional[Tuple[float, RecognizedLine]]:
    """
    Handles displays that print
        Result 121.1
        mg/dL
    where the unit sits on its own line within the same block.
    """
    if "mg/dl" not in normalize(block.text):
        return None
    for line in block.lines:
        if "result" not in normalize(line.text):
            continue
        m = _BARE_NUMBER.search(line.text)
        if m:
            value = _to_float(m.group(1))
            if value is not None:
                return value, line
    return None

# ===================== Confidence =====================
def score_confidence(text: str, value: float) -> float:
    low = text.lower()
    conf = 0.5
    if "mg/dl" in low:
        conf += 0.4
    elif "result" in low and "mg" in low:
        conf += 0.2
    elif "mg" in low and "dl" in low:
        conf += 0.3

    if 70.0 <= value <= 400.0:
        conf += 0.2
    elif 50.0 <= value <= 600.0:
        conf += 0.1
    if value == 0.0:
        conf -= 0.5

    if "dl" not in low:
        conf -= 0.4
    return max(0.0, min(1.0, conf))


def passes_gate(confidence: float) -> bool:
    return confidence >= CONFIDENCE_GATE


def gated_result(text: str, value: Optional[float], **extra) -> Optional[ExtractionResult]:
    """ExtractionResult when `value` scores over the gate against `text`, else None."""
    if value is None:
        return None
    conf = score_confidence(text, value)
    if not passes_gate(conf):
        logger.debug("rejected %s from %r (confidence %.2f)", value, text, conf)
        return None
    return ExtractionResult(value=value, raw_text=text, confidence=conf, **extra)


def extract_from_recognition(output: RecognitionOutput) -> Optional[ExtractionResult]:
    # 1) single lines: tightest boxes
    for block in output.blocks:
        for line in block.lines:
            res = gated_result(line.text, extract_value(line.text), bbox=line.bbox)
            if res:
                return res
    # 2) number and unit split across lines of one block
    for block in output.blocks:
        hit = extract_split_line(block)
        if hit:
            value, line = hit
            conf = score_confidence(block.text, value)
            if passes_gate(conf):
                return ExtractionResult(value=value, raw_text=line.text, confidence=conf, bbox=line.bbox)
    # 3) everything at once
    return gated_result(output.full_text, extract_value(output.full_text))

# ===================== Test type =====================
TEST_TYPE_KEYWORDS = (
    (TestType.CHOLESTEROL, ("CHOLE", "CHOL", "CHO")),
    (TestType.GLUCOSE, ("GLU", "GLUCOSE")),
    (TestType.CREATININE, ("CRE", "CREAT", "CREATININE")),
)


def classify_test_type(text: str) -> TestType:
    """Pre-selection hint only; defaults to glucose when nothing matches."""
    upper = (text or "").upper()
    for test_type, keys in TEST_TYPE_KEYWORDS:
        if any(k in upper for k in keys):
            return test_type
    return TestType.GLUCOSE
