from typing import Optional

# Thin layer between the HTTP router and the LCD pipeline
import lcd_ocr as ocr
from ocr_types import DeviceFamily
from recognizer import Recognizer

def run_device_ocr(
    input_path: str,
    device: str,
    out_dir: Optional[str] = None,
    from_crop: bool = False,
    strip_mode: bool = True,
    strip_count: int = ocr.DEFAULT_STRIP_COUNT,
    crop_regions: bool = False,
    save_debug: bool = False,
    recognizer: Optional[Recognizer] = None,
) -> dict:
    """
    Thin wrapper around lcd_ocr.process().
    Debug images land next to the input image unless out_dir is given.
    Raises ValueError for an unknown device, FileNotFoundError for an
    unreadable image and RecognitionError when single-shot recognition fails.
    """
    family = DeviceFamily.parse(device)

    res = ocr.process(
        input_path=input_path,
        family=family,
        out_dir=out_dir,
        from_crop=from_crop,
        use_strip_processing=strip_mode,
        strip_count=strip_count,
        use_crop_regions=crop_regions,
        save_debug=save_debug,
        recognizer=recognizer,
    )

    # Flat "value" for simple clients; None means manual entry is needed
    res["value"] = res["result"]["value"] if res["result"] else None
    return res
