import os
import shutil
import tempfile
from typing import Optional

from fastapi import APIRouter, File, Form, HTTPException, UploadFile
from fastapi.responses import JSONResponse
from services.ocr_service import run_device_ocr

router = APIRouter()

@router.post("/read-device")
async def read_device(
    # Either provide a file OR a local image_path
    file: Optional[UploadFile] = File(default=None),
    image_path: Optional[str] = Form(default=None),
    device: str = Form(...),  # "dark_panel" | "light_panel"

    # Optional processing controls (all Form so they work with multipart)
    from_crop: bool = Form(default=False),
    strip_mode: bool = Form(default=True),
    strip_count: int = Form(default=5),
    crop_regions: bool = Form(default=False),
    save_debug: bool = Form(default=False),
):
    """
    POST /ocr/read-device
    - Send multipart/form-data with either:
      * file=<uploaded image>   OR
      * image_path=<absolute or relative path on server>
    - device selects the preprocessing: dark_panel (Horiba) or light_panel (Robonik).
    - result is null when no value cleared the confidence gate; full_text is
      always returned so the client can fall back to manual entry.
    """
    if not file and not image_path:
        raise HTTPException(status_code=400, detail="Provide either 'file' or 'image_path'.")
    if strip_count < 1:
        raise HTTPException(status_code=400, detail="strip_count must be >= 1")

    temp_path = None
    try:
        # Resolve input image path (save upload to a temp file)
        if file:
            suffix = os.path.splitext(file.filename or "upload")[1] or ".png"
            fd, temp_path = tempfile.mkstemp(prefix="device_", suffix=suffix)
            os.close(fd)
            with open(temp_path, "wb") as out:
                shutil.copyfileobj(file.file, out)
            input_image = temp_path
        else:
            input_image = image_path
            if not os.path.isfile(input_image):
                raise HTTPException(status_code=404, detail=f"image_path not found: {input_image}")

        try:
            result = run_device_ocr(
                input_path=input_image,
                device=device,
                from_crop=from_crop,
                strip_mode=strip_mode,
                strip_count=strip_count,
                crop_regions=crop_regions,
                # never write debug images next to a temp upload
                save_debug=save_debug and temp_path is None,
            )
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        except FileNotFoundError as e:
            raise HTTPException(status_code=422, detail=str(e))
        return JSONResponse(content=result)

    finally:
        # Clean up temp upload file
        if temp_path and os.path.exists(temp_path):
            os.remove(temp_path)
