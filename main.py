import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from recognizer import RecognitionError, setup_tesseract_path
from routers import ocr_router

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

def create_app() -> FastAPI:
    app = FastAPI(title="mg/dL LCD Reader API", version="1.0.0")

    # CORS (tweak as needed)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(ocr_router.router, prefix="/ocr", tags=["ocr"])

    # Single-shot reads have no fallback when the engine fails; surface it as a gateway error
    @app.exception_handler(RecognitionError)
    async def recognition_failed(request: Request, exc: RecognitionError):
        return JSONResponse(status_code=502, content={"detail": f"Text recognition failed: {exc}"})

    @app.get("/health")
    def health():
        cmd = setup_tesseract_path()
        return {"status": "ok", "tesseract_available": cmd is not None, "tesseract_cmd": cmd}

    return app

app = create_app()

# Run with: uvicorn main:app --host 127.0.0.1 --port 8080 --reload
