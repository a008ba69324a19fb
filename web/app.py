from __future__ import annotations

import json
import logging
import os
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

from fastapi import FastAPI, File, HTTPException, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from pydantic import BaseModel

# allow importing the parser from repo root
REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from sie_excel_export import XLSX_MEDIA_TYPE, build_export_options, export_workbook, options_to_json  # noqa: E402
from sie_parser import (  # noqa: E402
    MAX_INPUT_SIZE,
    ParseError,
    decode_sie_bytes,
    is_valid_sie_content,
    parse_sie_text,
)

logger = logging.getLogger(__name__)

APP_DIR = Path(__file__).resolve().parent
CONFIG_PATH = APP_DIR / "config.json"

ALLOWED_EXTENSIONS = (".sie", ".se", ".si", ".txt")
UPLOAD_CHUNK_SIZE = 1024 * 1024

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Content-Security-Policy": "default-src 'self'; script-src 'self'; style-src 'self' 'unsafe-inline'",
}


class ValidationResponse(BaseModel):
    valid: bool
    company: Optional[str] = None
    accounts: int = 0
    verifications: int = 0
    version: Optional[str] = None
    error: Optional[str] = None


def load_config() -> dict:
    if not CONFIG_PATH.exists():
        raise RuntimeError(f"Missing config file: {CONFIG_PATH}")
    return json.loads(CONFIG_PATH.read_text(encoding="utf-8"))


def max_upload_bytes(cfg: dict) -> int:
    limit_mb = cfg.get("limits", {}).get("max_upload_mb")
    if limit_mb is None:
        return MAX_INPUT_SIZE
    return min(int(float(limit_mb) * 1024 * 1024), MAX_INPUT_SIZE)


def ensure_allowed_extension(filename: Optional[str]) -> None:
    if not filename:
        raise HTTPException(status_code=400, detail="no file uploaded")
    if not filename.lower().endswith(ALLOWED_EXTENSIONS):
        raise HTTPException(
            status_code=400,
            detail=f"invalid file type, allowed: {', '.join(ALLOWED_EXTENSIONS)}",
        )


async def read_upload(file: UploadFile, limit: int) -> bytes:
    chunks = []
    total = 0
    while True:
        chunk = await file.read(UPLOAD_CHUNK_SIZE)
        if not chunk:
            break
        total += len(chunk)
        if total > limit:
            raise HTTPException(
                status_code=400,
                detail=f"file exceeds the maximum size of {limit // 1024 // 1024} MB",
            )
        chunks.append(chunk)
    if not chunks:
        raise HTTPException(status_code=400, detail="uploaded file is empty")
    return b"".join(chunks)


def output_filename(original: str, now: Optional[datetime] = None) -> str:
    base = os.path.splitext(os.path.basename(original))[0]
    sanitized = "".join(ch for ch in base if ch.isascii() and (ch.isalnum() or ch in "-_ "))[:50].strip()
    stamp = (now or datetime.now()).strftime("%Y%m%d_%H%M%S")
    return f"{sanitized or 'sie'}_{stamp}.xlsx"


def create_app(cfg: Optional[dict] = None) -> FastAPI:
    cfg = cfg if cfg is not None else load_config()
    upload_limit = max_upload_bytes(cfg)

    app = FastAPI(title="SIE Converter API", version="0.1.0")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cfg.get("server", {}).get("cors_origins", ["*"]),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def add_security_headers(request: Request, call_next):
        response = await call_next(request)
        for name, value in SECURITY_HEADERS.items():
            response.headers[name] = value
        return response

    @app.get("/api/health")
    def health() -> dict:
        return {"ok": True}

    @app.get("/api/conversion/options")
    def default_options() -> dict:
        return options_to_json()

    @app.post("/api/conversion/convert")
    async def convert(request: Request, file: UploadFile = File(...)) -> Response:
        ensure_allowed_extension(file.filename)
        raw = await read_upload(file, upload_limit)

        try:
            content = decode_sie_bytes(raw)
        except ParseError as e:
            raise HTTPException(status_code=400, detail=f"decode failed: {e}")
        if not is_valid_sie_content(content):
            raise HTTPException(status_code=400, detail="file does not look like a SIE file")

        try:
            document = parse_sie_text(content)
        except ParseError as e:
            raise HTTPException(status_code=400, detail=f"parse failed: {e}")

        options = build_export_options(await request.form())
        try:
            payload = export_workbook(document, options)
        except Exception:
            logger.exception(f"Error converting SIE file {file.filename!r}")
            raise HTTPException(status_code=500, detail="conversion failed")

        logger.info(
            f"Converted {file.filename!r}: {len(document.accounts)} accounts, "
            f"{len(document.verifications)} verifications"
        )
        filename = output_filename(file.filename)
        return Response(
            content=payload,
            media_type=XLSX_MEDIA_TYPE,
            headers={"Content-Disposition": f'attachment; filename="{filename}"'},
        )

    @app.post("/api/conversion/validate")
    async def validate(file: UploadFile = File(...)) -> ValidationResponse:
        raw = await read_upload(file, upload_limit)
        try:
            content = decode_sie_bytes(raw)
        except ParseError as e:
            return ValidationResponse(valid=False, error=str(e))
        if not is_valid_sie_content(content):
            return ValidationResponse(valid=False, error="file is not a SIE file")

        try:
            document = parse_sie_text(content)
        except ParseError as e:
            return ValidationResponse(valid=False, error=str(e))
        return ValidationResponse(
            valid=True,
            company=document.company_name,
            accounts=len(document.accounts),
            verifications=len(document.verifications),
            version=document.version,
        )

    return app


app = create_app()
