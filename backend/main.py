import logging
import os
from pathlib import Path

from dotenv import load_dotenv

import uvicorn
from fastapi import FastAPI

from handlers.health_handler import router as health_router
from handlers.merge_handler import get_service_config, router as merge_router

ROOT_DIR = Path(__file__).resolve().parents[1]
load_dotenv(ROOT_DIR / ".env")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)


def _attach_file_handler(
    logger_name: str,
    log_file_path: Path,
    level_name: str | None = None,
) -> None:
    logger_level = (level_name or LOG_LEVEL).upper()
    logger_level_value = getattr(logging, logger_level, logging.INFO)

    log_file_path.parent.mkdir(parents=True, exist_ok=True)
    file_handler = logging.FileHandler(log_file_path, encoding="utf-8")
    file_handler.setLevel(logger_level_value)
    file_handler.setFormatter(
        logging.Formatter("%(asctime)s %(levelname)s [%(name)s] %(message)s")
    )

    target_logger = logging.getLogger(logger_name)
    if not any(
        isinstance(handler, logging.FileHandler)
        and getattr(handler, "baseFilename", None) == str(log_file_path)
        for handler in target_logger.handlers
    ):
        target_logger.addHandler(file_handler)
    target_logger.setLevel(logger_level_value)


MERGE_LOG_FILE = os.getenv("MERGE_LOG_FILE", "").strip()
MERGE_LOG_LEVEL = os.getenv("MERGE_LOG_LEVEL", "").strip() or None
if MERGE_LOG_FILE:
    merge_log_path = Path(MERGE_LOG_FILE)
    if not merge_log_path.is_absolute():
        merge_log_path = ROOT_DIR / merge_log_path
    for name in (
        "handlers.merge_handler",
        "operators.merge_operator",
        "utils.remote_fetch",
        "utils.ffmpeg_merge",
        "utils.dropbox_upload",
    ):
        _attach_file_handler(name, merge_log_path, level_name=MERGE_LOG_LEVEL)

app = FastAPI(title="FFmpeg Dropbox Merger")


app.include_router(health_router)
app.include_router(merge_router)

if __name__ == "__main__":
    config = get_service_config()
    if not config.has_dropbox_credential:
        logging.getLogger(__name__).warning(
            "DROPBOX_ACCESS_TOKEN is not set; /merge requests will be rejected"
        )
    uvicorn.run(app, host="0.0.0.0", port=config.port)
