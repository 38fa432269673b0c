import json
import logging

from loguru import logger

from relay.logging_config import setup_logging


def test_json_file_sink(tmp_path):
    log_file = tmp_path / "logs" / "relay.log"
    setup_logging(level="info", json_format=True, log_file=log_file)
    try:
        logger.bind(account="Cloudinary-1").warning("Cloudinary-1 failed: {detail}", detail="quota exceeded")
        logger.debug("dropped below the level")
    finally:
        logger.remove()

    lines = log_file.read_text(encoding="utf-8").splitlines()
    assert len(lines) == 1
    entry = json.loads(lines[0])
    assert entry["level"] == "WARNING"
    assert entry["message"] == "Cloudinary-1 failed: quota exceeded"
    assert entry["service"] == "cloud-relay"
    assert entry["account"] == "Cloudinary-1"
    assert entry["detail"] == "quota exceeded"


def test_stdlib_records_are_forwarded(tmp_path):
    log_file = tmp_path / "relay.log"
    setup_logging(json_format=True, log_file=log_file)
    try:
        logging.getLogger("uvicorn.error").info("Application startup complete.")
    finally:
        logger.remove()
        logging.basicConfig(handlers=[], force=True)

    entries = [json.loads(line) for line in log_file.read_text(encoding="utf-8").splitlines()]
    assert any(entry["message"] == "Application startup complete." for entry in entries)
