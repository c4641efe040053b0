from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path


def setup_logging(level: str = "INFO", log_dir: str | Path = "outputs/logs") -> None:
    fmt = "%(asctime)s %(levelname)s | %(name)s | %(message)s"
    lvl = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(level=lvl, format=fmt)

    if str(level).upper() == "DEBUG":
        out_dir = Path(log_dir)
        out_dir.mkdir(parents=True, exist_ok=True)
        ts = datetime.now().strftime("%Y%m%d_%H%M%S")
        log_path = out_dir / f"planning_debug_{ts}.txt"
        fh = logging.FileHandler(log_path, mode="w", encoding="utf-8")
        fh.setLevel(logging.DEBUG)
        fh.setFormatter(logging.Formatter(fmt))
        logging.getLogger().addHandler(fh)
        logging.getLogger(__name__).info("Writing DEBUG logs to %s", log_path)


__all__ = ["setup_logging"]
