"""Metrics exporter for observability."""
import time
from pathlib import Path
from typing import Dict, Optional

import aiofiles
import orjson

from traffic_bulk.config import METRICS_FILE


class MetricsExporter:
    """Appends one JSON line per run to the metrics file."""

    def __init__(self, run_id: str, metrics_file: Optional[Path] = None):
        self.run_id = run_id
        self.metrics_file = Path(metrics_file or METRICS_FILE)

    async def export_metrics(self, summary: Dict, errors: int = 0) -> None:
        """Export a run summary to the JSONL file."""
        metrics = {
            "ts": time.time(),
            "run_id": self.run_id,
            "total": summary.get("total", 0),
            "cache_hits": summary.get("cache_hits", 0),
            "cache_misses": summary.get("cache_misses", 0),
            "ok": summary.get("ok", 0),
            "failed": summary.get("failed", 0),
            "skipped": summary.get("skipped", 0),
            "groups": summary.get("groups", 0),
            "group_errors": errors,
            "success_rate": summary.get("success_rate", 0.0),
            "rps": round(summary.get("rate", 0.0), 2),
            "elapsed_seconds": round(summary.get("elapsed_seconds", 0.0), 3),
        }

        self.metrics_file.parent.mkdir(parents=True, exist_ok=True)
        line = orjson.dumps(metrics).decode() + "\n"
        async with aiofiles.open(self.metrics_file, "a") as f:
            await f.write(line)
