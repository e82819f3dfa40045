"""
Results Writer
==============
Serializes a finished ImplementationRunResult into the JSON diagnostics
report: <report_dir>/.cosmos/apply_harness/<run_id>.json
"""
import json
import logging
import os
from datetime import datetime, timezone
from typing import Optional

from cosmos_harness.core.constants import REPORT_SUBDIR
from cosmos_harness.models.run_result import ImplementationRunResult

logger = logging.getLogger(__name__)

class ResultsWriter:
    """
    Writes the per-run harness report.

    A failed write is logged and reported as None; it never changes the
    outcome of the run.
    """

    @staticmethod
    def report_path(report_dir: str, run_id: str) -> str:
        return os.path.join(report_dir, REPORT_SUBDIR, f"{run_id}.json")

    @staticmethod
    def write_report(result: ImplementationRunResult, report_dir: str) -> Optional[str]:
        """
        Compile the run result and write it as JSON.

        Returns
        -------
        str or None
            Absolute path of the written report, or None on failure.
        """
        output_path = os.path.abspath(ResultsWriter.report_path(report_dir, result.diagnostics.run_id))
        data = {
            "generated_at": datetime.now(timezone.utc).isoformat(),
            "status": result.status.value,
            "exit_code": result.exit_code,
            "description": result.description,
            "applied_files": [f.model_dump(mode="json") for f in result.applied_files],
            "usage_total": result.usage_total.model_dump(mode="json"),
            "findings_final": [f.model_dump(mode="json") for f in result.findings_final],
            "diagnostics": result.diagnostics.model_dump(mode="json"),
        }
        # The report records its own location
        data["diagnostics"]["report_path"] = output_path

        try:
            os.makedirs(os.path.dirname(output_path), exist_ok=True)
            logger.info("Writing harness report to %s", output_path)
            with open(output_path, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
        except OSError as e:
            logger.error("Failed to write harness report: %s", e)
            return None
        return output_path
