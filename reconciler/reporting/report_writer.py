"""
Report writer for reconciliation runs.

Produces the audit artifacts for a run:
- device_group_report_<timestamp>.csv: one row per device outcome
- device_group_report_<timestamp>.html: summary, per-domain and per-device tables
- device_group_audit.jsonl: one JSON line per device, appended across runs
"""

import json
import logging
import os
from datetime import datetime
from typing import Any, Dict, List, Optional

import pandas as pd

from ..exceptions import ReportWriteError
from ..models import DeviceRecord

logger = logging.getLogger(__name__)

REPORT_COLUMNS = [
    "DomainLabel",
    "Server",
    "Group",
    "Name",
    "SecurityIdentifier",
    "OperatingSystem",
    "DistinguishedName",
    "Operation",
    "DryRun",
    "Message",
    "ObservedAt",
]

AUDIT_LOG_NAME = "device_group_audit.jsonl"


class ReportWriter:
    """Writes the CSV, HTML and JSON-lines artifacts for a run."""

    def __init__(self, output_dir: str):
        self.output_dir = output_dir

    def build_dataframe(self, records: List[DeviceRecord]) -> pd.DataFrame:
        return pd.DataFrame([record.to_dict() for record in records], columns=REPORT_COLUMNS)

    def write(
        self,
        records: List[DeviceRecord],
        summary: Dict[str, Any],
        started_at: datetime,
        domain_rows: Optional[List[Dict[str, Any]]] = None,
        dry_run: bool = False,
    ) -> Dict[str, str]:
        """
        Write all artifacts for one run.

        Returns:
            Paths of the written files keyed by 'csv', 'html' and 'audit'

        Raises:
            ReportWriteError: If any artifact cannot be written
        """
        timestamp = started_at.strftime("%Y%m%d_%H%M%S")
        paths = {
            "csv": os.path.join(self.output_dir, f"device_group_report_{timestamp}.csv"),
            "html": os.path.join(self.output_dir, f"device_group_report_{timestamp}.html"),
            "audit": os.path.join(self.output_dir, AUDIT_LOG_NAME),
        }

        try:
            os.makedirs(self.output_dir, exist_ok=True)
            df = self.build_dataframe(records)
            df.to_csv(paths["csv"], index=False)
            with open(paths["html"], "w", encoding="utf-8") as fh:
                fh.write(self.render_html(df, summary, started_at, domain_rows or [], dry_run))
            self.append_audit_log(paths["audit"], records, started_at)
        except (OSError, ValueError) as e:
            raise ReportWriteError(f"Could not write report to {self.output_dir}: {e}") from e

        logger.info(f"Report written: {paths['csv']}, {paths['html']}")
        return paths

    def render_html(
        self,
        df: pd.DataFrame,
        summary: Dict[str, Any],
        started_at: datetime,
        domain_rows: List[Dict[str, Any]],
        dry_run: bool,
    ) -> str:
        summary_rows = [
            {"Metric": key, "Value": ", ".join(value) if isinstance(value, list) else value}
            for key, value in summary.items()
        ]
        summary_df = pd.DataFrame(summary_rows, columns=["Metric", "Value"])
        domains_df = pd.DataFrame(domain_rows)

        title = f"Device group reconciliation - {started_at.isoformat()}"
        if dry_run:
            title += " (DRY RUN)"

        sections = [
            f"<html><head><meta charset='utf-8'><title>{title}</title></head><body>",
            f"<h1>{title}</h1>",
            "<h2>Summary</h2>",
            summary_df.to_html(index=False),
        ]
        if not domains_df.empty:
            sections += ["<h2>Domain entries</h2>", domains_df.to_html(index=False)]
        sections += ["<h2>Devices</h2>", df.to_html(index=False), "</body></html>"]
        return "\n".join(sections)

    def append_audit_log(
        self, path: str, records: List[DeviceRecord], started_at: datetime
    ) -> None:
        run_id = started_at.isoformat()
        with open(path, "a", encoding="utf-8") as fh:
            for record in records:
                line = record.to_dict()
                line["RunStartedAt"] = run_id
                fh.write(json.dumps(line) + "\n")
