"""
Duplicate report generation.

Turns a finished scan into a JSON document or a plain-text listing of
duplicate sets, one block per group with path, dimensions and file size.
"""

import json
from dataclasses import dataclass, asdict
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import click
import humanize

from ..dedup.cluster import DuplicateGroup
from ..dedup.pipeline import ScanSummary
from ..dedup.record import ImageRecord
from ..logging import get_logger

logger = get_logger(__name__)

REPORT_VERSION = "1.0"
REPORT_FILE_NAME = "dupfind_report.json"


@dataclass(frozen=True)
class ReportMember:
    """Single image in a reported duplicate group."""
    path: str                               # Image path as given by the walk
    size: Optional[int]                     # File size in bytes
    width: Optional[int]                    # Decoded width in pixels
    height: Optional[int]                   # Decoded height in pixels
    fingerprint: Optional[str]              # Hex fingerprint
    is_canonical: bool                      # Chosen representative of the group

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def build_report(
    summary: ScanSummary,
    groups: Sequence[DuplicateGroup],
    root: Optional[Path] = None,
) -> Dict[str, Any]:
    """
    Build a JSON-serializable report of a scan.

    Args:
        summary: Scan summary from the pipeline
        groups: Visible duplicate groups
        root: Scanned root directory, if any

    Returns:
        Report dictionary
    """
    report = {
        "version": REPORT_VERSION,
        "root": str(root) if root is not None else None,
        "generated_at": datetime.now().isoformat(),
        "summary": {
            "scanned": summary.scanned,
            "fingerprinted": summary.fingerprinted,
            "failed": summary.failed,
            "abandoned": summary.abandoned,
            "grouped": summary.grouped,
            "groups": summary.group_count,
            "cancelled": summary.cancelled,
            "elapsed_seconds": round(summary.elapsed, 3),
        },
        "groups": [
            {
                "group_id": group.group_id,
                "canonical": str(group.canonical.path),
                "members": [_member(record, group).to_dict() for record in group.records],
            }
            for group in groups
        ],
        "failures": [
            {"path": str(failure.path), "reason": failure.reason}
            for failure in summary.failures
        ],
    }
    logger.debug(f"Built report with {len(groups)} groups")
    return report


def write_report_json(report: Dict[str, Any], output_dir: Path) -> Path:
    """
    Write report to JSON file in the output directory.

    Args:
        report: Dictionary from build_report
        output_dir: Directory to write the report file

    Returns:
        Path to the written report file
    """
    output_dir.mkdir(parents=True, exist_ok=True)
    report_path = output_dir / REPORT_FILE_NAME

    try:
        # surrogateescape writes undecodable path bytes back out unchanged
        with open(report_path, 'w', encoding='utf-8', errors='surrogateescape') as f:
            json.dump(report, f, indent=2, ensure_ascii=False)

        logger.info(f"Wrote report to {report_path}")
        return report_path

    except Exception as exc:
        logger.error(f"Failed to write report to {report_path}: {exc}")
        raise


def format_groups(groups: Sequence[DuplicateGroup]) -> str:
    """Render duplicate groups as plain text, canonical image first."""
    blocks: List[str] = []
    for group in groups:
        lines = [f"{group.group_id} ({len(group)} images)"]
        ordered = [group.canonical] + [r for r in group.records if r is not group.canonical]
        for record in ordered:
            marker = "*" if record is group.canonical else " "
            lines.append(f"  {marker} {display_path(record.path)}  {_describe(record)}")
        blocks.append("\n".join(lines))
    return "\n\n".join(blocks)


def display_path(path) -> str:
    """Printable form of a path; undecodable bytes show as replacement characters."""
    return click.format_filename(path)


def format_size(num_bytes: Optional[int]) -> str:
    """Decimal size string such as '1.5 MB'."""
    if num_bytes is None:
        return "unknown size"
    return humanize.naturalsize(num_bytes)


def _describe(record: ImageRecord) -> str:
    parts = []
    if record.width is not None and record.height is not None:
        parts.append(f"{record.width}x{record.height}")
    parts.append(format_size(record.size))
    return ", ".join(parts)


def _member(record: ImageRecord, group: DuplicateGroup) -> ReportMember:
    return ReportMember(
        path=str(record.path),
        size=record.size,
        width=record.width,
        height=record.height,
        fingerprint=str(record.fingerprint) if record.fingerprint is not None else None,
        is_canonical=record is group.canonical,
    )
