"""
Plain-text audit log for bulk imports.

Sections are written in the order conflicts, duplicates, errors; empty
sections are left out.
"""

import json
import os
import re
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from bookcatalog.reconcile.models import ConflictDetail, DuplicateDetail, ErrorDetail

RULE = "----------------------------------------"


def _json(value) -> str:
    return json.dumps(value, indent=2, default=str)


def _book_line(data: dict) -> str:
    return f"   Book: {data.get('title') or 'N/A'} by {data.get('author') or 'N/A'}"


def render_audit_log(
    conflicts: List[ConflictDetail],
    duplicates: List[DuplicateDetail],
    errors: List[ErrorDetail],
    generated_at: Optional[datetime] = None,
) -> str:
    """Render the detail lists of an import as text."""
    generated_at = generated_at or datetime.utcnow()
    lines = [
        f"BULK IMPORT LOG - {generated_at.isoformat()}",
        "==========================================",
        "",
    ]

    if conflicts:
        lines += [f"CONFLICTS ({len(conflicts)} records):", RULE]
        for index, conflict in enumerate(conflicts, start=1):
            lines.append(f"{index}. Row {conflict.row}: {conflict.conflict_type}")
            lines.append(_book_line(conflict.book_data))
            lines.append(f"   ISBN: {conflict.book_data.get('isbn') or 'N/A'}")
            lines.append(f"   Conflicts: {_json(conflict.conflict_fields)}")
            if conflict.pricing_conflicts:
                lines.append(f"   Pricing Conflicts: {_json(conflict.pricing_conflicts)}")
            lines.append("")
        lines.append("")

    if duplicates:
        lines += [f"DUPLICATES ({len(duplicates)} records):", RULE]
        for index, duplicate in enumerate(duplicates, start=1):
            lines.append(f"{index}. Row {duplicate.row}: {duplicate.conflict_type}")
            lines.append(_book_line(duplicate.book_data))
            lines.append(f"   ISBN: {duplicate.book_data.get('isbn') or 'N/A'}")
            lines.append(f"   Existing Book ID: {duplicate.existing_book_id}")
            if duplicate.pricing_duplicate:
                lines.append("   Pricing: Also duplicate")
            lines.append("")
        lines.append("")

    if errors:
        lines += [f"ERRORS ({len(errors)} records):", RULE]
        for index, error in enumerate(errors, start=1):
            lines.append(f"{index}. Row {error.row}: {error.error}")
            if error.rollback_failed:
                lines.append("   Rollback: FAILED, book left without pricing")
            lines.append(f"   Data: {_json(error.data)}")
            lines.append("")

    return "\n".join(lines) + "\n"


def audit_log_name(source_name: str, started_at: datetime) -> str:
    """File name for a run's audit log, safe for any source name."""
    safe_source = re.sub(r"[^A-Za-z0-9._-]+", "_", source_name or "import").strip("_") or "import"
    timestamp = started_at.isoformat().replace(":", "-").replace(".", "-")
    return f"bulk-import-{safe_source}-{timestamp}.log"


def write_audit_log(
    log_dir: str,
    file_name: str,
    conflicts: List[ConflictDetail],
    duplicates: List[DuplicateDetail],
    errors: List[ErrorDetail],
) -> str:
    """
    Write an audit log file.

    Returns:
        Path of the written file
    """
    os.makedirs(log_dir, exist_ok=True)
    path = Path(log_dir) / file_name
    path.write_text(render_audit_log(conflicts, duplicates, errors), encoding="utf-8")
    return str(path)
