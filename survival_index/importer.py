"""Import projects from a JSONL file in the ``projects.jsonl`` export format."""
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

import pydantic
from sqlalchemy.orm import Session

from survival_index import services
from survival_index.errors import ConflictError, ValidationError
from survival_index.schemas import ProjectCreate

log = logging.getLogger(__name__)


def _columns(record: dict[str, Any]) -> dict[str, Any]:
    """Validate an exported camelCase record into column-named fields.

    Unknown keys (id, timestamps, aiRating) are ignored.
    """
    return ProjectCreate.model_validate(record).to_columns()


def import_projects_jsonl(path: str | Path, session: Session) -> dict[str, int]:
    """Create unknown projects and update known ones (matched by name).

    Blank lines are ignored; malformed lines and invalid records are skipped.
    Commits once at the end.
    """
    created = updated = skipped = 0
    with Path(path).open("r", encoding="utf-8") as f:
        for lineno, line in enumerate(f, start=1):
            if not line.strip():
                continue
            try:
                record = json.loads(line)
            except json.JSONDecodeError:
                log.warning("Skipping malformed JSON on line %d of %s", lineno, path)
                skipped += 1
                continue
            if not isinstance(record, dict):
                skipped += 1
                continue

            try:
                fields = _columns(record)
                name = str(fields.get("name") or "").strip()
                existing = services.get_project_by_name(session, name) if name else None
                if existing is not None:
                    services.update_project(session, existing.id, fields)
                    updated += 1
                else:
                    services.create_project(session, **fields)
                    created += 1
            except (pydantic.ValidationError, ValidationError, ConflictError) as exc:
                log.warning("Skipping line %d of %s: %s", lineno, path, exc)
                skipped += 1

    session.commit()
    return {"created": created, "updated": updated, "skipped": skipped}
