"""Persisted duplicate flags.

Loads a form's key fields and submission values, runs the pure resolver
(`formdesk.core.dedup`) and writes `form_submissions.duplicated`.
Nothing here commits: the caller owns the transaction so the rescan can
share it with other work (e.g. moving submissions into a form).
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass

from sqlalchemy.orm import Session

from formdesk.core import dedup
from formdesk.db.models.duplicate_setting import DuplicateSetting
from formdesk.db.models.form import Form
from formdesk.db.models.form_response import FormResponse
from formdesk.db.models.submission import FormSubmission

logger = logging.getLogger("formdesk.duplicates")

_UPDATE_CHUNK = 500


@dataclass(slots=True)
class RecheckResult:
    form_id: int
    fields_checked: list[str]
    duplicate_settings_used: bool
    total_submissions: int
    duplicates_found: int

    def as_dict(self) -> dict:
        return asdict(self)


def ordered_fields(form: Form) -> list:
    return sorted(form.fields, key=lambda f: (f.sort_order or 0, f.id))


def configured_field_ids(db: Session, form_id: int) -> list[int]:
    rows = db.query(DuplicateSetting.field_id).filter(DuplicateSetting.form_id == form_id).all()
    return [r[0] for r in rows]


def load_key_fields(db: Session, form: Form) -> tuple[list[dedup.KeyField], bool]:
    return dedup.select_key_fields(ordered_fields(form), configured_field_ids(db, form.id))


def load_submission_values(
    db: Session, form_id: int, key_fields: list[dedup.KeyField]
) -> list[dedup.SubmissionValues]:
    subs = (
        db.query(FormSubmission.id, FormSubmission.timestamp)
        .filter(FormSubmission.form_id == form_id)
        .all()
    )
    values: dict[int, dict[int, str | None]] = {sid: {} for sid, _ in subs}

    field_ids = [f.id for f in key_fields]
    if field_ids and values:
        rows = (
            db.query(FormResponse.submission_id, FormResponse.field_id, FormResponse.value)
            .join(FormSubmission, FormSubmission.id == FormResponse.submission_id)
            .filter(FormSubmission.form_id == form_id, FormResponse.field_id.in_(field_ids))
            .all()
        )
        for sid, fid, value in rows:
            values[sid][fid] = value

    return [dedup.SubmissionValues(id=sid, timestamp=ts, values=values[sid]) for sid, ts in subs]


def apply_duplicate_flags(db: Session, form: Form) -> RecheckResult:
    """Full rescan of one form: reset every flag, then flag non-canonical members."""
    key_fields, settings_used = load_key_fields(db, form)
    submissions = load_submission_values(db, form.id, key_fields)

    db.query(FormSubmission).filter(FormSubmission.form_id == form.id).update(
        {FormSubmission.duplicated: False}, synchronize_session=False
    )

    verdicts = dedup.resolve(submissions, key_fields)
    duplicate_ids = sorted(sid for sid, v in verdicts.items() if v.is_duplicate)
    for i in range(0, len(duplicate_ids), _UPDATE_CHUNK):
        chunk = duplicate_ids[i : i + _UPDATE_CHUNK]
        db.query(FormSubmission).filter(FormSubmission.id.in_(chunk)).update(
            {FormSubmission.duplicated: True}, synchronize_session=False
        )
    db.flush()
    # bulk updates bypass the identity map
    db.expire_all()

    result = RecheckResult(
        form_id=form.id,
        fields_checked=[f.field_name for f in key_fields],
        duplicate_settings_used=settings_used,
        total_submissions=len(submissions),
        duplicates_found=len(duplicate_ids),
    )
    logger.info(
        "duplicate rescan form=%s fields=%s submissions=%s duplicates=%s",
        form.id,
        ",".join(result.fields_checked) or "-",
        result.total_submissions,
        result.duplicates_found,
    )
    return result


def analyze_duplicates(db: Session, form: Form) -> dict:
    """Read-only view of what a rescan would do."""
    key_fields, settings_used = load_key_fields(db, form)
    submissions = load_submission_values(db, form.id, key_fields)
    groups = dedup.find_duplicate_groups(submissions, key_fields)

    flagged = (
        db.query(FormSubmission)
        .filter(FormSubmission.form_id == form.id, FormSubmission.duplicated == True)  # noqa: E712
        .count()
    )

    return {
        "form_id": form.id,
        "duplicate_settings_used": settings_used,
        "fields_checked": [f.field_name for f in key_fields],
        "total_submissions": len(submissions),
        "currently_flagged": flagged,
        "potential_duplicates": sum(len(g.members) - 1 for g in groups),
        "groups": [
            {
                "key": g.key,
                "count": len(g.members),
                "canonical_id": g.members[0].id,
                "submission_ids": [m.id for m in g.members],
                "timestamps": [m.timestamp for m in g.members],
            }
            for g in groups
        ],
    }
