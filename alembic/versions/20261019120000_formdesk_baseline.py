"""formdesk baseline

Revision ID: 20261019120000
Revises:
Create Date: 2026-10-19

"""

from alembic import op
from sqlalchemy import inspect

# revision identifiers, used by Alembic.
revision = "20261019120000"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # create_all skips tables that already exist (databases created before alembic tracking).
    from formdesk.db.base import Base
    import formdesk.db.models  # noqa: F401

    bind = op.get_bind()
    Base.metadata.create_all(bind=bind)

    insp = inspect(bind)

    def has_index(table: str, name: str) -> bool:
        return any(i.get("name") == name for i in insp.get_indexes(table))

    # Composite indexes for the rescan / queue / clean-view queries
    for table, name, cols in [
        ("form_submissions", "ix_form_submissions_form_timestamp", ["form_id", "timestamp"]),
        ("form_submissions", "ix_form_submissions_form_entity", ["form_id", "entity_id"]),
        ("form_responses", "ix_form_responses_field_submission", ["field_id", "submission_id"]),
        ("allocation_requests", "ix_allocation_requests_submission_status", ["submission_id", "status"]),
    ]:
        if not has_index(table, name):
            op.create_index(name, table, cols)


def downgrade() -> None:
    # Baseline downgrade is a no-op to avoid accidental data loss.
    pass
