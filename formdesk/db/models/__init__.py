# Import all models so SQLAlchemy metadata is fully populated on startup.
from formdesk.db.models.user import User
from formdesk.db.models.form import Form
from formdesk.db.models.form_field import FormField
from formdesk.db.models.submission import FormSubmission
from formdesk.db.models.form_response import FormResponse
from formdesk.db.models.duplicate_setting import DuplicateSetting
from formdesk.db.models.entity import Entity
from formdesk.db.models.uni_mapping import UniMapping
from formdesk.db.models.allocation_request import AllocationRequest
from formdesk.db.models.notification import Notification
from formdesk.db.models.audit_log import AuditLog


__all__ = [
    "User",
    "Form",
    "FormField",
    "FormSubmission",
    "FormResponse",
    "DuplicateSetting",
    "Entity",
    "UniMapping",
    "AllocationRequest",
    "Notification",
    "AuditLog",
]
