from exam_engine.models.exam import Exam  # noqa
from exam_engine.models.submission import Submission  # noqa
from exam_engine.models.audit_log import AuditLog  # noqa
