# backend/certdb/__init__.py
"""
Import ORM models from each app so that:

- Alembic and Base.metadata.create_all() see all tables.
- Relationship targets referenced by name are registered before mapping.

The actual model classes are kept in certdb/apps/*/models.py.
"""

from .apps.directory import models as directory_models                # users / organizations / service catalogue
from .apps.audit import models as audit_models                        # audit trail
from .apps.requirements import models as requirements_models          # per-offering requirement versions
from .apps.qualifications import models as qualifications_models      # global expert qualifications
from .apps.cvs import models as cvs_models                            # expert CVs + service assignments
from .apps.notifications import models as notifications_models      # email log
from .apps.integrations import models as integrations_models          # outbound integration events
from .apps.service_approvals import models as service_approvals_models  # organization service approvals

__all__ = [
    "directory_models",
    "audit_models",
    "requirements_models",
    "qualifications_models",
    "cvs_models",
    "notifications_models",
    "integrations_models",
    "service_approvals_models",
]
