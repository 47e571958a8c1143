from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker

ROOT = Path(__file__).resolve().parent
sys.path.append(str(ROOT))

os.environ["DATABASE_URL"] = "sqlite+pysqlite:///:memory:"
os.environ["DATABASE_WRITE_URL"] = "sqlite+pysqlite:///:memory:"
os.environ.setdefault("NOTIFICATIONS_EMAIL_PROVIDER", "log")

from certdb.database import Base  # noqa: E402
from certdb.apps.audit import models as audit_models  # noqa: E402
from certdb.apps.cvs import models as cv_models  # noqa: E402
from certdb.apps.directory import models as directory_models  # noqa: E402
from certdb.apps.integrations import models as integration_models  # noqa: E402
from certdb.apps.notifications import models as notification_models  # noqa: E402
from certdb.apps.qualifications import models as qualification_models  # noqa: E402
from certdb.apps.requirements import models as requirement_models  # noqa: E402
from certdb.apps.service_approvals import models as service_approval_models  # noqa: E402


def _enable_sqlite_savepoints(engine) -> None:
    # pysqlite starts transactions lazily and breaks SAVEPOINT; let SQLAlchemy emit BEGIN itself.
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")


@pytest.fixture()
def db_session():
    engine = create_engine("sqlite+pysqlite:///:memory:")
    _enable_sqlite_savepoints(engine)
    Base.metadata.create_all(
        bind=engine,
        tables=[
            directory_models.User.__table__,
            directory_models.Organization.__table__,
            directory_models.ServiceParent.__table__,
            directory_models.ServiceOffering.__table__,
            audit_models.AuditEvent.__table__,
            requirement_models.ServiceRequirement.__table__,
            qualification_models.Qualification.__table__,
            cv_models.ExpertCV.__table__,
            cv_models.ServiceAssignment.__table__,
            notification_models.EmailLog.__table__,
            integration_models.IntegrationConfig.__table__,
            integration_models.IntegrationOutboundEvent.__table__,
            service_approval_models.OrganizationServiceApproval.__table__,
        ],
    )
    TestingSession = sessionmaker(
        bind=engine,
        autoflush=False,
        autocommit=False,
        expire_on_commit=False,
    )
    session = TestingSession()
    try:
        yield session
    finally:
        session.close()
