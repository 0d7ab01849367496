"""FastAPI dependencies wiring a request-scoped session into the services."""
from fastapi import Depends
from sqlalchemy.orm import Session

from app.database import get_db
from app.services.directory import SqlDirectory
from app.services.meeting_provisioner import JitsiMeetingProvisioner
from app.store.sql import SqlRecordStore


def get_store(db: Session = Depends(get_db)) -> SqlRecordStore:
    return SqlRecordStore(db)


def get_provisioner(store: SqlRecordStore = Depends(get_store)) -> JitsiMeetingProvisioner:
    # Shares the store so provisioning joins the caller's transaction
    return JitsiMeetingProvisioner(store)


def get_directory(db: Session = Depends(get_db)) -> SqlDirectory:
    return SqlDirectory(db)
