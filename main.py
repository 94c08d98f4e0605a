import logging
from typing import Iterator, Optional

from fastapi import Depends, FastAPI, Header, HTTPException
from sqlalchemy.orm import Session

from auth import AccessToken, decode_access_token
from config import get_settings
from database import get_sessionmaker
from errors import InvalidRecurringConfig, RecurringTemplateNotFound
from orchestrator import AggregateRunResult, RecurringExpenseOrchestrator
from recurrence import RecurringEngine, TenantRunResult, to_naive_utc
from scheduler import SchedulerManager
from schemas import (
    ProcessRequest,
    RecurringTemplateList,
    RecurringTemplateUpdate,
    UpdateResult,
)
from services import RecurringTemplateService
from tenants import FileTenantDirectory, TenantDirectory, TenantHandle


logger = logging.getLogger(__name__)

app = FastAPI(title="Shop Recurring Expenses")

tenant_directory: TenantDirectory = FileTenantDirectory.from_settings(get_settings())
orchestrator = RecurringExpenseOrchestrator(tenant_directory)
scheduler_manager = SchedulerManager(orchestrator)


@app.on_event("startup")
def startup_event():
    scheduler_manager.start()


@app.on_event("shutdown")
def shutdown_event():
    scheduler_manager.stop()


def get_directory() -> TenantDirectory:
    return tenant_directory


def get_scheduler() -> SchedulerManager:
    return scheduler_manager


def get_access_token(
    authorization: Optional[str] = Header(default=None),
) -> AccessToken:
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(status_code=401, detail="Missing bearer token")
    token = decode_access_token(authorization.split(" ", 1)[1].strip())
    if token is None:
        raise HTTPException(status_code=401, detail="Invalid or expired token")
    return token


def require_operator(token: AccessToken = Depends(get_access_token)) -> AccessToken:
    if not token.operator:
        raise HTTPException(status_code=403, detail="Operator access required")
    return token


def get_tenant(
    token: AccessToken = Depends(get_access_token),
    directory: TenantDirectory = Depends(get_directory),
) -> TenantHandle:
    if token.tenant_id is None:
        raise HTTPException(status_code=403, detail="Token is not bound to a shop")
    handle = directory.get(token.tenant_id)
    if handle is None:
        raise HTTPException(status_code=404, detail="Shop not found")
    return handle


def get_tenant_db(handle: TenantHandle = Depends(get_tenant)) -> Iterator[Session]:
    db = get_sessionmaker(handle.database_url)()
    try:
        yield db
    finally:
        db.close()


@app.get("/api/recurring-expenses", response_model=RecurringTemplateList)
def list_recurring_expenses(
    category_id: Optional[int] = None,
    is_active: Optional[bool] = None,
    db: Session = Depends(get_tenant_db),
):
    templates = RecurringTemplateService(db).list_templates(
        category_id=category_id, is_active=is_active
    )
    return RecurringTemplateList(data=templates, count=len(templates))


@app.put("/api/recurring-expenses/{template_id}", response_model=UpdateResult)
def update_recurring_expense(
    template_id: int,
    updates: RecurringTemplateUpdate,
    db: Session = Depends(get_tenant_db),
):
    try:
        return RecurringTemplateService(db).update(template_id, updates)
    except RecurringTemplateNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except InvalidRecurringConfig as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.post("/api/recurring-expenses/{template_id}/stop", response_model=UpdateResult)
def stop_recurring_expense(template_id: int, db: Session = Depends(get_tenant_db)):
    try:
        return RecurringTemplateService(db).stop(template_id)
    except RecurringTemplateNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@app.post("/api/recurring-expenses/process")
def process_recurring_expenses(
    payload: Optional[ProcessRequest] = None,
    handle: TenantHandle = Depends(get_tenant),
    db: Session = Depends(get_tenant_db),
) -> TenantRunResult:
    as_of = payload.process_date if payload else None
    engine = RecurringEngine(db, tenant_id=handle.tenant_id)
    return engine.process_due_templates(to_naive_utc(as_of) if as_of else None)


@app.post("/api/admin/recurring-expenses/run")
def run_recurring_expenses(
    payload: Optional[ProcessRequest] = None,
    token: AccessToken = Depends(require_operator),
    manager: SchedulerManager = Depends(get_scheduler),
) -> AggregateRunResult:
    as_of = payload.process_date if payload else None
    logger.info(f"manual_run: user={token.user_id}")
    return manager.run_now(as_of)


def main():
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
