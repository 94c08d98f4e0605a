from datetime import datetime, timezone
from types import SimpleNamespace

from sqlalchemy import select

import orchestrator
import recurrence
from database import get_engine, tenant_session_scope
from models import Expense
from orchestrator import RecurringExpenseOrchestrator
from tenants import FileTenantDirectory, StaticTenantDirectory, TenantHandle


AS_OF = datetime(2024, 1, 20)


def _clock() -> datetime:
    return datetime(2024, 1, 20, 2, 0)


def _generated_numbers(handle: TenantHandle) -> list[str]:
    with tenant_session_scope(handle.database_url) as session:
        stmt = (
            select(Expense.expense_number)
            .where(Expense.is_recurring.is_(False))
            .order_by(Expense.expense_number)
        )
        return list(session.scalars(stmt).all())


def _orchestrator(handles, **kwargs) -> RecurringExpenseOrchestrator:
    kwargs.setdefault("max_workers", 2)
    kwargs.setdefault("tenant_timeout_secs", 60)
    return RecurringExpenseOrchestrator(
        StaticTenantDirectory(handles), clock=_clock, **kwargs
    )


def test_process_all_runs_every_tenant(tenant_store, seed_tenant):
    alpha = tenant_store("alpha")
    beta = tenant_store("beta")
    seed_tenant(alpha)
    seed_tenant(alpha, frequency="weekly", next_due_date=datetime(2024, 1, 18))
    seed_tenant(beta)

    result = _orchestrator([alpha, beta]).process_all(AS_OF)

    assert result.as_of == AS_OF
    assert result.total_tenants_processed == 2
    assert result.total_expenses_created == 3
    assert result.errors == []
    assert {r.tenant_id for r in result.tenant_results} == {"alpha", "beta"}
    # Each store numbers its own expenses.
    assert _generated_numbers(alpha) == ["EXP-2024-001", "EXP-2024-002"]
    assert _generated_numbers(beta) == ["EXP-2024-001"]


def test_unreachable_tenant_does_not_stop_the_run(tenant_store, seed_tenant):
    alpha = tenant_store("alpha")
    seed_tenant(alpha)
    missing = TenantHandle(
        tenant_id="ghost",
        database_url="sqlite:////nonexistent-dir/recurring/shop_ghost.db",
    )

    result = _orchestrator([missing, alpha]).process_all(AS_OF)

    assert result.total_tenants_processed == 1
    assert result.total_expenses_created == 1
    [error] = result.errors
    assert error.scope == "tenant"
    assert error.tenant_id == "ghost"
    assert error.error.startswith("Tenant ghost:")
    assert _generated_numbers(alpha) == ["EXP-2024-001"]


def test_template_errors_are_flattened_into_the_run(tenant_store, seed_tenant):
    alpha = tenant_store("alpha")
    seed_tenant(alpha)
    broken_id = seed_tenant(alpha, frequency="fortnightly")

    result = _orchestrator([alpha]).process_all(AS_OF)

    assert result.total_tenants_processed == 1
    assert result.total_expenses_created == 1
    [error] = result.errors
    assert error.scope == "template"
    assert error.tenant_id == "alpha"
    assert error.template_id == broken_id
    assert result.tenant_results[0].errors == [error]


def test_discovery_failure_is_reported(tmp_path):
    class BrokenDirectory:
        def list_tenants(self):
            raise OSError("tenant registry unavailable")

        def get(self, tenant_id):
            return None

    runner = RecurringExpenseOrchestrator(
        BrokenDirectory(), max_workers=1, tenant_timeout_secs=60, clock=_clock
    )
    result = runner.process_all(AS_OF)

    assert result.total_tenants_processed == 0
    assert result.tenant_results == []
    [error] = result.errors
    assert error.scope == "run"
    assert "tenant registry unavailable" in error.error


def test_no_tenants_is_an_empty_run():
    result = _orchestrator([]).process_all(AS_OF)

    assert result.total_tenants_processed == 0
    assert result.total_expenses_created == 0
    assert result.errors == []


def test_tenant_past_its_deadline_is_recorded(tenant_store, seed_tenant):
    slow = tenant_store("slow")
    seed_tenant(slow)

    result = _orchestrator([slow], tenant_timeout_secs=-1).process_all(AS_OF)

    assert result.total_tenants_processed == 0
    [error] = result.errors
    assert error.scope == "tenant"
    assert error.tenant_id == "slow"
    assert "deadline" in error.error
    assert _generated_numbers(slow) == []


def test_rerun_for_same_date_creates_nothing(tenant_store, seed_tenant):
    alpha = tenant_store("alpha")
    seed_tenant(alpha)
    runner = _orchestrator([alpha])

    first = runner.process_all(AS_OF)
    second = runner.process_all(AS_OF)

    assert first.total_expenses_created == 1
    assert second.total_tenants_processed == 1
    assert second.total_expenses_created == 0
    assert _generated_numbers(alpha) == ["EXP-2024-001"]


def test_aware_as_of_is_normalized(tenant_store, seed_tenant):
    alpha = tenant_store("alpha")
    seed_tenant(alpha, next_due_date=datetime(2024, 1, 20, 1, 0))

    result = _orchestrator([alpha]).process_all(
        datetime(2024, 1, 20, 3, 0, tzinfo=timezone.utc)
    )

    assert result.as_of == datetime(2024, 1, 20, 3, 0)
    assert result.total_expenses_created == 1


def test_file_directory_lists_tenant_stores(tmp_path):
    for name in ("shop_beta.db", "shop_alpha.db", "shop_template.db", "shop_.db"):
        (tmp_path / name).touch()
    (tmp_path / "other.db").touch()
    (tmp_path / "shop_gamma.db-wal").touch()

    directory = FileTenantDirectory(tmp_path, "shop_", "shop_template")

    handles = directory.list_tenants()
    assert [h.tenant_id for h in handles] == ["alpha", "beta"]
    assert handles[0].database_url == f"sqlite:///{tmp_path / 'shop_alpha.db'}"
    assert directory.get("beta") == handles[1]
    assert directory.get("template") is None
    assert directory.get("missing") is None
    assert directory.get("") is None


def test_file_directory_feeds_orchestrator(tmp_path, tenant_store, seed_tenant):
    alpha = tenant_store("alpha")
    seed_tenant(alpha)
    directory = FileTenantDirectory(tmp_path, "shop_", "shop_template")

    runner = RecurringExpenseOrchestrator(
        directory, max_workers=4, tenant_timeout_secs=60, clock=_clock
    )
    result = runner.process_all(AS_OF)

    assert result.total_tenants_processed == 1
    assert result.tenant_results[0].tenant_id == "alpha"
    assert result.total_expenses_created == 1


def test_deadline_reports_expenses_committed_before_it(
    tenant_store, seed_tenant, monkeypatch
):
    alpha = tenant_store("alpha")
    seed_tenant(alpha)
    seed_tenant(alpha)
    ticks = iter([0.0, 10.0])
    monkeypatch.setattr(orchestrator, "time", SimpleNamespace(monotonic=lambda: 0.0))
    monkeypatch.setattr(
        recurrence, "time", SimpleNamespace(monotonic=lambda: next(ticks))
    )

    result = _orchestrator([alpha], tenant_timeout_secs=5).process_all(AS_OF)

    assert _generated_numbers(alpha) == ["EXP-2024-001"]
    assert result.total_expenses_created == 1
    assert result.total_tenants_processed == 0
    [tenant_result] = result.tenant_results
    assert tenant_result.tenant_id == "alpha"
    assert tenant_result.processed_count == 1
    [error] = result.errors
    assert error.scope == "tenant"
    assert error.error == "Tenant alpha: processing exceeded 5s deadline"


def test_engines_of_unlisted_stores_are_released(tenant_store):
    alpha = tenant_store("alpha")
    closed = tenant_store("closed")
    alpha_engine = get_engine(alpha.database_url)
    closed_engine = get_engine(closed.database_url)

    _orchestrator([alpha]).process_all(AS_OF)

    assert get_engine(alpha.database_url) is alpha_engine
    assert get_engine(closed.database_url) is not closed_engine
