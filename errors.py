from typing import Optional


class InvalidRecurringConfig(ValueError):
    pass


class RecurringTemplateNotFound(LookupError):
    pass


class InvalidFrequency(ValueError):
    """Raised for a frequency outside daily/weekly/monthly/yearly.

    Only reachable through malformed stored configuration, so callers treat it
    as a bug in the data rather than a user error.
    """


class ExpenseNumberGenerationFailed(RuntimeError):
    pass


class TemplateProcessingError(RuntimeError):
    def __init__(self, template_id: int, cause: BaseException) -> None:
        super().__init__(f"Template {template_id}: {cause}")
        self.template_id = template_id
        self.cause = cause


class TenantProcessingError(RuntimeError):
    def __init__(
        self,
        tenant_id: str,
        cause: Optional[BaseException] = None,
        message: Optional[str] = None,
    ) -> None:
        super().__init__(message or f"Tenant {tenant_id}: {cause}")
        self.tenant_id = tenant_id
        self.cause = cause


class TenantDeadlineExceeded(TenantProcessingError):
    """Carries the tenant result gathered before the deadline; those templates
    are already committed."""

    def __init__(
        self, tenant_id: str, timeout_secs: float, partial_result=None
    ) -> None:
        super().__init__(
            tenant_id,
            message=(
                f"Tenant {tenant_id}: processing exceeded {timeout_secs:g}s deadline"
            ),
        )
        self.timeout_secs = timeout_secs
        self.partial_result = partial_result
