from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional, Protocol

from config import Settings


@dataclass(frozen=True)
class TenantHandle:
    tenant_id: str
    database_url: str


class TenantDirectory(Protocol):
    def list_tenants(self) -> list[TenantHandle]:
        ...

    def get(self, tenant_id: str) -> Optional[TenantHandle]:
        ...


class FileTenantDirectory:
    """Tenants are SQLite files named ``<prefix><tenant_id>.db`` in one directory.

    The directory is listed afresh on every call; the template store used to
    provision new shops is never treated as a tenant.
    """

    def __init__(self, data_dir: Path, prefix: str, template_name: str) -> None:
        self.data_dir = data_dir
        self.prefix = prefix
        self.template_name = template_name

    @classmethod
    def from_settings(cls, settings: Settings) -> "FileTenantDirectory":
        return cls(settings.data_dir, settings.tenant_prefix, settings.tenant_template)

    def _handle(self, path: Path) -> TenantHandle:
        tenant_id = path.stem[len(self.prefix) :]
        return TenantHandle(tenant_id=tenant_id, database_url=f"sqlite:///{path}")

    def list_tenants(self) -> list[TenantHandle]:
        handles = []
        for path in sorted(self.data_dir.glob(f"{self.prefix}*.db")):
            if path.stem == self.template_name or path.stem == self.prefix:
                continue
            handles.append(self._handle(path))
        return handles

    def get(self, tenant_id: str) -> Optional[TenantHandle]:
        path = self.data_dir / f"{self.prefix}{tenant_id}.db"
        if not tenant_id or path.stem == self.template_name or not path.is_file():
            return None
        return self._handle(path)


class StaticTenantDirectory:
    def __init__(self, handles: Iterable[TenantHandle]) -> None:
        self.handles = list(handles)

    def list_tenants(self) -> list[TenantHandle]:
        return list(self.handles)

    def get(self, tenant_id: str) -> Optional[TenantHandle]:
        for handle in self.handles:
            if handle.tenant_id == tenant_id:
                return handle
        return None
