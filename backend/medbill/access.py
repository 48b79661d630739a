"""
Access control primitives: the static role/module/action permission table and
the per-request company scope.

Both are pure. Nothing here touches the database or caches results, so the
auth dependency recomputes them for every request from the loaded user row.
"""

from dataclasses import dataclass
from typing import Any, Callable, Iterable, Optional

MODULES = (
    "dashboard",
    "patients",
    "services",
    "prebills",
    "reports",
    "audit",
    "financial",
    "rips",
    "contracts",
    "companies",
    "users",
    "import",
)

ACTIONS = ("read", "create", "update", "delete", "execute")

ROLES = ("superadmin", "admin", "biller", "auditor", "reports", "rips", "custom")

_R = frozenset({"read"})
_RCU = frozenset({"read", "create", "update"})

ROLE_PERMISSIONS: dict[str, dict[str, frozenset]] = {
    "admin": {
        "dashboard": _R,
        "patients": _RCU,
        "services": _RCU,
        "prebills": _RCU,
        "reports": _R,
        "audit": _R,
        "financial": _R,
        "rips": frozenset({"read", "create"}),
        "contracts": frozenset({"read", "update"}),
        "companies": frozenset({"read", "update"}),
        "import": frozenset({"read", "execute"}),
    },
    "biller": {
        "dashboard": _R,
        "patients": _RCU,
        "services": _RCU,
        "prebills": _RCU,
        "reports": _R,
        "contracts": _R,
        "import": frozenset({"read", "execute"}),
    },
    "auditor": {
        "dashboard": _R,
        "patients": _R,
        "services": _R,
        "prebills": _R,
        "reports": _R,
        "audit": _RCU,
        "financial": _R,
        "contracts": _R,
    },
    "reports": {
        "dashboard": _R,
        "reports": _R,
        "financial": _R,
    },
    "rips": {
        "dashboard": _R,
        "patients": _R,
        "services": _R,
        "rips": frozenset({"read", "create", "update", "execute"}),
        "reports": _R,
    },
}


def _custom_table(custom_permissions: Optional[Iterable[dict]]) -> dict[str, frozenset]:
    table: dict[str, frozenset] = {}
    for entry in custom_permissions or []:
        module = entry.get("module")
        actions = entry.get("actions") or []
        if module in MODULES:
            table[module] = table.get(module, frozenset()) | frozenset(a for a in actions if a in ACTIONS)
    return table


def permission_table(role: str, custom_permissions: Optional[Iterable[dict]] = None) -> dict[str, frozenset]:
    """Effective module -> actions mapping for a role."""
    if role == "superadmin":
        return {module: frozenset(ACTIONS) for module in MODULES}
    if role == "custom":
        return _custom_table(custom_permissions)
    return ROLE_PERMISSIONS.get(role, {})


def has_permission(
    role: str,
    module: str,
    action: str,
    custom_permissions: Optional[Iterable[dict]] = None,
) -> bool:
    """True when ``role`` may perform ``action`` on ``module``. Unknown pairs deny."""
    if role == "superadmin":
        return True
    return action in permission_table(role, custom_permissions).get(module, frozenset())


@dataclass(frozen=True)
class CompanyScope:
    """Companies visible to one request. ``allowed`` is None when unrestricted."""

    allowed: Optional[frozenset] = None

    @property
    def unrestricted(self) -> bool:
        return self.allowed is None

    def allows(self, company_id: Optional[int]) -> bool:
        if self.allowed is None:
            return True
        return company_id is not None and company_id in self.allowed

    def apply(self, query, column):
        """Constrain a select() on ``column``. An empty scope matches no rows."""
        if self.allowed is None:
            return query
        return query.where(column.in_(sorted(self.allowed)))

    def filter_items(self, items: Iterable[Any], key: Callable[[Any], Optional[int]]) -> list:
        if self.allowed is None:
            return list(items)
        return [item for item in items if key(item) in self.allowed]

    def as_list(self) -> Optional[list[int]]:
        return None if self.allowed is None else sorted(self.allowed)


def _company_ids(values: Optional[Iterable[Any]]) -> frozenset:
    ids = set()
    for value in values or []:
        try:
            ids.add(int(value))
        except (TypeError, ValueError):
            continue
    return frozenset(ids)


def resolve_company_scope(
    role: str,
    can_view_all_companies: bool,
    assigned_companies: Optional[Iterable[Any]],
) -> CompanyScope:
    if role == "superadmin" or can_view_all_companies:
        return CompanyScope(allowed=None)
    return CompanyScope(allowed=_company_ids(assigned_companies))
