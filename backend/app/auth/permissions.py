"""Permission key grammar and the resolver.

Design:
  - Roles contribute GRANTS only: a set of keys, possibly wildcards.
  - Individual overrides are `{key: True/False}` per employee and beat
    role grants for the same exact key.
  - `resolve_matrix()` computes the effective matrix for every catalog
    key; `check_permission()` runs the same chain for one key and says
    which rule decided it.
  - Both are pure: callers load the snapshot (see app.services.resolver).

Key grammar (after normalization):
  resource.action   concrete key, must exist in the catalog to be stored
  *                 admin wildcard, grants everything
  resource.*        dot wildcard, every action of one resource
  resource*         legacy bare prefix, raw string prefix match

Precedence, first match wins:
  0. admin `*` held via a role or a granted override (cannot be revoked)
  a. exact override          -> the override's boolean, source individual
  b. exact role key          -> True, source role
  d. `resource.*`            -> True
  e. legacy `prefix*`        -> True when key starts with prefix
  otherwise                  -> False
"""

from __future__ import annotations

import enum
import re
from dataclasses import dataclass

from app.auth.catalog import PermissionCatalog
from app.middleware.exceptions import ConfigurationError, ValidationError
from app.schemas.permissions import (
    CheckResult,
    PermissionCell,
    ResolvedMatrix,
    ResourcePermissions,
)

ADMIN_WILDCARD = "*"

_SEPARATORS = re.compile(r"[:\-/]")
_REPEATED_DOTS = re.compile(r"\.{2,}")

_CONCRETE_RE = re.compile(r"^[a-z][a-z0-9_]*\.[a-z][a-z0-9_]*$")
_DOT_WILDCARD_RE = re.compile(r"^[a-z][a-z0-9_]*\.\*$")
_LEGACY_PREFIX_RE = re.compile(r"^[a-z][a-z0-9_]*\*$")


class KeyKind(str, enum.Enum):
    CONCRETE = "concrete"
    ADMIN = "admin"
    DOT_WILDCARD = "dot_wildcard"
    LEGACY_PREFIX = "legacy_prefix"


class MatchRule(str, enum.Enum):
    ADMIN_WILDCARD = "admin_wildcard"
    INDIVIDUAL_OVERRIDE = "individual_override"
    ROLE_EXACT = "role_exact"
    DOT_WILDCARD = "dot_wildcard"
    LEGACY_PREFIX = "legacy_prefix"
    NO_MATCH = "no_match"


# ── Key grammar ─────────────────────────────────────────────

def normalize_key(raw: str) -> str:
    """Lowercase, map `:` `-` `/` to `.`, collapse dot runs, trim dots.

    Idempotent: normalize_key(normalize_key(k)) == normalize_key(k).
    """
    key = raw.strip().lower()
    key = _SEPARATORS.sub(".", key)
    key = _REPEATED_DOTS.sub(".", key)
    return key.strip(".")


def classify_key(key: str) -> KeyKind:
    """Return the kind of an already-normalized key, or raise ValidationError."""
    if key == ADMIN_WILDCARD:
        return KeyKind.ADMIN
    if _CONCRETE_RE.match(key):
        return KeyKind.CONCRETE
    if _DOT_WILDCARD_RE.match(key):
        return KeyKind.DOT_WILDCARD
    if _LEGACY_PREFIX_RE.match(key):
        return KeyKind.LEGACY_PREFIX
    raise ValidationError(
        f"Malformed permission key: {key!r}",
        error_code="MALFORMED_PERMISSION_KEY",
        details={"permission_key": key},
    )


def validate_grant_key(
    raw: str,
    catalog: PermissionCatalog,
    *,
    allow_legacy: bool = False,
) -> str:
    """Normalize a key that is about to be stored and check it against the catalog.

    Concrete keys must exist; `resource.*` must name a catalog resource.
    The legacy bare-prefix form is only accepted when `allow_legacy` is set
    (it exists in old data, new writes use `resource.*`).
    """
    key = normalize_key(raw)
    kind = classify_key(key)

    if kind is KeyKind.CONCRETE and key not in catalog:
        raise ValidationError(
            f"Unknown permission: {key}",
            error_code="UNKNOWN_PERMISSION",
            details={"permission_key": key},
        )
    if kind is KeyKind.DOT_WILDCARD and not catalog.has_resource(key[:-2]):
        raise ValidationError(
            f"Unknown resource in wildcard: {key}",
            error_code="UNKNOWN_PERMISSION",
            details={"permission_key": key},
        )
    if kind is KeyKind.LEGACY_PREFIX and not allow_legacy:
        raise ValidationError(
            f"Bare-prefix wildcards are no longer accepted, use '{key[:-1]}.*'",
            error_code="LEGACY_WILDCARD_NOT_ALLOWED",
            details={"permission_key": key},
        )
    return key


def is_wildcard(key: str) -> bool:
    return key == ADMIN_WILDCARD or key.endswith("*")


# ── Match rules ─────────────────────────────────────────

def matches_dot_wildcard(entry: str, key: str) -> bool:
    """`inventory.*` matches `inventory.view` but not `inventory_table.view`."""
    if not entry.endswith(".*") or entry == ADMIN_WILDCARD:
        return False
    return key.split(".", 1)[0] == entry[:-2]


def matches_legacy_prefix(entry: str, key: str) -> bool:
    """`sale*` matches anything starting with `sale`, including `sales.view`."""
    if entry == ADMIN_WILDCARD or not entry.endswith("*") or entry.endswith(".*"):
        return False
    return key.startswith(entry[:-1])


# ── Resolution ──────────────────────────────────────────────

@dataclass(frozen=True)
class Decision:
    allowed: bool
    rule: MatchRule
    source: str
    matched_key: str | None = None


class _Grants:
    """Role keys and overrides of one employee, indexed for matching."""

    def __init__(
        self,
        role_keys: set[str],
        overrides: dict[str, bool],
        legacy_prefix: bool,
    ):
        self.role_keys = role_keys
        self.overrides = overrides
        self.legacy_prefix = legacy_prefix
        # Only granting overrides take part in wildcard rules
        self.override_entries = {k for k, granted in overrides.items() if granted}
        self.role_wildcards = sorted(k for k in role_keys if is_wildcard(k))
        self.override_wildcards = sorted(k for k in self.override_entries if is_wildcard(k))

    def _admin(self) -> Decision | None:
        if ADMIN_WILDCARD in self.override_entries:
            return Decision(True, MatchRule.ADMIN_WILDCARD, "individual", ADMIN_WILDCARD)
        if ADMIN_WILDCARD in self.role_keys:
            return Decision(True, MatchRule.ADMIN_WILDCARD, "role", ADMIN_WILDCARD)
        return None

    def _wildcard(self, key: str, rule: MatchRule, matcher) -> Decision | None:
        for entry in self.override_wildcards:
            if matcher(entry, key):
                return Decision(True, rule, "individual", entry)
        for entry in self.role_wildcards:
            if matcher(entry, key):
                return Decision(True, rule, "role", entry)
        return None

    def decide(self, key: str) -> Decision:
        admin = self._admin()
        if admin:
            return admin

        if key in self.overrides:
            return Decision(
                self.overrides[key], MatchRule.INDIVIDUAL_OVERRIDE, "individual", key
            )

        if key in self.role_keys:
            return Decision(True, MatchRule.ROLE_EXACT, "role", key)

        decision = self._wildcard(key, MatchRule.DOT_WILDCARD, matches_dot_wildcard)
        if decision:
            return decision

        if self.legacy_prefix:
            decision = self._wildcard(key, MatchRule.LEGACY_PREFIX, matches_legacy_prefix)
            if decision:
                return decision

        return Decision(False, MatchRule.NO_MATCH, "role")


def resolve_matrix(
    catalog: PermissionCatalog,
    role_keys: set[str],
    overrides: dict[str, bool],
    *,
    legacy_prefix: bool = True,
    employee_id: str | None = None,
) -> ResolvedMatrix:
    """Compute the effective permission for every catalog (resource, action)."""
    if len(catalog) == 0:
        raise ConfigurationError("Permission catalog is empty")

    grants = _Grants(role_keys, overrides, legacy_prefix)
    resources = []
    for resource in catalog.resources:
        cells = []
        for action in resource.actions:
            key = resource.key(action.name)
            decision = grants.decide(key)
            cells.append(PermissionCell(
                name=action.name,
                display_name=action.display_name,
                permission_key=key,
                has_permission=decision.allowed,
                source=decision.source,
            ))
        resources.append(ResourcePermissions(
            name=resource.name,
            display_name=resource.display_name,
            resource_type=resource.resource_type,
            actions=cells,
        ))
    return ResolvedMatrix(employee_id=employee_id, resources=resources)


def check_permission(
    role_keys: set[str],
    overrides: dict[str, bool],
    raw_key: str,
    *,
    legacy_prefix: bool = True,
) -> CheckResult:
    """Answer a single query and report which rule matched."""
    key = normalize_key(raw_key)
    if classify_key(key) is not KeyKind.CONCRETE:
        raise ValidationError(
            f"Checks take a concrete key, got {key!r}",
            error_code="MALFORMED_PERMISSION_KEY",
            details={"permission_key": key},
        )
    decision = _Grants(role_keys, overrides, legacy_prefix).decide(key)
    return CheckResult(
        permission_key=key,
        allowed=decision.allowed,
        reason=decision.rule.value,
        source=decision.source,
        matched_key=decision.matched_key,
    )
