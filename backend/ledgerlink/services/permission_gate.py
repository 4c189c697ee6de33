# Overview: Per-operation capability checks against a resolved company context.

"""
Permission Gate

WHY: Passing the company-context check only proves the caller may see the
company. Each operation still needs its own capability: loading a page
needs read, marking an item reviewed needs edit, an export needs export.

DESIGN PRINCIPLES:
- Fail closed: a capability missing from the vector is denied
- Checked per operation, never cached on the session
- Denials are logged and audited as PERMISSION_DENIED
- Side-effecting operations record their audit event only after they succeed
"""

import logging
from contextlib import contextmanager

from ..errors import ForbiddenError, ValidationError
from ..logging_config import short_id
from ..models.constants import SecurityEventType
from . import audit_service


logger = logging.getLogger(__name__)

CAPABILITIES = ("read", "edit", "export", "btw")


def has_capability(permissions: dict, capability: str) -> bool:
    if capability not in CAPABILITIES:
        raise ValidationError(f"Unknown capability: {capability}")
    return bool(permissions.get(f"can_{capability}", False))


def require(permissions: dict, capability: str) -> None:
    """Raise ForbiddenError unless ``permissions`` grants ``capability``."""
    if not has_capability(permissions, capability):
        raise ForbiddenError(detail={"required": capability})


def check(context, capability: str) -> None:
    """require() against a CompanyContext, auditing the denial."""
    try:
        require(context.permissions, capability)
    except ForbiddenError:
        logger.warning(
            "Permission denied: user=%s company=%s capability=%s",
            short_id(context.user_id),
            short_id(context.active_company_id),
            capability,
        )
        audit_service.record(
            SecurityEventType.PERMISSION_DENIED,
            actor_id=context.user_id,
            company_id=context.active_company_id,
            metadata={"capability": capability, "role": context.role},
        )
        raise


@contextmanager
def authorize_and_record(
    context,
    capability: str,
    event_type: str,
    actor_id: str | None = None,
    metadata: dict | None = None,
):
    """
    Gate a side-effecting operation and audit it once it completes.

        with permission_gate.authorize_and_record(ctx, "export", DATA_EXPORTED) as meta:
            ... do the export ...
            meta["rows"] = 12

    The yielded dict is merged into the audit metadata. Nothing is recorded
    when the body raises.
    """
    check(context, capability)

    extra = dict(metadata or {})
    yield extra

    audit_service.record(
        event_type,
        actor_id=actor_id or context.user_id,
        company_id=context.active_company_id,
        metadata=extra,
    )
