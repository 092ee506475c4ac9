"""
Typed Exception Hierarchy for the Procurement Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers of the lifecycle engine must tell apart three very different
situations without parsing message strings:

  - "your request was invalid"            -> ValidationError family
  - "the system has no policy for this"   -> ConfigurationNotFoundError
  - "someone else already acted on this"  -> InvalidStateTransitionError

Every exception therefore has:
  1. A TYPED class (catch by type, not message)
  2. A CODE class attribute (machine-readable, API-safe)
  3. Structured DATA as instance attributes (not just a message string)

Example - WRONG way to handle errors:
    try:
        service.approve(requisition_id, actor_id)
    except Exception as e:
        if "not pending" in str(e):   # FRAGILE - message might change
            refresh()

Example - RIGHT way:
    try:
        service.approve(requisition_id, actor_id)
    except InvalidStateTransitionError as e:
        show_current_state(e.entity_id, e.current_status)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from ProcurementError:

    ProcurementError (base)
    |
    +-- ValidationError
    |   +-- ReasonRequiredError
    |
    +-- NoDepartmentAssignedError
    |
    +-- ConfigurationNotFoundError
    |
    +-- NotFoundError
    |   +-- RequisitionNotFoundError
    |   +-- PurchaseOrderNotFoundError
    |   +-- ActorNotFoundError
    |   +-- DepartmentNotFoundError
    |   +-- NotificationNotFoundError
    |
    +-- StateError
    |   +-- InvalidStateTransitionError
    |   |   +-- ConcurrentModificationError
    |   +-- CannotCancelOrderedError
    |
    +-- AuthorizationError
        +-- InsufficientPermissionError
        +-- ForbiddenError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
Validation      | VALIDATION_ERROR            | Malformed input (items, title, limits)
                | REASON_REQUIRED             | Reject called without a reason
----------------|-----------------------------|-----------------------------------------
Identity        | NO_DEPARTMENT_ASSIGNED      | Requester has no department
----------------|-----------------------------|-----------------------------------------
Policy          | CONFIGURATION_NOT_FOUND     | No active approval config for amount
----------------|-----------------------------|-----------------------------------------
Lookup          | REQUISITION_NOT_FOUND       | Requisition ID doesn't exist
                | PURCHASE_ORDER_NOT_FOUND    | Purchase order ID doesn't exist
                | ACTOR_NOT_FOUND             | Actor ID unknown or inactive
                | DEPARTMENT_NOT_FOUND        | Department ID doesn't exist
                | NOTIFICATION_NOT_FOUND      | Notification ID doesn't exist
----------------|-----------------------------|-----------------------------------------
State           | INVALID_STATE_TRANSITION    | Status/level no longer allows the action
                | CONCURRENT_MODIFICATION     | Another caller persisted first
                | CANNOT_CANCEL_ORDERED       | Cancel on ordered/partially_ordered
----------------|-----------------------------|-----------------------------------------
Authorization   | INSUFFICIENT_PERMISSION     | Actor role doesn't match current level
                | FORBIDDEN                   | Actor may not perform this operation

===============================================================================
HANDLING PATTERNS
===============================================================================

1. REFRESH, DON'T RETRY, ON STATE ERRORS:

    except ConcurrentModificationError as e:
        # Another approver won the race; show the new state
        return {"error": e.code, "status": e.current_status}

2. CONFIGURATION ERRORS ARE OPERATOR PROBLEMS:

    except ConfigurationNotFoundError as e:
        alert_admins(module=e.module, amount=e.amount)

===============================================================================
DESIGN DECISIONS
===============================================================================

1. ConcurrentModificationError IS-A InvalidStateTransitionError.
   Callers that only know the generic state error still catch it; callers
   that want to distinguish "lost a race" look at the code.

2. ReasonRequiredError IS-A ValidationError.
   A missing reason is malformed input, so generic input handling applies.

===============================================================================
"""


class ProcurementError(Exception):
    """
    Base exception for all procurement kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "PROCUREMENT_ERROR"


# Validation


class ValidationError(ProcurementError):
    """Input failed validation before any persistence."""

    code: str = "VALIDATION_ERROR"

    def __init__(self, message: str, field_errors: dict[str, str] | None = None):
        self.field_errors = dict(field_errors or {})
        super().__init__(message)


class ReasonRequiredError(ValidationError):
    """A rejection was attempted without a reason."""

    code: str = "REASON_REQUIRED"

    def __init__(self, entity_id: str):
        self.entity_id = entity_id
        super().__init__(
            f"A rejection reason is required for {entity_id}",
            field_errors={"reason": "required"},
        )


class NoDepartmentAssignedError(ProcurementError):
    """The requesting actor has no department to attribute spend to."""

    code: str = "NO_DEPARTMENT_ASSIGNED"

    def __init__(self, actor_id: str):
        self.actor_id = actor_id
        super().__init__(f"Actor {actor_id} has no department assigned")


class ConfigurationNotFoundError(ProcurementError):
    """No active approval configuration covers the amount."""

    code: str = "CONFIGURATION_NOT_FOUND"

    def __init__(self, module: str, amount: str):
        self.module = module
        self.amount = amount
        super().__init__(
            f"No active approval configuration for module '{module}' "
            f"and amount {amount}"
        )


# Lookup


class NotFoundError(ProcurementError):
    """Base exception for missing entities."""

    code: str = "NOT_FOUND"


class RequisitionNotFoundError(NotFoundError):
    """Requisition with given ID or number was not found."""

    code: str = "REQUISITION_NOT_FOUND"

    def __init__(self, requisition_id: str):
        self.requisition_id = requisition_id
        super().__init__(f"Requisition not found: {requisition_id}")


class PurchaseOrderNotFoundError(NotFoundError):
    """Purchase order with given ID was not found."""

    code: str = "PURCHASE_ORDER_NOT_FOUND"

    def __init__(self, purchase_order_id: str):
        self.purchase_order_id = purchase_order_id
        super().__init__(f"Purchase order not found: {purchase_order_id}")


class ActorNotFoundError(NotFoundError):
    """Actor is unknown to the identity provider or inactive."""

    code: str = "ACTOR_NOT_FOUND"

    def __init__(self, actor_id: str):
        self.actor_id = actor_id
        super().__init__(f"Actor not found: {actor_id}")


class DepartmentNotFoundError(NotFoundError):
    """Department with given ID was not found."""

    code: str = "DEPARTMENT_NOT_FOUND"

    def __init__(self, department_id: str):
        self.department_id = department_id
        super().__init__(f"Department not found: {department_id}")


class NotificationNotFoundError(NotFoundError):
    """Notification with given ID was not found."""

    code: str = "NOTIFICATION_NOT_FOUND"

    def __init__(self, notification_id: str):
        self.notification_id = notification_id
        super().__init__(f"Notification not found: {notification_id}")


# State


class StateError(ProcurementError):
    """Base exception for lifecycle state errors."""

    code: str = "STATE_ERROR"


class InvalidStateTransitionError(StateError):
    """The entity's current status or level does not allow the action.

    Recoverable by re-fetching: ``current_status`` and ``current_level``
    describe the state the caller collided with.
    """

    code: str = "INVALID_STATE_TRANSITION"

    def __init__(
        self,
        entity_type: str,
        entity_id: str,
        current_status: str,
        attempted: str,
        current_level: int | None = None,
    ):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.current_status = current_status
        self.attempted = attempted
        self.current_level = current_level
        super().__init__(
            f"Cannot {attempted} {entity_type} {entity_id} "
            f"in status '{current_status}'"
        )


class ConcurrentModificationError(InvalidStateTransitionError):
    """Another transaction persisted a transition first."""

    code: str = "CONCURRENT_MODIFICATION"

    def __init__(
        self,
        entity_type: str,
        entity_id: str,
        current_status: str,
        attempted: str,
        current_level: int | None = None,
    ):
        super().__init__(
            entity_type, entity_id, current_status, attempted, current_level
        )
        self.args = (
            f"{entity_type} {entity_id} was modified by another transaction "
            f"(now '{current_status}'); refresh before retrying {attempted}",
        )


class CannotCancelOrderedError(StateError):
    """Requisition has already been (partially) converted to orders."""

    code: str = "CANNOT_CANCEL_ORDERED"

    def __init__(self, requisition_id: str, current_status: str):
        self.requisition_id = requisition_id
        self.current_status = current_status
        super().__init__(
            f"Requisition {requisition_id} is '{current_status}' and "
            "can no longer be cancelled"
        )


# Authorization


class AuthorizationError(ProcurementError):
    """Base exception for actor/role mismatches."""

    code: str = "AUTHORIZATION_ERROR"


class InsufficientPermissionError(AuthorizationError):
    """Actor's role may not act on the current approval level."""

    code: str = "INSUFFICIENT_PERMISSION"

    def __init__(
        self,
        actor_id: str,
        actor_role: str,
        required_role: str,
        level: int,
    ):
        self.actor_id = actor_id
        self.actor_role = actor_role
        self.required_role = required_role
        self.level = level
        super().__init__(
            f"Actor {actor_id} with role '{actor_role}' cannot act on "
            f"level {level} (requires '{required_role}')"
        )


class ForbiddenError(AuthorizationError):
    """Actor may not perform the operation at all."""

    code: str = "FORBIDDEN"

    def __init__(self, actor_id: str, action: str):
        self.actor_id = actor_id
        self.action = action
        super().__init__(f"Actor {actor_id} is not allowed to {action}")
