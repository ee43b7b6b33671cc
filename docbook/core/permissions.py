"""
Role-based authorization for booking actions.

The rules live in two plain tables so they can be read and tested without a
database: ``AUTHORIZATION_TABLE`` maps (role, action) to the scope of records
the role may act on, and ``STATUS_GRANTS`` lists the statuses each role may
set through a status update.
"""

from enum import Enum
from typing import Dict, FrozenSet, Optional, Tuple

from pydantic import BaseModel

from .exceptions import Forbidden, InvalidStatus
from .security import UserRole
from ..models.appointment import Appointment, AppointmentStatus


class Action(str, Enum):
    REQUEST_APPOINTMENT = "request_appointment"
    RESCHEDULE = "reschedule"
    UPDATE_STATUS = "update_status"
    CANCEL = "cancel"
    LIST_BOOKED_SLOTS = "list_booked_slots"
    LIST_FOR_CUSTOMER = "list_for_customer"
    LIST_FOR_DOCTOR = "list_for_doctor"
    LIST_ALL = "list_all"


class Scope(str, Enum):
    ANY = "any"    # every record
    OWN = "own"    # records where the principal is the customer/doctor party
    NONE = "none"


AUTHORIZATION_TABLE: Dict[Tuple[UserRole, Action], Scope] = {
    (UserRole.CUSTOMER, Action.REQUEST_APPOINTMENT): Scope.ANY,
    (UserRole.CUSTOMER, Action.RESCHEDULE): Scope.OWN,
    (UserRole.CUSTOMER, Action.UPDATE_STATUS): Scope.OWN,
    (UserRole.CUSTOMER, Action.CANCEL): Scope.OWN,
    (UserRole.CUSTOMER, Action.LIST_BOOKED_SLOTS): Scope.ANY,
    (UserRole.CUSTOMER, Action.LIST_FOR_CUSTOMER): Scope.OWN,

    (UserRole.DOCTOR, Action.UPDATE_STATUS): Scope.OWN,
    (UserRole.DOCTOR, Action.LIST_BOOKED_SLOTS): Scope.ANY,
    (UserRole.DOCTOR, Action.LIST_FOR_DOCTOR): Scope.OWN,

    (UserRole.ADMIN, Action.RESCHEDULE): Scope.ANY,
    (UserRole.ADMIN, Action.UPDATE_STATUS): Scope.ANY,
    (UserRole.ADMIN, Action.CANCEL): Scope.ANY,
    (UserRole.ADMIN, Action.LIST_BOOKED_SLOTS): Scope.ANY,
    (UserRole.ADMIN, Action.LIST_FOR_CUSTOMER): Scope.ANY,
    (UserRole.ADMIN, Action.LIST_FOR_DOCTOR): Scope.ANY,
    (UserRole.ADMIN, Action.LIST_ALL): Scope.ANY,
}

ALL_STATUSES: FrozenSet[AppointmentStatus] = frozenset(AppointmentStatus)

STATUS_GRANTS: Dict[UserRole, FrozenSet[AppointmentStatus]] = {
    UserRole.CUSTOMER: frozenset({AppointmentStatus.CANCELLED}),
    UserRole.DOCTOR: ALL_STATUSES,
    UserRole.ADMIN: ALL_STATUSES,
}


class Principal(BaseModel):
    """The authenticated caller: who they are and which role they act in."""

    user_id: int
    role: UserRole

    def is_party_to(self, appointment: Appointment) -> bool:
        if self.role == UserRole.CUSTOMER:
            return appointment.customer_id == self.user_id
        if self.role == UserRole.DOCTOR:
            return appointment.doctor_id == self.user_id
        return False


def scope_for(role: UserRole, action: Action) -> Scope:
    return AUTHORIZATION_TABLE.get((UserRole(role), action), Scope.NONE)


def is_allowed(
    principal: Principal,
    action: Action,
    appointment: Optional[Appointment] = None,
    subject_id: Optional[int] = None,
) -> bool:
    """Check an action against the table.

    ``appointment`` is the record acted on; ``subject_id`` is the user whose
    listing is requested. An OWN grant needs one of them to belong to the
    principal.
    """
    scope = scope_for(principal.role, action)
    if scope == Scope.ANY:
        return True
    if scope == Scope.OWN:
        if appointment is not None:
            return principal.is_party_to(appointment)
        return subject_id is not None and subject_id == principal.user_id
    return False


def authorize(
    principal: Principal,
    action: Action,
    appointment: Optional[Appointment] = None,
    subject_id: Optional[int] = None,
) -> None:
    if not is_allowed(principal, action, appointment, subject_id):
        raise Forbidden(
            f"Role '{principal.role.value}' is not allowed to {action.value.replace('_', ' ')} here"
        )


def resolve_status_grant(role: UserRole, requested: str) -> AppointmentStatus:
    """Map a requested status string to a status the role may set.

    Raises ``InvalidStatus`` for unknown values when the role may set every
    status, and ``Forbidden`` when the value is outside a narrower grant.
    """
    grants = STATUS_GRANTS.get(UserRole(role), frozenset())
    try:
        new_status = AppointmentStatus(requested)
    except ValueError:
        new_status = None

    if new_status is not None and new_status in grants:
        return new_status
    if grants == ALL_STATUSES:
        raise InvalidStatus(f"Invalid status provided: '{requested}'")
    allowed = ", ".join(sorted(s.value for s in grants)) or "none"
    raise Forbidden(f"Role '{UserRole(role).value}' may only set status: {allowed}")
