"""
Capability predicates over the closed set of caller roles.
"""

from .schema import Actor, Role

VALIDATOR_ROLES = frozenset([Role.VERIFIER, Role.ADMINISTRATOR])


def can_validate(role: Role) -> bool:
    """Roles that may sit on a panel at all."""
    return role in VALIDATOR_ROLES


def can_vote(actor: Actor, is_assigned: bool) -> bool:
    return can_validate(actor.role) and is_assigned


def can_assign(actor: Actor) -> bool:
    return actor.role == Role.ADMINISTRATOR


def can_extend(actor: Actor) -> bool:
    return actor.role == Role.ADMINISTRATOR


def can_resolve(actor: Actor) -> bool:
    return actor.role == Role.ADMINISTRATOR


def can_sweep(actor: Actor) -> bool:
    """Manual sweep trigger; the scheduler itself runs as the system."""
    return actor.role == Role.ADMINISTRATOR


def can_register(actor: Actor) -> bool:
    """Validator directory maintenance."""
    return actor.role == Role.ADMINISTRATOR
