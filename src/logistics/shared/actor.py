"""Actor value object — who performed an operation, passed explicitly."""

from enum import Enum

from protean.fields import String

from logistics.domain import logistics


class ActorRole(Enum):
    ADMIN = "admin"
    GESTOR = "gestor"
    CLIENTE = "cliente"
    ARMAZEM = "armazem"
    FATURACAO = "faturacao"
    COMPRAS = "compras"
    ROTAS = "rotas"
    MOTORISTA = "motorista"
    SISTEMA = "sistema"


SYSTEM_NAME = "Sistema"


@logistics.value_object
class Actor:
    """The operator behind a mutation. Never stored inside a patch."""

    role: String(max_length=20, choices=ActorRole, default=ActorRole.SISTEMA.value)
    user_id: String(max_length=100)
    name: String(max_length=200, default=SYSTEM_NAME)


def system_actor() -> Actor:
    return Actor(role=ActorRole.SISTEMA.value, name=SYSTEM_NAME)


def actor_from(command) -> Actor:
    """Rebuild the actor from the flat ``actor_*`` fields carried by commands."""
    return Actor(
        role=command.actor_role or ActorRole.SISTEMA.value,
        user_id=command.actor_id,
        name=command.actor_name or SYSTEM_NAME,
    )


def actor_fields(actor: Actor | None) -> dict:
    """Flatten an actor into command keyword arguments."""
    actor = actor or system_actor()
    return {
        "actor_id": actor.user_id,
        "actor_name": actor.name,
        "actor_role": actor.role,
    }
