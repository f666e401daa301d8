"""
Dependencias compartidas por los endpoints.
"""

from uuid import UUID

from fastapi import Header


async def get_actor_id(
    x_user_id: UUID | None = Header(None, description="Usuario que ejecuta la operación"),
) -> UUID | None:
    """
    Identidad del actor para auditoría. La autenticación la resuelve el
    gateway; aquí solo se recibe el ID ya validado.
    """
    return x_user_id
