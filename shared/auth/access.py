"""
Capacidad de acceso para operadores de escaneo.

Resuelve el rol de un operador (admin / scanner) y lo cachea con una
expiración propia. Cada instancia tiene su propio cache: se construye en el
arranque de la app y se inyecta en el controlador de verificación, así la
invalidación es una llamada explícita (`invalidate`) y no estado global.
"""
from typing import Awaitable, Callable, Dict, Optional, Tuple
import logging
import time

from redis.exceptions import RedisError
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from shared.cache.redis_client import cache_delete, cache_delete_pattern, cache_get, cache_set
from shared.database.models import TicketScanner, UserRole

logger = logging.getLogger(__name__)

ALLOWED_SCAN_ROLES = frozenset({"admin", "scanner"})


class RoleLookupError(Exception):
    """No se pudo consultar el directorio de roles"""


class MemoryRoleCache:
    """Cache de roles en memoria, con expiración por entrada"""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._entries: Dict[str, Tuple[str, float]] = {}

    async def get(self, operator_id: str) -> Optional[str]:
        entry = self._entries.get(operator_id)
        if entry is None:
            return None
        role, expires_at = entry
        if self._clock() >= expires_at:
            del self._entries[operator_id]
            return None
        return role

    async def set(self, operator_id: str, role: str, ttl_seconds: int):
        self._entries[operator_id] = (role, self._clock() + ttl_seconds)

    async def delete(self, operator_id: Optional[str] = None):
        if operator_id is None:
            self._entries.clear()
        else:
            self._entries.pop(operator_id, None)


class RedisRoleCache:
    """Cache de roles en Redis, compartido por todas las instancias de la API.

    Si Redis no responde el cache se comporta como vacío: el rol se vuelve a
    resolver contra el directorio.
    """

    KEY_PREFIX = "scanner:role:"

    def _key(self, operator_id: str) -> str:
        return f"{self.KEY_PREFIX}{operator_id}"

    async def get(self, operator_id: str) -> Optional[str]:
        try:
            return await cache_get(self._key(operator_id))
        except (RedisError, OSError) as e:
            logger.warning(f"Role cache read failed for {operator_id}: {e}")
            return None

    async def set(self, operator_id: str, role: str, ttl_seconds: int):
        try:
            await cache_set(self._key(operator_id), role, expire=ttl_seconds)
        except (RedisError, OSError) as e:
            logger.warning(f"Role cache write failed for {operator_id}: {e}")

    async def delete(self, operator_id: Optional[str] = None):
        if operator_id is None:
            deleted = await cache_delete_pattern(f"{self.KEY_PREFIX}*")
            logger.info(f"Role cache cleared ({deleted} keys)")
        else:
            await cache_delete(self._key(operator_id))


class SqlRoleDirectory:
    """
    Directorio de roles respaldado por la base de datos.

    Orden de resolución:
    1. `user_roles.role` del usuario
    2. fila activa en `ticket_scanners` con el mismo email (sin distinguir mayúsculas)
    """

    def __init__(self, session_factory):
        self._session_factory = session_factory

    async def __call__(self, operator: Dict) -> Optional[str]:
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(UserRole.role).where(UserRole.user_id == str(operator["user_id"]))
                )
                role = result.scalar_one_or_none()
                if role in ALLOWED_SCAN_ROLES:
                    return role

                email = (operator.get("email") or "").strip().lower()
                if email:
                    result = await session.execute(
                        select(TicketScanner.id).where(
                            func.lower(TicketScanner.email) == email,
                            TicketScanner.is_active.is_(True),
                        )
                    )
                    if result.first() is not None:
                        return "scanner"
                return role
        except (SQLAlchemyError, OSError) as e:
            raise RoleLookupError(str(e)) from e


class ScannerAccess:
    """Capacidad inyectable: ¿puede este operador escanear y admitir tickets?"""

    def __init__(
        self,
        role_lookup: Callable[[Dict], Awaitable[Optional[str]]],
        cache=None,
        ttl_seconds: int = 60,
    ):
        self._role_lookup = role_lookup
        self._cache = cache if cache is not None else MemoryRoleCache()
        self.ttl_seconds = ttl_seconds

    async def role_for(self, operator: Dict) -> str:
        """Rol efectivo del operador; el claim del token es el último recurso"""
        operator_id = str(operator["user_id"])
        cached = await self._cache.get(operator_id)
        if cached:
            return cached

        try:
            role = await self._role_lookup(operator)
        except RoleLookupError as e:
            # Sin directorio no se cachea nada: el próximo request vuelve a consultar
            logger.warning(f"Role lookup failed for {operator_id}, using token claim: {e}")
            return operator.get("role") or "user"

        role = role or operator.get("role") or "user"
        await self._cache.set(operator_id, role, self.ttl_seconds)
        return role

    async def can_scan(self, operator: Dict) -> bool:
        return await self.role_for(operator) in ALLOWED_SCAN_ROLES

    async def invalidate(self, operator_id: Optional[str] = None):
        """Olvidar el rol cacheado de un operador (o de todos, tras cambios de roles)"""
        await self._cache.delete(operator_id)
