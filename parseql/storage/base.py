from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, List, Optional

if TYPE_CHECKING:  # pragma: no cover
    from ..auth import Auth
    from ..schema import ParseSchema


class Storage:
    """Interface of the object store the resolvers talk to.

    Records are plain dicts carrying ``className``, ``objectId``,
    ``createdAt``, ``updatedAt`` and the class fields in their ``__type``-tagged
    stored form. Failures surface as ``NotFound``, ``ValidationError`` or
    ``ConflictError``.
    """

    async def get(self, auth: 'Auth', class_name: str, object_id: str, schema: Optional['ParseSchema'] = None) -> Dict[str, Any]:
        raise NotImplementedError

    async def find(
        self,
        auth: 'Auth',
        class_name: str,
        where: Optional[Dict[str, Any]],
        schema: 'ParseSchema',
        *,
        redirect_class_name_for_key: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        raise NotImplementedError

    async def create(self, auth: 'Auth', class_name: str, data: Dict[str, Any], schema: 'ParseSchema') -> Dict[str, Any]:
        """Insert an object; returns ``{objectId, createdAt[, sessionToken]}``."""
        raise NotImplementedError

    async def update(self, auth: 'Auth', class_name: str, object_id: str, data: Dict[str, Any], schema: 'ParseSchema') -> Dict[str, Any]:
        """Apply a partial update; returns ``{updatedAt}``."""
        raise NotImplementedError

    async def delete(self, auth: 'Auth', class_name: str, object_id: str, schema: Optional['ParseSchema'] = None) -> None:
        raise NotImplementedError

    async def get_session(self, session_token: str) -> Optional[Dict[str, Any]]:
        """Return ``{session_token, user_id, installation_id}`` or ``None``."""
        raise NotImplementedError
