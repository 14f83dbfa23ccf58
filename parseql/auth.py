"""Authorization context derived from session tokens."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from .errors import InvalidSessionToken

if TYPE_CHECKING:  # pragma: no cover
    from .config import ParseQLConfig
    from .storage.base import Storage

_logger = logging.getLogger("parseql")


@dataclass
class Auth:
    """Who is making the request.

    ``user`` is the stored user record (without secrets) when the request
    carries a valid session token.
    """

    is_master: bool = False
    user: Optional[Dict[str, Any]] = None
    session_token: Optional[str] = None
    installation_id: Optional[str] = None

    @property
    def user_id(self) -> Optional[str]:
        return (self.user or {}).get('objectId')

    @property
    def acl_keys(self) -> List[str]:
        """ACL entries this principal matches, public first."""
        keys = ['*']
        if self.user_id:
            keys.append(self.user_id)
        return keys


def master() -> Auth:
    return Auth(is_master=True)


def nobody(installation_id: Optional[str] = None) -> Auth:
    return Auth(installation_id=installation_id)


async def derive_context(
    storage: 'Storage',
    *,
    config: 'ParseQLConfig',
    installation_id: Optional[str] = None,
    session_token: Optional[str] = None,
) -> Auth:
    """Resolve a session token into an ``Auth``.

    No token yields an anonymous context; an unknown token raises
    ``InvalidSessionToken``.
    """
    if not session_token:
        return nobody(installation_id)
    session = await storage.get_session(session_token)
    if session is None:
        raise InvalidSessionToken()
    user = await storage.get(master(), config.user_class_name, session['user_id'])
    _logger.debug("parseql.auth: session resolved for user %s", user.get('objectId'))
    return Auth(
        user=user,
        session_token=session_token,
        installation_id=installation_id or session.get('installation_id'),
    )
