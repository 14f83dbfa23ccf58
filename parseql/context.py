from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Optional

from .auth import Auth, derive_context
from .config import ParseQLConfig

if TYPE_CHECKING:  # pragma: no cover
    from .storage.base import Storage


@dataclass
class RequestContext:
    """Per-request state handed to Strawberry as ``context_value``.

    ``auth`` is the only attribute resolvers may replace; user sign-up swaps
    in the freshly minted session for the rest of the response.
    """

    storage: 'Storage'
    config: ParseQLConfig = field(default_factory=ParseQLConfig)
    auth: Auth = field(default_factory=Auth)
    installation_id: Optional[str] = None

    @classmethod
    async def for_session(
        cls,
        storage: 'Storage',
        *,
        config: Optional[ParseQLConfig] = None,
        session_token: Optional[str] = None,
        installation_id: Optional[str] = None,
    ) -> 'RequestContext':
        config = config or ParseQLConfig()
        auth = await derive_context(
            storage,
            config=config,
            installation_id=installation_id,
            session_token=session_token,
        )
        return cls(storage=storage, config=config, auth=auth, installation_id=installation_id)


def request_context(info_or_ctx: Any) -> RequestContext:
    """Extract the ``RequestContext`` from a Strawberry ``Info`` or a context mapping."""
    ctx = getattr(info_or_ctx, 'context', info_or_ctx)
    if isinstance(ctx, RequestContext):
        return ctx
    if isinstance(ctx, dict) and isinstance(ctx.get('parseql'), RequestContext):
        return ctx['parseql']
    raise TypeError("GraphQL context does not carry a parseql RequestContext")
