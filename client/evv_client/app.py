"""Entry point wiring the EVV client together."""

from __future__ import annotations

import asyncio
import logging
import sys
from dataclasses import dataclass
from typing import Any, Callable, Optional

from .api_client import ApiClient, ApiError
from .config import ClientConfig, load_config
from .hooks import VisitMutations
from .query_cache import QueryCache

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ClientApp:
    """The objects one logged-in screen session shares."""

    api: ApiClient
    queries: QueryCache
    visits: VisitMutations


def build_app(
    config: ClientConfig,
    *,
    notify: Optional[Callable[[str], None]] = None,
    **client_kwargs: Any,
) -> ClientApp:
    """Create the API client, query cache and visit mutations for ``config``.

    When the session expires the query cache is emptied so no data of the
    previous user stays visible.
    """

    api = ApiClient.from_config(config, **client_kwargs)
    queries = QueryCache()
    api.session.on_expired(queries.clear)
    return ClientApp(api=api, queries=queries, visits=VisitMutations(api, queries, notify=notify))


async def _print_upcoming_shifts(app: ClientApp) -> int:
    try:
        data = await app.api.get_caregiver_shifts()
    except ApiError as exc:
        print(f"API error: {exc}", file=sys.stderr)
        return 1

    shifts = (data or {}).get("shifts") or []
    if not shifts:
        print("No upcoming shifts.")
    for shift in shifts:
        client = shift.get("client") or {}
        print(f"{shift.get('date', '')[:10]}  {shift.get('status', ''):<12} {client.get('name', '')}")
    return 0


def main() -> None:
    """List the upcoming shifts of the caregiver whose token is configured."""

    logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    config = load_config()
    if not config.api_token:
        print("Set EVV_CLIENT_API_TOKEN to a caregiver token first.", file=sys.stderr)
        sys.exit(2)

    app = build_app(config)
    sys.exit(asyncio.run(_print_upcoming_shifts(app)))


if __name__ == "__main__":
    main()


__all__ = ["ClientApp", "build_app", "main"]
