from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Optional

from ..observability import LogContext, Observability
from .dispatcher import PipelineEventDispatcher, PipelineHandlers
from .events import CARDS_TABLE, COLUMNS_TABLE, EVENT_TYPES, parse_change_payload

Unsubscribe = Callable[[], Awaitable[None]]

_FAILED_STATES = {"CHANNEL_ERROR", "TIMED_OUT", "CLOSED"}


def channel_name(pipeline_id: str) -> str:
    return f"pipeline-{pipeline_id}"


async def subscribe_to_pipeline(
    client: Any,
    pipeline_id: str,
    handlers: PipelineHandlers,
    *,
    obs: Optional[Observability] = None,
) -> Unsubscribe:
    """Listen to card/column changes of one pipeline on a single channel.

    ``client`` is a supabase ``AsyncClient``. Events of one pipeline arrive
    in order on its channel. Missed events are not replayed; callers re-fetch
    the board after subscribing.
    """
    obs = obs or Observability(logging.getLogger("tezeus_crm.realtime"))
    ctx = LogContext(pipeline_id=pipeline_id)
    dispatcher = PipelineEventDispatcher(pipeline_id, handlers, obs=obs)
    name = channel_name(pipeline_id)
    channel = client.channel(name)

    def _make_callback(table: str) -> Callable[[Any], None]:
        def _callback(payload: Any) -> None:
            try:
                event = parse_change_payload(payload, table=table)
            except ValueError as e:
                obs.warning("realtime.bad_payload", ctx=ctx, table=table, error=str(e))
                return
            dispatcher.dispatch(event)

        return _callback

    for table in (CARDS_TABLE, COLUMNS_TABLE):
        for event_type in EVENT_TYPES:
            channel.on_postgres_changes(
                event_type,
                callback=_make_callback(table),
                schema="public",
                table=table,
                filter=f"pipeline_id=eq.{pipeline_id}",
            )

    def _on_status(status: Any, err: Optional[Exception] = None) -> None:
        state = str(getattr(status, "value", status) or "").upper()
        if state == "SUBSCRIBED":
            obs.info("realtime.subscribed", ctx=ctx, channel=name)
        elif state in _FAILED_STATES:
            obs.warning("realtime.channel_status", ctx=ctx, channel=name, status=state, error=str(err) if err else None)

    try:
        await channel.subscribe(_on_status)
    except Exception as e:
        obs.warning("realtime.subscribe_failed", ctx=ctx, channel=name, error=str(e))
        await client.remove_channel(channel)
        raise

    async def unsubscribe() -> None:
        obs.info("realtime.unsubscribed", ctx=ctx, channel=name)
        await client.remove_channel(channel)

    return unsubscribe


class PipelineSubscription:
    """Keeps at most one live pipeline subscription.

    Switching pipelines tears down the old channel before opening the new
    one.
    """

    def __init__(self, client: Any, handlers: PipelineHandlers, *, obs: Optional[Observability] = None):
        self._client = client
        self._handlers = handlers
        self._obs = obs
        self._unsubscribe: Optional[Unsubscribe] = None
        self.pipeline_id: Optional[str] = None

    async def switch(self, pipeline_id: Optional[str]) -> None:
        if pipeline_id == self.pipeline_id and self._unsubscribe is not None:
            return
        await self.close()
        if not pipeline_id:
            return
        self._unsubscribe = await subscribe_to_pipeline(self._client, pipeline_id, self._handlers, obs=self._obs)
        self.pipeline_id = pipeline_id

    async def close(self) -> None:
        if self._unsubscribe is not None:
            unsubscribe, self._unsubscribe = self._unsubscribe, None
            await unsubscribe()
        self.pipeline_id = None
