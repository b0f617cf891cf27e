"""Follow one pipeline's kanban changes from the terminal.

    python -m tezeus_crm.realtime <pipeline_id>
"""
import asyncio
import logging
import sys

from ..observability import Observability
from ..supabase_client import create_realtime_client
from .dispatcher import PipelineHandlers
from .subscription import PipelineSubscription

logger = logging.getLogger("tezeus_crm.realtime.watch")


def _print_handlers() -> PipelineHandlers:
    return PipelineHandlers(
        on_card_insert=lambda card: print(f"+ card {card.get('id')} em {card.get('column_id')}"),
        on_card_delete=lambda card_id: print(f"- card {card_id}"),
        on_card_moved=lambda card, old, new: print(f"> card {card.get('id')}: {old} -> {new}"),
        on_column_insert=lambda column: print(f"+ coluna {column.get('id')} {column.get('name')}"),
        on_column_delete=lambda column_id: print(f"- coluna {column_id}"),
    )


async def watch(pipeline_id: str) -> None:
    client = await create_realtime_client()
    subscription = PipelineSubscription(client, _print_handlers(), obs=Observability(logger))
    await subscription.switch(pipeline_id)
    try:
        await asyncio.Event().wait()
    finally:
        await subscription.close()


if __name__ == '__main__':
    if len(sys.argv) != 2:
        print("uso: python -m tezeus_crm.realtime <pipeline_id>")
        sys.exit(2)
    logging.basicConfig(level=logging.INFO)
    try:
        asyncio.run(watch(sys.argv[1]))
    except KeyboardInterrupt:
        pass
