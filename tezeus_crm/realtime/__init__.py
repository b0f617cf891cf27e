"""Realtime propagation of pipeline card/column changes."""
from .board import CardMove, PipelineBoardState
from .dispatcher import PipelineEventDispatcher, PipelineHandlers
from .events import ChangeEvent, is_column_move, parse_change_payload
from .subscription import PipelineSubscription, channel_name, subscribe_to_pipeline

__all__ = [
    "CardMove",
    "ChangeEvent",
    "PipelineBoardState",
    "PipelineEventDispatcher",
    "PipelineHandlers",
    "PipelineSubscription",
    "channel_name",
    "is_column_move",
    "parse_change_payload",
    "subscribe_to_pipeline",
]
