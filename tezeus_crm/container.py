from __future__ import annotations

import logging
from functools import lru_cache
from typing import Any, Optional

from .config import CrmSettings, load_crm_settings
from .observability import Observability
from .services.assignments import ConversationAssignmentService
from .services.card_history import CardHistoryService
from .services.card_manager import PipelineCardManager
from .services.tags import TagService
from .services.users_cache import TTLCache, UsersDirectory
from .utils.locks import KeyedLock


@lru_cache(maxsize=1)
def get_crm_container() -> "CrmContainer":
    return CrmContainer.build()


class CrmContainer:
    def __init__(
        self,
        *,
        client: Any,
        settings: CrmSettings,
        obs: Observability,
        users_cache: TTLCache,
        assignments: ConversationAssignmentService,
        cards: PipelineCardManager,
        card_history: CardHistoryService,
        tags: TagService,
        users: UsersDirectory,
    ):
        self.client = client
        self.settings = settings
        self.obs = obs
        self.users_cache = users_cache
        self.assignments = assignments
        self.cards = cards
        self.card_history = card_history
        self.tags = tags
        self.users = users

    @staticmethod
    def build(client: Optional[Any] = None, settings: Optional[CrmSettings] = None) -> "CrmContainer":
        if client is None:
            from .supabase_client import supabase

            client = supabase
        settings = settings or load_crm_settings()
        obs = Observability(logging.getLogger("tezeus_crm"))

        users_cache = TTLCache(default_ttl_s=settings.users_cache_ttl_s)
        assignments = ConversationAssignmentService(client, obs=obs)
        cards = PipelineCardManager(
            client,
            obs=obs,
            settings=settings,
            locks=KeyedLock(),
            assignments=assignments,
        )
        return CrmContainer(
            client=client,
            settings=settings,
            obs=obs,
            users_cache=users_cache,
            assignments=assignments,
            cards=cards,
            card_history=CardHistoryService(client, obs=obs),
            tags=TagService(client, obs=obs),
            users=UsersDirectory(client, cache=users_cache, obs=obs, limit=settings.users_cache_limit),
        )
