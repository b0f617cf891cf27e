"""Shared FastAPI dependencies for the routers."""

from ..container import CrmContainer, get_crm_container


def get_container() -> CrmContainer:
    """Container dependency; tests override it through ``app.dependency_overrides``."""
    return get_crm_container()
