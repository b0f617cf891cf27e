from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional


@dataclass
class CrmError(Exception):
    message: str
    code: str = "crm_error"
    details: Optional[dict[str, Any]] = None

    def __str__(self) -> str:
        return self.message


class NotFoundError(CrmError):
    def __init__(self, entity: str, entity_id: Optional[str], *, message: Optional[str] = None):
        super().__init__(
            message=message or f"{entity} não encontrado: {entity_id}",
            code="not_found",
            details={"entity": entity, "id": entity_id},
        )


class InvalidContactError(CrmError):
    def __init__(self, contact_id: str):
        super().__init__(
            message="Contato sem identificador válido. Adicione telefone ou email ao contato.",
            code="invalid_contact",
            details={"contact_id": contact_id},
        )


class NoPipelineError(CrmError):
    def __init__(self, workspace_id: Optional[str]):
        super().__init__(
            message="Nenhum pipeline ativo encontrado no workspace",
            code="no_pipeline",
            details={"workspace_id": workspace_id},
        )


class NoColumnError(CrmError):
    def __init__(self, pipeline_id: str):
        super().__init__(
            message="Pipeline sem colunas configuradas",
            code="no_column",
            details={"pipeline_id": pipeline_id},
        )


class InvalidTransitionError(CrmError):
    def __init__(self, card_id: str, *, current: Optional[str], requested: str, message: Optional[str] = None):
        super().__init__(
            message=message or f"Transição de status inválida: {current} -> {requested}",
            code="invalid_transition",
            details={"card_id": card_id, "current": current, "requested": requested},
        )


class HistoryWriteError(CrmError):
    """Failed audit write. Recorded and logged, never raised to callers."""

    def __init__(self, table: str, *, error: str, row: Optional[dict[str, Any]] = None):
        super().__init__(
            message=f"Falha ao registrar histórico em {table}",
            code="history_write_error",
            details={"table": table, "error": error, "row": row},
        )
