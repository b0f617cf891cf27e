from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from typing import Protocol

    class StrictYAMLError(Exception):
        pass

    class _YamlDoc(Protocol):
        data: Any

    def load_yaml(_text: str) -> _YamlDoc:
        raise NotImplementedError
else:
    from strictyaml import StrictYAMLError, load as load_yaml

from .errors import CrmError

_DEFAULT_CORS_ORIGINS = (
    "http://localhost:5173",
    "http://localhost:3000",
    "http://127.0.0.1:3000",
)


class ConfigError(CrmError):
    def __init__(self, message: str, *, details: dict[str, Any] | None = None):
        super().__init__(message=message, code="config_error", details=details)


@dataclass(frozen=True)
class CrmSettings:
    open_card_status: str = "aberto"
    closed_card_statuses: tuple[str, ...] = ("ganho", "perdido")
    users_cache_ttl_s: float = 300.0
    users_cache_limit: int = 100
    ensure_schema_on_startup: bool = True
    cors_allow_origins: tuple[str, ...] = field(default=_DEFAULT_CORS_ORIGINS)


def load_crm_settings() -> CrmSettings:
    """Build settings from ``CRM_CONFIG_INLINE`` / ``CRM_CONFIG`` and plain env vars.

    The document may be JSON or YAML. Env vars win over the document.
    """
    inline = (os.getenv("CRM_CONFIG_INLINE") or "").strip()
    path = (os.getenv("CRM_CONFIG") or "").strip()

    if inline:
        data = _parse_text(inline)
    elif path:
        data = _parse_file(path)
    else:
        data = {}

    env_ttl = (os.getenv("USERS_CACHE_TTL_SECONDS") or "").strip()
    if env_ttl:
        data["users_cache_ttl_s"] = env_ttl
    env_cors = (os.getenv("CORS_ALLOW_ORIGINS") or "").strip()
    if env_cors:
        data["cors_allow_origins"] = [o.strip() for o in env_cors.split(",") if o.strip()]
    env_schema = (os.getenv("CRM_ENSURE_SCHEMA") or "").strip().lower()
    if env_schema:
        data["ensure_schema_on_startup"] = env_schema in {"1", "true", "yes", "y"}

    return _build_settings(data)


def _parse_file(path: str) -> dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            text = f.read()
    except Exception as e:
        raise ConfigError("Falha ao ler arquivo de configuração.", details={"path": path, "error": str(e)})
    return _parse_text(text, source=path)


def _parse_text(text: str, source: str = "inline") -> dict[str, Any]:
    raw = (text or "").lstrip()
    if not raw:
        return {}
    if raw.startswith("{"):
        try:
            data = json.loads(raw)
        except Exception as e:
            raise ConfigError("JSON inválido em configuração.", details={"source": source, "error": str(e)})
    else:
        try:
            data = load_yaml(raw).data
        except StrictYAMLError as e:
            raise ConfigError("YAML inválido em configuração.", details={"source": source, "error": str(e)})
    if not isinstance(data, dict):
        raise ConfigError("Configuração deve ser um mapa.", details={"source": source, "type": str(type(data))})
    return dict(data)


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value or "").strip().lower() in {"1", "true", "yes", "y"}


def _as_str_tuple(value: Any, name: str) -> tuple[str, ...]:
    if isinstance(value, str):
        value = [v for v in value.split(",")]
    if not isinstance(value, (list, tuple)):
        raise ConfigError(f"Campo {name} deve ser lista.", details={"type": str(type(value))})
    items = tuple(str(v).strip() for v in value if str(v).strip())
    if not items:
        raise ConfigError(f"Campo {name} não pode ser vazio.")
    return items


def _build_settings(data: dict[str, Any]) -> CrmSettings:
    defaults = CrmSettings()
    try:
        ttl = float(data.get("users_cache_ttl_s", defaults.users_cache_ttl_s))
        limit = int(data.get("users_cache_limit", defaults.users_cache_limit))
    except (TypeError, ValueError) as e:
        raise ConfigError("Valor numérico inválido em configuração.", details={"error": str(e)})
    if ttl < 0 or limit <= 0:
        raise ConfigError("users_cache_ttl_s/users_cache_limit fora do intervalo.", details={"ttl": ttl, "limit": limit})

    open_status = str(data.get("open_card_status") or defaults.open_card_status).strip()
    closed = _as_str_tuple(data.get("closed_card_statuses", defaults.closed_card_statuses), "closed_card_statuses")
    if open_status in closed:
        raise ConfigError("open_card_status não pode ser um status de fechamento.", details={"status": open_status})

    return CrmSettings(
        open_card_status=open_status,
        closed_card_statuses=closed,
        users_cache_ttl_s=ttl,
        users_cache_limit=limit,
        ensure_schema_on_startup=_as_bool(data.get("ensure_schema_on_startup", defaults.ensure_schema_on_startup)),
        cors_allow_origins=_as_str_tuple(data.get("cors_allow_origins", defaults.cors_allow_origins), "cors_allow_origins"),
    )
