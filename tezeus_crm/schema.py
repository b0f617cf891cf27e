"""
Schema for the pipeline / assignment tables.

Applied best-effort on startup through the ``exec_sql`` RPC.
Run manually with: python -m tezeus_crm.schema
"""

import logging
from typing import Any

logger = logging.getLogger(__name__)

SCHEMA_SQL = """
-- Enable UUID extension
CREATE EXTENSION IF NOT EXISTS "uuid-ossp";

-- Queues
CREATE TABLE IF NOT EXISTS queues (
    id UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
    workspace_id UUID NOT NULL,
    name VARCHAR(255) NOT NULL,
    ai_agent_id UUID,
    is_active BOOLEAN DEFAULT true,
    created_at TIMESTAMP WITH TIME ZONE DEFAULT NOW()
);

-- Conversation assignment columns
ALTER TABLE conversations ADD COLUMN IF NOT EXISTS queue_id UUID REFERENCES queues(id) ON DELETE SET NULL;
ALTER TABLE conversations ADD COLUMN IF NOT EXISTS assigned_user_id UUID;
ALTER TABLE conversations ADD COLUMN IF NOT EXISTS assigned_at TIMESTAMP WITH TIME ZONE;
ALTER TABLE conversations ADD COLUMN IF NOT EXISTS agent_active_id UUID;
ALTER TABLE conversations ADD COLUMN IF NOT EXISTS agente_ativo BOOLEAN DEFAULT false;

-- Pipelines
CREATE TABLE IF NOT EXISTS pipelines (
    id UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
    workspace_id UUID NOT NULL,
    name VARCHAR(255) NOT NULL,
    is_active BOOLEAN DEFAULT true,
    created_at TIMESTAMP WITH TIME ZONE DEFAULT NOW(),
    updated_at TIMESTAMP WITH TIME ZONE DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS pipeline_columns (
    id UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
    pipeline_id UUID NOT NULL REFERENCES pipelines(id) ON DELETE CASCADE,
    name VARCHAR(255) NOT NULL,
    color VARCHAR(20),
    order_position INTEGER NOT NULL DEFAULT 0,
    created_at TIMESTAMP WITH TIME ZONE DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS pipeline_cards (
    id UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
    pipeline_id UUID NOT NULL REFERENCES pipelines(id) ON DELETE CASCADE,
    column_id UUID NOT NULL REFERENCES pipeline_columns(id) ON DELETE CASCADE,
    contact_id UUID REFERENCES contacts(id) ON DELETE CASCADE,
    conversation_id UUID REFERENCES conversations(id) ON DELETE SET NULL,
    responsible_user_id UUID,
    title VARCHAR(255) NOT NULL,
    description TEXT,
    value NUMERIC DEFAULT 0,
    status VARCHAR(50) DEFAULT 'aberto',
    tags JSONB DEFAULT '[]',
    created_at TIMESTAMP WITH TIME ZONE DEFAULT NOW(),
    updated_at TIMESTAMP WITH TIME ZONE DEFAULT NOW()
);

-- One open card per (contact, pipeline)
CREATE UNIQUE INDEX IF NOT EXISTS idx_pipeline_cards_open_contact_pipeline
    ON pipeline_cards(contact_id, pipeline_id) WHERE status = 'aberto';
CREATE INDEX IF NOT EXISTS idx_pipeline_cards_pipeline ON pipeline_cards(pipeline_id);
CREATE INDEX IF NOT EXISTS idx_pipeline_columns_pipeline ON pipeline_columns(pipeline_id, order_position);

-- Append-only assignment history
CREATE TABLE IF NOT EXISTS conversation_assignments (
    id UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
    conversation_id UUID NOT NULL REFERENCES conversations(id) ON DELETE CASCADE,
    action VARCHAR(50) NOT NULL CHECK (action IN ('assign', 'transfer', 'queue_transfer')),
    from_assigned_user_id UUID,
    to_assigned_user_id UUID,
    from_queue_id UUID,
    to_queue_id UUID,
    changed_by UUID,
    changed_at TIMESTAMP WITH TIME ZONE DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS conversation_agent_history (
    id UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
    conversation_id UUID NOT NULL REFERENCES conversations(id) ON DELETE CASCADE,
    agent_id UUID,
    agent_name VARCHAR(255),
    action VARCHAR(50) NOT NULL,
    changed_by UUID,
    metadata JSONB DEFAULT '{}',
    created_at TIMESTAMP WITH TIME ZONE DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_conversation_assignments_conversation ON conversation_assignments(conversation_id, changed_at DESC);

CREATE TABLE IF NOT EXISTS pipeline_card_history (
    id UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
    card_id UUID NOT NULL REFERENCES pipeline_cards(id) ON DELETE CASCADE,
    action VARCHAR(50) NOT NULL CHECK (action IN ('created', 'column_changed', 'status_changed')),
    changed_by UUID,
    changed_at TIMESTAMP WITH TIME ZONE DEFAULT NOW(),
    metadata JSONB DEFAULT '{}'
);

CREATE INDEX IF NOT EXISTS idx_pipeline_card_history_card ON pipeline_card_history(card_id, changed_at DESC);

-- Tags
CREATE TABLE IF NOT EXISTS tags (
    id UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
    workspace_id UUID NOT NULL,
    name VARCHAR(255) NOT NULL,
    color VARCHAR(20),
    created_at TIMESTAMP WITH TIME ZONE DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS conversation_tags (
    id UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
    conversation_id UUID NOT NULL REFERENCES conversations(id) ON DELETE CASCADE,
    tag_id UUID NOT NULL REFERENCES tags(id) ON DELETE CASCADE,
    created_at TIMESTAMP WITH TIME ZONE DEFAULT NOW(),
    UNIQUE (conversation_id, tag_id)
);

CREATE TABLE IF NOT EXISTS contact_tags (
    id UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
    contact_id UUID NOT NULL REFERENCES contacts(id) ON DELETE CASCADE,
    tag_id UUID NOT NULL REFERENCES tags(id) ON DELETE CASCADE,
    created_at TIMESTAMP WITH TIME ZONE DEFAULT NOW(),
    UNIQUE (contact_id, tag_id)
);

-- Realtime for the kanban board (old rows carry column_id)
ALTER TABLE pipeline_cards REPLICA IDENTITY FULL;
ALTER TABLE pipeline_columns REPLICA IDENTITY FULL;
"""


def ensure_schema(client: Any) -> bool:
    """Apply ``SCHEMA_SQL``. Returns False when the RPC is unavailable."""
    try:
        client.rpc("exec_sql", {"sql": SCHEMA_SQL}).execute()
    except Exception as e:
        logger.warning(f"Schema não aplicado via exec_sql: {e}")
        return False
    return True


if __name__ == '__main__':
    from .supabase_client import supabase

    logging.basicConfig(level=logging.INFO)
    if ensure_schema(supabase):
        print("✅ Schema aplicado com sucesso!")
    else:
        print("⚠️ Não foi possível aplicar o schema; execute SCHEMA_SQL no SQL Editor do Supabase.")
