# Supabase tables: permissions, roles, role_permissions, rbac_audit_logs
# This file documents the expected database schema
# The permission matrix itself lives in code (config/permissions_config.py);
# these tables mirror it for reporting and are written by scripts/seed_permissions_roles.py

"""
Expected Supabase table structure:

permissions:
- id: uuid (primary key)
- name: text (not null, unique) - permission id, e.g. "contracts.read"
- resource: text (not null) - e.g. "contracts", "promoters"
- action: text (not null) - e.g. "read", "approve"
- description: text (nullable)
- created_at: timestamp (default: now())

roles:
- id: uuid (primary key)
- name: text (not null, unique) - e.g. "admin", "manager", "user"
- level: integer (not null) - hierarchy level, higher includes lower
- description: text (nullable)
- created_at: timestamp (default: now())
- updated_at: timestamp (nullable)

role_permissions:
- id: uuid (primary key)
- role_id: uuid (foreign key to roles.id, not null)
- permission_id: uuid (foreign key to permissions.id, not null)
- created_at: timestamp (default: now())
- unique constraint on (role_id, permission_id)
- holds direct grants only; inherited grants are derived from roles.level

rbac_audit_logs:
- id: uuid (primary key)
- event_type: text (not null) - "permission_check" | "role_assignment"
- user_id: uuid (nullable)
- role: text (nullable)
- permissions: text[] (not null)
- decision: text (not null) - "deny" | "would_block" | "allow"
- reason: text
- path: text (nullable)
- method: text (nullable)
- created_at: timestamptz (not null)
"""
