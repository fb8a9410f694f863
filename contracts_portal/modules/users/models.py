# Supabase table: users
# This file documents the expected database schema
# Actual operations are handled via Supabase SDK in service.py

"""
Expected Supabase table structure:

users:
- id: uuid (primary key, same as auth.users.id)
- email: text (not null, unique)
- role: text (nullable) - one of contracts_portal.core.roles.Role; anything else is treated as no role
- company_id: uuid (nullable)
- role_updated_by: uuid (nullable) - user who last assigned the role
- updated_at: timestamp (nullable)
"""
