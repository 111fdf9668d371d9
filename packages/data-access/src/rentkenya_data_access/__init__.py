"""Data Access for the session core: the profiles table in Supabase Postgres."""
