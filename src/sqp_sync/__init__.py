"""
SQP Sync
========
Replicates Amazon Search Query Performance data from BigQuery into Supabase.
"""

__version__ = "0.1.0"
