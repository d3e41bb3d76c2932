"""Schema v2 - Concurrency guards and rate limiting.

This version:
- Enforces at most one active listing per item with a partial unique index
- Makes transaction hashes unique so resubmitted purchases/bids conflict
- Tags ledger rows with their kind (purchase or bid)
- Adds the rate_limits table used by the auth endpoints
"""
import copy

from .v1 import schema as v1_schema

RATE_LIMITS_TABLE = {
    'name': 'rate_limits',
    'columns': [
        {'name': 'endpoint', 'type': 'TEXT', 'nullable': False},
        {'name': 'client_id', 'type': 'TEXT', 'nullable': False},
        {'name': 'request_count', 'type': 'INT8', 'nullable': False, 'default': '0'},
        {'name': 'reset_time', 'type': 'TIMESTAMPTZ', 'nullable': False}
    ],
    'primary_key': ['endpoint', 'client_id']
}

def _build_tables():
    tables = copy.deepcopy(v1_schema['tables'])
    by_name = {table['name']: table for table in tables}

    by_name['listings']['indexes'].append(
        {'name': 'idx_listings_item_active', 'columns': ['item_id'], 'unique': True,
         'where': 'is_active'}
    )

    transactions = by_name['transactions']
    transactions['columns'].insert(
        6, {'name': 'tx_type', 'type': 'TEXT', 'nullable': False, 'default': "'purchase'"}
    )
    transactions['indexes'].append(
        {'name': 'idx_transactions_hash', 'columns': ['tx_hash'], 'unique': True}
    )

    tables.append(RATE_LIMITS_TABLE)
    return tables

schema = {
    'version': 2,
    'tables': _build_tables(),
    'triggers': v1_schema['triggers'],
    'migrations': [
        '''
        CREATE UNIQUE INDEX IF NOT EXISTS idx_listings_item_active
        ON listings(item_id) WHERE is_active
        ''',
        '''
        ALTER TABLE transactions
        ADD COLUMN IF NOT EXISTS tx_type TEXT NOT NULL DEFAULT 'purchase'
        ''',
        '''
        UPDATE transactions SET tx_type = 'bid' WHERE status = 'pending'
        ''',
        '''
        CREATE UNIQUE INDEX IF NOT EXISTS idx_transactions_hash
        ON transactions(tx_hash)
        ''',
        '''
        CREATE TABLE IF NOT EXISTS rate_limits (
            endpoint TEXT NOT NULL,
            client_id TEXT NOT NULL,
            request_count INT8 NOT NULL DEFAULT 0,
            reset_time TIMESTAMPTZ NOT NULL,
            PRIMARY KEY (endpoint, client_id)
        )
        '''
    ]
}
