"""Tests for the schema definitions and DDL generation."""

from database.lib.schema_manager import SchemaManager
from database.schema.v2 import RATE_LIMITS_TABLE

def tables_by_name(schema):
    return {table['name']: table for table in schema['tables']}

def test_load_schema_files_in_version_order():
    schemas = SchemaManager(pool=None).load_schema_files()

    assert list(schemas) == [1, 2]
    assert schemas[2]['version'] == 2

def test_latest_schema_has_every_table():
    latest = SchemaManager(pool=None).load_schema_files()[2]

    assert set(tables_by_name(latest)) >= {
        'users', 'auth_nonces', 'auth_sessions', 'games', 'game_developers',
        'game_items', 'user_favorites', 'listings', 'auction_info',
        'transactions', 'price_history', 'rate_limits'
    }

def test_one_active_listing_per_item():
    latest = SchemaManager(pool=None).load_schema_files()[2]
    indexes = {i['name']: i for i in tables_by_name(latest)['listings']['indexes']}

    active = indexes['idx_listings_item_active']
    assert active['unique'] is True
    assert active['where'] == 'is_active'

def test_transaction_hash_is_unique():
    latest = SchemaManager(pool=None).load_schema_files()[2]
    transactions = tables_by_name(latest)['transactions']
    indexes = {i['name']: i for i in transactions['indexes']}

    assert indexes['idx_transactions_hash']['columns'] == ['tx_hash']
    assert 'tx_type' in [column['name'] for column in transactions['columns']]

def test_v1_is_not_mutated_by_v2():
    schemas = SchemaManager(pool=None).load_schema_files()
    v1_listings = tables_by_name(schemas[1])['listings']

    assert 'idx_listings_item_active' not in [i['name'] for i in v1_listings['indexes']]

def test_table_ddl_composite_primary_key():
    ddl = SchemaManager.table_ddl(RATE_LIMITS_TABLE)

    assert ddl.startswith('CREATE TABLE rate_limits (')
    assert 'request_count INT8 DEFAULT 0 NOT NULL' in ddl
    assert 'PRIMARY KEY (endpoint, client_id)' in ddl

def test_table_ddl_column_options():
    ddl = SchemaManager.table_ddl({
        'name': 'example',
        'columns': [
            {'name': 'id', 'type': 'BIGSERIAL', 'primary_key': True},
            {'name': 'price', 'type': 'NUMERIC(36, 18)', 'nullable': False, 'check': 'price > 0'},
            {'name': 'code', 'type': 'TEXT', 'unique': True}
        ]
    })

    assert 'price NUMERIC(36, 18) NOT NULL CHECK (price > 0)' in ddl
    assert 'PRIMARY KEY (id)' in ddl
    assert 'UNIQUE (code)' in ddl

def test_index_ddl_partial_unique():
    ddl = SchemaManager.index_ddl(
        'listings',
        {'name': 'idx_listings_item_active', 'columns': ['item_id'], 'unique': True,
         'where': 'is_active'}
    )

    assert ddl == (
        'CREATE UNIQUE INDEX idx_listings_item_active ON listings (item_id) WHERE is_active'
    )

def test_foreign_key_ddl():
    ddl = SchemaManager.foreign_key_ddl(
        'auction_info',
        {'columns': ['listing_id'], 'references': 'listings(id)', 'on_delete': 'CASCADE'}
    )

    assert ddl == (
        'ALTER TABLE auction_info ADD CONSTRAINT fk_auction_info_listing_id '
        'FOREIGN KEY (listing_id) REFERENCES listings(id) ON DELETE CASCADE'
    )

def test_every_trigger_targets_a_table_with_updated_at():
    latest = SchemaManager(pool=None).load_schema_files()[2]
    tables = tables_by_name(latest)

    for trigger in latest['triggers']:
        columns = [column['name'] for column in tables[trigger['table']]['columns']]
        assert 'updated_at' in columns
        function_sql, trigger_sql = SchemaManager.trigger_ddl(trigger)
        assert 'NEW.updated_at = now()' in function_sql
        assert trigger_sql.endswith('EXECUTE FUNCTION set_updated_at()')
