"""Schema v1 - Initial database schema.

This version includes tables for:
- Users, wallet nonces and sessions
- Games and their developers
- Game items and favorites
- Market listings and auction state
- Transaction ledger and price history
"""

schema = {
    'version': 1,
    'tables': [
        {
            'name': 'users',
            'columns': [
                {'name': 'id', 'type': 'BIGSERIAL', 'primary_key': True},
                {'name': 'wallet_address', 'type': 'TEXT', 'nullable': False},
                {'name': 'username', 'type': 'TEXT'},
                {'name': 'email', 'type': 'TEXT'},
                {'name': 'avatar_url', 'type': 'TEXT'},
                {'name': 'bio', 'type': 'TEXT'},
                {'name': 'reputation_score', 'type': 'INT8', 'nullable': False, 'default': '0'},
                {'name': 'is_verified', 'type': 'BOOLEAN', 'nullable': False, 'default': 'false'},
                {'name': 'role', 'type': 'TEXT', 'nullable': False, 'default': "'user'"},
                {'name': 'last_login', 'type': 'TIMESTAMPTZ'},
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'},
                {'name': 'updated_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ],
            'indexes': [
                {'name': 'idx_users_wallet', 'columns': ['lower(wallet_address)'], 'unique': True},
                {'name': 'idx_users_username', 'columns': ['lower(username)'], 'unique': True,
                 'where': 'username IS NOT NULL'}
            ]
        },
        {
            'name': 'auth_nonces',
            'columns': [
                {'name': 'id', 'type': 'BIGSERIAL', 'primary_key': True},
                {'name': 'address', 'type': 'TEXT', 'nullable': False},
                {'name': 'nonce', 'type': 'TEXT', 'nullable': False},
                {'name': 'message', 'type': 'TEXT', 'nullable': False},
                {'name': 'expires_at', 'type': 'TIMESTAMPTZ', 'nullable': False},
                {'name': 'used', 'type': 'BOOLEAN', 'nullable': False, 'default': 'false'},
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ],
            'indexes': [
                {'name': 'idx_auth_nonces_address', 'columns': ['lower(address)']}
            ]
        },
        {
            'name': 'auth_sessions',
            'columns': [
                {'name': 'id', 'type': 'BIGSERIAL', 'primary_key': True},
                {'name': 'address', 'type': 'TEXT', 'nullable': False},
                {'name': 'token', 'type': 'TEXT', 'nullable': False},
                {'name': 'expires_at', 'type': 'TIMESTAMPTZ', 'nullable': False},
                {'name': 'revoked', 'type': 'BOOLEAN', 'nullable': False, 'default': 'false'},
                {'name': 'revoked_at', 'type': 'TIMESTAMPTZ'},
                {'name': 'user_agent', 'type': 'TEXT'},
                {'name': 'ip_address', 'type': 'TEXT'},
                {'name': 'last_used_at', 'type': 'TIMESTAMPTZ'},
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ],
            'indexes': [
                {'name': 'idx_auth_sessions_address', 'columns': ['lower(address)']},
                {'name': 'idx_auth_sessions_token', 'columns': ['token'], 'unique': True}
            ]
        },
        {
            'name': 'games',
            'columns': [
                {'name': 'id', 'type': 'BIGSERIAL', 'primary_key': True},
                {'name': 'name', 'type': 'TEXT', 'nullable': False},
                {'name': 'developer', 'type': 'TEXT', 'nullable': False},
                {'name': 'description', 'type': 'TEXT'},
                {'name': 'logo_url', 'type': 'TEXT'},
                {'name': 'website_url', 'type': 'TEXT'},
                {'name': 'contract_address', 'type': 'TEXT'},
                {'name': 'genre', 'type': 'TEXT'},
                {'name': 'platforms', 'type': 'JSONB'},
                {'name': 'social_links', 'type': 'JSONB'},
                {'name': 'is_verified', 'type': 'BOOLEAN', 'nullable': False, 'default': 'false'},
                {'name': 'is_active', 'type': 'BOOLEAN', 'nullable': False, 'default': 'true'},
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'},
                {'name': 'updated_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ],
            'indexes': [
                {'name': 'idx_games_name', 'columns': ['lower(name)'], 'unique': True},
                {'name': 'idx_games_contract', 'columns': ['lower(contract_address)'], 'unique': True,
                 'where': 'contract_address IS NOT NULL'}
            ]
        },
        {
            'name': 'game_developers',
            'columns': [
                {'name': 'game_id', 'type': 'INT8', 'nullable': False},
                {'name': 'user_id', 'type': 'INT8', 'nullable': False},
                {'name': 'role', 'type': 'TEXT', 'nullable': False, 'default': "'developer'"},
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ],
            'primary_key': ['game_id', 'user_id'],
            'foreign_keys': [
                {'columns': ['game_id'], 'references': 'games(id)', 'on_delete': 'CASCADE'},
                {'columns': ['user_id'], 'references': 'users(id)', 'on_delete': 'CASCADE'}
            ]
        },
        {
            'name': 'game_items',
            'columns': [
                {'name': 'id', 'type': 'BIGSERIAL', 'primary_key': True},
                {'name': 'game_id', 'type': 'INT8', 'nullable': False},
                {'name': 'token_id', 'type': 'TEXT', 'nullable': False},
                {'name': 'contract_address', 'type': 'TEXT', 'nullable': False},
                {'name': 'owner_address', 'type': 'TEXT', 'nullable': False},
                {'name': 'name', 'type': 'TEXT', 'nullable': False},
                {'name': 'description', 'type': 'TEXT'},
                {'name': 'image_url', 'type': 'TEXT'},
                {'name': 'attributes', 'type': 'JSONB'},
                {'name': 'rarity', 'type': 'TEXT', 'nullable': False},
                {'name': 'category', 'type': 'TEXT', 'nullable': False},
                {'name': 'item_type', 'type': 'TEXT', 'nullable': False},
                {'name': 'level_requirement', 'type': 'INT8', 'nullable': False, 'default': '0'},
                {'name': 'is_active', 'type': 'BOOLEAN', 'nullable': False, 'default': 'true'},
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'},
                {'name': 'updated_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ],
            'foreign_keys': [
                {'columns': ['game_id'], 'references': 'games(id)'}
            ],
            'indexes': [
                {'name': 'idx_items_owner', 'columns': ['lower(owner_address)']},
                {'name': 'idx_items_game', 'columns': ['game_id']},
                {'name': 'idx_items_token', 'columns': ['lower(contract_address)', 'token_id'], 'unique': True}
            ]
        },
        {
            'name': 'user_favorites',
            'columns': [
                {'name': 'user_id', 'type': 'INT8', 'nullable': False},
                {'name': 'item_id', 'type': 'INT8', 'nullable': False},
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ],
            'primary_key': ['user_id', 'item_id'],
            'foreign_keys': [
                {'columns': ['user_id'], 'references': 'users(id)', 'on_delete': 'CASCADE'},
                {'columns': ['item_id'], 'references': 'game_items(id)', 'on_delete': 'CASCADE'}
            ]
        },
        {
            'name': 'listings',
            'columns': [
                {'name': 'id', 'type': 'BIGSERIAL', 'primary_key': True},
                {'name': 'item_id', 'type': 'INT8', 'nullable': False},
                {'name': 'seller_address', 'type': 'TEXT', 'nullable': False},
                {'name': 'price', 'type': 'NUMERIC(36, 18)', 'nullable': False, 'check': 'price > 0'},
                {'name': 'currency', 'type': 'TEXT', 'nullable': False, 'default': "'ETH'"},
                {'name': 'listing_type', 'type': 'TEXT', 'nullable': False, 'default': "'fixed'"},
                {'name': 'status', 'type': 'TEXT', 'nullable': False, 'default': "'active'"},
                {'name': 'is_active', 'type': 'BOOLEAN', 'nullable': False, 'default': 'true'},
                {'name': 'end_time', 'type': 'TIMESTAMPTZ'},
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'},
                {'name': 'updated_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ],
            'foreign_keys': [
                {'columns': ['item_id'], 'references': 'game_items(id)'}
            ],
            'indexes': [
                {'name': 'idx_listings_item', 'columns': ['item_id']},
                {'name': 'idx_listings_seller', 'columns': ['lower(seller_address)']},
                {'name': 'idx_listings_status', 'columns': ['status']}
            ]
        },
        {
            'name': 'auction_info',
            'columns': [
                {'name': 'listing_id', 'type': 'INT8', 'primary_key': True},
                {'name': 'starting_price', 'type': 'NUMERIC(36, 18)', 'nullable': False},
                {'name': 'current_price', 'type': 'NUMERIC(36, 18)', 'nullable': False},
                {'name': 'min_increment', 'type': 'NUMERIC(36, 18)', 'nullable': False},
                {'name': 'buyout_price', 'type': 'NUMERIC(36, 18)'},
                {'name': 'highest_bidder', 'type': 'TEXT'},
                {'name': 'bid_count', 'type': 'INT8', 'nullable': False, 'default': '0'},
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'},
                {'name': 'updated_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ],
            'foreign_keys': [
                {'columns': ['listing_id'], 'references': 'listings(id)', 'on_delete': 'CASCADE'}
            ]
        },
        {
            'name': 'transactions',
            'columns': [
                {'name': 'id', 'type': 'BIGSERIAL', 'primary_key': True},
                {'name': 'listing_id', 'type': 'INT8'},
                {'name': 'buyer_address', 'type': 'TEXT', 'nullable': False},
                {'name': 'seller_address', 'type': 'TEXT', 'nullable': False},
                {'name': 'item_id', 'type': 'INT8', 'nullable': False},
                {'name': 'tx_hash', 'type': 'TEXT', 'nullable': False},
                {'name': 'price', 'type': 'NUMERIC(36, 18)', 'nullable': False},
                {'name': 'currency', 'type': 'TEXT', 'nullable': False, 'default': "'ETH'"},
                {'name': 'gas_fee', 'type': 'NUMERIC(36, 18)', 'nullable': False, 'default': '0'},
                {'name': 'status', 'type': 'TEXT', 'nullable': False, 'default': "'pending'"},
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'},
                {'name': 'updated_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ],
            'foreign_keys': [
                {'columns': ['listing_id'], 'references': 'listings(id)'},
                {'columns': ['item_id'], 'references': 'game_items(id)'}
            ],
            'indexes': [
                {'name': 'idx_transactions_listing', 'columns': ['listing_id']},
                {'name': 'idx_transactions_item', 'columns': ['item_id']},
                {'name': 'idx_transactions_buyer', 'columns': ['lower(buyer_address)']},
                {'name': 'idx_transactions_seller', 'columns': ['lower(seller_address)']},
                {'name': 'idx_transactions_created', 'columns': ['created_at']}
            ]
        },
        {
            'name': 'price_history',
            'columns': [
                {'name': 'id', 'type': 'BIGSERIAL', 'primary_key': True},
                {'name': 'item_id', 'type': 'INT8', 'nullable': False},
                {'name': 'price', 'type': 'NUMERIC(36, 18)', 'nullable': False},
                {'name': 'currency', 'type': 'TEXT', 'nullable': False},
                {'name': 'transaction_id', 'type': 'INT8'},
                {'name': 'recorded_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ],
            'foreign_keys': [
                {'columns': ['item_id'], 'references': 'game_items(id)'},
                {'columns': ['transaction_id'], 'references': 'transactions(id)'}
            ],
            'indexes': [
                {'name': 'idx_price_history_item_time', 'columns': ['item_id', 'recorded_at']}
            ]
        }
    ],
    'triggers': [
        {
            'name': f'trg_{table}_updated_at',
            'table': table,
            'timing': 'BEFORE',
            'event': 'UPDATE',
            'function_name': 'set_updated_at',
            'function_body': '''
                BEGIN
                    NEW.updated_at = now();
                    RETURN NEW;
                END;
            '''
        }
        for table in ('users', 'games', 'game_items', 'listings', 'auction_info', 'transactions')
    ]
}
