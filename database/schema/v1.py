"""Schema v1 - Initial marketplace schema.

This version includes tables for:
- Projects with pricing, buyer set and counters
- Purchase transactions
- Carts and wishlists
- Reviews
- Download log
- Token bucket rate limiting
"""

schema = {
    'version': 1,
    'tables': [
        {
            'name': 'projects',
            'columns': [
                {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
                {'name': 'author_id', 'type': 'TEXT', 'nullable': False},
                {'name': 'title', 'type': 'TEXT', 'nullable': False},
                {'name': 'description', 'type': 'TEXT', 'nullable': False},
                {'name': 'category', 'type': 'TEXT'},
                {'name': 'difficulty_level', 'type': 'TEXT'},
                {'name': 'tech_stack', 'type': 'TEXT[]', 'nullable': False, 'default': "'{}'"},
                {'name': 'github_url', 'type': 'TEXT'},
                {'name': 'demo_url', 'type': 'TEXT'},
                {'name': 'thumbnail', 'type': 'TEXT'},
                # Pricing block; all three are NULL when the project is unpriced
                {'name': 'sale_price', 'type': 'NUMERIC(12,2)'},
                {'name': 'original_price', 'type': 'NUMERIC(12,2)'},
                {'name': 'currency', 'type': 'TEXT'},
                {'name': 'status', 'type': 'TEXT', 'nullable': False, 'default': "'draft'"},
                {'name': 'is_featured', 'type': 'BOOLEAN', 'nullable': False, 'default': 'false'},
                {'name': 'buyers', 'type': 'TEXT[]', 'nullable': False, 'default': "'{}'"},
                {'name': 'purchase_count', 'type': 'INT8', 'nullable': False, 'default': '0'},
                {'name': 'view_count', 'type': 'INT8', 'nullable': False, 'default': '0'},
                {'name': 'download_count', 'type': 'INT8', 'nullable': False, 'default': '0'},
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'},
                {'name': 'updated_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ],
            'indexes': [
                {'name': 'idx_projects_author', 'columns': ['author_id']},
                {'name': 'idx_projects_status', 'columns': ['status']},
                {'name': 'idx_projects_category', 'columns': ['category']},
                {'name': 'idx_projects_featured', 'columns': ['is_featured'], 'where': 'is_featured'}
            ]
        },
        {
            'name': 'transactions',
            'columns': [
                {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
                {'name': 'transaction_id', 'type': 'TEXT', 'nullable': False, 'unique': True},
                {'name': 'user_id', 'type': 'TEXT', 'nullable': False},
                {'name': 'project_id', 'type': 'UUID', 'nullable': False},
                {'name': 'seller_id', 'type': 'TEXT', 'nullable': False},
                {'name': 'type', 'type': 'TEXT', 'nullable': False, 'default': "'purchase'"},
                {'name': 'status', 'type': 'TEXT', 'nullable': False, 'default': "'pending'"},
                {'name': 'amount', 'type': 'NUMERIC(12,2)', 'nullable': False},
                {'name': 'commission_amount', 'type': 'NUMERIC(12,2)', 'nullable': False},
                {'name': 'seller_amount', 'type': 'NUMERIC(12,2)', 'nullable': False},
                {'name': 'currency', 'type': 'TEXT', 'nullable': False, 'default': "'INR'"},
                {'name': 'payment_method', 'type': 'TEXT'},
                {'name': 'payment_gateway_response', 'type': 'JSONB'},
                {'name': 'metadata', 'type': 'JSONB'},
                {'name': 'processed_at', 'type': 'TIMESTAMPTZ'},
                {'name': 'refunded_at', 'type': 'TIMESTAMPTZ'},
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'},
                {'name': 'updated_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ],
            'foreign_keys': [
                {'columns': ['project_id'], 'references': 'projects(id)'}
            ],
            'indexes': [
                {'name': 'idx_transactions_user', 'columns': ['user_id']},
                {'name': 'idx_transactions_seller', 'columns': ['seller_id']},
                {'name': 'idx_transactions_project', 'columns': ['project_id']},
                {'name': 'idx_transactions_status', 'columns': ['status']}
            ]
        },
        {
            'name': 'carts',
            'columns': [
                {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
                {'name': 'user_id', 'type': 'TEXT', 'nullable': False},
                {'name': 'project_id', 'type': 'UUID', 'nullable': False},
                {'name': 'price_at_time', 'type': 'NUMERIC(12,2)', 'nullable': False},
                {'name': 'currency', 'type': 'TEXT', 'nullable': False, 'default': "'INR'"},
                {'name': 'quantity', 'type': 'INT4', 'nullable': False, 'default': '1'},
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'},
                {'name': 'updated_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ],
            'foreign_keys': [
                {'columns': ['project_id'], 'references': 'projects(id)', 'on_delete': 'CASCADE'}
            ],
            'indexes': [
                {'name': 'idx_carts_user_project', 'columns': ['user_id', 'project_id'], 'unique': True}
            ]
        },
        {
            'name': 'wishlists',
            'columns': [
                {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
                {'name': 'user_id', 'type': 'TEXT', 'nullable': False},
                {'name': 'project_id', 'type': 'UUID', 'nullable': False},
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ],
            'foreign_keys': [
                {'columns': ['project_id'], 'references': 'projects(id)', 'on_delete': 'CASCADE'}
            ],
            'indexes': [
                {'name': 'idx_wishlists_user_project', 'columns': ['user_id', 'project_id'], 'unique': True}
            ]
        },
        {
            'name': 'reviews',
            'columns': [
                {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
                {'name': 'user_id', 'type': 'TEXT', 'nullable': False},
                {'name': 'project_id', 'type': 'UUID', 'nullable': False},
                {'name': 'rating', 'type': 'INT2', 'nullable': False},
                {'name': 'review_text', 'type': 'TEXT'},
                {'name': 'is_verified_purchase', 'type': 'BOOLEAN', 'nullable': False, 'default': 'false'},
                {'name': 'is_approved', 'type': 'BOOLEAN', 'nullable': False, 'default': 'true'},
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'},
                {'name': 'updated_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ],
            'foreign_keys': [
                {'columns': ['project_id'], 'references': 'projects(id)', 'on_delete': 'CASCADE'}
            ],
            'indexes': [
                {'name': 'idx_reviews_user_project', 'columns': ['user_id', 'project_id'], 'unique': True},
                {'name': 'idx_reviews_project_approved', 'columns': ['project_id', 'is_approved']}
            ]
        },
        {
            'name': 'downloads',
            'columns': [
                {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
                {'name': 'user_id', 'type': 'TEXT', 'nullable': False},
                {'name': 'project_id', 'type': 'UUID', 'nullable': False},
                {'name': 'download_type', 'type': 'TEXT', 'nullable': False, 'default': "'full'"},
                {'name': 'ip_address', 'type': 'TEXT'},
                {'name': 'user_agent', 'type': 'TEXT'},
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ],
            'foreign_keys': [
                {'columns': ['project_id'], 'references': 'projects(id)', 'on_delete': 'CASCADE'}
            ],
            'indexes': [
                {'name': 'idx_downloads_user', 'columns': ['user_id']},
                {'name': 'idx_downloads_project', 'columns': ['project_id']}
            ]
        },
        {
            'name': 'rate_limit_buckets',
            'columns': [
                {'name': 'bucket_key', 'type': 'TEXT', 'primary_key': True},
                {'name': 'tokens', 'type': 'DOUBLE PRECISION', 'nullable': False},
                {'name': 'last_refill', 'type': 'DOUBLE PRECISION', 'nullable': False},
                {'name': 'last_allowed', 'type': 'BOOLEAN', 'nullable': False, 'default': 'true'},
                {'name': 'updated_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ],
            'indexes': [
                {'name': 'idx_rate_limit_buckets_updated', 'columns': ['updated_at']}
            ]
        }
    ],

    'migrations': []
}
