"""Tests for schema definitions and row mapping that need no live database."""

from decimal import Decimal

from database import _get_connection_kwargs
from database.lib.schema_manager import SchemaManager
from database.postgres import _project_fields, _project_from_row, _project_row, _set_clause
from models import Currency, ProjectStatus

from .conftest import make_project


def test_schema_files_load():
    schemas = SchemaManager(pool=None).load_schema_files()

    assert 1 in schemas
    tables = {table['name'] for table in schemas[1]['tables']}
    assert {
        'projects', 'transactions', 'carts', 'wishlists',
        'reviews', 'downloads', 'rate_limit_buckets'
    } <= tables


def test_table_ddl():
    ddl = SchemaManager.table_ddl({
        'name': 'example',
        'columns': [
            {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
            {'name': 'code', 'type': 'TEXT', 'nullable': False, 'unique': True},
        ]
    })
    assert ddl == (
        "CREATE TABLE IF NOT EXISTS example "
        "(id UUID DEFAULT gen_random_uuid(), code TEXT NOT NULL, PRIMARY KEY (id), UNIQUE (code))"
    )


def test_constraint_ddl_cascades_only_where_asked():
    schema = SchemaManager(pool=None).load_schema_files()[1]
    tables = {table['name']: table for table in schema['tables']}

    cart_fk = SchemaManager.constraint_ddl(tables['carts'])[0]
    assert cart_fk.endswith("REFERENCES projects(id) ON DELETE CASCADE")

    transaction_fk = SchemaManager.constraint_ddl(tables['transactions'])[0]
    assert transaction_fk.endswith("REFERENCES projects(id)")

    cart_indexes = SchemaManager.constraint_ddl(tables['carts'])[1:]
    assert "CREATE UNIQUE INDEX IF NOT EXISTS idx_carts_user_project ON carts(user_id, project_id)" in cart_indexes


def test_connection_kwargs_ssl():
    assert 'ssl' not in _get_connection_kwargs("postgresql://localhost/projxchange")
    assert 'ssl' in _get_connection_kwargs("postgresql://db.example.com/projxchange?sslmode=require")


def test_project_row_round_trip():
    project = make_project(tech_stack=["python", "fastapi"], buyers=["buyer-1"])

    row = _project_row(project)
    assert row['sale_price'] == Decimal("75.00")
    assert row['currency'] == "INR"
    assert row['status'] == "approved"
    assert 'pricing' not in row

    restored = _project_from_row(row)
    assert restored == project


def test_unpriced_project_row():
    project = make_project(pricing=None)

    row = _project_row(project)
    assert row['sale_price'] is None
    assert _project_from_row(row).pricing is None


def test_project_fields_flatten_pricing():
    columns = _project_fields({
        'status': ProjectStatus.ARCHIVED,
        'pricing': {'sale_price': '5', 'original_price': '10', 'currency': Currency.USD},
    })
    assert columns == {
        'status': 'archived',
        'sale_price': Decimal("5.00"),
        'original_price': Decimal("10.00"),
        'currency': 'USD',
    }

    clause, values = _set_clause(columns, start=2)
    assert clause == "status = $2, sale_price = $3, original_price = $4, currency = $5"
    assert values == ['archived', Decimal("5.00"), Decimal("10.00"), 'USD']
