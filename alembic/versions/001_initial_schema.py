"""001 – Initial schema: tenants, catalog, eligibility rules, orders, ledger, audit.

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-17 10:00:00.000000+05:30
"""

from alembic import op

# Revision identifiers
revision = "001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

ENUM_TYPES: list[tuple[str, list[str]]] = [
    ("record_status", ["active", "inactive"]),
    ("gender_type", ["male", "female", "unisex"]),
    ("renewal_unit", ["months", "years"]),
    (
        "ledger_reason",
        [
            "order_placed",
            "order_cancelled",
            "order_rejected",
            "return_approved",
            "full_reset",
            "cycle_renewal",
            "purge",
        ],
    ),
    (
        "order_status",
        [
            "Awaiting approval",
            "Awaiting fulfilment",
            "Dispatched",
            "Delivered",
            "Cancelled",
        ],
    ),
    (
        "pr_status",
        [
            "PENDING_SITE_ADMIN_APPROVAL",
            "SITE_ADMIN_APPROVED",
            "PENDING_COMPANY_ADMIN_APPROVAL",
            "COMPANY_ADMIN_APPROVED",
            "REJECTED",
            "IN_SHIPMENT",
            "PARTIALLY_DELIVERED",
            "FULLY_DELIVERED",
            "CANCELLED",
        ],
    ),
    ("item_shipment_status", ["PENDING", "DISPATCHED", "DELIVERED"]),
    ("return_status", ["requested", "approved", "rejected"]),
]


def _create_enum(name: str, values: list[str]) -> None:
    vals = ", ".join(f"'{v}'" for v in values)
    op.execute(f"CREATE TYPE {name} AS ENUM ({vals})")


def _drop_enum(name: str) -> None:
    op.execute(f"DROP TYPE IF EXISTS {name}")


# ---------------------------------------------------------------------------
# UPGRADE
# ---------------------------------------------------------------------------


def upgrade() -> None:
    # ── Extensions ────────────────────────────────────────────────────────
    op.execute('CREATE EXTENSION IF NOT EXISTS "uuid-ossp"')

    # ── Enum types ────────────────────────────────────────────────────────
    for name, values in ENUM_TYPES:
        _create_enum(name, values)

    # ── 1. companies ──────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE companies (
            id          UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            legacy_id   VARCHAR(64) UNIQUE,
            name        VARCHAR(200) NOT NULL,
            require_company_admin_po_approval BOOLEAN NOT NULL DEFAULT FALSE,
            is_active   BOOLEAN NOT NULL DEFAULT TRUE,
            created_at  TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at  TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    """)

    # ── 2. employees ──────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE employees (
            id              UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            legacy_id       VARCHAR(64) UNIQUE,
            employee_code   VARCHAR(50) NOT NULL UNIQUE,
            first_name      TEXT NOT NULL,
            last_name       TEXT NOT NULL,
            email           TEXT,
            designation     TEXT,
            gender          gender_type,
            company_id      UUID REFERENCES companies(id),
            status          record_status NOT NULL DEFAULT 'active',
            date_of_joining DATE,
            eligibility     JSONB NOT NULL
                DEFAULT '{"shirt": 0, "pant": 0, "shoe": 0, "jacket": 0}',
            cycle_duration  JSONB NOT NULL
                DEFAULT '{"shirt": 6, "pant": 6, "shoe": 6, "jacket": 12}',
            eligibility_reset_dates JSONB NOT NULL DEFAULT '{}',
            created_at      TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at      TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    """)
    op.execute(
        "CREATE INDEX ix_employees_company_status ON employees (company_id, status)"
    )

    # ── 3. catalog ────────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE product_categories (
            id          UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            legacy_id   VARCHAR(64) UNIQUE,
            company_id  UUID REFERENCES companies(id),
            name        VARCHAR(100) NOT NULL,
            is_active   BOOLEAN NOT NULL DEFAULT TRUE,
            created_at  TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    """)
    op.execute("""
        CREATE TABLE subcategories (
            id                  UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            legacy_id           VARCHAR(64) UNIQUE,
            company_id          UUID NOT NULL REFERENCES companies(id),
            parent_category_id  UUID NOT NULL REFERENCES product_categories(id),
            name                VARCHAR(100) NOT NULL,
            status              record_status NOT NULL DEFAULT 'active',
            created_at          TIMESTAMPTZ NOT NULL DEFAULT now(),
            CONSTRAINT uq_subcategory_name UNIQUE (company_id, parent_category_id, name)
        )
    """)
    op.execute("""
        CREATE TABLE products (
            id              UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            legacy_id       VARCHAR(64) UNIQUE,
            company_id      UUID REFERENCES companies(id),
            name            VARCHAR(200) NOT NULL,
            sku             VARCHAR(100),
            category_id     UUID REFERENCES product_categories(id),
            subcategory_id  UUID REFERENCES subcategories(id),
            legacy_category VARCHAR(100),
            is_active       BOOLEAN NOT NULL DEFAULT TRUE,
            created_at      TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    """)

    # ── 4. designation_eligibility_rules ──────────────────────────────────
    op.execute("""
        CREATE TABLE designation_eligibility_rules (
            id                  UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            legacy_id           VARCHAR(64),
            schema_version      SMALLINT NOT NULL DEFAULT 2,
            company_id          UUID NOT NULL REFERENCES companies(id),
            designation         VARCHAR(200) NOT NULL,
            designation_key     VARCHAR(200) NOT NULL,
            gender              gender_type NOT NULL DEFAULT 'unisex',
            subcategory_id      UUID REFERENCES subcategories(id),
            category_name       VARCHAR(100),
            quantity            INTEGER NOT NULL DEFAULT 0,
            renewal_frequency   INTEGER,
            renewal_unit        renewal_unit,
            status              record_status NOT NULL DEFAULT 'active',
            created_at          TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at          TIMESTAMPTZ NOT NULL DEFAULT now(),
            CONSTRAINT ck_eligibility_rule_target
                CHECK (subcategory_id IS NOT NULL OR category_name IS NOT NULL),
            CONSTRAINT ck_eligibility_rule_quantity CHECK (quantity >= 0)
        )
    """)
    op.execute("""
        CREATE INDEX ix_eligibility_rule_lookup
            ON designation_eligibility_rules (company_id, designation_key, gender, status)
    """)

    # ── 5. orders ─────────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE orders (
            id                          UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            legacy_id                   VARCHAR(64) UNIQUE,
            employee_id                 UUID NOT NULL REFERENCES employees(id),
            company_id                  UUID NOT NULL REFERENCES companies(id),
            status                      order_status NOT NULL DEFAULT 'Awaiting approval',
            pr_status                   pr_status NOT NULL
                DEFAULT 'PENDING_SITE_ADMIN_APPROVAL',
            is_replacement              BOOLEAN NOT NULL DEFAULT FALSE,
            rejection_reason            TEXT,
            site_admin_approved_at      TIMESTAMPTZ,
            company_admin_approved_at   TIMESTAMPTZ,
            dispatched_at               TIMESTAMPTZ,
            delivered_at                TIMESTAMPTZ,
            created_at                  TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at                  TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    """)
    op.execute("CREATE INDEX ix_orders_employee ON orders (employee_id)")
    op.execute(
        "CREATE INDEX ix_orders_company_pr_status ON orders (company_id, pr_status)"
    )

    op.execute("""
        CREATE TABLE order_items (
            id                  UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            order_id            UUID NOT NULL REFERENCES orders(id) ON DELETE CASCADE,
            position            SMALLINT NOT NULL DEFAULT 0,
            product_id          UUID REFERENCES products(id),
            category            VARCHAR(100),
            quantity            INTEGER NOT NULL,
            dispatched_quantity INTEGER NOT NULL DEFAULT 0,
            delivered_quantity  INTEGER NOT NULL DEFAULT 0,
            shipment_status     item_shipment_status NOT NULL DEFAULT 'PENDING'
        )
    """)

    op.execute("""
        CREATE TABLE return_requests (
            id              UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            legacy_id       VARCHAR(64) UNIQUE,
            order_id        UUID NOT NULL REFERENCES orders(id) ON DELETE CASCADE,
            order_item_id   UUID NOT NULL REFERENCES order_items(id) ON DELETE CASCADE,
            quantity        INTEGER NOT NULL,
            reason          TEXT,
            status          return_status NOT NULL DEFAULT 'requested',
            created_at      TIMESTAMPTZ NOT NULL DEFAULT now(),
            resolved_at     TIMESTAMPTZ
        )
    """)

    # ── 6. eligibility_ledger ─────────────────────────────────────────────
    # order_id / return_request_id are plain columns: orders get purged, the ledger stays
    op.execute("""
        CREATE TABLE eligibility_ledger (
            id                  UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            employee_id         UUID NOT NULL REFERENCES employees(id) ON DELETE CASCADE,
            category            VARCHAR(100) NOT NULL,
            delta               INTEGER NOT NULL,
            previous_value      INTEGER NOT NULL,
            new_value           INTEGER NOT NULL,
            reason              ledger_reason NOT NULL,
            order_id            UUID,
            return_request_id   UUID,
            created_at          TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    """)
    op.execute(
        "CREATE INDEX ix_eligibility_ledger_employee "
        "ON eligibility_ledger (employee_id, category)"
    )
    op.execute("CREATE INDEX ix_eligibility_ledger_order ON eligibility_ledger (order_id)")

    # ── 7. audit_trail ────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE audit_trail (
            id          UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            actor       VARCHAR(100),
            action      VARCHAR(50) NOT NULL,
            entity_type VARCHAR(50) NOT NULL,
            entity_id   UUID,
            old_values  JSONB,
            new_values  JSONB,
            created_at  TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP
        )
    """)
    op.execute("CREATE INDEX ix_audit_trail_entity ON audit_trail (entity_type, entity_id)")
    op.execute("CREATE INDEX ix_audit_trail_created_at ON audit_trail (created_at)")
    op.execute("CREATE INDEX ix_audit_trail_action ON audit_trail (action)")


# ---------------------------------------------------------------------------
# DOWNGRADE
# ---------------------------------------------------------------------------


def downgrade() -> None:
    # Drop tables in reverse dependency order
    tables = [
        "audit_trail",
        "eligibility_ledger",
        "return_requests",
        "order_items",
        "orders",
        "designation_eligibility_rules",
        "products",
        "subcategories",
        "product_categories",
        "employees",
        "companies",
    ]
    for table in tables:
        op.execute(f"DROP TABLE IF EXISTS {table} CASCADE")

    for name, _ in reversed(ENUM_TYPES):
        _drop_enum(name)
