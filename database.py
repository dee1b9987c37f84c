"""
Database Layer - Finoria Gestion
Handles all database operations, schema creation, and data access
"""

import sqlite3
import os
from datetime import datetime
from typing import Optional, List, Dict, Any, Tuple

from config import get_database_path
from logger import get_logger

logger = get_logger(__name__)


# ==================================================================================
# MASTER SCHEMA - The Single Source of Truth for Database Structure
# ==================================================================================
# ATTENTION : Pour toute modification de structure, mettez d'abord à jour ce MASTER_SCHEMA.
# Le programme se chargera de répercuter les changements sur le fichier .db au prochain lancement.
# ==================================================================================

def _line_items(parent_column: str, parent_table: str) -> Dict[str, str]:
    """Standard priced line columns shared by every document item table"""
    return {
        "id": "INTEGER PRIMARY KEY AUTOINCREMENT",
        parent_column: f"INTEGER NOT NULL REFERENCES {parent_table}(id) ON DELETE CASCADE",
        "product_id": "INTEGER NOT NULL REFERENCES products(id)",
        "product_name": "TEXT NOT NULL",
        "quantity": "REAL NOT NULL",
        "unit_price": "REAL NOT NULL",
        "discount": "REAL DEFAULT 0",
        "total_price": "REAL NOT NULL"
    }


MASTER_SCHEMA = {
    "categories": {
        "id": "INTEGER PRIMARY KEY AUTOINCREMENT",
        "name": "TEXT NOT NULL UNIQUE",
        "description": "TEXT",
        "is_active": "INTEGER DEFAULT 1",
        "created_at": "TEXT DEFAULT CURRENT_TIMESTAMP",
        "updated_at": "TEXT DEFAULT CURRENT_TIMESTAMP"
    },
    "units": {
        "id": "INTEGER PRIMARY KEY AUTOINCREMENT",
        "name": "TEXT NOT NULL UNIQUE",
        "symbol": "TEXT",
        "description": "TEXT",
        "is_active": "INTEGER DEFAULT 1",
        "created_at": "TEXT DEFAULT CURRENT_TIMESTAMP",
        "updated_at": "TEXT DEFAULT CURRENT_TIMESTAMP"
    },
    "tva": {
        "id": "INTEGER PRIMARY KEY AUTOINCREMENT",
        "rate": "REAL NOT NULL",
        "is_active": "INTEGER DEFAULT 1",
        "created_at": "TEXT DEFAULT CURRENT_TIMESTAMP",
        "updated_at": "TEXT DEFAULT CURRENT_TIMESTAMP"
    },
    "companies": {
        "id": "INTEGER PRIMARY KEY AUTOINCREMENT",
        "name": "TEXT NOT NULL DEFAULT ''",
        "address": "TEXT NOT NULL DEFAULT ''",
        "city": "TEXT NOT NULL DEFAULT ''",
        "country": "TEXT NOT NULL DEFAULT ''",
        "phone": "TEXT NOT NULL DEFAULT ''",
        "email": "TEXT NOT NULL DEFAULT ''",
        "website": "TEXT",
        "tax_id": "TEXT NOT NULL DEFAULT ''",
        "tax_status": "TEXT",
        "tva_number": "TEXT",
        "fodec_rate": "REAL DEFAULT 1.0"
    },
    "clients": {
        "id": "INTEGER PRIMARY KEY AUTOINCREMENT",
        "name": "TEXT NOT NULL",
        "email": "TEXT",
        "phone": "TEXT",
        "address": "TEXT",
        "company": "TEXT",
        "tax_id": "TEXT",
        "client_type": "TEXT",
        "created_at": "TEXT DEFAULT CURRENT_TIMESTAMP",
        "updated_at": "TEXT DEFAULT CURRENT_TIMESTAMP"
    },
    "suppliers": {
        "id": "INTEGER PRIMARY KEY AUTOINCREMENT",
        "name": "TEXT NOT NULL",
        "email": "TEXT",
        "phone": "TEXT",
        "address": "TEXT",
        "company": "TEXT",
        "tax_id": "TEXT",
        "created_at": "TEXT DEFAULT CURRENT_TIMESTAMP",
        "updated_at": "TEXT DEFAULT CURRENT_TIMESTAMP"
    },
    "products": {
        "id": "INTEGER PRIMARY KEY AUTOINCREMENT",
        "name": "TEXT NOT NULL UNIQUE",
        "description": "TEXT",
        "category": "TEXT NOT NULL REFERENCES categories(name)",
        "reference": "TEXT",
        "stock": "REAL DEFAULT 0",
        "unit_id": "INTEGER REFERENCES units(id)",
        "tva_id": "INTEGER REFERENCES tva(id)",
        "selling_price_ht": "REAL DEFAULT 0",
        "selling_price_ttc": "REAL DEFAULT 0",
        "purchase_price_ht": "REAL DEFAULT 0",
        "weighted_average_cost_ht": "REAL DEFAULT 0",
        "fodec_applicable": "INTEGER DEFAULT 0",
        "is_active": "INTEGER DEFAULT 1",
        "created_at": "TEXT DEFAULT CURRENT_TIMESTAMP",
        "updated_at": "TEXT DEFAULT CURRENT_TIMESTAMP"
    },
    "sales": {
        "id": "INTEGER PRIMARY KEY AUTOINCREMENT",
        "client_id": "INTEGER NOT NULL REFERENCES clients(id)",
        "total_amount": "REAL NOT NULL",
        "tax_amount": "REAL NOT NULL",
        "discount_amount": "REAL DEFAULT 0",
        "fodec_amount": "REAL DEFAULT 0",
        "status": "TEXT DEFAULT 'En attente'",
        "sale_date": "TEXT DEFAULT CURRENT_TIMESTAMP",
        "created_at": "TEXT DEFAULT CURRENT_TIMESTAMP"
    },
    "sale_items": _line_items("sale_id", "sales"),
    "quotes": {
        "id": "INTEGER PRIMARY KEY AUTOINCREMENT",
        "number": "TEXT NOT NULL UNIQUE",
        "client_id": "INTEGER NOT NULL REFERENCES clients(id)",
        "amount": "REAL NOT NULL",
        "tax_amount": "REAL NOT NULL",
        "fodec_amount": "REAL DEFAULT 0",
        "total_amount": "REAL NOT NULL",
        "status": "TEXT DEFAULT 'En attente'",
        "issue_date": "TEXT DEFAULT CURRENT_TIMESTAMP",
        "due_date": "TEXT",
        "created_at": "TEXT DEFAULT CURRENT_TIMESTAMP",
        "updated_at": "TEXT DEFAULT CURRENT_TIMESTAMP"
    },
    "quote_items": _line_items("quote_id", "quotes"),
    "invoices": {
        "id": "INTEGER PRIMARY KEY AUTOINCREMENT",
        "number": "TEXT NOT NULL UNIQUE",
        "sale_id": "INTEGER REFERENCES sales(id)",
        "quote_id": "INTEGER REFERENCES quotes(id)",
        "client_id": "INTEGER NOT NULL REFERENCES clients(id)",
        "amount": "REAL NOT NULL",
        "tax_amount": "REAL NOT NULL",
        "fodec_amount": "REAL DEFAULT 0",
        "total_amount": "REAL NOT NULL",
        "status": "TEXT DEFAULT 'En attente'",
        "issue_date": "TEXT DEFAULT CURRENT_TIMESTAMP",
        "due_date": "TEXT",
        "created_at": "TEXT DEFAULT CURRENT_TIMESTAMP"
    },
    "invoice_items": _line_items("invoice_id", "invoices"),
    "credit_notes": {
        "id": "INTEGER PRIMARY KEY AUTOINCREMENT",
        "number": "TEXT NOT NULL UNIQUE",
        "original_invoice_id": "INTEGER NOT NULL REFERENCES invoices(id)",
        "client_id": "INTEGER NOT NULL REFERENCES clients(id)",
        "amount": "REAL NOT NULL",
        "tax_amount": "REAL NOT NULL",
        "fodec_amount": "REAL DEFAULT 0",
        "total_amount": "REAL NOT NULL",
        "reason": "TEXT NOT NULL",
        "status": "TEXT DEFAULT 'En attente'",
        "issue_date": "TEXT DEFAULT CURRENT_TIMESTAMP",
        "due_date": "TEXT",
        "created_at": "TEXT DEFAULT CURRENT_TIMESTAMP",
        "updated_at": "TEXT DEFAULT CURRENT_TIMESTAMP"
    },
    "credit_note_items": _line_items("credit_note_id", "credit_notes"),
    "purchase_orders": {
        "id": "INTEGER PRIMARY KEY AUTOINCREMENT",
        "number": "TEXT NOT NULL UNIQUE",
        "sale_id": "INTEGER REFERENCES sales(id)",
        "client_id": "INTEGER NOT NULL REFERENCES clients(id)",
        "amount": "REAL NOT NULL",
        "tax_amount": "REAL NOT NULL",
        "total_amount": "REAL NOT NULL",
        "order_date": "TEXT DEFAULT CURRENT_TIMESTAMP",
        "delivery_date": "TEXT",
        "created_at": "TEXT DEFAULT CURRENT_TIMESTAMP"
    },
    "purchase_order_items": _line_items("purchase_order_id", "purchase_orders"),
    "delivery_receipts": {
        "id": "INTEGER PRIMARY KEY AUTOINCREMENT",
        "sale_id": "INTEGER NOT NULL REFERENCES sales(id)",
        "delivery_number": "TEXT NOT NULL UNIQUE",
        "driver_name": "TEXT",
        "vehicle_registration": "TEXT",
        "delivery_date": "TEXT DEFAULT CURRENT_TIMESTAMP",
        "created_at": "TEXT DEFAULT CURRENT_TIMESTAMP"
    },
    "delivery_receipt_items": {
        "id": "INTEGER PRIMARY KEY AUTOINCREMENT",
        "delivery_receipt_id": "INTEGER NOT NULL REFERENCES delivery_receipts(id) ON DELETE CASCADE",
        "product_id": "INTEGER NOT NULL REFERENCES products(id)",
        "product_name": "TEXT NOT NULL",
        "quantity": "REAL NOT NULL",
        "unit_price": "REAL NOT NULL"
    },
    "supplier_orders": {
        "id": "INTEGER PRIMARY KEY AUTOINCREMENT",
        "supplier_id": "INTEGER NOT NULL REFERENCES suppliers(id)",
        "order_number": "TEXT NOT NULL UNIQUE",
        "total_amount": "REAL NOT NULL",
        "tax_amount": "REAL NOT NULL",
        "status": "TEXT DEFAULT 'En attente'",
        "order_date": "TEXT DEFAULT CURRENT_TIMESTAMP",
        "delivery_date": "TEXT",
        "created_at": "TEXT DEFAULT CURRENT_TIMESTAMP",
        "updated_at": "TEXT DEFAULT CURRENT_TIMESTAMP"
    },
    "supplier_order_items": _line_items("order_id", "supplier_orders"),
    "supplier_invoices": {
        "id": "INTEGER PRIMARY KEY AUTOINCREMENT",
        "supplier_id": "INTEGER NOT NULL REFERENCES suppliers(id)",
        "order_id": "INTEGER REFERENCES supplier_orders(id)",
        "invoice_number": "TEXT NOT NULL UNIQUE",
        "amount": "REAL NOT NULL",
        "tax_amount": "REAL NOT NULL",
        "total_amount": "REAL NOT NULL",
        "status": "TEXT DEFAULT 'En attente'",
        "issue_date": "TEXT DEFAULT CURRENT_TIMESTAMP",
        "due_date": "TEXT",
        "payment_date": "TEXT",
        "created_at": "TEXT DEFAULT CURRENT_TIMESTAMP",
        "updated_at": "TEXT DEFAULT CURRENT_TIMESTAMP"
    },
    "supplier_invoice_items": _line_items("invoice_id", "supplier_invoices"),
    "reception_notes": {
        "id": "INTEGER PRIMARY KEY AUTOINCREMENT",
        "supplier_order_id": "INTEGER NOT NULL REFERENCES supplier_orders(id) ON DELETE CASCADE",
        "reception_number": "TEXT NOT NULL UNIQUE",
        "driver_name": "TEXT",
        "vehicle_registration": "TEXT",
        "reception_date": "TEXT DEFAULT CURRENT_TIMESTAMP",
        "notes": "TEXT",
        "created_at": "TEXT DEFAULT CURRENT_TIMESTAMP"
    },
    "reception_note_items": {
        "id": "INTEGER PRIMARY KEY AUTOINCREMENT",
        "reception_note_id": "INTEGER NOT NULL REFERENCES reception_notes(id) ON DELETE CASCADE",
        "product_id": "INTEGER NOT NULL REFERENCES products(id)",
        "product_name": "TEXT NOT NULL",
        "ordered_quantity": "REAL NOT NULL",
        "received_quantity": "REAL NOT NULL",
        "unit_price": "REAL NOT NULL"
    },
    "client_payments": {
        "id": "INTEGER PRIMARY KEY AUTOINCREMENT",
        "client_id": "INTEGER NOT NULL REFERENCES clients(id)",
        "invoice_id": "INTEGER REFERENCES invoices(id)",
        "amount": "REAL NOT NULL",
        "payment_date": "TEXT DEFAULT CURRENT_TIMESTAMP",
        "payment_method": "TEXT",
        "reference": "TEXT",
        "notes": "TEXT",
        "created_at": "TEXT DEFAULT CURRENT_TIMESTAMP"
    },
    "supplier_payments": {
        "id": "INTEGER PRIMARY KEY AUTOINCREMENT",
        "supplier_id": "INTEGER NOT NULL REFERENCES suppliers(id)",
        "invoice_id": "INTEGER REFERENCES supplier_invoices(id)",
        "amount": "REAL NOT NULL",
        "payment_date": "TEXT DEFAULT CURRENT_TIMESTAMP",
        "payment_method": "TEXT",
        "reference": "TEXT",
        "notes": "TEXT",
        "created_at": "TEXT DEFAULT CURRENT_TIMESTAMP"
    },
    "stock_movements": {
        "id": "INTEGER PRIMARY KEY AUTOINCREMENT",
        "product_id": "INTEGER NOT NULL REFERENCES products(id)",
        "product_name": "TEXT NOT NULL",
        "quantity": "REAL NOT NULL",
        "movement_type": "TEXT NOT NULL",
        "source_type": "TEXT",
        "source_id": "INTEGER",
        "reference": "TEXT",
        "reason": "TEXT",
        "stock_before": "REAL",
        "stock_after": "REAL",
        "created_at": "TEXT DEFAULT CURRENT_TIMESTAMP"
    },
    "audit_logs": {
        "id": "INTEGER PRIMARY KEY AUTOINCREMENT",
        "action": "TEXT NOT NULL",
        "details": "TEXT",
        "created_at": "TEXT DEFAULT CURRENT_TIMESTAMP"
    }
}

MASTER_INDEXES = {
    "idx_clients_name": ("clients", "name"),
    "idx_clients_company": ("clients", "company"),
    "idx_products_name": ("products", "name"),
    "idx_products_category": ("products", "category"),
    "idx_products_active": ("products", "is_active"),
    "idx_sales_client": ("sales", "client_id"),
    "idx_sales_date": ("sales", "sale_date"),
    "idx_sale_items_sale": ("sale_items", "sale_id"),
    "idx_invoices_client": ("invoices", "client_id"),
    "idx_invoices_date": ("invoices", "issue_date"),
    "idx_invoices_status": ("invoices", "status"),
    "idx_invoice_items_invoice": ("invoice_items", "invoice_id"),
    "idx_quotes_client": ("quotes", "client_id"),
    "idx_quotes_status": ("quotes", "status"),
    "idx_quote_items_quote": ("quote_items", "quote_id"),
    "idx_supplier_orders_supplier": ("supplier_orders", "supplier_id"),
    "idx_supplier_invoices_supplier": ("supplier_invoices", "supplier_id"),
    "idx_client_payments_invoice": ("client_payments", "invoice_id"),
    "idx_supplier_payments_invoice": ("supplier_payments", "invoice_id"),
    "idx_purchase_orders_sale": ("purchase_orders", "sale_id"),
    "idx_stock_movements_product": ("stock_movements", "product_id"),
}

# kind -> (table, column, prefix, padding)
DOCUMENT_NUMBERING = {
    "invoice": ("invoices", "number", "FAC", 4),
    "credit_note": ("credit_notes", "number", "AV", 4),
    "purchase_order": ("purchase_orders", "number", "BC", 4),
    "quote": ("quotes", "number", "DEV", 3),
    "reception_note": ("reception_notes", "reception_number", "BR", 4),
    "delivery_receipt": ("delivery_receipts", "delivery_number", "BL", 4),
    "supplier_order": ("supplier_orders", "order_number", "PO", 4),
}

# Document table -> (item table, parent column)
ITEM_TABLES = {
    "sales": ("sale_items", "sale_id"),
    "quotes": ("quote_items", "quote_id"),
    "invoices": ("invoice_items", "invoice_id"),
    "credit_notes": ("credit_note_items", "credit_note_id"),
    "purchase_orders": ("purchase_order_items", "purchase_order_id"),
    "supplier_orders": ("supplier_order_items", "order_id"),
    "supplier_invoices": ("supplier_invoice_items", "invoice_id"),
}

SERVICE_CATEGORY = "Service"
MOVEMENT_IN = "IN"
MOVEMENT_OUT = "OUT"


def now_str() -> str:
    return datetime.now().strftime("%Y-%m-%d %H:%M:%S")


class DatabaseManager:
    """Manages SQLite database connections and operations"""

    def __init__(self, db_path: str = None):
        self.db_path = db_path or get_database_path()
        self.connection: Optional[sqlite3.Connection] = None

        # Ensure directory exists
        folder = os.path.dirname(os.path.abspath(self.db_path))
        os.makedirs(folder, exist_ok=True)

        # Start Self-Healing Process
        self.verifier_et_reparer_base_de_donnees()

    def _get_connection(self) -> sqlite3.Connection:
        """Get or create database connection with WAL mode enabled"""
        if self.connection is None:
            self.connection = sqlite3.connect(self.db_path)
            self.connection.execute("PRAGMA foreign_keys = ON")
            self.connection.execute("PRAGMA journal_mode=WAL;")
            self.connection.row_factory = sqlite3.Row
        return self.connection

    def verifier_et_reparer_base_de_donnees(self):
        """
        SELF-HEALING SYSTEM
        Compares physical database with MASTER_SCHEMA.
        Adds missing tables, columns and indexes without data loss.
        """
        conn = self._get_connection()
        cursor = conn.cursor()

        logger.info("Vérification de la structure de la base: %s", self.db_path)

        for table_name, columns in MASTER_SCHEMA.items():
            cursor.execute("SELECT name FROM sqlite_master WHERE type='table' AND name=?", (table_name,))
            if not cursor.fetchone():
                logger.info("Création de la table: %s", table_name)
                col_defs = [f"{col} {definition}" for col, definition in columns.items()]
                cursor.execute(f"CREATE TABLE {table_name} ({', '.join(col_defs)})")
            else:
                cursor.execute(f"PRAGMA table_info({table_name})")
                existing_cols = {row['name'] for row in cursor.fetchall()}

                for col_name, col_def in columns.items():
                    if col_name not in existing_cols:
                        logger.info("Ajout de la colonne manquante: %s.%s", table_name, col_name)
                        try:
                            # SQLite refuses UNIQUE / PRIMARY KEY and NOT NULL without default here
                            cursor.execute(f"ALTER TABLE {table_name} ADD COLUMN {col_name} {col_def}")
                        except sqlite3.OperationalError as e:
                            logger.error("Impossible d'ajouter %s.%s: %s", table_name, col_name, e)

        for index_name, (table_name, column) in MASTER_INDEXES.items():
            cursor.execute(f"CREATE INDEX IF NOT EXISTS {index_name} ON {table_name}({column})")

        conn.commit()
        self._initialize_default_data()
        logger.info("Structure de la base vérifiée.")

    def _initialize_default_data(self):
        """Insert default data if tables are empty"""
        conn = self._get_connection()
        cursor = conn.cursor()

        cursor.execute("SELECT COUNT(*) FROM categories")
        if cursor.fetchone()[0] == 0:
            cursor.executemany("""
                INSERT INTO categories (name, description) VALUES (?, ?)
            """, [
                ('Général', 'Catégorie par défaut'),
                (SERVICE_CATEGORY, 'Prestations sans mouvement de stock')
            ])

        cursor.execute("SELECT COUNT(*) FROM tva")
        if cursor.fetchone()[0] == 0:
            cursor.executemany("INSERT INTO tva (rate) VALUES (?)", [(0.0,), (7.0,), (13.0,), (19.0,)])

        cursor.execute("SELECT COUNT(*) FROM units")
        if cursor.fetchone()[0] == 0:
            cursor.executemany("""
                INSERT INTO units (name, symbol) VALUES (?, ?)
            """, [('Pièce', 'pcs'), ('Kilogramme', 'kg'), ('Heure', 'h')])

        conn.commit()

    def backup_to(self, target_path: str) -> str:
        """Copy the live database with the SQLite online backup API"""
        src_conn = self._get_connection()
        dst_conn = sqlite3.connect(target_path)
        try:
            with dst_conn:
                src_conn.backup(dst_conn)
        finally:
            dst_conn.close()
        return target_path

    def restore_from(self, source_path: str):
        """Overwrite the live database with the content of source_path, then re-heal"""
        src_conn = sqlite3.connect(source_path)
        try:
            dst_conn = self._get_connection()
            src_conn.backup(dst_conn)
        finally:
            src_conn.close()
        self.close()
        self.verifier_et_reparer_base_de_donnees()

    def close(self):
        """Close database connection"""
        if self.connection:
            self.connection.close()
            self.connection = None

    # ==================== GENERIC HELPERS ====================

    def _update_row(self, table: str, row_id: int, fields: Dict[str, Any], commit: bool = True) -> int:
        """UPDATE table SET ... restricted to columns known by MASTER_SCHEMA"""
        allowed = MASTER_SCHEMA[table]
        fields = {k: v for k, v in fields.items() if k in allowed and k != 'id'}
        if 'updated_at' in allowed and 'updated_at' not in fields:
            fields['updated_at'] = now_str()
        if not fields:
            return 0
        conn = self._get_connection()
        assignments = ', '.join(f"{k} = ?" for k in fields.keys())
        values = list(fields.values()) + [row_id]
        cursor = conn.execute(f"UPDATE {table} SET {assignments} WHERE id = ?", values)
        if commit:
            conn.commit()
        return cursor.rowcount

    def _get_row(self, table: str, row_id: int) -> Optional[Dict[str, Any]]:
        cursor = self._get_connection().execute(f"SELECT * FROM {table} WHERE id = ?", (row_id,))
        row = cursor.fetchone()
        return dict(row) if row else None

    def _count(self, query: str, params: tuple = ()) -> int:
        return self._get_connection().execute(query, params).fetchone()[0]

    def get_record(self, table: str, row_id: int) -> Optional[Dict[str, Any]]:
        """Raw row of any MASTER_SCHEMA table"""
        if table not in MASTER_SCHEMA:
            raise KeyError(table)
        return self._get_row(table, row_id)

    def update_record(self, table: str, row_id: int, commit: bool = True, **kwargs) -> int:
        return self._update_row(table, row_id, kwargs, commit=commit)

    def log_action(self, action: str, details: str = None):
        """Log user action to audit_logs"""
        conn = self._get_connection()
        conn.execute("INSERT INTO audit_logs (action, details) VALUES (?, ?)", (action, details))
        conn.commit()

    def get_audit_logs(self, limit: int = 100) -> List[Dict[str, Any]]:
        cursor = self._get_connection().execute(
            "SELECT * FROM audit_logs ORDER BY id DESC LIMIT ?", (limit,))
        return [dict(row) for row in cursor.fetchall()]

    # ==================== DOCUMENT NUMBERING ====================

    def generate_document_number(self, kind: str, annee: int = None) -> str:
        """
        Next sequential number for a document kind: PREFIX-YYYY-NNNN.
        Sequence restarts each year; unparsable numbers are ignored.
        """
        table, column, prefix, padding = DOCUMENT_NUMBERING[kind]
        annee = annee or datetime.now().year

        cursor = self._get_connection().execute(
            f"SELECT {column} FROM {table} WHERE {column} LIKE ?", (f"{prefix}-{annee}-%",))

        last = 0
        for row in cursor.fetchall():
            try:
                last = max(last, int(row[0].split("-")[2]))
            except (IndexError, ValueError):
                continue

        return f"{prefix}-{annee}-{last + 1:0{padding}d}"

    # ==================== LINE ITEMS ====================

    def insert_items(self, document_table: str, document_id: int,
                     items: List[Dict[str, Any]], commit: bool = True):
        """Insert priced lines (product, quantity, unit_price, discount, total_price)"""
        item_table, parent_column = ITEM_TABLES[document_table]
        conn = self._get_connection()
        conn.executemany(f"""
            INSERT INTO {item_table} ({parent_column}, product_id, product_name,
                                      quantity, unit_price, discount, total_price)
            VALUES (?, ?, ?, ?, ?, ?, ?)
        """, [(document_id, item['product_id'], item['product_name'], item['quantity'],
               item['unit_price'], item.get('discount') or 0, item['total_price'])
              for item in items])
        if commit:
            conn.commit()

    def get_items(self, document_table: str, document_id: int) -> List[Dict[str, Any]]:
        item_table, parent_column = ITEM_TABLES[document_table]
        cursor = self._get_connection().execute(
            f"SELECT * FROM {item_table} WHERE {parent_column} = ? ORDER BY id", (document_id,))
        return [dict(row) for row in cursor.fetchall()]

    def delete_items(self, document_table: str, document_id: int, commit: bool = True):
        item_table, parent_column = ITEM_TABLES[document_table]
        conn = self._get_connection()
        conn.execute(f"DELETE FROM {item_table} WHERE {parent_column} = ?", (document_id,))
        if commit:
            conn.commit()

    # ==================== CATEGORY OPERATIONS ====================

    def create_category(self, name: str, description: str = None, is_active: bool = True) -> int:
        conn = self._get_connection()
        cursor = conn.execute("""
            INSERT INTO categories (name, description, is_active) VALUES (?, ?, ?)
        """, (name, description, int(is_active)))
        conn.commit()
        return cursor.lastrowid

    def get_all_categories(self) -> List[Dict[str, Any]]:
        cursor = self._get_connection().execute("SELECT * FROM categories ORDER BY name")
        return [dict(row) for row in cursor.fetchall()]

    def get_category_by_id(self, category_id: int) -> Optional[Dict[str, Any]]:
        return self._get_row("categories", category_id)

    def update_category(self, category_id: int, **kwargs) -> int:
        return self._update_row("categories", category_id, kwargs)

    def can_delete_category(self, category_id: int) -> Tuple[bool, str]:
        count = self._count("""
            SELECT COUNT(*) FROM products
            WHERE category = (SELECT name FROM categories WHERE id = ?)
        """, (category_id,))
        if count > 0:
            return False, f"Impossible de supprimer cette catégorie car elle est utilisée par {count} produit(s)"
        return True, ""

    def delete_category(self, category_id: int):
        conn = self._get_connection()
        conn.execute("DELETE FROM categories WHERE id = ?", (category_id,))
        conn.commit()

    # ==================== UNIT OPERATIONS ====================

    def create_unit(self, name: str, symbol: str = None, description: str = None,
                    is_active: bool = True) -> int:
        conn = self._get_connection()
        cursor = conn.execute("""
            INSERT INTO units (name, symbol, description, is_active) VALUES (?, ?, ?, ?)
        """, (name, symbol, description, int(is_active)))
        conn.commit()
        return cursor.lastrowid

    def get_all_units(self) -> List[Dict[str, Any]]:
        cursor = self._get_connection().execute("SELECT * FROM units ORDER BY name")
        return [dict(row) for row in cursor.fetchall()]

    def get_unit_by_id(self, unit_id: int) -> Optional[Dict[str, Any]]:
        return self._get_row("units", unit_id)

    def update_unit(self, unit_id: int, **kwargs) -> int:
        return self._update_row("units", unit_id, kwargs)

    def can_delete_unit(self, unit_id: int) -> Tuple[bool, str]:
        count = self._count("SELECT COUNT(*) FROM products WHERE unit_id = ?", (unit_id,))
        if count > 0:
            return False, f"Impossible de supprimer cette unité car elle est utilisée par {count} produit(s)"
        return True, ""

    def delete_unit(self, unit_id: int):
        conn = self._get_connection()
        conn.execute("DELETE FROM units WHERE id = ?", (unit_id,))
        conn.commit()

    # ==================== TVA OPERATIONS ====================

    def create_tva_rate(self, rate: float, is_active: bool = True) -> int:
        conn = self._get_connection()
        cursor = conn.execute("INSERT INTO tva (rate, is_active) VALUES (?, ?)", (rate, int(is_active)))
        conn.commit()
        return cursor.lastrowid

    def get_all_tva_rates(self) -> List[Dict[str, Any]]:
        cursor = self._get_connection().execute("SELECT * FROM tva ORDER BY rate")
        return [dict(row) for row in cursor.fetchall()]

    def get_tva_rate_by_id(self, tva_id: int) -> Optional[Dict[str, Any]]:
        return self._get_row("tva", tva_id)

    def update_tva_rate(self, tva_id: int, **kwargs) -> int:
        return self._update_row("tva", tva_id, kwargs)

    def can_delete_tva_rate(self, tva_id: int) -> Tuple[bool, str]:
        if self._count("SELECT COUNT(*) FROM products WHERE tva_id = ?", (tva_id,)) > 0:
            return False, "Impossible de supprimer ce taux de TVA car il est utilisé par des produits"
        return True, ""

    def delete_tva_rate(self, tva_id: int):
        conn = self._get_connection()
        conn.execute("DELETE FROM tva WHERE id = ?", (tva_id,))
        conn.commit()

    # ==================== COMPANY OPERATIONS ====================

    def get_company_settings(self) -> Optional[Dict[str, Any]]:
        """First company with real data, else the first record"""
        conn = self._get_connection()
        row = conn.execute("""
            SELECT * FROM companies
            WHERE (name != '' OR address != '' OR email != '' OR phone != '')
            ORDER BY id LIMIT 1
        """).fetchone()
        if not row:
            row = conn.execute("SELECT * FROM companies ORDER BY id LIMIT 1").fetchone()
        return dict(row) if row else None

    def create_company(self, name: str = "", address: str = "", city: str = "",
                       country: str = "", phone: str = "", email: str = "",
                       website: str = "", tax_id: str = "", tax_status: str = "",
                       tva_number: str = None, fodec_rate: float = 1.0) -> int:
        conn = self._get_connection()
        cursor = conn.execute("""
            INSERT INTO companies (name, address, city, country, phone, email, website,
                                   tax_id, tax_status, tva_number, fodec_rate)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (name or "", address or "", city or "", country or "", phone or "",
              email or "", website or "", tax_id or "", tax_status or "", tva_number,
              1.0 if fodec_rate is None else fodec_rate))
        conn.commit()
        return cursor.lastrowid

    def get_company_by_id(self, company_id: int) -> Optional[Dict[str, Any]]:
        return self._get_row("companies", company_id)

    def update_company(self, company_id: int, **kwargs) -> int:
        return self._update_row("companies", company_id, kwargs)

    # ==================== CLIENT OPERATIONS ====================

    def create_client(self, name: str, email: str = None, phone: str = None,
                      address: str = None, company: str = None, tax_id: str = None,
                      client_type: str = None) -> int:
        """Create new client"""
        conn = self._get_connection()
        cursor = conn.execute("""
            INSERT INTO clients (name, email, phone, address, company, tax_id, client_type)
            VALUES (?, ?, ?, ?, ?, ?, ?)
        """, (name, email, phone, address, company, tax_id, client_type))
        conn.commit()
        return cursor.lastrowid

    def get_all_clients(self) -> List[Dict[str, Any]]:
        cursor = self._get_connection().execute("SELECT * FROM clients ORDER BY name")
        return [dict(row) for row in cursor.fetchall()]

    def get_client_by_id(self, client_id: int) -> Optional[Dict[str, Any]]:
        return self._get_row("clients", client_id)

    def update_client(self, client_id: int, **kwargs) -> int:
        return self._update_row("clients", client_id, kwargs)

    def can_delete_client(self, client_id: int) -> Tuple[bool, str]:
        """A client referenced by sales, quotes or invoices is kept"""
        checks = [
            ("sales", "ventes"),
            ("quotes", "devis"),
            ("invoices", "factures"),
        ]
        for table, label in checks:
            count = self._count(f"SELECT COUNT(*) FROM {table} WHERE client_id = ?", (client_id,))
            if count > 0:
                return False, f"Impossible de supprimer ce client car il a {count} {label} associé(e)s"
        return True, ""

    def delete_client(self, client_id: int):
        conn = self._get_connection()
        conn.execute("DELETE FROM clients WHERE id = ?", (client_id,))
        conn.commit()

    # ==================== SUPPLIER OPERATIONS ====================

    def create_supplier(self, name: str, email: str = None, phone: str = None,
                        address: str = None, company: str = None, tax_id: str = None) -> int:
        conn = self._get_connection()
        cursor = conn.execute("""
            INSERT INTO suppliers (name, email, phone, address, company, tax_id)
            VALUES (?, ?, ?, ?, ?, ?)
        """, (name, email, phone, address, company, tax_id))
        conn.commit()
        return cursor.lastrowid

    def get_all_suppliers(self) -> List[Dict[str, Any]]:
        cursor = self._get_connection().execute("SELECT * FROM suppliers ORDER BY name")
        return [dict(row) for row in cursor.fetchall()]

    def get_supplier_by_id(self, supplier_id: int) -> Optional[Dict[str, Any]]:
        return self._get_row("suppliers", supplier_id)

    def update_supplier(self, supplier_id: int, **kwargs) -> int:
        return self._update_row("suppliers", supplier_id, kwargs)

    def can_delete_supplier(self, supplier_id: int) -> Tuple[bool, str]:
        if self._count("SELECT COUNT(*) FROM supplier_orders WHERE supplier_id = ?", (supplier_id,)) > 0:
            return False, "Impossible de supprimer ce fournisseur car il a des commandes associées"
        if self._count("SELECT COUNT(*) FROM supplier_invoices WHERE supplier_id = ?", (supplier_id,)) > 0:
            return False, "Impossible de supprimer ce fournisseur car il a des factures associées"
        return True, ""

    def delete_supplier(self, supplier_id: int):
        conn = self._get_connection()
        conn.execute("DELETE FROM suppliers WHERE id = ?", (supplier_id,))
        conn.commit()

    # ==================== PRODUCT OPERATIONS ====================

    def create_product(self, name: str, category: str, description: str = None,
                       reference: str = None, stock: float = 0.0,
                       unit_id: int = None, tva_id: int = None,
                       selling_price_ht: float = 0.0, selling_price_ttc: float = 0.0,
                       purchase_price_ht: float = 0.0, weighted_average_cost_ht: float = 0.0,
                       fodec_applicable: bool = False, is_active: bool = True,
                       commit: bool = True) -> int:
        """Create new product"""
        conn = self._get_connection()
        cursor = conn.execute("""
            INSERT INTO products (name, category, description, reference, stock, unit_id, tva_id,
                                  selling_price_ht, selling_price_ttc, purchase_price_ht,
                                  weighted_average_cost_ht, fodec_applicable, is_active)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (name, category, description, reference, stock, unit_id, tva_id,
              selling_price_ht, selling_price_ttc, purchase_price_ht,
              weighted_average_cost_ht, int(bool(fodec_applicable)), int(bool(is_active))))
        if commit:
            conn.commit()
        return cursor.lastrowid

    def get_all_products(self, active_only: bool = False) -> List[Dict[str, Any]]:
        """Products with their TVA rate and unit symbol"""
        query = """
            SELECT p.*, t.rate as tva_rate, u.symbol as unit_symbol
            FROM products p
            LEFT JOIN tva t ON p.tva_id = t.id
            LEFT JOIN units u ON p.unit_id = u.id
        """
        if active_only:
            query += " WHERE p.is_active = 1"
        cursor = self._get_connection().execute(query + " ORDER BY p.name")
        return [dict(row) for row in cursor.fetchall()]

    def get_product_by_id(self, product_id: int) -> Optional[Dict[str, Any]]:
        cursor = self._get_connection().execute("""
            SELECT p.*, t.rate as tva_rate, u.symbol as unit_symbol
            FROM products p
            LEFT JOIN tva t ON p.tva_id = t.id
            LEFT JOIN units u ON p.unit_id = u.id
            WHERE p.id = ?
        """, (product_id,))
        row = cursor.fetchone()
        return dict(row) if row else None

    def update_product(self, product_id: int, **kwargs) -> int:
        # Stock goes through log_stock_movement so the ledger stays complete
        kwargs.pop('stock', None)
        return self._update_row("products", product_id, kwargs)

    def can_delete_product(self, product_id: int) -> Tuple[bool, str]:
        for item_table, _ in ITEM_TABLES.values():
            if self._count(f"SELECT COUNT(*) FROM {item_table} WHERE product_id = ?", (product_id,)) > 0:
                return False, "Impossible de supprimer ce produit car il est utilisé dans des documents"
        for item_table in ("delivery_receipt_items", "reception_note_items", "stock_movements"):
            if self._count(f"SELECT COUNT(*) FROM {item_table} WHERE product_id = ?", (product_id,)) > 0:
                return False, "Impossible de supprimer ce produit car il a des mouvements de stock"
        return True, ""

    def delete_product(self, product_id: int):
        conn = self._get_connection()
        conn.execute("DELETE FROM products WHERE id = ?", (product_id,))
        conn.commit()

    # ==================== STOCK MOVEMENT OPERATIONS ====================

    def log_stock_movement(self, product_id: int, movement_type: str, quantity: float,
                           source_type: str = None, source_id: int = None,
                           reference: str = None, reason: str = None,
                           commit: bool = True) -> Optional[int]:
        """
        Apply a stock movement and record it with stock before/after.
        IN adds, OUT subtracts. Service products are ignored (returns None).
        """
        conn = self._get_connection()
        cursor = conn.cursor()

        cursor.execute("SELECT name, category, stock FROM products WHERE id = ?", (product_id,))
        product = cursor.fetchone()
        if not product:
            raise ValueError(f"Produit introuvable (id={product_id})")
        if product['category'] == SERVICE_CATEGORY:
            return None

        stock_before = product['stock'] or 0.0
        delta = quantity if movement_type == MOVEMENT_IN else -quantity
        stock_after = stock_before + delta

        cursor.execute("""
            INSERT INTO stock_movements
            (product_id, product_name, quantity, movement_type, source_type, source_id,
             reference, reason, stock_before, stock_after, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (product_id, product['name'], quantity, movement_type, source_type, source_id,
              reference, reason, stock_before, stock_after, now_str()))
        movement_id = cursor.lastrowid

        cursor.execute("UPDATE products SET stock = ? WHERE id = ?", (stock_after, product_id))

        if commit:
            conn.commit()
        return movement_id

    def get_stock_movements(self, product_id: int = None) -> List[Dict[str, Any]]:
        query = "SELECT * FROM stock_movements"
        if product_id:
            cursor = self._get_connection().execute(
                query + " WHERE product_id = ? ORDER BY id DESC", (product_id,))
        else:
            cursor = self._get_connection().execute(query + " ORDER BY id DESC")
        return [dict(row) for row in cursor.fetchall()]

    # ==================== SALE OPERATIONS ====================

    def insert_sale(self, client_id: int, total_amount: float, tax_amount: float,
                    discount_amount: float = 0.0, fodec_amount: float = 0.0,
                    status: str = 'Confirmé', sale_date: str = None,
                    commit: bool = True) -> int:
        conn = self._get_connection()
        cursor = conn.execute("""
            INSERT INTO sales (client_id, total_amount, tax_amount, discount_amount,
                               fodec_amount, status, sale_date)
            VALUES (?, ?, ?, ?, ?, ?, ?)
        """, (client_id, total_amount, tax_amount, discount_amount, fodec_amount,
              status, sale_date or now_str()))
        if commit:
            conn.commit()
        return cursor.lastrowid

    def get_sale_by_id(self, sale_id: int) -> Optional[Dict[str, Any]]:
        cursor = self._get_connection().execute("""
            SELECT s.*, c.name as client_name, c.company as client_company,
                   c.address as client_address, c.tax_id as client_tax_id
            FROM sales s
            JOIN clients c ON s.client_id = c.id
            WHERE s.id = ?
        """, (sale_id,))
        row = cursor.fetchone()
        return dict(row) if row else None

    def get_all_sales(self, with_items: bool = False) -> List[Dict[str, Any]]:
        cursor = self._get_connection().execute("""
            SELECT s.*, c.name as client_name, c.company as client_company,
                   c.email as client_email, c.phone as client_phone,
                   c.address as client_address, c.tax_id as client_tax_id
            FROM sales s
            JOIN clients c ON s.client_id = c.id
            ORDER BY s.sale_date DESC, s.id DESC
        """)
        sales = [dict(row) for row in cursor.fetchall()]
        if with_items:
            for sale in sales:
                sale['items'] = self.get_items("sales", sale['id'])
        return sales

    def can_delete_sale(self, sale_id: int) -> Tuple[bool, str]:
        checks = [
            ("invoices", "Impossible de supprimer cette vente car elle est liée à une facture"),
            ("delivery_receipts", "Impossible de supprimer cette vente car elle est liée à un bon de livraison"),
            ("purchase_orders", "Impossible de supprimer cette vente car elle est liée à un bon de commande"),
        ]
        for table, message in checks:
            if self._count(f"SELECT COUNT(*) FROM {table} WHERE sale_id = ?", (sale_id,)) > 0:
                return False, message
        return True, ""

    def delete_sale(self, sale_id: int, commit: bool = True):
        conn = self._get_connection()
        conn.execute("DELETE FROM sale_items WHERE sale_id = ?", (sale_id,))
        conn.execute("DELETE FROM sales WHERE id = ?", (sale_id,))
        if commit:
            conn.commit()

    # ==================== QUOTE OPERATIONS ====================

    def insert_quote(self, number: str, client_id: int, amount: float, tax_amount: float,
                     total_amount: float, fodec_amount: float = 0.0,
                     status: str = 'En attente', issue_date: str = None,
                     due_date: str = None, commit: bool = True) -> int:
        conn = self._get_connection()
        cursor = conn.execute("""
            INSERT INTO quotes (number, client_id, amount, tax_amount, fodec_amount,
                                total_amount, status, issue_date, due_date)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (number, client_id, amount, tax_amount, fodec_amount, total_amount,
              status, issue_date or now_str(), due_date))
        if commit:
            conn.commit()
        return cursor.lastrowid

    def get_quote_by_id(self, quote_id: int) -> Optional[Dict[str, Any]]:
        cursor = self._get_connection().execute("""
            SELECT q.*, c.name as client_name, c.company as client_company,
                   c.address as client_address, c.tax_id as client_tax_id
            FROM quotes q
            JOIN clients c ON q.client_id = c.id
            WHERE q.id = ?
        """, (quote_id,))
        row = cursor.fetchone()
        return dict(row) if row else None

    def get_all_quotes(self) -> List[Dict[str, Any]]:
        cursor = self._get_connection().execute("""
            SELECT q.*, c.name as client_name, c.company as client_company,
                   c.address as client_address
            FROM quotes q
            JOIN clients c ON q.client_id = c.id
            ORDER BY q.created_at DESC, q.id DESC
        """)
        quotes = [dict(row) for row in cursor.fetchall()]
        for quote in quotes:
            quote['items'] = self.get_items("quotes", quote['id'])
        return quotes

    def delete_quote(self, quote_id: int):
        conn = self._get_connection()
        conn.execute("DELETE FROM quotes WHERE id = ?", (quote_id,))
        conn.commit()

    # ==================== INVOICE OPERATIONS ====================

    def insert_invoice(self, number: str, client_id: int, amount: float, tax_amount: float,
                       total_amount: float, fodec_amount: float = 0.0,
                       sale_id: int = None, quote_id: int = None,
                       status: str = 'En attente', issue_date: str = None,
                       due_date: str = None, commit: bool = True) -> int:
        conn = self._get_connection()
        cursor = conn.execute("""
            INSERT INTO invoices (number, sale_id, quote_id, client_id, amount, tax_amount,
                                  fodec_amount, total_amount, status, issue_date, due_date)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (number, sale_id, quote_id, client_id, amount, tax_amount, fodec_amount,
              total_amount, status, issue_date or now_str(), due_date))
        if commit:
            conn.commit()
        return cursor.lastrowid

    def get_invoice_by_id(self, invoice_id: int) -> Optional[Dict[str, Any]]:
        cursor = self._get_connection().execute("""
            SELECT i.*, c.name as client_name, c.company as client_company,
                   c.address as client_address, c.tax_id as client_tax_id,
                   (SELECT COALESCE(SUM(amount), 0) FROM client_payments WHERE invoice_id = i.id) as paid_amount
            FROM invoices i
            JOIN clients c ON i.client_id = c.id
            WHERE i.id = ?
        """, (invoice_id,))
        row = cursor.fetchone()
        return dict(row) if row else None

    def get_all_invoices(self) -> List[Dict[str, Any]]:
        cursor = self._get_connection().execute("""
            SELECT i.*, c.name as client_name, c.company as client_company,
                   c.address as client_address,
                   (SELECT COALESCE(SUM(amount), 0) FROM client_payments WHERE invoice_id = i.id) as paid_amount
            FROM invoices i
            JOIN clients c ON i.client_id = c.id
            ORDER BY i.issue_date DESC, i.id DESC
        """)
        invoices = [dict(row) for row in cursor.fetchall()]
        for invoice in invoices:
            invoice['items'] = self.get_items("invoices", invoice['id'])
        return invoices

    def get_invoices_for_sale(self, sale_id: int) -> List[Dict[str, Any]]:
        cursor = self._get_connection().execute(
            "SELECT * FROM invoices WHERE sale_id = ? ORDER BY id", (sale_id,))
        return [dict(row) for row in cursor.fetchall()]

    def update_invoice_status(self, invoice_id: int, status: str, commit: bool = True) -> int:
        return self._update_row("invoices", invoice_id, {"status": status}, commit=commit)

    # ==================== CREDIT NOTE OPERATIONS ====================

    def insert_credit_note(self, number: str, original_invoice_id: int, client_id: int,
                           amount: float, tax_amount: float, total_amount: float,
                           reason: str, fodec_amount: float = 0.0, status: str = 'En attente',
                           due_date: str = None, commit: bool = True) -> int:
        conn = self._get_connection()
        cursor = conn.execute("""
            INSERT INTO credit_notes (number, original_invoice_id, client_id, amount, tax_amount,
                                      fodec_amount, total_amount, reason, status, issue_date, due_date)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (number, original_invoice_id, client_id, amount, tax_amount, fodec_amount,
              total_amount, reason, status, now_str(), due_date))
        if commit:
            conn.commit()
        return cursor.lastrowid

    def get_credit_note_by_id(self, credit_note_id: int) -> Optional[Dict[str, Any]]:
        cursor = self._get_connection().execute("""
            SELECT cn.*, c.name as client_name, c.company as client_company,
                   c.address as client_address, c.tax_id as client_tax_id,
                   i.number as original_invoice_number
            FROM credit_notes cn
            JOIN clients c ON cn.client_id = c.id
            JOIN invoices i ON cn.original_invoice_id = i.id
            WHERE cn.id = ?
        """, (credit_note_id,))
        row = cursor.fetchone()
        return dict(row) if row else None

    def get_all_credit_notes(self) -> List[Dict[str, Any]]:
        cursor = self._get_connection().execute("""
            SELECT cn.*, c.name as client_name, c.company as client_company,
                   c.address as client_address, c.tax_id as client_tax_id,
                   i.number as original_invoice_number
            FROM credit_notes cn
            JOIN clients c ON cn.client_id = c.id
            JOIN invoices i ON cn.original_invoice_id = i.id
            ORDER BY cn.issue_date DESC, cn.id DESC
        """)
        notes = [dict(row) for row in cursor.fetchall()]
        for note in notes:
            note['items'] = self.get_items("credit_notes", note['id'])
        return notes

    # ==================== PURCHASE ORDER OPERATIONS ====================

    def insert_purchase_order(self, number: str, client_id: int, amount: float,
                              tax_amount: float, total_amount: float, sale_id: int = None,
                              delivery_date: str = None, commit: bool = True) -> int:
        conn = self._get_connection()
        cursor = conn.execute("""
            INSERT INTO purchase_orders (number, sale_id, client_id, amount, tax_amount,
                                         total_amount, order_date, delivery_date)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """, (number, sale_id, client_id, amount, tax_amount, total_amount,
              now_str(), delivery_date))
        if commit:
            conn.commit()
        return cursor.lastrowid

    def get_purchase_order_by_id(self, purchase_order_id: int) -> Optional[Dict[str, Any]]:
        cursor = self._get_connection().execute("""
            SELECT po.*, c.name as client_name, c.company as client_company,
                   c.address as client_address, c.tax_id as client_tax_id
            FROM purchase_orders po
            JOIN clients c ON po.client_id = c.id
            WHERE po.id = ?
        """, (purchase_order_id,))
        row = cursor.fetchone()
        return dict(row) if row else None

    def get_all_purchase_orders(self) -> List[Dict[str, Any]]:
        cursor = self._get_connection().execute("""
            SELECT po.*, c.name as client_name, c.company as client_company,
                   c.address as client_address
            FROM purchase_orders po
            JOIN clients c ON po.client_id = c.id
            ORDER BY po.order_date DESC, po.id DESC
        """)
        orders = [dict(row) for row in cursor.fetchall()]
        for order in orders:
            order['items'] = self.get_items("purchase_orders", order['id'])
        return orders

    # ==================== DELIVERY RECEIPT OPERATIONS ====================

    def insert_delivery_receipt(self, sale_id: int, delivery_number: str,
                                driver_name: str = None, vehicle_registration: str = None,
                                delivery_date: str = None,
                                items: List[Dict[str, Any]] = None,
                                commit: bool = True) -> int:
        conn = self._get_connection()
        cursor = conn.execute("""
            INSERT INTO delivery_receipts (sale_id, delivery_number, driver_name,
                                           vehicle_registration, delivery_date)
            VALUES (?, ?, ?, ?, ?)
        """, (sale_id, delivery_number, driver_name, vehicle_registration,
              delivery_date or now_str()))
        receipt_id = cursor.lastrowid
        conn.executemany("""
            INSERT INTO delivery_receipt_items (delivery_receipt_id, product_id, product_name,
                                                quantity, unit_price)
            VALUES (?, ?, ?, ?, ?)
        """, [(receipt_id, item['product_id'], item['product_name'], item['quantity'],
               item['unit_price']) for item in (items or [])])
        if commit:
            conn.commit()
        return receipt_id

    def _delivery_receipt_query(self) -> str:
        return """
            SELECT dr.*, s.client_id, c.name as client_name, c.company as client_company,
                   c.address as client_address
            FROM delivery_receipts dr
            JOIN sales s ON dr.sale_id = s.id
            JOIN clients c ON s.client_id = c.id
        """

    def get_delivery_receipt_items(self, receipt_id: int) -> List[Dict[str, Any]]:
        cursor = self._get_connection().execute(
            "SELECT * FROM delivery_receipt_items WHERE delivery_receipt_id = ? ORDER BY id",
            (receipt_id,))
        return [dict(row) for row in cursor.fetchall()]

    def get_delivery_receipt_by_id(self, receipt_id: int) -> Optional[Dict[str, Any]]:
        row = self._get_connection().execute(
            self._delivery_receipt_query() + " WHERE dr.id = ?", (receipt_id,)).fetchone()
        if not row:
            return None
        receipt = dict(row)
        receipt['items'] = self.get_delivery_receipt_items(receipt_id)
        return receipt

    def get_delivery_receipt_by_sale(self, sale_id: int) -> Optional[Dict[str, Any]]:
        row = self._get_connection().execute(
            self._delivery_receipt_query() + " WHERE dr.sale_id = ? ORDER BY dr.id DESC LIMIT 1",
            (sale_id,)).fetchone()
        if not row:
            return None
        receipt = dict(row)
        receipt['items'] = self.get_delivery_receipt_items(receipt['id'])
        return receipt

    def get_all_delivery_receipts(self) -> List[Dict[str, Any]]:
        cursor = self._get_connection().execute(
            self._delivery_receipt_query() + " ORDER BY dr.delivery_date DESC, dr.id DESC")
        receipts = [dict(row) for row in cursor.fetchall()]
        for receipt in receipts:
            receipt['items'] = self.get_delivery_receipt_items(receipt['id'])
        return receipts

    def delete_delivery_receipt(self, receipt_id: int) -> int:
        conn = self._get_connection()
        conn.execute("DELETE FROM delivery_receipt_items WHERE delivery_receipt_id = ?", (receipt_id,))
        cursor = conn.execute("DELETE FROM delivery_receipts WHERE id = ?", (receipt_id,))
        conn.commit()
        return cursor.rowcount

    # ==================== SUPPLIER ORDER OPERATIONS ====================

    def insert_supplier_order(self, supplier_id: int, order_number: str, total_amount: float,
                              tax_amount: float, status: str = 'En attente',
                              order_date: str = None, delivery_date: str = None,
                              commit: bool = True) -> int:
        conn = self._get_connection()
        cursor = conn.execute("""
            INSERT INTO supplier_orders (supplier_id, order_number, total_amount, tax_amount,
                                         status, order_date, delivery_date)
            VALUES (?, ?, ?, ?, ?, ?, ?)
        """, (supplier_id, order_number, total_amount, tax_amount, status or 'En attente',
              order_date or now_str(), delivery_date))
        if commit:
            conn.commit()
        return cursor.lastrowid

    def get_supplier_order_by_id(self, order_id: int) -> Optional[Dict[str, Any]]:
        cursor = self._get_connection().execute("""
            SELECT so.*, s.name as supplier_name, s.company as supplier_company,
                   s.email as supplier_email, s.phone as supplier_phone,
                   s.address as supplier_address
            FROM supplier_orders so
            JOIN suppliers s ON so.supplier_id = s.id
            WHERE so.id = ?
        """, (order_id,))
        row = cursor.fetchone()
        return dict(row) if row else None

    def get_all_supplier_orders(self) -> List[Dict[str, Any]]:
        cursor = self._get_connection().execute("""
            SELECT so.*, s.name as supplier_name, s.company as supplier_company
            FROM supplier_orders so
            JOIN suppliers s ON so.supplier_id = s.id
            ORDER BY so.order_date DESC, so.id DESC
        """)
        orders = [dict(row) for row in cursor.fetchall()]
        for order in orders:
            order['items'] = self.get_items("supplier_orders", order['id'])
        return orders

    def can_delete_supplier_order(self, order_id: int) -> Tuple[bool, str]:
        if self._count("SELECT COUNT(*) FROM supplier_invoices WHERE order_id = ?", (order_id,)) > 0:
            return False, "Impossible de supprimer cette commande car elle a des factures associées"
        return True, ""

    def delete_supplier_order(self, order_id: int):
        conn = self._get_connection()
        conn.execute("DELETE FROM supplier_order_items WHERE order_id = ?", (order_id,))
        conn.execute("DELETE FROM supplier_orders WHERE id = ?", (order_id,))
        conn.commit()

    # ==================== SUPPLIER INVOICE OPERATIONS ====================

    def insert_supplier_invoice(self, supplier_id: int, invoice_number: str, amount: float,
                                tax_amount: float, total_amount: float, order_id: int = None,
                                status: str = 'En attente', issue_date: str = None,
                                due_date: str = None, payment_date: str = None,
                                commit: bool = True) -> int:
        conn = self._get_connection()
        cursor = conn.execute("""
            INSERT INTO supplier_invoices (supplier_id, order_id, invoice_number, amount,
                                           tax_amount, total_amount, status, issue_date,
                                           due_date, payment_date)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (supplier_id, order_id, invoice_number, amount, tax_amount, total_amount,
              status or 'En attente', issue_date or now_str(), due_date, payment_date))
        if commit:
            conn.commit()
        return cursor.lastrowid

    def get_supplier_invoice_by_id(self, invoice_id: int) -> Optional[Dict[str, Any]]:
        cursor = self._get_connection().execute("""
            SELECT si.*, s.name as supplier_name, s.company as supplier_company,
                   s.address as supplier_address, s.tax_id as supplier_tax_id,
                   so.order_number,
                   (SELECT COALESCE(SUM(amount), 0) FROM supplier_payments WHERE invoice_id = si.id) as paid_amount
            FROM supplier_invoices si
            JOIN suppliers s ON si.supplier_id = s.id
            LEFT JOIN supplier_orders so ON si.order_id = so.id
            WHERE si.id = ?
        """, (invoice_id,))
        row = cursor.fetchone()
        return dict(row) if row else None

    def get_all_supplier_invoices(self) -> List[Dict[str, Any]]:
        cursor = self._get_connection().execute("""
            SELECT si.*, s.name as supplier_name, s.company as supplier_company,
                   so.order_number,
                   (SELECT COALESCE(SUM(amount), 0) FROM supplier_payments WHERE invoice_id = si.id) as paid_amount
            FROM supplier_invoices si
            JOIN suppliers s ON si.supplier_id = s.id
            LEFT JOIN supplier_orders so ON si.order_id = so.id
            ORDER BY si.issue_date DESC, si.id DESC
        """)
        invoices = [dict(row) for row in cursor.fetchall()]
        for invoice in invoices:
            invoice['items'] = self.get_items("supplier_invoices", invoice['id'])
        return invoices

    def delete_supplier_invoice(self, invoice_id: int):
        conn = self._get_connection()
        conn.execute("DELETE FROM supplier_invoices WHERE id = ?", (invoice_id,))
        conn.commit()

    # ==================== RECEPTION NOTE OPERATIONS ====================

    def insert_reception_note(self, supplier_order_id: int, reception_number: str,
                              driver_name: str = None, vehicle_registration: str = None,
                              reception_date: str = None, notes: str = None,
                              commit: bool = True) -> int:
        conn = self._get_connection()
        cursor = conn.execute("""
            INSERT INTO reception_notes (supplier_order_id, reception_number, driver_name,
                                         vehicle_registration, reception_date, notes)
            VALUES (?, ?, ?, ?, ?, ?)
        """, (supplier_order_id, reception_number, driver_name, vehicle_registration,
              reception_date or now_str(), notes))
        if commit:
            conn.commit()
        return cursor.lastrowid

    def insert_reception_items(self, reception_note_id: int, items: List[Dict[str, Any]],
                               commit: bool = True):
        conn = self._get_connection()
        conn.executemany("""
            INSERT INTO reception_note_items (reception_note_id, product_id, product_name,
                                              ordered_quantity, received_quantity, unit_price)
            VALUES (?, ?, ?, ?, ?, ?)
        """, [(reception_note_id, item['product_id'], item['product_name'],
               item.get('ordered_quantity', item['received_quantity']),
               item['received_quantity'], item.get('unit_price') or 0)
              for item in items])
        if commit:
            conn.commit()

    def get_reception_items(self, reception_note_id: int) -> List[Dict[str, Any]]:
        cursor = self._get_connection().execute(
            "SELECT * FROM reception_note_items WHERE reception_note_id = ? ORDER BY id",
            (reception_note_id,))
        return [dict(row) for row in cursor.fetchall()]

    def get_reception_note_by_id(self, note_id: int) -> Optional[Dict[str, Any]]:
        cursor = self._get_connection().execute("""
            SELECT rn.*, so.supplier_id, so.order_number as supplier_order_number,
                   s.name as supplier_name, s.company as supplier_company
            FROM reception_notes rn
            JOIN supplier_orders so ON rn.supplier_order_id = so.id
            JOIN suppliers s ON so.supplier_id = s.id
            WHERE rn.id = ?
        """, (note_id,))
        row = cursor.fetchone()
        return dict(row) if row else None

    def get_reception_note_by_order(self, supplier_order_id: int) -> Optional[Dict[str, Any]]:
        row = self._get_connection().execute(
            "SELECT * FROM reception_notes WHERE supplier_order_id = ? ORDER BY id LIMIT 1",
            (supplier_order_id,)).fetchone()
        if not row:
            return None
        note = dict(row)
        note['items'] = self.get_reception_items(note['id'])
        return note

    def get_all_reception_notes(self) -> List[Dict[str, Any]]:
        cursor = self._get_connection().execute("""
            SELECT rn.*, so.supplier_id, so.order_number as supplier_order_number,
                   s.name as supplier_name
            FROM reception_notes rn
            JOIN supplier_orders so ON rn.supplier_order_id = so.id
            JOIN suppliers s ON so.supplier_id = s.id
            ORDER BY rn.reception_date DESC, rn.id DESC
        """)
        notes = [dict(row) for row in cursor.fetchall()]
        for note in notes:
            note['items'] = self.get_reception_items(note['id'])
            note['supplier_order'] = self.get_supplier_order_by_id(note['supplier_order_id'])
        return notes

    # ==================== PAYMENT OPERATIONS ====================

    def insert_payment(self, party: str, party_id: int, amount: float, invoice_id: int = None,
                       payment_date: str = None, payment_method: str = None,
                       reference: str = None, notes: str = None, commit: bool = True) -> int:
        """party is 'client' or 'supplier'"""
        table, party_column = PAYMENT_TABLES[party]
        conn = self._get_connection()
        cursor = conn.execute(f"""
            INSERT INTO {table} ({party_column}, invoice_id, amount, payment_date,
                                 payment_method, reference, notes)
            VALUES (?, ?, ?, ?, ?, ?, ?)
        """, (party_id, invoice_id, amount, payment_date or now_str(),
              payment_method, reference, notes))
        if commit:
            conn.commit()
        return cursor.lastrowid

    def get_payment_by_id(self, party: str, payment_id: int) -> Optional[Dict[str, Any]]:
        if party == 'client':
            query = """
                SELECT cp.*, c.name as client_name, c.company as client_company,
                       i.number as invoice_number
                FROM client_payments cp
                LEFT JOIN clients c ON cp.client_id = c.id
                LEFT JOIN invoices i ON cp.invoice_id = i.id
                WHERE cp.id = ?
            """
        else:
            query = """
                SELECT sp.*, s.name as supplier_name, s.company as supplier_company,
                       si.invoice_number
                FROM supplier_payments sp
                LEFT JOIN suppliers s ON sp.supplier_id = s.id
                LEFT JOIN supplier_invoices si ON sp.invoice_id = si.id
                WHERE sp.id = ?
            """
        row = self._get_connection().execute(query, (payment_id,)).fetchone()
        return dict(row) if row else None

    def get_all_payments(self, party: str, invoice_id: int = None) -> List[Dict[str, Any]]:
        if party == 'client':
            query = """
                SELECT cp.*, c.name as client_name, c.company as client_company,
                       i.number as invoice_number
                FROM client_payments cp
                LEFT JOIN clients c ON cp.client_id = c.id
                LEFT JOIN invoices i ON cp.invoice_id = i.id
            """
            alias = "cp"
        else:
            query = """
                SELECT sp.*, s.name as supplier_name, s.company as supplier_company,
                       si.invoice_number
                FROM supplier_payments sp
                LEFT JOIN suppliers s ON sp.supplier_id = s.id
                LEFT JOIN supplier_invoices si ON sp.invoice_id = si.id
            """
            alias = "sp"
        params = ()
        if invoice_id:
            query += f" WHERE {alias}.invoice_id = ?"
            params = (invoice_id,)
        query += f" ORDER BY {alias}.payment_date DESC, {alias}.created_at DESC"
        cursor = self._get_connection().execute(query, params)
        return [dict(row) for row in cursor.fetchall()]

    def update_payment(self, party: str, payment_id: int, commit: bool = True, **kwargs) -> int:
        table, _ = PAYMENT_TABLES[party]
        return self._update_row(table, payment_id, kwargs, commit=commit)

    def delete_payment(self, party: str, payment_id: int, commit: bool = True) -> int:
        table, _ = PAYMENT_TABLES[party]
        conn = self._get_connection()
        cursor = conn.execute(f"DELETE FROM {table} WHERE id = ?", (payment_id,))
        if commit:
            conn.commit()
        return cursor.rowcount

    def get_total_paid(self, party: str, invoice_id: int) -> float:
        table, _ = PAYMENT_TABLES[party]
        return self._count(
            f"SELECT COALESCE(SUM(amount), 0) FROM {table} WHERE invoice_id = ?", (invoice_id,))

    # ==================== RESET OPERATIONS ====================

    def reset_data(self):
        """
        Reset all operational data (documents, payments, movements).
        Reference data, clients, suppliers and products are preserved; stock goes back to 0.
        """
        conn = self._get_connection()

        tables_to_clear = [
            "client_payments", "supplier_payments",
            "credit_note_items", "credit_notes",
            "delivery_receipt_items", "delivery_receipts",
            "purchase_order_items", "purchase_orders",
            "invoice_items", "invoices",
            "quote_items", "quotes",
            "sale_items", "sales",
            "reception_note_items", "reception_notes",
            "supplier_invoice_items", "supplier_invoices",
            "supplier_order_items", "supplier_orders",
            "stock_movements", "audit_logs",
        ]

        try:
            conn.execute("BEGIN TRANSACTION")
            for table in tables_to_clear:
                conn.execute(f"DELETE FROM {table}")
                conn.execute("DELETE FROM sqlite_sequence WHERE name=?", (table,))
            conn.execute("UPDATE products SET stock = 0")
            conn.commit()
            return True
        except Exception:
            conn.rollback()
            raise


# party -> (table, party column)
PAYMENT_TABLES = {
    "client": ("client_payments", "client_id"),
    "supplier": ("supplier_payments", "supplier_id"),
}

# Global database instance
_db_instance: Optional[DatabaseManager] = None


def get_db() -> DatabaseManager:
    """Get global database instance"""
    global _db_instance
    if _db_instance is None:
        _db_instance = DatabaseManager()
    return _db_instance
