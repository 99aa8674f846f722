import sqlite3
import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, List, Optional

from database.models import Bill, Product, StockSummary, utc_now

logger = logging.getLogger(__name__)

project_root = Path(__file__).parent.parent.parent

# First barcode handed out by next_barcode(); 10 digits so printed labels scan as valid
BARCODE_COUNTER_SEED = 1000000006
BARCODE_COUNTER = 'barcode'

IN_MEMORY = ':memory:'


class LocalStorage:
    """SQLite-backed local cache for the product and bill collections"""

    def __init__(self, db_path=None):
        self.db_path = str(db_path) if db_path else str(project_root / 'pos_cache.db')
        # An in-memory database only lives as long as its connection
        self._memory_conn = sqlite3.connect(IN_MEMORY, check_same_thread=False) if self.db_path == IN_MEMORY else None
        self._init_db()

    def _get_connection(self):
        """Get a new database connection for thread safety"""
        if self._memory_conn is not None:
            return self._memory_conn
        return sqlite3.connect(self.db_path, check_same_thread=False)

    @contextmanager
    def _connection(self):
        """Commit on success, roll back on error, close afterwards"""
        conn = self._get_connection()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            if conn is not self._memory_conn:
                conn.close()

    def _init_db(self):
        """Initialize SQLite database and create tables if they don't exist"""
        with self._connection() as conn:
            cursor = conn.cursor()
            cursor.execute('''
                CREATE TABLE IF NOT EXISTS products (
                    id TEXT PRIMARY KEY,
                    barcode TEXT,
                    position INTEGER,
                    data TEXT
                )
            ''')
            cursor.execute('CREATE INDEX IF NOT EXISTS idx_products_barcode ON products (barcode)')
            cursor.execute('''
                CREATE TABLE IF NOT EXISTS bills (
                    id TEXT PRIMARY KEY,
                    reference TEXT,
                    position INTEGER,
                    data TEXT
                )
            ''')
            cursor.execute('''
                CREATE TABLE IF NOT EXISTS counters (
                    name TEXT PRIMARY KEY,
                    value INTEGER
                )
            ''')

    def test_connection(self):
        """Test database connection"""
        try:
            with self._connection() as conn:
                conn.execute('SELECT 1')
            return True
        except sqlite3.Error as e:
            raise Exception(f"Database connection error: {e}")

    # Products

    def get_products(self) -> List[Product]:
        """Get all products in stored order"""
        with self._connection() as conn:
            rows = conn.execute('SELECT data FROM products ORDER BY position').fetchall()
        return [Product.model_validate_json(row[0]) for row in rows]

    def save_products(self, products: List[Product]):
        """Replace the whole product collection in one transaction"""
        with self._connection() as conn:
            cursor = conn.cursor()
            cursor.execute('DELETE FROM products')
            cursor.executemany(
                'INSERT OR REPLACE INTO products (id, barcode, position, data) VALUES (?, ?, ?, ?)',
                [(p.id, p.barcode, position, p.model_dump_json()) for position, p in enumerate(products)]
            )

    def get_product(self, product_id: str) -> Optional[Product]:
        with self._connection() as conn:
            row = conn.execute('SELECT data FROM products WHERE id = ?', (product_id,)).fetchone()
        return Product.model_validate_json(row[0]) if row else None

    def get_product_by_barcode(self, barcode: str) -> Optional[Product]:
        """Catalog lookup for a scanned barcode"""
        with self._connection() as conn:
            row = conn.execute(
                'SELECT data FROM products WHERE barcode = ? ORDER BY position LIMIT 1',
                (barcode,)
            ).fetchone()
        return Product.model_validate_json(row[0]) if row else None

    def update_product_stock(self, product_id: str, sold_quantity: int) -> Optional[Product]:
        """Move sold units from stock to the sold counter"""
        products = self.get_products()
        for index, product in enumerate(products):
            if product.id == product_id:
                updated = product.model_copy(update={
                    'quantity': product.quantity - sold_quantity,
                    'sold_quantity': product.sold_quantity + sold_quantity,
                    'updated_at': utc_now(),
                })
                products[index] = updated
                self.save_products(products)
                return updated
        return None

    def get_stock_summary(self) -> StockSummary:
        products = self.get_products()
        return StockSummary(
            total_products=len(products),
            total_current_stock=sum(p.quantity for p in products),
            total_sold_stock=sum(p.sold_quantity for p in products),
            total_stock_value=sum(p.quantity * p.price for p in products),
            total_sold_value=sum(p.sold_quantity * p.price for p in products),
        )

    # Bills

    def get_bills(self) -> List[Bill]:
        """Get all bills in stored order (newest first when created locally)"""
        with self._connection() as conn:
            rows = conn.execute('SELECT data FROM bills ORDER BY position').fetchall()
        return [Bill.model_validate_json(row[0]) for row in rows]

    def save_bills(self, bills: List[Bill]):
        """Replace the whole bill collection in one transaction"""
        with self._connection() as conn:
            cursor = conn.cursor()
            cursor.execute('DELETE FROM bills')
            cursor.executemany(
                'INSERT OR REPLACE INTO bills (id, reference, position, data) VALUES (?, ?, ?, ?)',
                [(b.id, b.reference, position, b.model_dump_json()) for position, b in enumerate(bills)]
            )

    # Counters

    def next_barcode(self) -> str:
        """Hand out the next sequential numeric barcode"""
        with self._connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                'INSERT OR IGNORE INTO counters (name, value) VALUES (?, ?)',
                (BARCODE_COUNTER, BARCODE_COUNTER_SEED)
            )
            value = cursor.execute(
                'SELECT value FROM counters WHERE name = ?', (BARCODE_COUNTER,)
            ).fetchone()[0]
            cursor.execute(
                'UPDATE counters SET value = ? WHERE name = ?', (value + 1, BARCODE_COUNTER)
            )
        return str(value)

    def clear_all_data(self):
        """Remove every product, bill and counter"""
        with self._connection() as conn:
            cursor = conn.cursor()
            cursor.execute('DELETE FROM products')
            cursor.execute('DELETE FROM bills')
            cursor.execute('DELETE FROM counters')
        logger.info("🗑️ Cleared all local data")

    def get_debug_info(self) -> Dict:
        products = self.get_products()
        return {
            'db_path': self.db_path,
            'products_count': len(products),
            'bills_count': len(self.get_bills()),
            'sample_products': [
                {'id': p.id, 'name': p.name, 'barcode': p.barcode} for p in products[:3]
            ],
        }

    def close(self):
        """Close the in-memory connection; file databases use per-operation connections"""
        if self._memory_conn is not None:
            self._memory_conn.close()
            self._memory_conn = None
