import os
import sys

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from wxr_importer.migrators.store import ImportStore

# Path of the DuckDB database
db_path = os.getenv("WXR_DB_PATH", "data/import.duckdb")


def initialize_database():
    """
    Creates the DuckDB database and every table the importer writes to.
    Existing tables are left as they are.
    """
    store = ImportStore(db_path)
    try:
        tables = [row[0] for row in store.con.execute("SHOW TABLES;").fetchall()]
        print(f"Database '{db_path}' ready with tables: {', '.join(sorted(tables))}")
    finally:
        store.close()
        print("Database connection closed.")


if __name__ == "__main__":
    initialize_database()
