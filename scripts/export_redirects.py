import os
import sys

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from wxr_importer.migrators.store import ImportStore
from wxr_importer.utils.redirects import generate_redirects_csv

# Path of the DuckDB database and of the generated CSV
db_path = os.getenv("WXR_DB_PATH", "data/import.duckdb")
csv_path = "reports/redirect_map.csv"


def export_redirects(out_path: str = csv_path) -> str:
    """
    Writes every stored redirect to a CSV file (OldPath,NewPath,Status).
    """
    store = ImportStore(db_path)
    try:
        redirects = store.list_redirects()
    finally:
        store.close()
    path = generate_redirects_csv(redirects, out_path=out_path)
    print(f"{len(redirects)} redirect(s) written to {path}")
    return path


if __name__ == "__main__":
    export_redirects(sys.argv[1] if len(sys.argv) > 1 else csv_path)
