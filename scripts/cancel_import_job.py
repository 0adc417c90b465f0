import os
import sys

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from wxr_importer.migrators.store import ImportStore

# Path of the DuckDB database
db_path = os.getenv("WXR_DB_PATH", "data/import.duckdb")


def cancel_import_job(job_id: str) -> bool:
    """
    Asks a queued or running import job to stop.  The import notices the
    request between two items and finishes as ``cancelled``.
    """
    if not os.path.exists(db_path):
        print(f"Error: database file '{db_path}' not found.")
        return False

    store = ImportStore(db_path)
    try:
        job = store.get_job(job_id)
        if job is None:
            print(f"Job '{job_id}' not found.")
            return False
        if not store.request_cancel(job_id):
            print(f"Job '{job_id}' is '{job.status}' and cannot be cancelled.")
            return False
        print(f"Cancellation requested for job '{job_id}'.")
        return True
    finally:
        store.close()


if __name__ == "__main__":
    if len(sys.argv) != 2:
        print("Usage: python scripts/cancel_import_job.py <job_id>")
        sys.exit(2)
    sys.exit(0 if cancel_import_job(sys.argv[1]) else 1)
