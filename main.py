"""
main.py: server launcher.

    python main.py

Starts uvicorn on the allocation engine app. Schema creation, demo housing
seeding and the reconciliation worker are handled by the app lifespan in
allocation_engine/main.py.

Direct uvicorn usage:
    uvicorn allocation_engine.main:app --reload
"""

from __future__ import annotations

import os

import uvicorn


HOST = os.getenv("HOST", "127.0.0.1")
PORT = int(os.getenv("PORT", "8000"))


def main() -> None:
    """Start the allocation engine API and its background worker."""
    print("=" * 60)
    print("  Hostel Allocation Engine")
    print("=" * 60)
    print(f"  Server   : http://{HOST}:{PORT}")
    print(f"  API docs : http://{HOST}:{PORT}/docs")
    print("=" * 60)
    print("  Press CTRL+C to stop\n")

    uvicorn.run(
        "allocation_engine.main:app",
        host=HOST,
        port=PORT,
        # one process, so one reconciliation worker
        reload=False,
        log_level="info",
    )


if __name__ == "__main__":
    main()
