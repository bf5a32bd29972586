"""Serve the case intake site (login, account creation, case submission and review).

Run with:
  python -m caseintake

INTAKE_HOST / INTAKE_PORT / INTAKE_RELOAD control the uvicorn server; database and
schema settings are read by caseintake.core.config.
"""

import os
import uvicorn

def main() -> None:
    host = os.getenv("INTAKE_HOST", "0.0.0.0")
    port = int(os.getenv("INTAKE_PORT", "3000"))
    reload = os.getenv("INTAKE_RELOAD", "false").lower() in {"1", "true", "yes", "y"}
    uvicorn.run("caseintake.app:app", host=host, port=port, reload=reload)

if __name__ == "__main__":
    main()
