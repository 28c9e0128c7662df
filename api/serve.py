"""
Serve the fee tracker read API with uvicorn.
"""
import os

import uvicorn


def main():
    host = os.getenv("FEE_TRACKER_HOST", "0.0.0.0")
    port = int(os.getenv("FEE_TRACKER_PORT", "8000"))
    reload = os.getenv("FEE_TRACKER_RELOAD", "false").lower() == "true"
    uvicorn.run("api.app:app", host=host, port=port, reload=reload, log_level="info")


if __name__ == "__main__":
    main()
