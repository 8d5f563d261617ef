from __future__ import annotations

import os

import uvicorn


def main() -> None:
    port = int(os.getenv("PORT", "8000"))
    log_level = os.getenv("LOG_LEVEL", "info").lower()
    uvicorn.run("atal_ratelimit.app:app", host="0.0.0.0", port=port, log_level=log_level, reload=False)


if __name__ == "__main__":
    main()
