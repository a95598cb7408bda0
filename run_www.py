#!/usr/bin/env python3
from __future__ import annotations

import os
import sys

def main() -> None:
    host = os.environ.get("CHAINTRACE_HOST") or "127.0.0.1"
    port = int(os.environ.get("CHAINTRACE_PORT") or "8000")
    try:
        import uvicorn
    except Exception:
        print("uvicorn missing. Install with: pip install -e .", file=sys.stderr)
        raise
    uvicorn.run("webapp.server:app", host=host, port=port, reload=bool(os.environ.get("CHAINTRACE_RELOAD")))

if __name__ == "__main__":
    main()
