#!/usr/bin/env python3
"""
Deployment entry point - exposes the FastAPI app from spotcheck/main.py at the repo root
"""

from spotcheck.main import app

if __name__ == "__main__":
    import os

    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=int(os.environ.get("PORT", "5000")))
