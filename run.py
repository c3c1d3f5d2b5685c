#!/usr/bin/env python3
"""
Run script for container deployment
"""

import os

import uvicorn

from identity_matrix.main import app

if __name__ == "__main__":
    # Hosting platforms pass the listen port through PORT
    port = int(os.environ.get("PORT", 8000))

    uvicorn.run(
        app,
        host="0.0.0.0",
        port=port,
        log_level="info"
    )
