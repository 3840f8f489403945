"""Application entry point.

Runs the chat history API with uvicorn; the app itself lives in ``app.main``.
"""

import os

import uvicorn

if __name__ == "__main__":
    uvicorn.run(
        "app.main:app",
        host=os.getenv("HOST", "localhost"),
        port=int(os.getenv("PORT", "3002")),
        reload=os.getenv("ENVIRONMENT", "development") == "development"
    )
