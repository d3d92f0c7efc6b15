"""
Script to run the API server locally.

This runs the FastAPI application with uvicorn for development purposes.
"""

import uvicorn

if __name__ == "__main__":
    uvicorn.run(
        "resume_billing.main:app",
        host="127.0.0.1",
        port=9000,
        reload=True
    )
