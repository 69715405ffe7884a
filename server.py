"""
Development server for the Task Hunt API.
Runs the FastAPI app under uvicorn with reload enabled.
"""

import logging
import os

import uvicorn

PORT = int(os.environ.get("PORT", "8000"))

if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    print(f"Serving at http://localhost:{PORT}")
    print(f"Open http://localhost:{PORT}/docs to browse the API")
    uvicorn.run("taskhunt.api.main:app", host="0.0.0.0", port=PORT, reload=True)
