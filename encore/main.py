"""Entry: start API server; the metadata poller runs inside the app lifespan."""
import logging
import uvicorn

from encore.config import API_HOST, API_PORT

if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")
    uvicorn.run(
        "encore.api.app:app",
        host=API_HOST,
        port=API_PORT,
        reload=True,
    )
