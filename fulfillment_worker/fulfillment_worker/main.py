"""Main entry point for the Fulfillment Worker."""

import uvicorn

from fulfillment_worker.server import app

if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8001)
