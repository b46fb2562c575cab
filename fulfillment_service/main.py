"""Main entry point for the Fulfillment Service.

The in-memory catalogue is loaded from the JSON file named by SEED_FILE
({"users": [...], "products": [...]}); without it every order is rejected.
"""

import uvicorn

from fulfillment_service.server import create_app

app = create_app()

if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000)
