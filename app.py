import logging
import os

from api.routes import create_app

logger = logging.getLogger(__name__)

app = create_app()

if __name__ == "__main__":
    port = int(os.getenv('PORT', '8000'))
    logger.info(f"Starting Flask server on port {port}...")
    app.run(host='0.0.0.0', port=port)
