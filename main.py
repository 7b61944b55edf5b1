import logging
import os

import uvicorn

from dfr.api import create_app
from dfr.settings import settings

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

app = create_app(settings)


if __name__ == "__main__":
    uvicorn.run(app, host=os.getenv("DFR_API_HOST", "127.0.0.1"), port=int(os.getenv("DFR_API_PORT", "8000")))
