"""
Process Engine API entry point
"""
import logging
import uvicorn
from dotenv import load_dotenv

load_dotenv()

from src.process_engine.config import EngineSettings
from src.process_engine.api import create_app


settings = EngineSettings.from_env(dotenv=False)

logging.basicConfig(
    level=settings.log_level,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

app = create_app(settings=settings)


if __name__ == "__main__":
    uvicorn.run(
        app,
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.log_level.lower()
    )
