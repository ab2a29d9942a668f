"""Polymarket Ingest - Real-time trade feed ingestion into Kafka and QuestDB"""

__version__ = "0.1.0"

def main() -> None:
    """Main entry point for the application"""
    import os

    import uvicorn
    from dotenv import load_dotenv

    from .app import create_app, setup_logging
    from .config import Settings

    load_dotenv()
    setup_logging(os.getenv("LOG_LEVEL", "INFO"))
    settings = Settings.from_env(dotenv=False)
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port)
