"""
Entry point for running BlockHead via `python -m blockhead`.

Starts the FastAPI server with uvicorn.
"""

import uvicorn

from .config import config


def main():
    """Run the BlockHead console."""
    uvicorn.run(
        "blockhead.main:app",
        host=config.host,
        port=config.port,
        reload=False,
    )


if __name__ == "__main__":
    main()
