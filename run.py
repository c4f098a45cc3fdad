"""Run the BlockHead console."""

import uvicorn

from blockhead.config import config

if __name__ == "__main__":
    uvicorn.run(
        "blockhead.main:app",
        host=config.host,
        port=config.port,
        reload=False,
    )
