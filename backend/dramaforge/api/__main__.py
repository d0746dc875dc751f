"""API server entry point for python -m dramaforge.api"""
import uvicorn
from dramaforge.config import settings

if __name__ == "__main__":
    uvicorn.run(
        "dramaforge.api.app:app",
        host=settings.server.host,
        port=settings.server.port,
        reload=False,
    )
