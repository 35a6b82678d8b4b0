"""
Timeline Chat Backend Runner
Run with: python run.py
"""

import uvicorn
from timeline_chat.config import settings


if __name__ == "__main__":
    print(f"""
    Timeline Chat - agent/client messaging

    Starting server at http://{settings.HOST}:{settings.PORT}
    WebSocket endpoint: ws://localhost:{settings.PORT}/messaging/ws
    API Documentation: http://localhost:{settings.PORT}/docs
    """)

    uvicorn.run(
        "timeline_chat.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower()
    )
