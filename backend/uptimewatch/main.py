"""Main FastAPI application."""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware

from .config import settings
from .core import build_core
from .database import close_db, init_db
from .routers import incidents_router, monitors_router

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan - startup and shutdown."""
    logger.info("Starting UptimeWatch")

    await init_db()
    logger.info("Database initialized")

    core = build_core()
    app.state.core = core
    core.start()

    yield

    core.stop()
    await close_db()
    logger.info("Shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="UptimeWatch",
        description="HTTP uptime monitoring with escalating alerts",
        version="1.0.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.frontend_url] if settings.frontend_url else ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(monitors_router)
    app.include_router(incidents_router)

    @app.get("/health")
    async def health_check():
        return {"status": "healthy"}

    @app.websocket("/ws")
    async def realtime(websocket: WebSocket):
        """Clients send {"action": "join"|"leave", "topic": "user_1"} to (un)subscribe."""
        publisher = websocket.app.state.core.publisher
        await publisher.connect(websocket)
        try:
            while True:
                message = await websocket.receive_json()
                topic = message.get("topic") if isinstance(message, dict) else None
                if not topic:
                    continue
                if message.get("action") == "join":
                    await publisher.subscribe(websocket, topic)
                elif message.get("action") == "leave":
                    await publisher.unsubscribe(websocket, topic)
        except WebSocketDisconnect:
            pass
        except ValueError as e:
            logger.warning(f"Closing WebSocket after malformed message: {e}")
        finally:
            await publisher.disconnect(websocket)

    return app


# Create the application instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=settings.web_port)
