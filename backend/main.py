from fastapi import FastAPI, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from contextlib import asynccontextmanager
import uvicorn
import logging
import socket as socketlib

import config
config.setup_logging()

from leaderboard import to_csv
from socket_manager import socket_manager

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting Tech Quest backend")
    yield
    socket_manager.shutdown()
    logger.info("Shutting down Tech Quest backend")


app = FastAPI(title="Tech Quest Live Quiz Backend", lifespan=lifespan)


def get_local_ip():
    try:
        s = socketlib.socket(socketlib.AF_INET, socketlib.SOCK_DGRAM)
        s.connect(("8.8.8.8", 80))
        ip = s.getsockname()[0]
        s.close()
        return ip
    except Exception:
        return "127.0.0.1"


@app.get("/system/info")
async def get_system_info():
    return {"ip": get_local_ip(), "port": config.PORT}


@app.get("/api/leaderboard.json")
async def leaderboard_json():
    """Last leaderboard snapshot; kept after the game ends for export."""
    return {"leaderboard": socket_manager.session.last_leaderboard}


@app.get("/api/leaderboard.csv")
async def leaderboard_csv():
    csv_text = to_csv(socket_manager.session.last_leaderboard)
    return Response(
        content=csv_text,
        media_type="text/csv",
        headers={"Content-Disposition": 'attachment; filename="techquest_leaderboard.csv"'},
    )


@app.websocket("/ws/{client_id}")
async def websocket_endpoint(websocket: WebSocket, client_id: str):
    await socket_manager.connect(websocket, client_id)


# Configure CORS
if config.ALLOWED_ORIGINS.strip():
    origins = [o.strip() for o in config.ALLOWED_ORIGINS.split(",")]
else:
    local_ip = get_local_ip()
    origins = [
        f"http://localhost:{config.PORT}",
        f"http://127.0.0.1:{config.PORT}",
        f"http://{local_ip}:{config.PORT}",
    ]
socket_manager.allowed_origins = origins

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=False,
    allow_methods=["GET"],
    allow_headers=["Content-Type"],
)


@app.get("/")
async def root():
    return {"message": "Tech Quest API is running"}


@app.get("/health")
async def health():
    return {"status": "healthy", "game_status": socket_manager.session.status.value}


if __name__ == "__main__":
    uvicorn.run("main:app", host=config.HOST, port=config.PORT, reload=True)
