from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from coderunner.api.deps import get_engine
from coderunner.execution.engine import ExecutionEngine
from coderunner.execution.session import ExecutionSession
from coderunner.schemas.run import RunEvent

router = APIRouter()


@router.websocket("/ws")
async def ws_session(ws: WebSocket, engine: ExecutionEngine = Depends(get_engine)):
    await ws.accept()

    async def send(event: RunEvent):
        await ws.send_json(event.model_dump())

    session = ExecutionSession(engine, send)
    try:
        while True:
            raw = await ws.receive_text()
            await session.handle_message(raw)
    except WebSocketDisconnect:
        pass
    finally:
        # kills whatever is still running and purges its files
        await session.close()
