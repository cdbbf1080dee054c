import uuid

from fastapi import APIRouter, Depends

from ..engine import SchedulingEngine
from ..schemas import ChatRequest, TurnResult
from .deps import get_scheduler

router = APIRouter()


@router.post("/chat", response_model=TurnResult)
async def chat(
    payload: ChatRequest, scheduler: SchedulingEngine = Depends(get_scheduler)
) -> TurnResult:
    conversation_id = payload.conversation_id or uuid.uuid4().hex
    return await scheduler.handle_utterance(conversation_id, payload.message, payload.context)


@router.post("/chat/{conversation_id}/reset")
def reset_chat(conversation_id: str, scheduler: SchedulingEngine = Depends(get_scheduler)) -> dict:
    return {"conversation_id": conversation_id, "reset": scheduler.reset_conversation(conversation_id)}
