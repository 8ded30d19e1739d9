import asyncio
import logging
from contextlib import AsyncExitStack

from fastapi import APIRouter, HTTPException
from fastapi.responses import JSONResponse, StreamingResponse

from ..models.think_mode_types import ThinkModeChatRequest
from ..services.gateway_service import GatewayError, gateway_service
from ..services.session_tracking_service import session_tracking_service
from ..services.sse_encoder import format_event, relay_as_openai_sse

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/think-mode", tags=["think-mode"])


@router.get("/health")
async def health_check() -> dict[str, object]:
    """
    Check if the AI gateway is reachable
    """
    try:
        return await gateway_service.test_connection()
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"AI gateway error: {str(e)}")


@router.post("/chat")
async def think_mode_chat(request: ThinkModeChatRequest):
    """
    Stream a Think Mode answer as OpenAI-style SSE frames.

    Whatever dialect the gateway streams is normalized before relaying.
    Gateway rejections are returned as JSON with the gateway's status.

    Stream format:
        data: {"id": "chatcmpl-thinkmode", "object": "chat.completion.chunk", "choices": [{"delta": {"content": "..."}}]}
        data: {"cancelled": true}    (only when stopped)
        data: [DONE]
    """
    request_id = request.request_id or session_tracking_service.generate_request_id()
    try:
        session_tracking_service.register_session(target=request_id, request_id=request_id)
    except ValueError as e:
        logger.warning(f"[ThinkMode Router] Rejected chat request: {e}")
        return JSONResponse(status_code=409, content={"error": str(e)})
    logger.info(
        f"[ThinkMode Router] Registered chat request {request_id}, "
        f"messages: {len(request.messages)}"
    )

    stack = AsyncExitStack()
    try:
        upstream = await stack.enter_async_context(
            gateway_service.open_chat_stream(
                messages=request.messages,
                user_name=request.user_name,
                mode=request.mode,
            )
        )
    except GatewayError as e:
        await stack.aclose()
        session_tracking_service.complete_session(request_id)
        logger.warning(f"[ThinkMode Router] Gateway rejected {request_id}: {e.message}")
        return JSONResponse(status_code=e.status_code, content={"error": e.message})
    except Exception as e:
        await stack.aclose()
        session_tracking_service.complete_session(request_id)
        logger.error(f"[ThinkMode Router] Think Mode error: {str(e)}", exc_info=True)
        return JSONResponse(status_code=500, content={"error": str(e)})

    async def generate_response():
        try:
            async for frame in relay_as_openai_sse(upstream.iter_bytes()):
                if session_tracking_service.is_cancelled(request_id):
                    logger.info(f"[ThinkMode Router] Request {request_id} cancelled")
                    yield format_event({"cancelled": True})
                    break
                yield frame
            logger.info(f"[ThinkMode Router] Completed chat request {request_id}")
        except asyncio.CancelledError:
            logger.warning(f"[ThinkMode Router] Request {request_id} asyncio cancelled")
            raise
        except Exception as e:
            logger.error(
                f"[ThinkMode Router] Error in chat stream: {str(e)}", exc_info=True
            )
            yield format_event({"error": str(e)})
        finally:
            await stack.aclose()
            session_tracking_service.complete_session(request_id)

    return StreamingResponse(
        generate_response(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Request-ID": request_id,
        },
    )


@router.post("/stop/{request_id}")
async def stop_chat(request_id: str) -> dict[str, str]:
    """
    Stop an active Think Mode streaming request
    """
    if not session_tracking_service.cancel_session(request_id):
        raise HTTPException(
            status_code=404, detail="Request not found or already completed"
        )
    return {"message": f"Request {request_id} cancelled successfully"}
