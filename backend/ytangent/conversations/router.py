"""FastAPI routes for conversations, branching, tangents, and replies."""

import asyncio
import json as json_module
import logging
from collections.abc import AsyncIterator, Awaitable, Callable, Iterator
from contextlib import contextmanager

from fastapi import APIRouter, Depends, HTTPException, Response, status
from fastapi.responses import StreamingResponse

from ytangent.conversations.schemas import (
    ConversationDetail,
    ConversationSummary,
    CreateConversationRequest,
    CreateSubTangentRequest,
    CreateTangentRequest,
    ForkRequest,
    GenerationOptions,
    NodeResult,
    PatchConversationRequest,
    SendMessageRequest,
    TangentReplyRequest,
    TangentResult,
)
from ytangent.conversations.service import (
    ChatService,
    ConversationNotFoundError,
    NodeNotFoundError,
    StreamInProgressError,
    TangentNotFoundError,
)
from ytangent.events.store import PersistenceError
from ytangent.generation.context import AssembledContext
from ytangent.generation.session import StreamOutcome
from ytangent.models import BranchInfo, Node, Tangent
from ytangent.providers.base import (
    LLMProvider,
    ProviderError,
    ProviderQuotaExceededError,
    ProviderRateLimitedError,
)
from ytangent.providers.registry import ProviderNotFoundError, get_provider

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/conversations", tags=["conversations"])

_SSE_HEADERS = {"Cache-Control": "no-cache", "X-Accel-Buffering": "no"}

ReplyRunner = Callable[
    [Callable[[str], Awaitable[None]]],
    Awaitable[tuple[StreamOutcome, AssembledContext]],
]


def get_chat_service() -> ChatService:
    """Dependency placeholder, replaced at app startup."""
    raise RuntimeError("ChatService not initialized")


@contextmanager
def _translate_errors() -> Iterator[None]:
    """Map service and provider exceptions onto HTTP status codes."""
    try:
        yield
    except (ConversationNotFoundError, NodeNotFoundError, TangentNotFoundError) as e:
        raise HTTPException(status_code=404, detail=str(e))
    except StreamInProgressError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except PersistenceError as e:
        raise HTTPException(
            status_code=500, detail=f"Could not save your change. {e.detail}"
        )
    except ProviderRateLimitedError as e:
        raise HTTPException(status_code=429, detail=str(e))
    except ProviderQuotaExceededError as e:
        raise HTTPException(status_code=402, detail=str(e))
    except ProviderError as e:
        raise HTTPException(status_code=502, detail=str(e))


def _resolve_provider(options: GenerationOptions) -> LLMProvider | None:
    if not options.generate:
        return None
    try:
        return get_provider(options.provider)
    except ProviderNotFoundError as e:
        raise HTTPException(status_code=400, detail=str(e))


# -- Conversations --


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_conversation(
    request: CreateConversationRequest,
    service: ChatService = Depends(get_chat_service),
) -> ConversationSummary:
    with _translate_errors():
        conversation = await service.create_conversation(request.title, request.folder_id)
    return ConversationSummary(**conversation.model_dump())


@router.get("")
async def list_conversations(
    service: ChatService = Depends(get_chat_service),
) -> list[ConversationSummary]:
    conversations = await service.list_conversations()
    return [ConversationSummary(**c.model_dump()) for c in conversations]


@router.get("/{conversation_id}")
async def get_conversation(
    conversation_id: str,
    service: ChatService = Depends(get_chat_service),
) -> ConversationDetail:
    with _translate_errors():
        return await service.get_conversation_detail(conversation_id)


@router.patch("/{conversation_id}")
async def update_conversation(
    conversation_id: str,
    request: PatchConversationRequest,
    service: ChatService = Depends(get_chat_service),
) -> ConversationSummary:
    move = "folder_id" in request.model_fields_set
    if request.title is None and not move:
        raise HTTPException(status_code=400, detail="Nothing to update: send title or folder_id")
    with _translate_errors():
        conversation = await service.get_conversation(conversation_id)
        if request.title is not None:
            conversation = await service.rename_conversation(conversation_id, request.title)
        if move:
            conversation = await service.move_conversation(conversation_id, request.folder_id)
    return ConversationSummary(**conversation.model_dump())


@router.delete("/{conversation_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_conversation(
    conversation_id: str,
    service: ChatService = Depends(get_chat_service),
) -> Response:
    with _translate_errors():
        await service.delete_conversation(conversation_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# -- Branching --


@router.post(
    "/{conversation_id}/messages",
    status_code=status.HTTP_201_CREATED,
    response_model=None,
)
async def send_message(
    conversation_id: str,
    request: SendMessageRequest,
    service: ChatService = Depends(get_chat_service),
) -> NodeResult | StreamingResponse:
    provider = _resolve_provider(request)
    with _translate_errors():
        node = await service.send_message(conversation_id, request.content)
    return await _respond_to_node(service, conversation_id, node, request, provider)


@router.post(
    "/{conversation_id}/nodes/{node_id}/fork",
    status_code=status.HTTP_201_CREATED,
    response_model=None,
)
async def fork_from_node(
    conversation_id: str,
    node_id: str,
    request: ForkRequest,
    service: ChatService = Depends(get_chat_service),
) -> NodeResult | StreamingResponse:
    provider = _resolve_provider(request)
    with _translate_errors():
        node = await service.fork_from_node(
            conversation_id, node_id, request.content, request.branch_name
        )
    return await _respond_to_node(service, conversation_id, node, request, provider)


@router.post("/{conversation_id}/nodes/{node_id}/generate", response_model=None)
async def regenerate_reply(
    conversation_id: str,
    node_id: str,
    request: GenerationOptions,
    service: ChatService = Depends(get_chat_service),
) -> NodeResult | StreamingResponse:
    """Retry the assistant reply for an existing node, e.g. after a failure."""
    provider = _resolve_provider(request.model_copy(update={"generate": True}))
    with _translate_errors():
        node = (await service.get_node_result(conversation_id, node_id)).node
    return await _respond_to_node(service, conversation_id, node, request, provider)


@router.post("/{conversation_id}/nodes/{node_id}/switch")
async def switch_to_branch(
    conversation_id: str,
    node_id: str,
    service: ChatService = Depends(get_chat_service),
) -> NodeResult:
    with _translate_errors():
        return await service.switch_to_branch(conversation_id, node_id)


@router.get("/{conversation_id}/nodes/{node_id}/siblings")
async def get_siblings(
    conversation_id: str,
    node_id: str,
    service: ChatService = Depends(get_chat_service),
) -> list[BranchInfo]:
    with _translate_errors():
        return await service.get_siblings(conversation_id, node_id)


@router.get("/{conversation_id}/nodes/{node_id}/path")
async def get_path(
    conversation_id: str,
    node_id: str,
    service: ChatService = Depends(get_chat_service),
) -> list[Node]:
    with _translate_errors():
        return await service.get_path(conversation_id, node_id)


# -- Tangents --


@router.get("/{conversation_id}/nodes/{node_id}/tangents")
async def get_tangents(
    conversation_id: str,
    node_id: str,
    service: ChatService = Depends(get_chat_service),
) -> list[Tangent]:
    with _translate_errors():
        return await service.get_tangents(conversation_id, node_id)


@router.post(
    "/{conversation_id}/nodes/{node_id}/tangents",
    status_code=status.HTTP_201_CREATED,
    response_model=None,
)
async def create_tangent(
    conversation_id: str,
    node_id: str,
    request: CreateTangentRequest,
    service: ChatService = Depends(get_chat_service),
) -> TangentResult | StreamingResponse:
    provider = _resolve_provider(request)
    with _translate_errors():
        tangent = await service.create_tangent(
            conversation_id, node_id, request.highlighted_text, request.content
        )
    return await _respond_to_tangent(service, conversation_id, tangent, request, provider)


@router.post(
    "/{conversation_id}/tangents/{tangent_id}/replies",
    status_code=status.HTTP_201_CREATED,
    response_model=None,
)
async def reply_to_tangent(
    conversation_id: str,
    tangent_id: str,
    request: TangentReplyRequest,
    service: ChatService = Depends(get_chat_service),
) -> TangentResult | StreamingResponse:
    provider = _resolve_provider(request)
    if service.is_streaming(conversation_id, "tangent", tangent_id):
        raise HTTPException(
            status_code=409, detail=f"A reply is already streaming for {tangent_id}"
        )
    with _translate_errors():
        tangent = await service.reply_to_tangent(conversation_id, tangent_id, request.content)
    return await _respond_to_tangent(service, conversation_id, tangent, request, provider)


@router.post(
    "/{conversation_id}/tangents/{tangent_id}/sub-tangents",
    status_code=status.HTTP_201_CREATED,
    response_model=None,
)
async def create_sub_tangent(
    conversation_id: str,
    tangent_id: str,
    request: CreateSubTangentRequest,
    service: ChatService = Depends(get_chat_service),
) -> TangentResult | StreamingResponse:
    provider = _resolve_provider(request)
    with _translate_errors():
        tangent = await service.create_sub_tangent(
            conversation_id, tangent_id, request.highlighted_text, request.content
        )
    return await _respond_to_tangent(service, conversation_id, tangent, request, provider)


# -- Reply plumbing --


async def _respond_to_node(
    service: ChatService,
    conversation_id: str,
    node: Node,
    options: GenerationOptions,
    provider: LLMProvider | None,
) -> NodeResult | StreamingResponse:
    if provider is None:
        with _translate_errors():
            return await service.get_node_result(conversation_id, node.node_id)

    def run(on_delta: Callable[[str], Awaitable[None]]):
        return service.stream_node_reply(
            conversation_id,
            node.node_id,
            provider,
            model=options.model,
            sampling_params=options.sampling_params,
            on_delta=on_delta,
        )

    if options.stream:
        return StreamingResponse(
            _reply_sse(run),
            media_type="text/event-stream",
            headers={**_SSE_HEADERS, "X-Node-Id": node.node_id},
        )

    with _translate_errors():
        _, context = await run(_ignore_delta)
        result = await service.get_node_result(conversation_id, node.node_id)
    result.context_usage = context.usage
    return result


async def _respond_to_tangent(
    service: ChatService,
    conversation_id: str,
    tangent: Tangent,
    options: GenerationOptions,
    provider: LLMProvider | None,
) -> TangentResult | StreamingResponse:
    def run(on_delta: Callable[[str], Awaitable[None]]):
        return service.stream_tangent_reply(
            conversation_id,
            tangent.tangent_id,
            provider,
            model=options.model,
            sampling_params=options.sampling_params,
            on_delta=on_delta,
        )

    if provider is not None and options.stream:
        return StreamingResponse(
            _reply_sse(run),
            media_type="text/event-stream",
            headers={**_SSE_HEADERS, "X-Tangent-Id": tangent.tangent_id},
        )

    with _translate_errors():
        usage = None
        if provider is not None:
            _, context = await run(_ignore_delta)
            usage = context.usage
        message_id, forest = await service.tangent_forest(conversation_id, tangent.tangent_id)
    return TangentResult(
        message_id=message_id, tangent=tangent, tangents=forest, context_usage=usage
    )


async def _ignore_delta(_text: str) -> None:
    return None


def _sse(event: str, data: dict) -> str:
    return f"event: {event}\ndata: {json_module.dumps(data)}\n\n"


async def _reply_sse(run: ReplyRunner) -> AsyncIterator[str]:
    """Bridge a reply's delta sink onto an SSE response.

    The reply runs in its own task and pushes frames onto a queue. If the
    client disconnects, the task is cancelled, which commits the partial
    reply through the session's completion sink.
    """
    queue: asyncio.Queue[str | None] = asyncio.Queue()

    async def on_delta(text: str) -> None:
        queue.put_nowait(_sse("text_delta", {"type": "text_delta", "text": text}))

    async def drive() -> None:
        try:
            outcome, context = await run(on_delta)
            data = {
                "type": "message_stop",
                "target": outcome.target.model_dump(),
                "content": outcome.text,
                "finish_reason": outcome.finish_reason,
                "cancelled": outcome.cancelled,
                "context_usage": context.usage.model_dump(),
            }
            queue.put_nowait(_sse("message_stop", data))
        except ProviderError as e:
            queue.put_nowait(_sse("error", {"kind": e.kind, "error": str(e)}))
        except PersistenceError as e:
            queue.put_nowait(
                _sse("error", {"kind": "persistence", "error": f"Could not save reply. {e.detail}"})
            )
        except (ConversationNotFoundError, NodeNotFoundError, TangentNotFoundError) as e:
            queue.put_nowait(_sse("error", {"kind": "not_found", "error": str(e)}))
        except StreamInProgressError as e:
            queue.put_nowait(_sse("error", {"kind": "conflict", "error": str(e)}))
        except Exception as e:
            logger.exception("Reply stream failed")
            queue.put_nowait(_sse("error", {"kind": "transport", "error": str(e)}))
        finally:
            queue.put_nowait(None)

    task = asyncio.create_task(drive())
    try:
        while True:
            item = await queue.get()
            if item is None:
                break
            yield item
    finally:
        if not task.done():
            task.cancel()
        await asyncio.gather(task, return_exceptions=True)
