"""Chat service: the UI event surface over branch and tangent controllers.

Controllers are built lazily per conversation and cached, so every request
against one conversation shares the same arena, active state, and write
lock. Controller-level misses (None / False) become NotFound exceptions here
for the router to translate.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from uuid import uuid4

from ytangent.conversations.schemas import ConversationDetail, NodeResult
from ytangent.db.connection import Database
from ytangent.documents.provider import DocumentContextProvider, DocumentSnippet
from ytangent.events.projector import StateProjector
from ytangent.events.store import EventStore, commit_event, make_event
from ytangent.generation.context import AssembledContext, ContextAssembler
from ytangent.generation.session import StreamingSession, StreamOutcome, StreamTarget
from ytangent.models import (
    BranchInfo,
    Conversation,
    ConversationCreatedPayload,
    ConversationDeletedPayload,
    ConversationFolderChangedPayload,
    ConversationTitleUpdatedPayload,
    Node,
    SamplingParams,
    Tangent,
)
from ytangent.providers.base import GenerationRequest, LLMProvider
from ytangent.tangents.controller import TangentController
from ytangent.tangents.store import TangentStore
from ytangent.trees.controller import BranchController
from ytangent.trees.store import NodeStore

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-4o-mini"

DeltaSink = Callable[[str], Awaitable[None]]


async def _discard(_text: str) -> None:
    return None


class ChatService:
    """Coordinates conversations, their node tree, tangents, and replies."""

    def __init__(
        self,
        db: Database,
        *,
        assembler: ContextAssembler | None = None,
        documents: DocumentContextProvider | None = None,
        default_model: str = DEFAULT_MODEL,
    ) -> None:
        self._store = EventStore(db)
        self._projector = StateProjector(db)
        self._assembler = assembler or ContextAssembler()
        self._documents = documents
        self._default_model = default_model
        self._branches: dict[str, BranchController] = {}
        self._tangents: dict[str, TangentController] = {}
        self._load_lock = asyncio.Lock()
        self._inflight: set[tuple[str, str, str]] = set()

    # -- Conversations --

    async def create_conversation(
        self, title: str | None = None, folder_id: str | None = None
    ) -> Conversation:
        conversation_id = str(uuid4())
        payload = ConversationCreatedPayload(title=title or "New Chat", folder_id=folder_id)
        await commit_event(
            self._store,
            self._projector,
            make_event(conversation_id, "ConversationCreated", payload),
        )
        logger.info("Created conversation %s", conversation_id)
        return await self.get_conversation(conversation_id)

    async def get_conversation(self, conversation_id: str) -> Conversation:
        row = await self._projector.get_conversation(conversation_id)
        if row is None:
            raise ConversationNotFoundError(conversation_id)
        return Conversation.model_validate(row)

    async def list_conversations(self) -> list[Conversation]:
        rows = await self._projector.list_conversations()
        return [Conversation.model_validate(row) for row in rows]

    async def get_conversation_detail(self, conversation_id: str) -> ConversationDetail:
        conversation = await self.get_conversation(conversation_id)
        branch = await self._branch(conversation_id)
        return ConversationDetail(
            **conversation.model_dump(),
            nodes=list(branch.store.nodes.values()),
            active_node_id=branch.active_node_id,
            active_path=branch.active_path(),
            branch_points=branch.branch_points(),
        )

    async def rename_conversation(self, conversation_id: str, title: str) -> Conversation:
        conversation = await self.get_conversation(conversation_id)
        if conversation.title == title:
            return conversation
        payload = ConversationTitleUpdatedPayload(
            old_title=conversation.title, new_title=title
        )
        await commit_event(
            self._store,
            self._projector,
            make_event(conversation_id, "ConversationTitleUpdated", payload),
        )
        return await self.get_conversation(conversation_id)

    async def move_conversation(
        self, conversation_id: str, folder_id: str | None
    ) -> Conversation:
        """Rescope document grounding to folder_id. None leaves it unfiled."""
        conversation = await self.get_conversation(conversation_id)
        if conversation.folder_id == folder_id:
            return conversation
        payload = ConversationFolderChangedPayload(
            old_folder_id=conversation.folder_id, new_folder_id=folder_id
        )
        await commit_event(
            self._store,
            self._projector,
            make_event(conversation_id, "ConversationFolderChanged", payload),
        )
        logger.info(
            "Moved conversation %s to folder %s", conversation_id, folder_id or "(none)"
        )
        return await self.get_conversation(conversation_id)

    async def delete_conversation(self, conversation_id: str) -> None:
        await self.get_conversation(conversation_id)
        await commit_event(
            self._store,
            self._projector,
            make_event(conversation_id, "ConversationDeleted", ConversationDeletedPayload()),
        )
        self._branches.pop(conversation_id, None)
        self._tangents.pop(conversation_id, None)
        logger.info("Deleted conversation %s", conversation_id)

    # -- Branching --

    async def send_message(self, conversation_id: str, content: str) -> Node:
        """Append a user turn under the active node (or as the first root)."""
        branch = await self._branch(conversation_id)
        node = await branch.send_message(content)
        if node is None:
            # Only reachable if the active node vanished from the arena.
            raise NodeNotFoundError(branch.active_node_id or "")
        return node

    async def fork_from_node(
        self,
        conversation_id: str,
        node_id: str,
        content: str,
        branch_name: str | None = None,
    ) -> Node:
        branch = await self._branch(conversation_id)
        node = await branch.fork_from_node(node_id, content, branch_name)
        if node is None:
            raise NodeNotFoundError(node_id)
        return node

    async def switch_to_branch(self, conversation_id: str, node_id: str) -> NodeResult:
        branch = await self._branch(conversation_id)
        if not branch.switch_to_branch(node_id):
            raise NodeNotFoundError(node_id)
        node = branch.store.get(node_id)
        assert node is not None
        return self.node_result(branch, node)

    async def get_siblings(self, conversation_id: str, node_id: str) -> list[BranchInfo]:
        branch = await self._branch(conversation_id)
        if node_id not in branch.store:
            raise NodeNotFoundError(node_id)
        return branch.siblings(node_id)

    async def get_path(self, conversation_id: str, node_id: str) -> list[Node]:
        branch = await self._branch(conversation_id)
        path = branch.path_to(node_id)
        if not path:
            raise NodeNotFoundError(node_id)
        return path

    async def get_node_result(self, conversation_id: str, node_id: str) -> NodeResult:
        branch = await self._branch(conversation_id)
        node = branch.store.get(node_id)
        if node is None:
            raise NodeNotFoundError(node_id)
        return self.node_result(branch, node)

    @staticmethod
    def node_result(branch: BranchController, node: Node) -> NodeResult:
        return NodeResult(
            node=node,
            active_node_id=branch.active_node_id,
            active_path=branch.active_path(),
            branch_points=branch.branch_points(),
        )

    # -- Tangents --

    async def get_tangents(self, conversation_id: str, message_id: str) -> list[Tangent]:
        await self._require_message(conversation_id, message_id)
        controller = await self._tangent_controller(conversation_id)
        return controller.tangents_for(message_id)

    async def create_tangent(
        self,
        conversation_id: str,
        message_id: str,
        highlighted_text: str,
        content: str,
    ) -> Tangent:
        await self._require_message(conversation_id, message_id)
        controller = await self._tangent_controller(conversation_id)
        return await controller.create_tangent(message_id, highlighted_text, content)

    async def reply_to_tangent(
        self, conversation_id: str, tangent_id: str, content: str
    ) -> Tangent:
        controller = await self._tangent_controller(conversation_id)
        tangent = await controller.reply_to_tangent(tangent_id, content)
        if tangent is None:
            raise TangentNotFoundError(tangent_id)
        return tangent

    async def create_sub_tangent(
        self,
        conversation_id: str,
        parent_tangent_id: str,
        highlighted_text: str,
        content: str,
    ) -> Tangent:
        controller = await self._tangent_controller(conversation_id)
        tangent = await controller.create_sub_tangent(
            parent_tangent_id, highlighted_text, content
        )
        if tangent is None:
            raise TangentNotFoundError(parent_tangent_id)
        return tangent

    async def tangent_forest(self, conversation_id: str, tangent_id: str) -> tuple[str, list[Tangent]]:
        """The anchor message id and full forest that tangent_id lives in."""
        controller = await self._tangent_controller(conversation_id)
        located = controller.locate(tangent_id)
        if located is None:
            raise TangentNotFoundError(tangent_id)
        message_id, _ = located
        return message_id, controller.tangents_for(message_id)

    # -- Replies --

    def is_streaming(self, conversation_id: str, kind: str, target_id: str) -> bool:
        return (conversation_id, kind, target_id) in self._inflight

    async def stream_node_reply(
        self,
        conversation_id: str,
        node_id: str,
        provider: LLMProvider,
        *,
        model: str | None = None,
        sampling_params: SamplingParams | None = None,
        on_delta: DeltaSink | None = None,
    ) -> tuple[StreamOutcome, AssembledContext]:
        """Generate the assistant reply for node_id, persisting whatever arrives."""
        conversation = await self.get_conversation(conversation_id)
        branch = await self._branch(conversation_id)
        node = branch.store.get(node_id)
        if node is None:
            raise NodeNotFoundError(node_id)

        resolved_model = model or self._default_model
        documents = await self._search_documents(conversation, node.user_message)
        context = self._assembler.for_node(
            branch.store.nodes,
            node_id,
            model=resolved_model,
            documents=documents,
            include_target_reply=False,
        )
        if context is None:
            raise NodeNotFoundError(node_id)

        async def persist(text: str) -> None:
            if text:
                await branch.update_node_response(node_id, text)

        target = StreamTarget(kind="node", target_id=node_id)
        outcome = await self._run_session(
            conversation_id, target, provider, context, resolved_model,
            sampling_params, on_delta, persist,
        )
        return outcome, context

    async def stream_tangent_reply(
        self,
        conversation_id: str,
        tangent_id: str,
        provider: LLMProvider,
        *,
        model: str | None = None,
        sampling_params: SamplingParams | None = None,
        on_delta: DeltaSink | None = None,
    ) -> tuple[StreamOutcome, AssembledContext]:
        """Generate the assistant turn that answers a tangent's latest user turn."""
        conversation = await self.get_conversation(conversation_id)
        branch = await self._branch(conversation_id)
        controller = await self._tangent_controller(conversation_id)
        located = controller.locate(tangent_id)
        if located is None:
            raise TangentNotFoundError(tangent_id)
        message_id, tangent = located

        resolved_model = model or self._default_model
        query = tangent.conversation[-1].content if tangent.conversation else ""
        documents = await self._search_documents(conversation, query)
        context = self._assembler.for_tangent(
            branch.store.get(message_id),
            controller.tangents_for(message_id),
            tangent_id,
            model=resolved_model,
            documents=documents,
        )
        if context is None:
            raise TangentNotFoundError(tangent_id)

        async def persist(text: str) -> None:
            if text:
                await controller.append_assistant_reply(tangent_id, text)

        target = StreamTarget(kind="tangent", target_id=tangent_id)
        outcome = await self._run_session(
            conversation_id, target, provider, context, resolved_model,
            sampling_params, on_delta, persist,
        )
        return outcome, context

    async def _run_session(
        self,
        conversation_id: str,
        target: StreamTarget,
        provider: LLMProvider,
        context: AssembledContext,
        model: str,
        sampling_params: SamplingParams | None,
        on_delta: DeltaSink | None,
        on_complete: Callable[[str], Awaitable[None]],
    ) -> StreamOutcome:
        key = (conversation_id, target.kind, target.target_id)
        if key in self._inflight:
            raise StreamInProgressError(target.target_id)
        self._inflight.add(key)

        request = GenerationRequest(
            model=model,
            messages=context.messages,
            system_prompt=context.system_prompt,
            sampling_params=sampling_params or SamplingParams(),
        )
        session = StreamingSession(
            provider, request, target, on_delta or _discard, on_complete
        )
        logger.info(
            "Streaming %s %s via %s/%s (%d messages, ~%d tokens)",
            target.kind, target.target_id, provider.name, model,
            len(context.messages), context.usage.total_tokens,
        )
        try:
            return await session.run()
        finally:
            self._inflight.discard(key)

    # -- Helpers --

    async def _branch(self, conversation_id: str) -> BranchController:
        await self.get_conversation(conversation_id)
        async with self._load_lock:
            controller = self._branches.get(conversation_id)
            if controller is None:
                controller = BranchController(
                    NodeStore(conversation_id, self._store, self._projector)
                )
                await controller.load()
                self._branches[conversation_id] = controller
        return controller

    async def _tangent_controller(self, conversation_id: str) -> TangentController:
        await self.get_conversation(conversation_id)
        async with self._load_lock:
            controller = self._tangents.get(conversation_id)
            if controller is None:
                store = TangentStore(conversation_id, self._store, self._projector)
                await store.load()
                controller = TangentController(store)
                self._tangents[conversation_id] = controller
        return controller

    async def _require_message(self, conversation_id: str, message_id: str) -> None:
        branch = await self._branch(conversation_id)
        if message_id not in branch.store:
            raise NodeNotFoundError(message_id)

    async def _search_documents(
        self, conversation: Conversation, query: str
    ) -> list[DocumentSnippet]:
        if self._documents is None or not conversation.folder_id or not query:
            return []
        return await self._documents.search(query, conversation.folder_id)


class ConversationNotFoundError(Exception):
    def __init__(self, conversation_id: str) -> None:
        self.conversation_id = conversation_id
        super().__init__(f"Conversation not found: {conversation_id}")


class NodeNotFoundError(Exception):
    def __init__(self, node_id: str) -> None:
        self.node_id = node_id
        super().__init__(f"Node not found: {node_id}")


class TangentNotFoundError(Exception):
    def __init__(self, tangent_id: str) -> None:
        self.tangent_id = tangent_id
        super().__init__(f"Tangent not found: {tangent_id}")


class StreamInProgressError(Exception):
    def __init__(self, target_id: str) -> None:
        self.target_id = target_id
        super().__init__(f"A reply is already streaming for {target_id}")
