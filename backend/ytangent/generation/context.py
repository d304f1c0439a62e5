"""Context assembly for LLM generation.

Builds the prompt for a target from its path only: a node's ancestors from
the root, or a tangent's lineage from its anchor message. Sibling branches
and unrelated tangents are never included, so prompt size follows tree depth
rather than tree size.

The system prompt travels separately from the messages array and carries the
advisory depth/branch hints and any document grounding.
"""

import logging
from collections.abc import Mapping, Sequence

from pydantic import BaseModel, Field

from ytangent.documents.provider import DocumentSnippet
from ytangent.generation.tokens import ApproximateTokenCounter, TokenCounter, fit_messages
from ytangent.models import ContextUsage, Node, Tangent
from ytangent.tangents.navigator import tangent_lineage
from ytangent.trees.navigator import path_to_root

logger = logging.getLogger(__name__)

DEFAULT_SYSTEM_PROMPT = (
    "You are a helpful assistant. Formatting rules: put main formulas on their "
    "own line surrounded by blank lines using $$...$$ delimiters, use $...$ for "
    "inline variables and symbols, and never write formulas as plain text."
)

# Known model context limits (tokens). Falls back to DEFAULT for unknown models.
MODEL_CONTEXT_LIMITS: dict[str, int] = {
    "gpt-4o": 128_000,
    "gpt-4o-mini": 128_000,
    "gpt-4.1": 1_000_000,
    "gpt-4.1-mini": 1_000_000,
    "o4-mini": 200_000,
    "claude-sonnet-4-5-20250929": 200_000,
    "claude-haiku-4-5-20251001": 200_000,
}
DEFAULT_CONTEXT_LIMIT = 128_000


def get_model_context_limit(model: str | None) -> int:
    """Look up context limit for a model, falling back to a conservative default."""
    if model is None:
        return DEFAULT_CONTEXT_LIMIT
    return MODEL_CONTEXT_LIMITS.get(model, DEFAULT_CONTEXT_LIMIT)


class ContextHints(BaseModel):
    """Advisory metadata computed alongside the path. Not needed for correctness."""

    depth: int
    turn_count: int
    branch_name: str | None = None
    highlighted_text: str | None = None  # set for tangent targets

    def describe(self) -> str:
        if self.highlighted_text is not None:
            return (
                f"This is a side discussion (nesting level {self.depth}) about the "
                f'highlighted passage "{self.highlighted_text}".'
            )
        text = f"You are {self.turn_count} turns deep"
        if self.branch_name:
            text += f' in branch "{self.branch_name}"'
        return text + "."


class AssembledContext(BaseModel):
    target_id: str
    messages: list[dict[str, str]]
    system_prompt: str | None = None
    hints: ContextHints
    usage: ContextUsage
    documents: list[DocumentSnippet] = Field(default_factory=list)


class ContextAssembler:
    """Produces the minimal ordered message list for a node or tangent target."""

    def __init__(
        self,
        system_prompt: str | None = DEFAULT_SYSTEM_PROMPT,
        token_counter: TokenCounter | None = None,
    ) -> None:
        self._system_prompt = system_prompt
        self._counter = token_counter or ApproximateTokenCounter()

    def for_node(
        self,
        nodes: Mapping[str, Node],
        node_id: str,
        *,
        model: str | None = None,
        documents: Sequence[DocumentSnippet] = (),
        include_target_reply: bool = True,
    ) -> AssembledContext | None:
        """Root-to-target turns: each node's user message, then its reply if any.

        With include_target_reply=False the target's own reply is left out, so
        a regenerated reply starts from the user turn instead of the old text.
        Returns None if node_id cannot be resolved.
        """
        path = path_to_root(nodes, node_id)
        if not path:
            logger.warning("Context target node %s not found", node_id)
            return None

        messages: list[dict[str, str]] = []
        for node in path:
            _push(messages, "user", node.user_message)
            if node.node_id == node_id and not include_target_reply:
                continue
            if node.assistant_response:
                _push(messages, "assistant", node.assistant_response)

        branch_name = next(
            (n.branch_name for n in reversed(path) if n.branch_name), None
        )
        hints = ContextHints(
            depth=path[-1].depth,
            turn_count=len(path),
            branch_name=branch_name,
        )
        return self._finish(node_id, messages, hints, model, documents)

    def for_tangent(
        self,
        anchor: Node | None,
        tangents: Sequence[Tangent],
        tangent_id: str,
        *,
        new_content: str | None = None,
        model: str | None = None,
        documents: Sequence[DocumentSnippet] = (),
    ) -> AssembledContext | None:
        """Anchor message, then each lineage tangent's marker and conversation.

        tangents is the anchor message's forest. new_content, when given, is
        appended as a final user turn. Returns None if the anchor is missing
        or tangent_id is not in the forest.
        """
        lineage = tangent_lineage(tangents, tangent_id)
        if anchor is None or not lineage:
            logger.warning("Context target tangent %s not found", tangent_id)
            return None

        messages: list[dict[str, str]] = []
        _push(messages, "user", anchor.user_message)
        if anchor.assistant_response:
            _push(messages, "assistant", anchor.assistant_response)

        for tangent in lineage:
            for i, turn in enumerate(tangent.conversation):
                content = turn.content
                if i == 0:
                    content = f'Regarding "{tangent.highlighted_text}":\n{content}'
                _push(messages, turn.role, content)

        if new_content:
            _push(messages, "user", new_content)

        target = lineage[-1]
        hints = ContextHints(
            depth=len(lineage) - 1,
            turn_count=sum(len(t.conversation) for t in lineage),
            highlighted_text=target.highlighted_text,
        )
        return self._finish(tangent_id, messages, hints, model, documents)

    def _finish(
        self,
        target_id: str,
        messages: list[dict[str, str]],
        hints: ContextHints,
        model: str | None,
        documents: Sequence[DocumentSnippet],
    ) -> AssembledContext:
        system_prompt = self._build_system_prompt(hints, documents)
        messages, usage = fit_messages(
            self._counter, messages, system_prompt, get_model_context_limit(model)
        )
        return AssembledContext(
            target_id=target_id,
            messages=messages,
            system_prompt=system_prompt,
            hints=hints,
            usage=usage,
            documents=list(documents),
        )

    def _build_system_prompt(
        self, hints: ContextHints, documents: Sequence[DocumentSnippet]
    ) -> str:
        sections = []
        if self._system_prompt:
            sections.append(self._system_prompt)
        sections.append(hints.describe())
        if documents:
            lines = ["Reference documents:"]
            for doc in documents:
                lines.append(f"[{doc.source_name}]\n{doc.content}")
            sections.append("\n\n".join(lines))
        return "\n\n".join(sections)


def _push(messages: list[dict[str, str]], role: str, content: str) -> None:
    """Append a turn, merging into the previous one when the role repeats."""
    if messages and messages[-1]["role"] == role:
        messages[-1] = {"role": role, "content": f"{messages[-1]['content']}\n\n{content}"}
        return
    messages.append({"role": role, "content": content})

