"""Request and response schemas for conversation, node, and tangent endpoints."""

from pydantic import BaseModel, Field

from ytangent.models import BranchInfo, ContextUsage, Node, SamplingParams, Tangent

# -- Requests --


class CreateConversationRequest(BaseModel):
    title: str | None = None
    folder_id: str | None = None


class PatchConversationRequest(BaseModel):
    """Partial update of title and folder.

    folder_id: null moves the conversation out of its folder. Omitting
    folder_id leaves it where it is.
    """

    title: str | None = Field(default=None, min_length=1)
    folder_id: str | None = None


class GenerationOptions(BaseModel):
    """Whether and how to produce an assistant reply after a user action."""

    provider: str = "openai"
    model: str | None = None
    sampling_params: SamplingParams | None = None
    generate: bool = True
    stream: bool = False


class SendMessageRequest(GenerationOptions):
    content: str = Field(min_length=1)


class ForkRequest(GenerationOptions):
    content: str = Field(min_length=1)
    branch_name: str | None = None


class CreateTangentRequest(GenerationOptions):
    highlighted_text: str = Field(min_length=1)
    content: str = Field(min_length=1)


class TangentReplyRequest(GenerationOptions):
    content: str = Field(min_length=1)


class CreateSubTangentRequest(GenerationOptions):
    highlighted_text: str = Field(min_length=1)
    content: str = Field(min_length=1)


# -- Responses --


class ConversationSummary(BaseModel):
    conversation_id: str
    title: str
    folder_id: str | None = None
    created_at: str
    updated_at: str


class ConversationDetail(ConversationSummary):
    nodes: list[Node] = Field(default_factory=list)
    active_node_id: str | None = None
    active_path: list[Node] = Field(default_factory=list)
    branch_points: dict[str, list[BranchInfo]] = Field(default_factory=dict)


class NodeResult(BaseModel):
    """A node after a user action, with the view the UI re-renders."""

    node: Node
    active_node_id: str | None = None
    active_path: list[Node] = Field(default_factory=list)
    branch_points: dict[str, list[BranchInfo]] = Field(default_factory=dict)
    context_usage: ContextUsage | None = None


class TangentResult(BaseModel):
    """A tangent after a user action, plus its anchor message's full forest."""

    message_id: str
    tangent: Tangent
    tangents: list[Tangent] = Field(default_factory=list)
    context_usage: ContextUsage | None = None
