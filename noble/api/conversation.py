import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect, status

from noble.dependencies import CurrentUserId, Services, extract_token
from noble.errors import NotAuthenticated, NotFound
from noble.models.message import Conversation, Message
from noble.schemas.requests import SendMessageSchema
from noble.schemas.responses import CountResponseSchema
from noble.services.conversation import ConversationStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/conversations", tags=["conversations"])


async def _require_participant(
    conversations: ConversationStore, conversation_id: str, user_id: str
) -> Conversation:
    conversation = await conversations.get_conversation(conversation_id)
    if not conversation.includes(user_id):
        raise NotFound(f"Conversation {conversation_id} not found")
    return conversation


@router.get("", response_model=list[Conversation])
async def list_conversations(
    user_id: CurrentUserId, services: Services
) -> list[Conversation]:
    """Get the signed in user's conversations, most recently active first."""
    return await services.conversations.list_conversations(user_id)


@router.get("/{conversation_id}/messages", response_model=list[Message])
async def list_messages(
    conversation_id: str, user_id: CurrentUserId, services: Services
) -> list[Message]:
    await _require_participant(services.conversations, conversation_id, user_id)
    return await services.conversations.list_messages(conversation_id)


@router.post(
    "/{conversation_id}/messages",
    response_model=Message,
    status_code=status.HTTP_201_CREATED,
)
async def send_message(
    conversation_id: str,
    body: SendMessageSchema,
    user_id: CurrentUserId,
    services: Services,
) -> Message:
    """Post a message in a conversation.

    Args:
        conversation_id: Conversation to post in
        body: Message content and type
        user_id: The authenticated user, who must be a participant
        services: Injected service container

    Returns:
        The created message
    """
    return await services.conversations.send_message(
        conversation_id, user_id, body.content, body.message_type
    )


@router.post("/{conversation_id}/read", response_model=CountResponseSchema)
async def mark_read(
    conversation_id: str, user_id: CurrentUserId, services: Services
) -> CountResponseSchema:
    await _require_participant(services.conversations, conversation_id, user_id)
    updated = await services.conversations.mark_read(conversation_id, user_id)
    return CountResponseSchema(updated=updated)


@router.websocket("/{conversation_id}/feed")
async def conversation_feed(
    websocket: WebSocket, conversation_id: str, services: Services
) -> None:
    """Stream the full message list of a conversation on every change.

    The bearer token comes from the Authorization header or the `token`
    query parameter. The subscription is released when the client
    disconnects.
    """
    try:
        user_id = await services.auth.authenticate(extract_token(websocket))
        await _require_participant(services.conversations, conversation_id, user_id)
    except (NotAuthenticated, NotFound) as e:
        logger.info("Rejected feed for %s: %s", conversation_id, e)
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()

    async def push(messages: list[Message]) -> None:
        await websocket.send_json([m.model_dump(mode="json") for m in messages])

    async def report(error: Exception) -> None:
        await websocket.send_json({"error": str(error)})

    subscription = await services.conversations.subscribe(
        conversation_id, push, on_error=report
    )
    try:
        while True:
            # Client messages are ignored, receiving only detects disconnects.
            await websocket.receive_text()
    except WebSocketDisconnect:
        logger.debug("Feed client for %s disconnected", conversation_id)
    finally:
        await subscription.cancel()
