"""
Conversation and message REST routes for agents and clients.

Agents authenticate with a bearer token. Clients use the share link of their
timeline plus the session token issued when they logged in through it.
"""

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Optional

from ..database import get_db
from ..errors import (
    AuthenticationError,
    AuthorizationError,
    ConflictError,
    MessagingError,
    NotFoundError,
    ValidationError
)
from ..schemas.conversation import (
    ConversationCreate,
    ClientConversationCreate,
    ClientSessionBody,
    ConversationResponse,
    ConversationWithMessages,
    UnreadSummaryResponse
)
from ..schemas.message import MessageCreate, ClientMessageCreate, MessageResponse, MessagePage
from ..schemas.scope import scope_for
from ..services.messaging_service import MessagingService
from ..services.timeline_lookup import SessionValidator, TimelineDirectory, TimelineRef
from ..utils.security import TokenData, get_current_agent


router = APIRouter(prefix="/api/v1/messaging", tags=["Messaging"])

_STATUS_BY_ERROR = [
    (AuthenticationError, status.HTTP_401_UNAUTHORIZED),
    (AuthorizationError, status.HTTP_403_FORBIDDEN),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (ConflictError, status.HTTP_409_CONFLICT),
    (ValidationError, status.HTTP_400_BAD_REQUEST),
]


def to_http_error(error: MessagingError) -> HTTPException:
    """Map a domain error onto the matching HTTP status."""
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(error, error_type):
            return HTTPException(status_code=status_code, detail=error.message)
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=error.message)


async def _client_timeline(db: AsyncSession, share_token: str, session_token: Optional[str]) -> TimelineRef:
    """Timeline a client session is bound to, or 401."""
    if not session_token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Session token required"
        )

    timeline = await SessionValidator(db).validate(session_token, share_token)
    if timeline is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid session token"
        )
    return timeline


# ============= Agent endpoints =============

@router.post("/conversations", response_model=ConversationWithMessages)
async def create_agent_conversation(
    conversation_data: ConversationCreate,
    current_agent: TokenData = Depends(get_current_agent),
    db: AsyncSession = Depends(get_db)
):
    """Create or fetch the conversation for a client/timeline/property."""
    if conversation_data.agent_id and conversation_data.agent_id != current_agent.user_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Cannot create conversation for another agent"
        )

    timeline = await TimelineDirectory(db).get_by_id(conversation_data.timeline_id)
    if not timeline:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Timeline not found"
        )
    if timeline.agent_id != current_agent.user_id or timeline.client_id != conversation_data.client_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Timeline does not belong to this agent and client"
        )

    try:
        return await MessagingService(db).create_or_get_conversation(
            current_agent.user_id,
            conversation_data.client_id,
            conversation_data.timeline_id,
            scope_for(conversation_data.property_id)
        )
    except MessagingError as e:
        raise to_http_error(e)


@router.get("/conversations", response_model=List[ConversationWithMessages])
async def list_agent_conversations(
    current_agent: TokenData = Depends(get_current_agent),
    db: AsyncSession = Depends(get_db)
):
    """List the agent's active conversations, most recent first."""
    return await MessagingService(db).get_conversations(current_agent.user_id, "agent")


@router.get("/unread-summary", response_model=UnreadSummaryResponse)
async def get_agent_unread_summary(
    current_agent: TokenData = Depends(get_current_agent),
    db: AsyncSession = Depends(get_db)
):
    """Unread counts grouped by client and property."""
    return await MessagingService(db).get_unread_summary(current_agent.user_id)


@router.get("/conversations/{conversation_id}", response_model=ConversationWithMessages)
async def get_agent_conversation(
    conversation_id: int,
    current_agent: TokenData = Depends(get_current_agent),
    db: AsyncSession = Depends(get_db)
):
    """Get a conversation with its latest messages."""
    try:
        return await MessagingService(db).get_conversation(
            conversation_id, current_agent.user_id, "agent", include_messages=True
        )
    except MessagingError as e:
        raise to_http_error(e)


@router.get("/conversations/{conversation_id}/messages", response_model=MessagePage)
async def get_agent_messages(
    conversation_id: int,
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1),
    current_agent: TokenData = Depends(get_current_agent),
    db: AsyncSession = Depends(get_db)
):
    """Page through a conversation oldest first."""
    try:
        return await MessagingService(db).get_messages(conversation_id, current_agent.user_id, "agent", page, limit)
    except MessagingError as e:
        raise to_http_error(e)


@router.post("/conversations/{conversation_id}/messages", response_model=MessageResponse,
             status_code=status.HTTP_201_CREATED)
async def send_agent_message(
    conversation_id: int,
    message_data: MessageCreate,
    current_agent: TokenData = Depends(get_current_agent),
    db: AsyncSession = Depends(get_db)
):
    """Send a message as the agent."""
    try:
        return await MessagingService(db).send_message(
            conversation_id, current_agent.user_id, "agent", message_data.content
        )
    except MessagingError as e:
        raise to_http_error(e)


@router.post("/conversations/{conversation_id}/read")
async def mark_agent_messages_read(
    conversation_id: int,
    current_agent: TokenData = Depends(get_current_agent),
    db: AsyncSession = Depends(get_db)
):
    """Mark the client's messages as read."""
    try:
        receipt = await MessagingService(db).mark_messages_as_read(conversation_id, current_agent.user_id, "agent")
    except MessagingError as e:
        raise to_http_error(e)
    return {"success": True, "marked": receipt.marked}


@router.post("/conversations/{conversation_id}/deactivate", response_model=ConversationResponse)
async def deactivate_agent_conversation(
    conversation_id: int,
    current_agent: TokenData = Depends(get_current_agent),
    db: AsyncSession = Depends(get_db)
):
    """Soft-disable a conversation without losing its history."""
    try:
        return await MessagingService(db).deactivate_conversation(conversation_id, current_agent.user_id, "agent")
    except MessagingError as e:
        raise to_http_error(e)


# ============= Client endpoints =============

@router.get("/client/{share_token}/conversations", response_model=List[ConversationWithMessages])
async def list_client_conversations(
    share_token: str,
    session_token: Optional[str] = Query(None, alias="sessionToken"),
    db: AsyncSession = Depends(get_db)
):
    """List the client's conversations on this timeline."""
    timeline = await _client_timeline(db, share_token, session_token)
    conversations = await MessagingService(db).get_conversations(timeline.client_id, "client")
    return [c for c in conversations if c.timeline_id == timeline.id]


@router.post("/client/{share_token}/conversations", response_model=ConversationWithMessages)
async def create_client_conversation(
    share_token: str,
    body: ClientConversationCreate,
    db: AsyncSession = Depends(get_db)
):
    """Create or fetch the client's conversation for the timeline or one property."""
    timeline = await _client_timeline(db, share_token, body.session_token)
    try:
        return await MessagingService(db).create_or_get_conversation(
            timeline.agent_id,
            timeline.client_id,
            timeline.id,
            scope_for(body.property_id)
        )
    except MessagingError as e:
        raise to_http_error(e)


@router.get("/client/{share_token}/conversations/{conversation_id}", response_model=ConversationWithMessages)
async def get_client_conversation(
    share_token: str,
    conversation_id: int,
    session_token: Optional[str] = Query(None, alias="sessionToken"),
    db: AsyncSession = Depends(get_db)
):
    """Get one of the client's conversations."""
    timeline = await _client_timeline(db, share_token, session_token)
    try:
        return await MessagingService(db).get_conversation(
            conversation_id, timeline.client_id, "client", include_messages=True
        )
    except MessagingError as e:
        raise to_http_error(e)


@router.get("/client/{share_token}/conversations/{conversation_id}/messages", response_model=MessagePage)
async def get_client_messages(
    share_token: str,
    conversation_id: int,
    session_token: Optional[str] = Query(None, alias="sessionToken"),
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1),
    db: AsyncSession = Depends(get_db)
):
    """Page through a conversation oldest first."""
    timeline = await _client_timeline(db, share_token, session_token)
    try:
        return await MessagingService(db).get_messages(conversation_id, timeline.client_id, "client", page, limit)
    except MessagingError as e:
        raise to_http_error(e)


@router.post("/client/{share_token}/conversations/{conversation_id}/messages", response_model=MessageResponse,
             status_code=status.HTTP_201_CREATED)
async def send_client_message(
    share_token: str,
    conversation_id: int,
    message_data: ClientMessageCreate,
    db: AsyncSession = Depends(get_db)
):
    """Send a message as the client."""
    timeline = await _client_timeline(db, share_token, message_data.session_token)
    try:
        return await MessagingService(db).send_message(
            conversation_id, timeline.client_id, "client", message_data.content
        )
    except MessagingError as e:
        raise to_http_error(e)


@router.post("/client/{share_token}/conversations/{conversation_id}/read")
async def mark_client_messages_read(
    share_token: str,
    conversation_id: int,
    body: ClientSessionBody,
    db: AsyncSession = Depends(get_db)
):
    """Mark the agent's messages as read."""
    timeline = await _client_timeline(db, share_token, body.session_token)
    try:
        receipt = await MessagingService(db).mark_messages_as_read(conversation_id, timeline.client_id, "client")
    except MessagingError as e:
        raise to_http_error(e)
    return {"success": True, "marked": receipt.marked}
