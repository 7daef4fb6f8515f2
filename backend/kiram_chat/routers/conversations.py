from typing import List

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile, status

from kiram_chat.models.message import AttachmentType
from kiram_chat.routers.dependencies import get_chat_service
from kiram_chat.schemas.conversation import Conversation, GetOrCreateConversationRequest
from kiram_chat.schemas.message import (
    AttachmentUploadResponse,
    EditMessageRequest,
    Message,
    ReadReceipt,
    SendMessageRequest,
)
from kiram_chat.services.chat_service import ChatService


router = APIRouter(prefix="/conversations", tags=["chat"])


@router.post("", response_model=Conversation)
async def get_or_create_conversation(body: GetOrCreateConversationRequest, service: ChatService = Depends(get_chat_service)):
    return await service.get_or_create_conversation(body.user_a, body.user_b)


@router.get("", response_model=List[Conversation])
async def list_conversations(user_id: str = Query(..., min_length=1), service: ChatService = Depends(get_chat_service)):
    return await service.list_conversations(user_id)


@router.get("/{conversation_id}", response_model=Conversation)
async def get_conversation(conversation_id: str, service: ChatService = Depends(get_chat_service)):
    return await service.get_conversation(conversation_id)


@router.get("/{conversation_id}/messages", response_model=List[Message])
async def list_messages(conversation_id: str, service: ChatService = Depends(get_chat_service)):
    await service.get_conversation(conversation_id)
    return await service.list_messages(conversation_id)


@router.post("/{conversation_id}/messages", response_model=Message, status_code=status.HTTP_201_CREATED)
async def send_message(conversation_id: str, body: SendMessageRequest, service: ChatService = Depends(get_chat_service)):
    return await service.send_message(
        conversation_id,
        body.sender_id,
        body.receiver_id,
        body.content,
        attachment_type=body.attachment_type,
        attachment_url=body.attachment_url,
    )


@router.post("/{conversation_id}/attachments", response_model=AttachmentUploadResponse, status_code=status.HTTP_201_CREATED)
async def upload_attachment(
    conversation_id: str,
    attachment_type: AttachmentType = Form(...),
    file: UploadFile = File(...),
    service: ChatService = Depends(get_chat_service),
):
    data = await file.read()
    uploaded = await service.upload_attachment(conversation_id, attachment_type, data)
    return AttachmentUploadResponse(url=uploaded.url, extension=uploaded.extension)


@router.post("/{conversation_id}/messages/{message_id}/read")
async def mark_message_read(conversation_id: str, message_id: str, body: ReadReceipt, service: ChatService = Depends(get_chat_service)):
    changed = await service.mark_message_read(conversation_id, message_id, body.reader_id)
    return {"updated": changed}


@router.post("/{conversation_id}/read")
async def mark_conversation_read(conversation_id: str, body: ReadReceipt, service: ChatService = Depends(get_chat_service)):
    count = await service.mark_conversation_read(conversation_id, body.reader_id)
    return {"updated": count}


@router.patch("/{conversation_id}/messages/{message_id}", response_model=Message)
async def edit_message(conversation_id: str, message_id: str, body: EditMessageRequest, service: ChatService = Depends(get_chat_service)):
    return await service.edit_message(conversation_id, message_id, body.editor_id, body.content)


@router.delete("/{conversation_id}/messages/{message_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_message(conversation_id: str, message_id: str, user_id: str = Query(..., min_length=1), service: ChatService = Depends(get_chat_service)):
    await service.delete_message(conversation_id, message_id, user_id)
