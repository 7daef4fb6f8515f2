from fastapi.requests import HTTPConnection

from kiram_chat.services.chat_service import ChatService


def get_chat_service(conn: HTTPConnection) -> ChatService:
    return conn.app.state.chat_service
