"""DirectLineBackend: Bot Framework Direct Line v3 conversations via httpx."""

from __future__ import annotations

import httpx

from ..types import RelayError
from .http import JSONHttpBackend

DIRECT_LINE_BASE = "https://europe.directline.botframework.com/v3/directline"


class DirectLineBackend(JSONHttpBackend):
    """Talks to the agent through the Direct Line REST API.

    Starting a conversation also announces the user with a
    ``conversationUpdate`` activity carrying the treatment group, so the
    agent can pick its behaviour before the first message.
    """

    def __init__(
        self,
        secret: str,
        base_url: str = DIRECT_LINE_BASE,
        user_id: str = "user1",
        bot_id: str = "Test_Chatbot_1",
        client: httpx.AsyncClient | None = None,
        timeout: float | None = None,
    ) -> None:
        if not secret:
            raise RelayError("No Direct Line secret. Set DIRECT_LINE_SECRET or relay.direct_line_secret.")
        super().__init__(base_url, client=client, timeout=timeout)
        self.secret = secret
        self.user_id = user_id
        self.bot_id = bot_id

    def _headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.secret}",
            "Content-Type": "application/json",
        }

    async def start_conversation(self, treatment_group: int | None = None) -> dict:
        data = await self._request("POST", "/conversations", "start_conversation", json={})
        conversation_id = data.get("conversationId")
        if not conversation_id:
            raise RelayError(f"Direct Line did not return a conversationId: {data!r}")
        activity = {
            "type": "conversationUpdate",
            "membersAdded": [{"id": self.user_id}],
            "from": {"id": self.bot_id},
            "channelData": {"treatmentGroup": treatment_group},
        }
        await self._request(
            "POST", f"/conversations/{conversation_id}/activities", "start_conversation", json=activity,
        )
        return data

    async def get_activities(
        self,
        conversation_id: str,
        watermark: str | None = None,
        treatment_group: int | None = None,
    ) -> dict:
        params = {"watermark": watermark} if watermark else None
        return await self._request(
            "GET", f"/conversations/{conversation_id}/activities", "get_activities", params=params,
        )

    async def post_message(
        self,
        conversation_id: str,
        text: str,
        client_message_id: str,
        treatment_group: int | None = None,
    ) -> dict:
        activity = {
            "type": "message",
            "from": {"id": self.user_id},
            "text": text,
            "channelData": {
                "treatmentGroup": treatment_group,
                "clientSideMsgId": client_message_id,
            },
        }
        return await self._request(
            "POST", f"/conversations/{conversation_id}/activities", "send_message", json=activity,
        )
