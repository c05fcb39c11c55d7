"""SurveyClient: the questionnaire's view of the relay server's HTTP endpoints."""

from __future__ import annotations

import httpx

from .relay.http import JSONHttpBackend
from .types import SurveyFlowConfig


class SurveyClient(JSONHttpBackend):
    """Metadata, submission, and chat endpoints exposed by ``survey_flow.server``.

    Also satisfies ``ConversationBackend`` so a ChatRelay can run on the
    client side against the server.
    """

    def __init__(
        self,
        base_url: str = "http://127.0.0.1:3000",
        client: httpx.AsyncClient | None = None,
        timeout: float | None = None,
    ) -> None:
        super().__init__(base_url, client=client, timeout=timeout)

    @classmethod
    def from_config(cls, config: SurveyFlowConfig, client: httpx.AsyncClient | None = None) -> SurveyClient:
        """Client for the relay server at ``server.base_url``."""
        return cls(config.server.base_url, client=client)

    # -- survey --

    async def generate_survey_data(self) -> dict:
        return await self._request("GET", "/generateSurveyData", "metadata")

    async def submit(self, payload: dict) -> None:
        await self._request("POST", "/submit", "submit", json=payload, expect_json=False)

    async def submit_email(self, email: str) -> None:
        await self._request("POST", "/submit-email", "submit_email", json={"email": email}, expect_json=False)

    # -- conversation --

    async def start_conversation(self, treatment_group: int | None = None) -> dict:
        return await self._request(
            "POST", "/startconversation", "start_conversation",
            json={"treatmentGroup": treatment_group},
        )

    async def get_activities(
        self,
        conversation_id: str,
        watermark: str | None = None,
        treatment_group: int | None = None,
    ) -> dict:
        return await self._request(
            "POST", "/getactivities", "get_activities",
            json={
                "conversationId": conversation_id,
                "watermark": watermark,
                "treatmentGroup": treatment_group,
            },
        )

    async def post_message(
        self,
        conversation_id: str,
        text: str,
        client_message_id: str,
        treatment_group: int | None = None,
    ) -> dict:
        return await self._request(
            "POST", "/sendmessage", "send_message",
            json={
                "conversationId": conversation_id,
                "text": text,
                "clientGeneratedMessageId": client_message_id,
                "treatmentGroup": treatment_group,
            },
        )
