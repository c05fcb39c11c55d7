"""Tests for the httpx-based backends: Direct Line and the survey client."""

from __future__ import annotations

import json

import httpx
import pytest

from survey_flow.client import SurveyClient
from survey_flow.relay.direct_line import DirectLineBackend
from survey_flow.types import RelayError, TransportError

BASE = "https://directline.test/v3/directline"


def _recorder(handler):
    requests: list[httpx.Request] = []

    def _handle(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return handler(request)

    return requests, httpx.AsyncClient(transport=httpx.MockTransport(_handle))


class TestDirectLineBackend:
    def test_requires_secret(self):
        with pytest.raises(RelayError):
            DirectLineBackend("")

    @pytest.mark.asyncio
    async def test_start_conversation_announces_user(self):
        def handler(request):
            if request.url.path.endswith("/conversations"):
                return httpx.Response(201, json={"conversationId": "abc", "token": "t"})
            return httpx.Response(200, json={"id": "abc|0000000"})

        requests, client = _recorder(handler)
        backend = DirectLineBackend("s3cret", base_url=BASE, client=client)
        data = await backend.start_conversation(treatment_group=1)

        assert data["conversationId"] == "abc"
        assert requests[0].headers["Authorization"] == "Bearer s3cret"
        assert str(requests[1].url) == f"{BASE}/conversations/abc/activities"
        activity = json.loads(requests[1].content)
        assert activity["type"] == "conversationUpdate"
        assert activity["membersAdded"] == [{"id": "user1"}]
        assert activity["from"] == {"id": "Test_Chatbot_1"}
        assert activity["channelData"] == {"treatmentGroup": 1}
        await client.aclose()

    @pytest.mark.asyncio
    async def test_get_activities_passes_watermark(self):
        requests, client = _recorder(lambda r: httpx.Response(200, json={"activities": [], "watermark": "5"}))
        backend = DirectLineBackend("s", base_url=BASE, client=client)
        await backend.get_activities("abc", watermark="4")
        await backend.get_activities("abc")
        assert requests[0].url.params["watermark"] == "4"
        assert "watermark" not in requests[1].url.params
        assert requests[0].method == "GET"
        await client.aclose()

    @pytest.mark.asyncio
    async def test_post_message_carries_client_id(self):
        requests, client = _recorder(lambda r: httpx.Response(200, json={"id": "abc|0000001"}))
        backend = DirectLineBackend("s", base_url=BASE, client=client)
        data = await backend.post_message("abc", "hello", "m-1", treatment_group=0)
        assert data == {"id": "abc|0000001"}
        activity = json.loads(requests[0].content)
        assert activity["text"] == "hello"
        assert activity["from"] == {"id": "user1"}
        assert activity["channelData"] == {"treatmentGroup": 0, "clientSideMsgId": "m-1"}
        await client.aclose()

    @pytest.mark.asyncio
    async def test_http_error_status_is_transport_error(self):
        _, client = _recorder(lambda r: httpx.Response(502, text="bad gateway"))
        backend = DirectLineBackend("s", base_url=BASE, client=client)
        with pytest.raises(TransportError) as exc_info:
            await backend.post_message("abc", "hello", "m-1")
        assert exc_info.value.status_code == 502
        assert exc_info.value.operation == "send_message"
        await client.aclose()

    @pytest.mark.asyncio
    async def test_connection_error_is_transport_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        _, client = _recorder(handler)
        backend = DirectLineBackend("s", base_url=BASE, client=client)
        with pytest.raises(TransportError):
            await backend.get_activities("abc")
        await client.aclose()

    @pytest.mark.asyncio
    async def test_invalid_json_is_transport_error(self):
        _, client = _recorder(lambda r: httpx.Response(200, text="<html>"))
        backend = DirectLineBackend("s", base_url=BASE, client=client)
        with pytest.raises(TransportError):
            await backend.get_activities("abc")
        await client.aclose()


class TestSurveyClient:
    @pytest.mark.asyncio
    async def test_endpoints(self):
        def handler(request):
            if request.url.path == "/generateSurveyData":
                return httpx.Response(200, json={"participantId": "ID-X", "treatmentGroup": 1})
            if request.url.path in ("/submit", "/submit-email"):
                return httpx.Response(200, text="OK")
            if request.url.path == "/sendmessage":
                return httpx.Response(200, json={"id": "c|1"})
            return httpx.Response(404)

        requests, client = _recorder(handler)
        survey = SurveyClient("http://survey.test", client=client)

        assert await survey.generate_survey_data() == {"participantId": "ID-X", "treatmentGroup": 1}
        await survey.submit({"participantId": "ID-X", "treatmentGroup": 1, "conversationLog": "[]"})
        await survey.submit_email("a@b.org")
        assert await survey.post_message("c", "hi", "m1", treatment_group=1) == {"id": "c|1"}

        assert json.loads(requests[2].content) == {"email": "a@b.org"}
        assert json.loads(requests[3].content) == {
            "conversationId": "c",
            "text": "hi",
            "clientGeneratedMessageId": "m1",
            "treatmentGroup": 1,
        }
        await client.aclose()

    @pytest.mark.asyncio
    async def test_failed_submit_raises(self):
        _, client = _recorder(lambda r: httpx.Response(500, json={"error": "Internal server error."}))
        survey = SurveyClient("http://survey.test", client=client)
        with pytest.raises(TransportError) as exc_info:
            await survey.submit({})
        assert exc_info.value.status_code == 500
        await client.aclose()

    @pytest.mark.asyncio
    async def test_owned_client_is_closed(self):
        survey = SurveyClient("http://survey.test")
        await survey.aclose()
        assert survey._client.is_closed

    @pytest.mark.asyncio
    async def test_from_config_targets_server_base_url(self):
        from survey_flow.config import load_config

        config = load_config(config_dict={"server": {"base_url": "http://survey.example:8080/"}})
        requests, client = _recorder(lambda r: httpx.Response(200, json={"participantId": "ID-Y", "treatmentGroup": 0}))
        survey = SurveyClient.from_config(config, client=client)
        assert survey.base_url == "http://survey.example:8080"
        await survey.generate_survey_data()
        assert str(requests[0].url) == "http://survey.example:8080/generateSurveyData"
        await client.aclose()
