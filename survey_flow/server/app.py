"""HTTP relay server: participant metadata, submissions, and the agent conversation.

Usage:
    survey-flow -c survey-flow.yaml serve --port 3000
"""

from __future__ import annotations

import logging
import random
import secrets
import sqlite3
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response

from ..config import load_config
from ..relay.chat_relay import ChatRelay
from ..relay.dedup import DedupTable
from ..relay.direct_line import DirectLineBackend
from ..relay.transport import RetryableTransport
from ..types import ServerConfig, SurveyFlowConfig, SurveyFlowError
from .responses import ResponseStore

logger = logging.getLogger(__name__)

ID_PREFIX = "ID-"
ID_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789"
ID_RANDOM_LENGTH = 15


def create_participant_id(now: datetime | None = None, rng: random.Random | None = None) -> str:
    """``ID-`` + 15 random chars + ``MMDDhhmmssSSS`` (local time)."""
    choose = rng.choice if rng is not None else secrets.choice
    random_part = "".join(choose(ID_ALPHABET) for _ in range(ID_RANDOM_LENGTH))
    now = now or datetime.now()
    stamp = now.strftime("%m%d%H%M%S") + f"{now.microsecond // 1000:03d}"
    return ID_PREFIX + random_part + stamp


def generate_unique_participant_id(
    responses: ResponseStore, rng: random.Random | None = None,
) -> str:
    while True:
        participant_id = create_participant_id(rng=rng)
        if not responses.participant_exists(participant_id):
            return participant_id


def assign_group(server: ServerConfig, rng: random.Random | None = None) -> int:
    if server.random_treatment:
        return 0 if (rng or random).random() < 0.5 else 1
    return server.treatment_fallback


def build_relay(config: SurveyFlowConfig, backend) -> ChatRelay:
    return ChatRelay(
        backend,
        transport=RetryableTransport(config.transport.retry_delay_s),
        dedup=DedupTable(retention=config.relay.dedup_retention_s),
        send_attempts=config.transport.send_attempts,
        poll_attempts=config.transport.poll_attempts,
        sweep_interval=config.relay.sweep_interval_s,
    )


def _group(value: Any) -> int | None:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


async def _read_body(request: Request) -> dict | None:
    try:
        body = await request.json()
    except ValueError:
        return None
    return body if isinstance(body, dict) else None


def _bad_request(message: str) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=400)


def _backend_failure(message: str, error: Exception) -> JSONResponse:
    logger.error("%s: %s", message, error)
    return JSONResponse({"error": message, "details": str(error)}, status_code=500)


def create_app(
    config: SurveyFlowConfig | None = None,
    config_path: str | None = None,
    *,
    relay: ChatRelay | None = None,
    responses: ResponseStore | None = None,
    rng: random.Random | None = None,
) -> FastAPI:
    """Create the FastAPI relay application.

    Args:
        config: Loaded configuration; read from ``config_path`` when omitted.
        config_path: Path to a survey-flow config file.
        relay: Pre-built relay (tests inject one around a fake backend).
        responses: Pre-built response store.
        rng: Random source for treatment assignment.
    """
    if config is None:
        config = load_config(config_path=config_path)

    backend: DirectLineBackend | None = None
    if relay is None:
        backend = DirectLineBackend(
            config.relay.direct_line_secret,
            base_url=config.relay.direct_line_base,
            user_id=config.relay.user_id,
            bot_id=config.relay.bot_id,
            timeout=config.relay.timeout_s,
        )
        relay = build_relay(config, backend)

    owns_responses = responses is None
    if responses is None:
        responses = ResponseStore(config.server.database_path)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
        relay.start_sweeper()
        logger.info("Relay ready (dedup retention %.0fs)", relay.dedup.retention)
        yield
        await relay.stop_sweeper()
        if backend is not None:
            await backend.aclose()
        if owns_responses:
            responses.close()

    app = FastAPI(title="survey-flow relay", lifespan=lifespan)
    app.state.relay = relay
    app.state.responses = responses

    # -- survey --

    @app.get("/generateSurveyData")
    async def generate_survey_data():
        try:
            participant_id = generate_unique_participant_id(responses, rng=rng)
        except sqlite3.Error as e:
            logger.error("Error generating participant id: %s", e)
            return JSONResponse({"error": "Internal server error."}, status_code=500)
        return {
            "participantId": participant_id,
            "treatmentGroup": assign_group(config.server, rng=rng),
        }

    @app.post("/submit")
    async def submit(request: Request):
        body = await _read_body(request)
        if body is None:
            return _bad_request("All fields are necessary.")
        participant_id = body.pop("participantId", None)
        treatment_group = body.pop("treatmentGroup", None)
        conversation_log = body.pop("conversationLog", None)
        if not participant_id or treatment_group in (None, "") or not conversation_log:
            return _bad_request("All fields are necessary.")
        try:
            responses.save_response(participant_id, treatment_group, body, conversation_log)
        except sqlite3.Error as e:
            logger.error("Error storing response for %s: %s", participant_id, e)
            return JSONResponse({"error": "Internal server error."}, status_code=500)
        logger.info("Stored response for %s (group %s)", participant_id, treatment_group)
        return Response(status_code=200)

    @app.post("/submit-email")
    async def submit_email(request: Request):
        body = await _read_body(request)
        email = (body or {}).get("email")
        if not email:
            return _bad_request("Email is required.")
        try:
            responses.save_email(email)
        except sqlite3.Error as e:
            logger.error("Error storing e-mail: %s", e)
            return JSONResponse({"error": "Internal server error."}, status_code=500)
        return Response(status_code=200)

    # -- conversation --

    @app.post("/startconversation")
    async def start_conversation(request: Request):
        body = await _read_body(request) or {}
        try:
            data = await relay.start_conversation(_group(body.get("treatmentGroup")))
        except SurveyFlowError as e:
            return _backend_failure("Error when starting the conversation", e)
        return data

    @app.post("/getactivities")
    async def get_activities(request: Request):
        body = await _read_body(request) or {}
        conversation_id = body.get("conversationId")
        if not conversation_id:
            return _bad_request("conversationId is required.")
        treatment_group = body.get("treatmentGroup")
        relay.adopt(conversation_id, _group(treatment_group))
        try:
            batch = await relay.poll(conversation_id, body.get("watermark") or None)
        except SurveyFlowError as e:
            return _backend_failure("Error when retrieving the activities", e)
        return {
            "activities": batch.activities,
            "watermark": batch.watermark,
            "treatmentGroup": treatment_group,
        }

    @app.post("/sendmessage")
    async def send_message(request: Request):
        body = await _read_body(request) or {}
        conversation_id = body.get("conversationId")
        client_id = body.get("clientGeneratedMessageId") or body.get("clientSideMsgId")
        if not conversation_id or not client_id:
            return _bad_request("conversationId and clientGeneratedMessageId are required.")
        relay.adopt(conversation_id, _group(body.get("treatmentGroup")))
        duplicate = relay.is_duplicate(conversation_id, client_id)
        try:
            message_id = await relay.send(conversation_id, body.get("text", ""), client_id)
        except SurveyFlowError as e:
            return _backend_failure("Error when sending the message", e)
        if duplicate:
            return {"status": "duplicate", "id": message_id}
        return {"id": message_id}

    return app
