"""Application entry point for the Slack Incident Engine."""

from __future__ import annotations

import json
import re
from pathlib import Path
from typing import Any, Dict
from uuid import uuid4

from flask import Flask, g, has_request_context, jsonify, request
from slack_bolt import App as SlackApp
from slack_bolt.adapter.flask import SlackRequestHandler
from sqlalchemy import text
import structlog
from structlog.contextvars import bind_contextvars, unbind_contextvars

from slack_incident_engine.config import AppSettings, get_settings
from slack_incident_engine.db import session_scope
from slack_incident_engine.incidents.commands import Declare, Resolve, help_text, parse_command
from slack_incident_engine.incidents.declare import handle_declare_submission, open_declare_modal
from slack_incident_engine.incidents.interactions import route_interaction
from slack_incident_engine.incidents.modal import TITLE_BLOCK_ID
from slack_incident_engine.incidents.payloads import (
    InvalidPayloadError,
    parse_interaction,
    parse_slash_command,
)
from slack_incident_engine.incidents.resolve import handle_resolve_command, run_resolve
from slack_incident_engine.incidents.responses import (
    INTERNAL_ERROR_MESSAGE,
    clear_modal,
    empty,
    ephemeral,
    field_errors,
)
from slack_incident_engine.incidents.status import update_incident_status
from slack_incident_engine.jobs import JobQueue, build_job_queue
from slack_incident_engine.logging_config import configure_logging
from slack_incident_engine.security import (
    SLACK_SIGNATURE_HEADER,
    SLACK_TIMESTAMP_HEADER,
    signature_problem,
)
from slack_incident_engine.slack_client import SlackClient
from slack_incident_engine.tenancy import (
    NOT_INSTALLED_MESSAGE,
    Tenant,
    WorkspaceNotInstalledError,
    build_authorize,
    extract_team_id,
    resolve_tenant,
)

JOB_QUEUE: JobQueue | None = None


def get_job_queue() -> JobQueue:
    global JOB_QUEUE
    if JOB_QUEUE is None:
        JOB_QUEUE = build_job_queue(max_workers=get_settings().job_workers)
    return JOB_QUEUE


def _create_bolt_app(settings: AppSettings) -> SlackApp:
    """Initialise the multi-tenant Slack Bolt application.

    Bot credentials are loaded per request from the installation of the
    calling team, and listeners run before the HTTP response is written so
    that their ``ack`` body is what Slack receives.
    """

    return SlackApp(
        signing_secret=settings.signing_secret,
        authorize=build_authorize(_request_tenant),
        process_before_response=True,
    )


def _register_error_handlers(flask_app: Flask) -> None:
    """Register a JSON error handler that attaches a trace identifier."""

    @flask_app.errorhandler(Exception)
    def handle_unexpected_error(error: Exception):  # type: ignore[override]
        trace_id = str(uuid4())
        structlog.get_logger().error("unhandled_application_error", trace_id=trace_id, exc_info=error)
        response = jsonify({"error": "internal_server_error", "trace_id": trace_id})
        response.status_code = 500
        return response


def _request_tenant(team_id: str | None) -> Tenant:
    """Reuse the tenant the route already resolved for this request."""

    tenant = g.get("tenant") if has_request_context() else None
    if tenant is not None and tenant.team_id == team_id:
        return tenant
    return resolve_tenant(team_id)


def _tenant_from(context, team_id: str | None) -> Tenant:
    tenant = context.get("tenant") if context is not None else None
    if tenant is None:
        tenant = resolve_tenant(team_id)
    return tenant


def _begin_trace(**fields: Any):
    trace_id = str(uuid4())
    bind_contextvars(trace_id=trace_id, **fields)
    return structlog.get_logger().bind(trace_id=trace_id)


def _end_trace() -> None:
    unbind_contextvars("trace_id", "organization_id")


def _wants_declare(text_value: str | None) -> bool:
    words = (text_value or "").split()
    return bool(words) and words[0].lower() == "declare"


def _handle_slash_command(ack, command, client, context, logger):
    log = _begin_trace()
    try:
        settings = get_settings()
        try:
            slash = parse_slash_command(command)
        except InvalidPayloadError:
            log.warning("slash_command_invalid")
            ack(ephemeral(help_text(settings.slack_command)))
            return

        tenant = _tenant_from(context, slash.team_id)
        bind_contextvars(organization_id=tenant.organization_id)
        action = parse_command(slash.text)
        log.info("slash_command_received", command=slash.command, action=action.action, user_id=slash.user_id)

        slack = SlackClient(client=client)
        if isinstance(action, Declare) or _wants_declare(slash.text):
            response = open_declare_modal(command=slash, slack=slack, slash_command=settings.slack_command)
        elif isinstance(action, Resolve):
            response = handle_resolve_command(
                tenant=tenant,
                channel_id=slash.channel_id,
                user_id=slash.user_id,
                slack=slack,
                jobs=get_job_queue(),
            )
        else:
            response = ephemeral(help_text(settings.slack_command))
    except Exception:
        logger.exception("Failed to handle slash command")
        log.error("slash_command_failed")
        response = ephemeral(INTERNAL_ERROR_MESSAGE)
    finally:
        _end_trace()

    ack(response)


def _handle_view_submission(ack, body, client, context, logger):
    log = _begin_trace()
    response: Dict[str, Any] = empty()
    try:
        payload = parse_interaction(body)
        routed = route_interaction(payload.type, payload)
        log = log.bind(action=routed.action, callback_id=routed.callback_id)
        log.info("interaction_received", user_id=payload.user_id)

        if routed.action == "create_incident":
            response = field_errors(TITLE_BLOCK_ID, INTERNAL_ERROR_MESSAGE)
            tenant = _tenant_from(context, payload.team.id if payload.team else None)
            bind_contextvars(organization_id=tenant.organization_id)
            response = handle_declare_submission(
                organization_id=tenant.organization_id,
                payload=payload,
                slack=SlackClient(client=client),
                jobs=get_job_queue(),
            )
        elif routed.action == "resolve_incident":
            tenant = _tenant_from(context, payload.team.id if payload.team else None)
            bind_contextvars(organization_id=tenant.organization_id)
            outcome = run_resolve(
                tenant=tenant,
                channel_id=payload.view.metadata().get("channel_id"),
                user_id=payload.user_id or "",
                slack=SlackClient(client=client),
                jobs=get_job_queue(),
            )
            log.info("resolve_modal_processed", resolved=outcome.resolved)
            response = clear_modal()
        else:
            log.info("interaction_unhandled")
    except InvalidPayloadError:
        log.warning("interaction_payload_invalid")
    except Exception:
        logger.exception("Failed to handle view submission")
        log.error("interaction_failed")
    finally:
        _end_trace()

    ack(response)


def _handle_block_action(ack, body, client, context, logger):
    log = _begin_trace()
    try:
        payload = parse_interaction(body)
        routed = route_interaction(payload.type, payload)
        log = log.bind(action=routed.action, action_id=routed.action_id)
        log.info("interaction_received", user_id=payload.user_id)

        if routed.action == "resolve_incident_button":
            tenant = _tenant_from(context, payload.team.id if payload.team else None)
            bind_contextvars(organization_id=tenant.organization_id)
            outcome = run_resolve(
                tenant=tenant,
                channel_id=payload.channel_id,
                user_id=payload.user_id or "",
                slack=SlackClient(client=client),
                jobs=get_job_queue(),
            )
            log.info("resolve_button_processed", resolved=outcome.resolved)
        elif routed.action == "update_incident_status":
            tenant = _tenant_from(context, payload.team.id if payload.team else None)
            bind_contextvars(organization_id=tenant.organization_id)
            selected = payload.first_action.selected_option
            update_incident_status(
                organization_id=tenant.organization_id,
                channel_id=payload.channel_id,
                new_status=selected.value if selected else None,
                user_id=payload.user_id,
                jobs=get_job_queue(),
            )
        else:
            log.info("interaction_unhandled")
    except InvalidPayloadError:
        log.warning("interaction_payload_invalid")
    except Exception:
        logger.exception("Failed to handle block action")
        log.error("interaction_failed")
    finally:
        _end_trace()

    ack(empty())


def _register_slash_handlers(bolt_app: SlackApp, settings: AppSettings) -> None:
    @bolt_app.command(settings.slack_command)
    def handle_incident_command(ack, command, client, context, logger):
        _handle_slash_command(ack=ack, command=command, client=client, context=context, logger=logger)


def _register_interaction_handlers(bolt_app: SlackApp) -> None:
    @bolt_app.view(re.compile(".*"))
    def handle_submission(ack, body, client, context, logger):
        _handle_view_submission(ack=ack, body=body, client=client, context=context, logger=logger)

    @bolt_app.action(re.compile(".*"))
    def handle_action(ack, body, client, context, logger):
        _handle_block_action(ack=ack, body=body, client=client, context=context, logger=logger)


def _interaction_type(form) -> str | None:
    try:
        payload = json.loads(form.get("payload") or "")
    except json.JSONDecodeError:
        return None
    return payload.get("type") if isinstance(payload, dict) else None


_LOGGING_CONFIGURED = False


def _load_version() -> str:
    version_file = Path(__file__).resolve().parent / "VERSION"
    if version_file.exists():
        return version_file.read_text(encoding="utf-8").strip()
    return "unknown"


def create_app() -> Flask:
    """Create and configure the Flask application."""

    global _LOGGING_CONFIGURED
    if not _LOGGING_CONFIGURED:
        configure_logging()
        _LOGGING_CONFIGURED = True

    settings = get_settings()
    bolt_app = _create_bolt_app(settings)
    handler = SlackRequestHandler(bolt_app)

    flask_app = Flask(__name__)
    flask_app.config["APP_VERSION"] = _load_version()
    flask_app.logger.setLevel("INFO")
    _register_error_handlers(flask_app)
    _register_slash_handlers(bolt_app, settings)
    _register_interaction_handlers(bolt_app)

    log = structlog.get_logger()

    def _reject_unverified():
        raw_body = request.get_data(as_text=True)
        problem = signature_problem(
            signing_secret=settings.signing_secret,
            timestamp=request.headers.get(SLACK_TIMESTAMP_HEADER, ""),
            body=raw_body,
            signature=request.headers.get(SLACK_SIGNATURE_HEADER, ""),
            tolerance=settings.signature_tolerance_seconds,
        )
        if problem is not None:
            log.warning("slack_signature_rejected", path=request.path, reason=problem)
            response = jsonify({"error": "invalid_signature"})
            response.status_code = 401
            return response

        team_id = extract_team_id(request.form)
        try:
            g.tenant = resolve_tenant(team_id)
        except WorkspaceNotInstalledError:
            log.warning("workspace_not_installed", team_id=team_id, path=request.path)
            return jsonify(ephemeral(NOT_INSTALLED_MESSAGE)), 200
        return None

    @flask_app.route("/slack/commands", methods=["POST"])
    def slack_commands():
        rejection = _reject_unverified()
        if rejection is not None:
            return rejection
        return handler.handle(request)

    @flask_app.route("/slack/interactions", methods=["POST"])
    def slack_interactions():
        rejection = _reject_unverified()
        if rejection is not None:
            return rejection
        interaction_type = _interaction_type(request.form)
        if interaction_type not in ("view_submission", "block_actions"):
            log.info("interaction_unhandled", action="unknown", interaction_type=interaction_type)
            return jsonify(empty()), 200
        return handler.handle(request)

    @flask_app.route("/healthz", methods=["GET"])
    def healthz():
        health: dict[str, object] = {"ok": True}
        health["version"] = flask_app.config.get("APP_VERSION", "unknown")

        try:
            get_settings()
            health["config"] = "valid"
        except Exception as exc:  # pragma: no cover - defensive guard
            health["config"] = "invalid"
            health["config_error"] = str(exc)
            health["ok"] = False

        try:
            with session_scope() as session:
                session.execute(text("SELECT 1"))
            health["db"] = "up"
        except Exception as exc:
            health["db"] = "down"
            health["db_error"] = str(exc)
            health["ok"] = False

        status = 200 if health["ok"] else 503
        return jsonify(health), status

    return flask_app


if __name__ == "__main__":  # pragma: no cover - manual execution helper
    application = create_app()
    application.run(host="0.0.0.0", port=3000, debug=True)
