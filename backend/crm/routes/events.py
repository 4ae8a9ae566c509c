# Overview: Flask API routes for calendar events operations; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, current_app, g

from ..extensions import db
from ..services import event_service
from ..services.query_utils import parse_bool_arg
from ..validation import NotFoundError, PermissionDeniedError, ValidationError
from ..decorators import require_auth


events_bp = Blueprint("events", __name__, url_prefix="/api/events")


def _integrations():
    return {
        "calendar": current_app.extensions.get("crm.calendar"),
        "mailer": current_app.extensions.get("crm.mailer"),
    }


@events_bp.get("")
@require_auth
def list_events_route():
    """
    Own events (admins: all, optionally filtered by user_id).

    Query params:
        type, status, customer_id, start_date, end_date, search,
        sort_by, sort_order, page, limit
    """
    try:
        events, meta = event_service.list_events(request.args, user=g.current_user)
        return jsonify({
            "success": True,
            "count": len(events),
            **meta,
            "data": [e.to_dict() for e in events],
        }), 200

    except ValidationError as e:
        return jsonify({"success": False, "message": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to list events")
        return jsonify({"success": False, "message": "Internal server error"}), 500


@events_bp.get("/stats")
@require_auth
def event_stats_route():
    try:
        return jsonify({"success": True, "data": event_service.event_stats(user=g.current_user)}), 200
    except Exception:
        current_app.logger.exception("Failed to compute event stats")
        return jsonify({"success": False, "message": "Internal server error"}), 500


@events_bp.post("/sync-google-calendar")
@require_auth
def sync_google_calendar_route():
    """Push the caller's events for the next seven days to Google Calendar."""
    try:
        results = event_service.sync_google_calendar(
            g.current_user, calendar=current_app.extensions["crm.calendar"]
        )
        return jsonify({
            "success": True,
            "message": f"{len(results)} events synchronised with Google Calendar",
            "data": results,
        }), 200

    except ValidationError as e:
        return jsonify({"success": False, "message": str(e)}), 400
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to sync Google Calendar")
        return jsonify({"success": False, "message": "Internal server error"}), 500


@events_bp.get("/<int:event_id>")
@require_auth
def get_event_route(event_id: int):
    try:
        event = event_service.get_event(event_id, user=g.current_user)
        return jsonify({"success": True, "data": event.to_dict()}), 200

    except NotFoundError as e:
        return jsonify({"success": False, "message": str(e)}), 404
    except PermissionDeniedError as e:
        return jsonify({"success": False, "message": str(e)}), 403
    except Exception:
        current_app.logger.exception("Failed to load event")
        return jsonify({"success": False, "message": "Internal server error"}), 500


@events_bp.post("")
@require_auth
def create_event_route():
    """
    Request body:
    {
        "title": "Kick-off meeting",
        "type": "MEETING",
        "start_at": "2026-02-20T09:00:00Z",
        "end_at": "2026-02-20T10:00:00Z",
        "customer_id": 3,                                  (optional)
        "reminders": [{"minutes_before": 60, "channel": "EMAIL"}],
        "attendees": [{"name": "Ada", "email": "ada@example.com"}],
        "sync_with_google": true,                          (optional)
        "send_notifications": true                         (optional)
    }
    """
    try:
        event = event_service.create_event(
            request.get_json(silent=True) or {}, user=g.current_user, **_integrations()
        )
        return jsonify({"success": True, "data": event.to_dict()}), 201

    except NotFoundError as e:
        db.session.rollback()
        return jsonify({"success": False, "message": str(e)}), 404
    except ValidationError as e:
        db.session.rollback()
        return jsonify({"success": False, "message": str(e)}), 400
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to create event")
        return jsonify({"success": False, "message": "Internal server error"}), 500


@events_bp.put("/<int:event_id>")
@require_auth
def update_event_route(event_id: int):
    try:
        event = event_service.update_event(
            event_id, request.get_json(silent=True) or {}, user=g.current_user, **_integrations()
        )
        return jsonify({"success": True, "data": event.to_dict()}), 200

    except NotFoundError as e:
        db.session.rollback()
        return jsonify({"success": False, "message": str(e)}), 404
    except PermissionDeniedError as e:
        return jsonify({"success": False, "message": str(e)}), 403
    except ValidationError as e:
        db.session.rollback()
        return jsonify({"success": False, "message": str(e)}), 400
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to update event")
        return jsonify({"success": False, "message": "Internal server error"}), 500


@events_bp.delete("/<int:event_id>")
@require_auth
def delete_event_route(event_id: int):
    """Query param notify_cancellation=true mails the attendees."""
    try:
        event_service.delete_event(
            event_id,
            user=g.current_user,
            notify_cancellation=bool(parse_bool_arg(request.args.get("notify_cancellation"))),
            **_integrations(),
        )
        return jsonify({"success": True, "message": "Event deleted"}), 200

    except NotFoundError as e:
        return jsonify({"success": False, "message": str(e)}), 404
    except PermissionDeniedError as e:
        return jsonify({"success": False, "message": str(e)}), 403
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to delete event")
        return jsonify({"success": False, "message": "Internal server error"}), 500
