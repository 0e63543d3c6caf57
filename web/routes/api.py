"""REST API v1 - JSON endpoints over the lifecycle classifier and notification engine."""

from flask import Blueprint, jsonify, request

from web.services import get_services
from renewals.lifecycle import (
    categorize,
    classify,
    dashboard_summary,
    days_until_expiry,
)
from renewals.notification import NotificationType

bp = Blueprint("api", __name__)


def _error(message, status=400):
    return jsonify({"error": message}), status


def _result(result, status=200):
    """Map an OperationResult to a response; soft failures become 502."""
    if not result.success:
        return jsonify({"error": result.message, "errors": result.errors}), 502
    return jsonify(result.to_dict()), status


def _current_entities():
    """Fresh entities, or the last known list when the store is down."""
    driver = get_services().driver
    error = driver.refresh_entities()
    entities = driver.entities
    if error and not entities:
        return None, error
    return entities, error


# ── Entities ─────────────────────────────────────────────────────────

@bp.route("/entities")
def list_entities():
    entities, error = _current_entities()
    if entities is None:
        return _error(error, 502)

    now = get_services().clock.now()
    rows = []
    for e in entities:
        row = e.to_dict()
        row["state"] = classify(e.expiry_date, now).value
        row["days_remaining"] = days_until_expiry(e.expiry_date, now)
        rows.append(row)
    rows.sort(key=lambda r: r["name"].lower())
    return jsonify(rows)


@bp.route("/entities/buckets")
def entity_buckets():
    entities, error = _current_entities()
    if entities is None:
        return _error(error, 502)

    buckets = categorize(entities, get_services().clock.now())
    data = buckets.to_dict()
    data["counts"] = buckets.counts()
    data["stale"] = bool(error)
    return jsonify(data)


@bp.route("/entities/current")
def current_entities():
    """Everything not yet expired: active plus both expiring buckets, unique by id."""
    entities, error = _current_entities()
    if entities is None:
        return _error(error, 502)

    buckets = categorize(entities, get_services().clock.now())
    seen = set()
    merged = []
    for entity in buckets.active + buckets.expiring_7_days + buckets.expiring_30_days:
        if entity.id in seen:
            continue
        seen.add(entity.id)
        merged.append(entity.to_dict())
    return jsonify(merged)


@bp.route("/dashboard")
def dashboard():
    entities, error = _current_entities()
    if entities is None:
        return _error(error, 502)

    services = get_services()
    summary = dashboard_summary(categorize(entities, services.clock.now()))
    summary["unread_notifications"] = services.engine.unread_count
    summary["stale"] = bool(error)
    return jsonify(summary)


# ── Notifications ────────────────────────────────────────────────────

@bp.route("/notifications")
def list_notifications():
    engine = get_services().engine
    history = request.args.get("history", "0").lower() in ("1", "true", "yes")

    result = engine.refresh(include_history=history)
    records = engine.history if history else engine.notifications
    if not result.success and not records:
        return _error(result.message, 502)
    return jsonify([n.to_dict() for n in records])


@bp.route("/notifications/unread-count")
def unread_count():
    return jsonify({"unread": get_services().engine.unread_count})


@bp.route("/notifications", methods=["POST"])
def add_notification():
    data = request.get_json(silent=True) or {}
    message = (data.get("message") or "").strip()
    if not message:
        return _error("message is required")

    try:
        ntype = NotificationType(data.get("type", NotificationType.INFO.value))
    except ValueError:
        return _error(f"Invalid type: {data.get('type')}")

    try:
        interval = int(data.get("repeat_interval_days", 1))
    except (TypeError, ValueError):
        return _error("repeat_interval_days must be an integer")

    result = get_services().engine.add_notification(
        type=ntype,
        message=message,
        entity_id=data.get("entity_id"),
        needs_action=bool(data.get("needs_action", False)),
        repeat=bool(data.get("repeat", False)),
        repeat_interval_days=interval,
    )
    if not result.success:
        return _result(result)
    return jsonify(result.data.to_dict()), 201


@bp.route("/notifications/<notification_id>/read", methods=["POST"])
def mark_read(notification_id):
    return _result(get_services().engine.mark_read(notification_id))


@bp.route("/notifications/<notification_id>/acted-upon", methods=["POST"])
def mark_acted_upon(notification_id):
    return _result(get_services().engine.mark_acted_upon(notification_id))


@bp.route("/notifications/<notification_id>/dismiss", methods=["POST"])
def dismiss(notification_id):
    return _result(get_services().engine.dismiss(notification_id))


@bp.route("/notifications/read-all", methods=["POST"])
def mark_all_read():
    return _result(get_services().engine.mark_all_read())


@bp.route("/notifications/history/<notification_id>", methods=["DELETE"])
def delete_history_item(notification_id):
    return _result(get_services().engine.delete_history_item(notification_id))


@bp.route("/notifications/history", methods=["DELETE"])
def clear_history():
    return _result(get_services().engine.clear_history())


@bp.route("/notifications/consistency")
def consistency():
    warnings = get_services().engine.find_duplicates()
    return jsonify([w.to_dict() for w in warnings])


# ── Sync ─────────────────────────────────────────────────────────────

@bp.route("/sync", methods=["POST"])
def sync():
    report = get_services().driver.run_once()
    return jsonify(report.to_dict()), 200 if report.success else 502
