"""JSON HTTP API over ModemService, consumed by the chat bot."""

import functools
import hmac
import logging

from flask import Flask, jsonify, request

from .errors import AuthExpired, AuthFailed, DeviceUnreachable, IPChangeFailed, ModemError, ProtocolError

log = logging.getLogger("modemctl.web")
audit_log = logging.getLogger("modemctl.audit")

app = Flask(__name__)

_service = None
_config_manager = None

ERROR_STATUS = {
    DeviceUnreachable: 504,
    AuthFailed: 401,
    AuthExpired: 401,
    IPChangeFailed: 502,
    ProtocolError: 502,
}


def init_service(service):
    global _service
    _service = service


def init_config(config_manager):
    global _config_manager
    _config_manager = config_manager


def _auth_required():
    """True if an API token is configured and the request does not carry it."""
    if not _config_manager or not _config_manager.is_api_protected():
        return False
    expected = _config_manager.get("api_token")
    header = request.headers.get("Authorization", "")
    if not header.startswith("Bearer "):
        return True
    return not hmac.compare_digest(header[7:].strip(), expected)


def require_auth(f):
    """Decorator: 401 unless the bearer token matches (when one is configured)."""
    @functools.wraps(f)
    def decorated(*args, **kwargs):
        if _auth_required():
            return jsonify({"error": "unauthorized"}), 401
        return f(*args, **kwargs)
    return decorated


@app.errorhandler(ModemError)
def handle_modem_error(e):
    status = 500
    for cls in type(e).__mro__:
        if cls in ERROR_STATUS:
            status = ERROR_STATUS[cls]
            break
    body = {"error": e.kind, "message": str(e)}
    if isinstance(e, AuthFailed):
        body["reason"] = e.reason.value
        if e.wait_time:
            body["wait_time"] = e.wait_time
    if isinstance(e, IPChangeFailed):
        body["last_wan_ip"] = e.last_wan_ip
    log.warning("%s %s -> %s: %s", request.method, request.path, e.kind, e)
    return jsonify(body), status


def _user_config(user_id):
    """Return (config, None) or (None, error response) for a user."""
    config = _service.config_for(user_id)
    if config is None:
        return None, (jsonify({"error": "not_configured", "message": "No modem configured"}), 404)
    return config, None


# ── Setup ──

@app.route("/api/discover", methods=["POST"])
@require_auth
def api_discover():
    found = _service.auto_detect_modem_ip()
    if not found:
        return jsonify({"success": False}), 404
    return jsonify({"success": True, **found})


@app.route("/api/test-modem", methods=["POST"])
@require_auth
def api_test_modem():
    data = request.get_json(silent=True) or {}
    ip = (data.get("ip") or "").strip()
    if not ip:
        return jsonify({"error": "ip is required"}), 400
    return jsonify(_service.test_connection(ip))


@app.route("/api/users/<int:user_id>/modem", methods=["GET"])
@require_auth
def api_get_modem(user_id):
    config, err = _user_config(user_id)
    if err:
        return err
    return jsonify({"ip": config.ip, "username": config.username})


@app.route("/api/users/<int:user_id>/modem", methods=["PUT"])
@require_auth
def api_put_modem(user_id):
    data = request.get_json(silent=True) or {}
    username = data.get("username", "")
    password = data.get("password", "")
    if not username or not password:
        return jsonify({"error": "username and password are required"}), 400
    config = _service.setup(user_id, username, password, ip=(data.get("ip") or "").strip() or None)
    audit_log.info("Modem config saved: user=%s ip=%s", user_id, config.ip)
    return jsonify({"success": True, "ip": config.ip, "username": config.username})


@app.route("/api/users/<int:user_id>/modem", methods=["DELETE"])
@require_auth
def api_delete_modem(user_id):
    existed = _service.delete_config(user_id)
    audit_log.info("Modem config deleted: user=%s", user_id)
    return jsonify({"success": existed})


# ── Session ──

@app.route("/api/users/<int:user_id>/login", methods=["POST"])
@require_auth
def api_login(user_id):
    config, err = _user_config(user_id)
    if err:
        return err
    return jsonify({"success": _service.login(config, user_id)})


@app.route("/api/users/<int:user_id>/logout", methods=["POST"])
@require_auth
def api_logout(user_id):
    _service.logout(user_id)
    return jsonify({"success": True})


# ── Reads ──

@app.route("/api/users/<int:user_id>/status")
@require_auth
def api_status(user_id):
    config, err = _user_config(user_id)
    if err:
        return err
    connected = _service.check_connection(config)
    info = _service.get_status(config, user_id)
    return jsonify({"connected": connected, **info.to_dict()})


@app.route("/api/users/<int:user_id>/info")
@require_auth
def api_info(user_id):
    config, err = _user_config(user_id)
    if err:
        return err
    return jsonify(_service.get_full_info(config, user_id).to_dict())


@app.route("/api/users/<int:user_id>/details")
@require_auth
def api_details(user_id):
    config, err = _user_config(user_id)
    if err:
        return err
    return jsonify(_service.get_detailed_info(config, user_id))


# ── Actions ──

@app.route("/api/users/<int:user_id>/change-ip", methods=["POST"])
@require_auth
def api_change_ip(user_id):
    config, err = _user_config(user_id)
    if err:
        return err
    audit_log.info("IP change requested: user=%s", user_id)
    result = _service.change_ip(config, user_id)
    return jsonify({"success": True, **result.to_dict()})


@app.route("/api/users/<int:user_id>/reboot", methods=["POST"])
@require_auth
def api_reboot(user_id):
    config, err = _user_config(user_id)
    if err:
        return err
    audit_log.info("Reboot requested: user=%s", user_id)
    _service.reboot(config, user_id)
    return jsonify({"success": True})
