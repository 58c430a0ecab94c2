import logging
import os

from flask import Flask, jsonify, request
from flask_cors import CORS

from config.settings import get_settings
from sellhub_backend import create_checkout, execute, fetch_invoice, fetch_session

settings = get_settings()

app = Flask(__name__)
CORS(
    app,
    origins="*",
    send_wildcard=True,
    methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type"],
)


@app.errorhandler(405)
def method_not_allowed(_error: Exception) -> object:
    return jsonify({"error": "Method not allowed"}), 405


@app.route("/create-checkout", methods=["POST"])
@app.route("/api/create-checkout", methods=["POST"])
def create_checkout_route() -> object:
    payload = request.get_json(silent=True)
    status, body = execute(
        "create-checkout",
        create_checkout,
        settings,
        payload if isinstance(payload, dict) else {},
        origin=request.headers.get("Origin"),
    )
    return jsonify(body), status


@app.route("/get-session", methods=["GET"])
@app.route("/api/get-session", methods=["GET"])
def get_session_route() -> object:
    status, body = execute(
        "get-session", fetch_session, settings, request.args.get("sessionId")
    )
    return jsonify(body), status


@app.route("/get-invoice", methods=["GET"])
@app.route("/api/get-invoice", methods=["GET"])
def get_invoice_route() -> object:
    status, body = execute(
        "get-invoice",
        fetch_invoice,
        settings,
        request.args.get("createdAtMs"),
        email=request.args.get("email"),
    )
    return jsonify(body), status


if __name__ == "__main__":
    logging.basicConfig(
        level=getattr(logging, str(settings.log_level).upper(), logging.INFO)
    )
    port = int(os.environ.get("PORT", "5000"))
    app.run(host="0.0.0.0", port=port, debug=False)
