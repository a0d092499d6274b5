"""Mock record store for local development.

Flask server mimicking the json-server API the web client talks to:
- /appointments, /prescriptions, /reviews collections
- equality filters via query string (?doctorId=1&status=confirmed)
- PATCH merges fields, DELETE removes the record

Like json-server it enforces nothing: no uniqueness, no status rules.

Run with: python -m medbook.mock_store
"""
import copy
from datetime import date, timedelta
from typing import Dict, List, Optional

from flask import Flask, jsonify, request
from flask_cors import CORS

from medbook import config
from medbook.logging_config import RequestIDMiddleware, get_logger, setup_structured_logging

logger = get_logger(__name__)

COLLECTIONS = ("appointments", "prescriptions", "reviews")


def demo_data(today: Optional[date] = None) -> Dict[str, List[dict]]:
    """Seed records relative to ``today`` so both tabs have content."""
    today = today or date.today()

    def day(offset: int) -> str:
        return (today + timedelta(days=offset)).isoformat()

    doctor = {"doctorId": "1", "doctorName": "Dr. Sarah Chen", "specialty": "Cardiology"}
    return {
        "appointments": [
            {"id": "101", "patientId": "p1", "patientName": "John Doe",
             "date": day(3), "time": "09:00", "status": "confirmed", **doctor},
            {"id": "102", "patientId": "p2", "patientName": "Maria Lopez",
             "date": day(3), "time": "11:30", "status": "pending", **doctor},
            {"id": "103", "patientId": "p1", "patientName": "John Doe",
             "date": day(-5), "time": "10:00", "status": "confirmed", **doctor},
            {"id": "104", "patientId": "p3", "patientName": "Ali Hassan",
             "date": day(-12), "time": "15:00", "status": "completed",
             "prescriptionId": "201", **doctor},
            {"id": "105", "patientId": "p2", "patientName": "Maria Lopez",
             "date": day(8), "time": "14:00", "status": "cancelled", **doctor},
        ],
        "prescriptions": [
            {"id": "201", "appointmentId": "104", "doctorId": "1", "patientId": "p3",
             "patient": {"name": "Ali Hassan", "age": 54},
             "doctor": {"name": "Dr. Sarah Chen", "specialty": "Cardiology"},
             "medications": [
                 {"name": "Atorvastatin", "dosage": "20mg",
                  "instructions": "Once daily at night", "duration": "90 days"},
             ],
             "notes": "Recheck lipid panel in 3 months.", "date": day(-12)},
        ],
        "reviews": [
            {"id": "301", "appointmentId": "104", "doctorId": "1", "patientId": "p3",
             "rating": 5, "reviewText": "Clear explanations.", "date": day(-11)},
        ],
    }


def _matches(record: dict, filters: Dict[str, str]) -> bool:
    return all(str(record.get(key)) == value for key, value in filters.items())


def create_app(data: Optional[Dict[str, List[dict]]] = None) -> Flask:
    """Build the mock store app over ``data`` (demo data when omitted)."""
    app = Flask(__name__)
    CORS(app)
    app.wsgi_app = RequestIDMiddleware(app.wsgi_app)

    db = copy.deepcopy(data) if data is not None else demo_data()
    for name in COLLECTIONS:
        db.setdefault(name, [])
    app.config["DB"] = db

    def find(collection: str, record_id: str) -> Optional[dict]:
        return next((r for r in db[collection] if str(r.get("id")) == record_id), None)

    def not_found(collection: str, record_id: str):
        return jsonify({"error": f"{collection[:-1].capitalize()} '{record_id}' not found"}), 404

    @app.route("/<collection>", methods=["GET", "HEAD"])
    def list_records(collection):
        """GET /appointments?doctorId=1 - List records matching all filters."""
        if collection not in db:
            return jsonify({"error": f"Unknown collection '{collection}'"}), 404
        filters = {k: v for k, v in request.args.items()}
        return jsonify([r for r in db[collection] if _matches(r, filters)])

    @app.route("/<collection>", methods=["POST"])
    def create_record(collection):
        """POST /prescriptions - Store the body as-is (id assigned if absent)."""
        if collection not in db:
            return jsonify({"error": f"Unknown collection '{collection}'"}), 404
        body = request.get_json(silent=True)
        if not isinstance(body, dict):
            return jsonify({"error": "Request body must be a JSON object"}), 400

        record = dict(body)
        if "id" not in record:
            record["id"] = str(max((int(r["id"]) for r in db[collection]
                                    if str(r.get("id", "")).isdigit()), default=0) + 1)
        else:
            record["id"] = str(record["id"])
        if find(collection, record["id"]) is not None:
            return jsonify({"error": f"Duplicate id '{record['id']}'"}), 409

        db[collection].append(record)
        logger.info("record_created", collection=collection, record_id=record["id"],
                    request_id=request.environ.get("REQUEST_ID"))
        return jsonify(record), 201

    @app.route("/<collection>/<record_id>", methods=["GET"])
    def get_record(collection, record_id):
        if collection not in db:
            return jsonify({"error": f"Unknown collection '{collection}'"}), 404
        record = find(collection, record_id)
        if record is None:
            return not_found(collection, record_id)
        return jsonify(record)

    @app.route("/<collection>/<record_id>", methods=["PATCH"])
    def patch_record(collection, record_id):
        """PATCH /appointments/101 - Merge fields into the record (id is immutable)."""
        if collection not in db:
            return jsonify({"error": f"Unknown collection '{collection}'"}), 404
        record = find(collection, record_id)
        if record is None:
            return not_found(collection, record_id)
        body = request.get_json(silent=True)
        if not isinstance(body, dict):
            return jsonify({"error": "Request body must be a JSON object"}), 400

        body.pop("id", None)
        record.update(body)
        logger.info("record_patched", collection=collection, record_id=record_id,
                    fields=sorted(body), request_id=request.environ.get("REQUEST_ID"))
        return jsonify(record)

    @app.route("/<collection>/<record_id>", methods=["DELETE"])
    def delete_record(collection, record_id):
        if collection not in db:
            return jsonify({"error": f"Unknown collection '{collection}'"}), 404
        record = find(collection, record_id)
        if record is None:
            return not_found(collection, record_id)
        db[collection].remove(record)
        logger.info("record_deleted", collection=collection, record_id=record_id,
                    request_id=request.environ.get("REQUEST_ID"))
        return jsonify({})

    return app


if __name__ == "__main__":
    setup_structured_logging()
    print(f"Mock record store running on http://localhost:{config.MOCK_STORE_PORT}")
    create_app().run(port=config.MOCK_STORE_PORT, debug=False)
