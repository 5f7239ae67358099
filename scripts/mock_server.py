"""Utility that serves sample patients over the ViewRay subscription protocol."""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

from websockets.sync.server import ServerConnection, serve

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from viewray.config import CONFIG_FILE, load_config, save_config

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 4645
LIST_TOPIC = "public:patients"

PATIENTS = {
    "public:patients/0_1930886/root": {
        "id": "0_1930886",
        "mrn": "100234",
        "date_of_birth": "1958-03-14",
        "first_name": "Anna",
        "middle_name": "",
        "last_name": "Novak",
        "sex": "F",
        "fractions_total": 5,
        "fractions_completed": 2,
        "weight_kg": 64,
        "registration_time": 1690000000,
        "ready_for_treatment": True,
    },
    "public:patients/1_2897763/root": {
        "id": "1_2897763",
        "mrn": "100871",
        "date_of_birth": "1949-11-02",
        "first_name": "Ben",
        "middle_name": "J",
        "last_name": "Ortiz",
        "sex": "M",
        "fractions_total": 28,
        "fractions_completed": 28,
        "weight_kg": 82,
        "registration_time": 1680000000,
        "ready_for_treatment": False,
    },
}

DIAGNOSES = [
    {
        "type": "Diagnosis",
        "label": "C61",
        "description": "Malignant neoplasm of prostate",
        "prescriptions": [
            {
                "type": "Prescription",
                "label": "SBRT",
                "description": "Prostate SBRT 36.25 Gy",
                "num_fractions": 5,
                "plans": [{"type": "Plan", "label": "Adaptive 1"}],
            }
        ],
    }
]


def list_response() -> dict[str, object]:
    value = [{"uri": uri, **summary} for uri, summary in PATIENTS.items()]
    return {"updateSubscriptions": {LIST_TOPIC: {"type": "PatientList", "value": value}}}


def patient_response(uri: str) -> dict[str, object]:
    return {"updateSubscriptions": {uri: {"type": "Patient", "diagnoses": DIAGNOSES}}}


def handle(websocket: ServerConnection) -> None:
    for message in websocket:
        print("<", message)
        request = json.loads(message).get("setSubscriptions", {})
        # Like the real server, only the first subscription of a request is answered.
        topic = next(iter(request), None)
        if topic == LIST_TOPIC:
            websocket.send(json.dumps(list_response()))
        elif topic in PATIENTS:
            websocket.send(json.dumps(patient_response(topic)))


def update_config(host: str, port: int) -> None:
    address = f"ws://{host}:{port}"
    config = load_config()
    if config.address == address:
        print(f"Config already points at {address}; leaving as-is.")
        return
    save_config(config.with_overrides(address=address))
    print(f"Pointed {CONFIG_FILE} at {address}.")


def parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--host", default=DEFAULT_HOST, help="Interface to listen on")
    parser.add_argument("--port", type=int, default=DEFAULT_PORT, help="Port to listen on")
    parser.add_argument("--write-config", action="store_true", help="Point the client config at this server")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv or sys.argv[1:])
    if args.write_config:
        update_config(args.host, args.port)
    with serve(handle, args.host, args.port) as server:
        print(f"Serving {len(PATIENTS)} sample patients on ws://{args.host}:{args.port}")
        try:
            server.serve_forever()
        except KeyboardInterrupt:
            return 0
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
