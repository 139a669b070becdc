# cracker_service.py
import argparse
import logging

from flask import Flask, request, jsonify

import rainbow

app = Flask(__name__)
logger = logging.getLogger(__name__)


def configure(table, config=rainbow.DEFAULT_CONFIG):
    app.config["RAINBOW_TABLE"] = table
    app.config["RAINBOW_CONFIG"] = config.validate()
    logger.info("Serving %d endpoints (chain length %d)", len(table), config.chain_length)


def _loaded():
    table = app.config.get("RAINBOW_TABLE")
    if table is None:
        return None, None
    return table, app.config.get("RAINBOW_CONFIG", rainbow.DEFAULT_CONFIG)


def _result(plaintext):
    if plaintext is not None:
        return jsonify({"found": True, "plaintext": plaintext})
    return jsonify({"found": False}), 200


@app.route('/table', methods=['GET'])
def table_info():
    table, config = _loaded()
    if table is None:
        return jsonify({"error": "No rainbow table loaded"}), 503
    return jsonify({"entries": len(table), "chain_length": config.chain_length})


@app.route('/crack', methods=['POST'])
def crack_full():
    data = request.get_json(silent=True)
    if not isinstance(data, dict) or 'target_hash' not in data:
        return jsonify({"error": "Missing required fields"}), 400
    table, config = _loaded()
    if table is None:
        return jsonify({"error": "No rainbow table loaded"}), 503

    try:
        target = rainbow.parse_target(data['target_hash'])
    except rainbow.InvalidTargetError as e:
        return jsonify({"error": str(e)}), 400

    return _result(rainbow.crack(table, target, config))


@app.route('/crack_chunk', methods=['POST'])
def crack_chunk():
    data = request.get_json(silent=True)
    required = ('target_hash', 'start_position', 'end_position')
    if not isinstance(data, dict) or not all(k in data for k in required):
        return jsonify({"error": "Missing required fields"}), 400
    table, config = _loaded()
    if table is None:
        return jsonify({"error": "No rainbow table loaded"}), 503

    try:
        target = rainbow.parse_target(data['target_hash'])
        start = int(data['start_position'])
        end = int(data['end_position'])
    except rainbow.InvalidTargetError as e:
        return jsonify({"error": str(e)}), 400
    except (TypeError, ValueError):
        return jsonify({"error": "Positions must be integers"}), 400

    if start >= end:
        return jsonify({"error": "start_position must be < end_position"}), 400
    if start < 0 or end > config.chain_length:
        return jsonify({"error": f"Positions must lie within 0..{config.chain_length}"}), 400

    return _result(rainbow.crack(table, target, config, positions=range(start, end)))


def main(argv=None):
    parser = argparse.ArgumentParser(description="Serve rainbow table lookups over HTTP")
    parser.add_argument("--table", default=rainbow.DEFAULT_CONFIG.table_file, help="rainbow table JSON file")
    parser.add_argument("--chain-length", type=int, default=rainbow.DEFAULT_CONFIG.chain_length)
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=5000)
    parser.add_argument("-v", "--verbose", action="store_true")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO,
                        format="%(levelname)s: %(message)s")
    logging.getLogger("werkzeug").setLevel(logging.WARNING)

    config = rainbow.RainbowConfig(chain_length=args.chain_length, table_file=args.table)
    try:
        configure(rainbow.load_table(config.table_file), config)
    except rainbow.RainbowError as e:
        logger.error("%s", e)
        return 2
    app.run(host=args.host, port=args.port, threaded=True)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
