import argparse
import logging
import sys
import time
import threading
from queue import Queue, Empty

import requests

import rainbow

CHUNK_SIZE = 25
REQUEST_TIMEOUT = 30
MAX_FAIL = 5

# SHA-1 of "Vuvk5CAA", the first reduction in the chain seeded with "casper4".
DEMO_HASH = "0da49c9a507b3a983d1804a675ae8cb9422746d7"

logger = logging.getLogger(__name__)


class RemoteSearchError(rainbow.RainbowError):
    pass


def position_chunks(chain_length, chunk_size):
    # Highest positions first, matching the order of a local search.
    return list(reversed(rainbow.make_chunks(chain_length, chunk_size)))


def fetch_chain_length(host, ports):
    """Ask the worker services for the chain length of their table."""
    for port in ports:
        try:
            resp = requests.get(f"http://{host}:{port}/table", timeout=REQUEST_TIMEOUT)
            if resp.status_code == 200:
                return int(resp.json()["chain_length"])
            logger.warning("Port %d answered /table with %d", port, resp.status_code)
        except (requests.RequestException, ValueError, KeyError, TypeError) as e:
            logger.warning("Port %d did not describe its table: %s", port, e)
    raise RemoteSearchError(f"no worker on {host} ports {list(ports)} reported a rainbow table")


def worker(target_hash, host, chunk_queue, stop_event, result, ports, lock, failures, max_fail=MAX_FAIL):
    while not stop_event.is_set():
        try:
            start, end = chunk_queue.get_nowait()
        except Empty:
            return

        # Select next port using Round-robin scheduling
        with lock:
            if not ports:
                logger.error("All servers failed.")
                chunk_queue.put((start, end))
                chunk_queue.task_done()
                return
            port = ports.pop(0)
            ports.append(port)

        url = f"http://{host}:{port}/crack_chunk"
        data = {
            "target_hash": target_hash,
            "start_position": start,
            "end_position": end
        }
        try:
            resp = requests.post(url, json=data, timeout=REQUEST_TIMEOUT)
            if resp.status_code == 400:
                # Another server would reject the same request.
                with lock:
                    result['error'] = f"port {port} rejected positions {start}-{end}: {resp.json().get('error')}"
                stop_event.set()
            elif resp.status_code == 200:
                j = resp.json()
                with lock:
                    result['searched'] = result.get('searched', 0) + 1
                if j.get("found"):
                    result['plaintext'] = j.get('plaintext')
                    stop_event.set()
            else:
                raise requests.HTTPError(f"Bad response, error {resp.status_code}")
        except (requests.RequestException, ValueError) as e:
            logger.warning("Port %d failed on positions %d-%d: %s", port, start, end, e)
            with lock:
                failures[port] = failures.get(port, 0) + 1
                if failures[port] >= max_fail:
                    logger.warning("Removing port %d due to %d failures.", port, failures[port])
                    try:
                        ports.remove(port)
                    except ValueError:
                        pass
            # Requeue the failed chunk so other worker can retry
            chunk_queue.put((start, end))
            time.sleep(0.5)
        finally:
            chunk_queue.task_done()


def remote_crack(target_hash, ports, chain_length=None, host="127.0.0.1", chunk_size=CHUNK_SIZE, max_fail=MAX_FAIL):
    """Spread the outer positions of a crack over worker services.

    Returns the recovered plaintext, or None once every chunk was searched
    without a match. Raises RemoteSearchError when a worker rejects a chunk
    or the servers give out before the search space is covered. The chain
    length is read from the workers when not given.
    """
    target_hash = rainbow.parse_target(target_hash).hex()
    if chunk_size < 1:
        raise rainbow.ConfigError(f"chunk_size must be >= 1, got {chunk_size}")
    ports = list(ports)
    if chain_length is None:
        chain_length = fetch_chain_length(host, ports)

    chunks = position_chunks(chain_length, chunk_size)
    logger.info("Chunks: %d (chunk size %d) over ports %s", len(chunks), chunk_size, ports)

    q = Queue()
    for c in chunks:
        q.put(c)

    stop_event = threading.Event()
    result = {}
    lock = threading.Lock()
    failures = {}

    threads = []
    # One thread per port
    for _ in list(ports):
        t = threading.Thread(
            target=worker,
            args=(target_hash, host, q, stop_event, result, ports, lock, failures, max_fail)
            )
        t.daemon = True
        t.start()
        threads.append(t)

    try:
        while any(t.is_alive() for t in threads) and not stop_event.is_set():
            time.sleep(0.2)
    except KeyboardInterrupt:
        logger.warning("Interrupted.")
        stop_event.set()

    if result.get('plaintext') is not None:
        return result['plaintext']
    if 'error' in result:
        raise RemoteSearchError(result['error'])
    searched = result.get('searched', 0)
    if searched < len(chunks):
        raise RemoteSearchError(
            f"only {searched} of {len(chunks)} position chunks were searched; no server left")
    return None


def _config_from(args):
    return rainbow.RainbowConfig(
        chain_length=args.chain_length,
        table_file=args.table,
        seed_file=args.seeds,
        workers=args.workers,
    ).validate()


def cmd_generate(args):
    config = _config_from(args)
    table = rainbow.build_table(rainbow.iter_seeds(config.seed_file), config)
    rainbow.save_table(table, config.table_file)
    print(f"Wrote {len(table)} chains to {config.table_file}")
    return 0


def cmd_crack(args):
    config = _config_from(args)
    target = rainbow.parse_target(args.target_hash)
    table = rainbow.load_or_generate(config)
    print("Rainbow table ready")

    start_time = time.time()
    plaintext = rainbow.crack(table, target, config)
    duration = time.time() - start_time
    return _report(plaintext, duration)


def cmd_remote(args):
    ports = list(range(args.start_port, args.end_port + 1))
    start_time = time.time()
    plaintext = remote_crack(args.target_hash, ports, args.chain_length, host=args.host, chunk_size=args.chunk_size)
    duration = time.time() - start_time
    return _report(plaintext, duration)


def _report(plaintext, duration):
    if plaintext is not None:
        print("Plaintext found:", plaintext)
        print("Time (s):", duration)
        return 0
    print("No matching plaintext found.")
    print("Time (s):", duration)
    return 1


def build_parser():
    parser = argparse.ArgumentParser(description="SHA-1 rainbow table generator and cracker")
    parser.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    def table_options(p):
        p.add_argument("--table", default=rainbow.DEFAULT_CONFIG.table_file, help="rainbow table JSON file")
        p.add_argument("--seeds", default=rainbow.DEFAULT_CONFIG.seed_file, help="seed dictionary, one per line")
        p.add_argument("--chain-length", type=int, default=rainbow.DEFAULT_CONFIG.chain_length)
        p.add_argument("--workers", type=int, default=1, help="threads used to build chains")

    p = sub.add_parser("generate", help="build a rainbow table from a seed dictionary")
    table_options(p)
    p.set_defaults(func=cmd_generate)

    p = sub.add_parser("crack", help="crack a SHA-1 hash, loading or generating the table")
    table_options(p)
    p.add_argument("target_hash", nargs="?", default=DEMO_HASH)
    p.set_defaults(func=cmd_crack)

    p = sub.add_parser("remote", help="crack a SHA-1 hash using worker services")
    p.add_argument("target_hash")
    p.add_argument("--start-port", type=int, required=True)
    p.add_argument("--end-port", type=int, required=True)
    p.add_argument("--host", default="127.0.0.1")
    p.add_argument("--chain-length", type=int, default=None,
                   help="defaults to the chain length the workers report")
    p.add_argument("--chunk-size", type=int, default=CHUNK_SIZE)
    p.set_defaults(func=cmd_remote)
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO,
                        format="%(levelname)s: %(message)s")
    try:
        return args.func(args)
    except rainbow.RainbowError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
