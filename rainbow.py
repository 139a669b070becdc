# rainbow.py
import hashlib
import json
import logging
import multiprocessing
import os
import string
from dataclasses import dataclass

logger = logging.getLogger(__name__)

ALPHABET = string.ascii_uppercase + string.ascii_lowercase + string.digits
DIGEST_SIZE = 20
MASK32 = 0xFFFFFFFF


class RainbowError(Exception):
    pass


class ConfigError(RainbowError, ValueError):
    pass


class InvalidTargetError(RainbowError, ValueError):
    pass


class SeedSourceError(RainbowError, OSError):
    pass


class TableLoadError(RainbowError):
    pass


class TableSaveError(RainbowError, OSError):
    pass


@dataclass(frozen=True)
class RainbowConfig:
    chain_length: int = 300
    alphabet: str = ALPHABET
    table_file: str = "rainbow_table.json"
    seed_file: str = "list.txt"
    progress_interval: int = 1000
    workers: int = 1
    chunk_size: int = 1000

    def validate(self):
        if self.chain_length < 1:
            raise ConfigError(f"chain_length must be >= 1, got {self.chain_length}")
        if self.workers < 1:
            raise ConfigError(f"workers must be >= 1, got {self.workers}")
        if self.chunk_size < 1:
            raise ConfigError(f"chunk_size must be >= 1, got {self.chunk_size}")
        if self.progress_interval < 1:
            raise ConfigError(f"progress_interval must be >= 1, got {self.progress_interval}")
        if not self.alphabet:
            raise ConfigError("alphabet must not be empty")
        return self


DEFAULT_CONFIG = RainbowConfig()


def digest(data) -> bytes:
    if isinstance(data, str):
        data = data.encode("utf-8")
    return hashlib.sha1(data).digest()


def reduce(digest_bytes: bytes, position: int, alphabet: str = ALPHABET) -> str:
    """Map a digest and its chain position to a 6-8 symbol candidate."""
    if len(digest_bytes) < 8:
        raise ValueError(f"reduce needs at least 8 digest bytes, got {len(digest_bytes)}")
    num = int.from_bytes(digest_bytes[0:4], "big") ^ (position & MASK32)
    num = (num + int.from_bytes(digest_bytes[4:8], "big")) & MASK32

    base = len(alphabet)
    length = 6 + num % 3
    out = []
    for _ in range(length):
        out.append(alphabet[num % base])
        num //= base
    return "".join(out)


def chain_plaintext(seed: str, config: RainbowConfig = DEFAULT_CONFIG) -> str:
    text = seed
    for position in range(config.chain_length):
        text = reduce(digest(text), position, config.alphabet)
    return text


def build_chain(seed: str, config: RainbowConfig = DEFAULT_CONFIG) -> bytes:
    return digest(chain_plaintext(seed, config))


def make_chunks(total, chunk_size):
    chunks = []
    start = 0
    while start < total:
        end = min(total, start + chunk_size)
        chunks.append((start, end))
        start = end
    return chunks


def _chain_chunk(job):
    seeds, config = job
    return [(build_chain(seed, config).hex(), seed) for seed in seeds]


def merge_partials(partials):
    # Partials arrive in seed order, so later seeds overwrite earlier ones
    # exactly as in a sequential run.
    table = {}
    for partial in partials:
        for end_hex, seed in partial:
            table[end_hex] = seed
    return table


def _build_parallel(seeds, config):
    chunks = make_chunks(len(seeds), config.chunk_size)
    logger.info("Building %d chains in %d chunks with %d processes",
                len(seeds), len(chunks), config.workers)
    if not chunks:
        return {}

    jobs = [(seeds[start:end], config) for start, end in chunks]
    with multiprocessing.Pool(processes=min(config.workers, len(jobs))) as pool:
        # imap keeps input order, which the collision tie-break relies on.
        table = merge_partials(pool.imap(_chain_chunk, jobs))
    logger.info("Built %d chains, %d distinct endpoints", len(seeds), len(table))
    return table


def build_table(seeds, config: RainbowConfig = DEFAULT_CONFIG) -> dict:
    """Build the endpoint -> seed mapping for every seed, in order.

    On an endpoint collision the seed processed last wins, both for the
    sequential path and the multi-process one (``config.workers > 1``).
    """
    config.validate()
    if config.workers > 1:
        return _build_parallel(list(seeds), config)

    table = {}
    count = 0
    for i, seed in enumerate(seeds):
        table[build_chain(seed, config).hex()] = seed
        count = i + 1
        if i % config.progress_interval == 0:
            logger.info("Generating rainbow table... line %d", i)
    logger.info("Built %d chains, %d distinct endpoints", count, len(table))
    return table


def parse_target(value) -> bytes:
    """Validate a target digest given as hex text or raw bytes."""
    if isinstance(value, (bytes, bytearray)):
        raw = bytes(value)
    elif isinstance(value, str):
        text = value.strip()
        if any(c not in string.hexdigits for c in text):
            raise InvalidTargetError(f"target hash is not valid hex: {value!r}")
        if len(text) != DIGEST_SIZE * 2:
            raise InvalidTargetError(
                f"target hash must be {DIGEST_SIZE * 2} hex digits, got {len(text)}")
        raw = bytes.fromhex(text)
    else:
        raise InvalidTargetError(f"target hash must be str or bytes, not {type(value).__name__}")
    if len(raw) != DIGEST_SIZE:
        raise InvalidTargetError(
            f"target hash must be {DIGEST_SIZE} bytes ({DIGEST_SIZE * 2} hex digits), got {len(raw)}")
    return raw


def _replay(seed, target, config):
    text = seed
    for step in range(config.chain_length):
        h = digest(text)
        if h == target:
            return text
        text = reduce(h, step, config.alphabet)
    return None


def crack(table, target, config: RainbowConfig = DEFAULT_CONFIG, positions=None, cancel_event=None):
    """Recover a plaintext whose SHA-1 digest is ``target``, or None.

    Every outer position ``i`` assumes the target was produced at link ``i``
    of some stored chain; positions run from the chain end back to 0.
    """
    target = parse_target(target)
    config.validate()
    n = config.chain_length
    if positions is None:
        positions = range(n - 1, -1, -1)
    else:
        positions = sorted(set(positions), reverse=True)
        for i in positions:
            if not 0 <= i < n:
                raise ValueError(f"position {i} outside chain of length {n}")

    for i in positions:
        if cancel_event is not None and cancel_event.is_set():
            logger.debug("Search cancelled before position %d", i)
            return None
        current = target
        for j in range(i, n):
            candidate = digest(reduce(current, j, config.alphabet))
            seed = table.get(candidate.hex())
            if seed is not None:
                plaintext = _replay(seed, target, config)
                if plaintext is not None:
                    logger.debug("Match at position %d via seed %r", i, seed)
                    return plaintext
                logger.debug("False alarm at position %d (endpoint of %r)", i, seed)
                break
            current = candidate
    return None


def iter_seeds(path):
    try:
        f = open(path, "r", encoding="utf-8", newline="\n")
    except OSError as e:
        raise SeedSourceError(f"cannot open seed source {path}: {e}") from e
    with f:
        try:
            for line in f:
                if line.endswith("\n"):
                    line = line[:-1]
                    if line.endswith("\r"):
                        line = line[:-1]
                yield line
        except (OSError, UnicodeDecodeError) as e:
            raise SeedSourceError(f"cannot read seed source {path}: {e}") from e


def save_table(table, path):
    tmp = f"{path}.tmp"
    try:
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump({"table": table}, f, ensure_ascii=False)
        os.replace(tmp, path)
    except OSError as e:
        raise TableSaveError(f"cannot write table {path}: {e}") from e
    finally:
        if os.path.exists(tmp):
            os.remove(tmp)
    logger.info("Saved %d entries to %s", len(table), path)


def load_table(path) -> dict:
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except OSError as e:
        raise TableLoadError(f"cannot read table {path}: {e}") from e
    except ValueError as e:
        raise TableLoadError(f"table {path} is not valid JSON: {e}") from e

    table = data.get("table") if isinstance(data, dict) else None
    if not isinstance(table, dict):
        raise TableLoadError(f"table {path} has no 'table' object")
    for k, v in table.items():
        if not isinstance(v, str):
            raise TableLoadError(f"table {path}: entry {k!r} is not a string")
    logger.info("Loaded %d entries from %s", len(table), path)
    return table


def load_or_generate(config: RainbowConfig = DEFAULT_CONFIG) -> dict:
    if os.path.exists(config.table_file):
        logger.info("Loading existing rainbow table from %s", config.table_file)
        return load_table(config.table_file)
    logger.info("Generating new rainbow table from %s", config.seed_file)
    table = build_table(iter_seeds(config.seed_file), config)
    save_table(table, config.table_file)
    return table
