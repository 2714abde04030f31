"""
Detection snapshot sync service.

Watches the exported detections snapshot and keeps the SQLite store in sync
with it, exposing a manual resync and status over HTTP.

Usage:
    python src/main.py --config config/config.yaml
    python src/main.py --once

Arguments:
    --config: Path to configuration file
    --once: Ingest the snapshot once and exit
    --no-web: Do not start the HTTP interface
"""

import os
import sys
import argparse
import logging
import signal
import threading
from typing import Dict, Any, Tuple, Optional

import yaml
import uvicorn

from models.config import Config
from models.detection_record import IngestStatus
from ops.logging import setup_logging
from runtime.context import RuntimeContext
from runtime.services import SnapshotSyncService
from snapshot.parser import SnapshotParser
from storage.database import DetectionStore
from web.app import create_app

VALID_LOG_LEVELS = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively merge override into base and return base."""
    for k, v in (override or {}).items():
        if isinstance(v, dict) and isinstance(base.get(k), dict):
            _deep_merge(base[k], v)
        else:
            base[k] = v
    return base


def _read_yaml(path: str) -> Dict[str, Any]:
    with open(path, "r") as f:
        return yaml.safe_load(f) or {}


def load_config(config_path: str) -> Dict[str, Any]:
    """
    Load configuration with layering:
    - `config/default.yaml` (checked in)
    - `config/config.yaml` (local overrides)
    - plus any explicitly provided `--config` path (treated as overrides)
    """
    try:
        config_dir = os.path.dirname(config_path)
        base_path = os.path.join(config_dir, "default.yaml")
        merged: Dict[str, Any] = _read_yaml(base_path) if os.path.exists(base_path) else {}

        local_overrides_path = os.path.join(config_dir, "config.yaml")
        if os.path.exists(local_overrides_path):
            merged = _deep_merge(merged, _read_yaml(local_overrides_path))

        # Finally apply explicit config_path if it's not one of the files above
        explicit = os.path.abspath(config_path)
        if os.path.exists(config_path) and explicit not in (
            os.path.abspath(base_path),
            os.path.abspath(local_overrides_path),
        ):
            merged = _deep_merge(merged, _read_yaml(config_path))

        return merged
    except (OSError, yaml.YAMLError) as e:
        logging.error(f"Failed to load configuration: {e}")
        sys.exit(1)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def validate_config(config: Dict[str, Any]) -> Tuple[bool, Optional[str]]:
    """
    Validate configuration file structure and values.

    Args:
        config: Configuration dictionary

    Returns:
        Tuple of (is_valid, error_message)
    """
    required_sections = ['watch', 'ingest', 'storage', 'log_path', 'log_level']
    for section in required_sections:
        if section not in config:
            return False, f"Missing required configuration section: {section}"

    # Validate watch settings
    watch = config.get('watch') or {}
    if not isinstance(watch.get('directory'), str) or not watch.get('directory'):
        return False, "watch.directory must be a non-empty string"
    file_name = watch.get('file_name')
    if not isinstance(file_name, str) or not file_name:
        return False, "watch.file_name must be a non-empty string"
    if os.path.basename(file_name) != file_name:
        return False, "watch.file_name must be a bare file name, not a path"
    if 'poll_timeout_s' in watch:
        if not _is_number(watch['poll_timeout_s']) or watch['poll_timeout_s'] <= 0:
            return False, "watch.poll_timeout_s must be a positive number"
    if 'load_on_start' in watch and not isinstance(watch['load_on_start'], bool):
        return False, "watch.load_on_start must be a boolean"

    # Validate ingest settings
    ingest = config.get('ingest') or {}
    for key in ('debounce_s', 'retry_backoff_s', 'shutdown_grace_s'):
        if key in ingest and (not _is_number(ingest[key]) or ingest[key] < 0):
            return False, f"ingest.{key} must be a non-negative number"
    if 'batch_size' in ingest:
        if not isinstance(ingest['batch_size'], int) or isinstance(ingest['batch_size'], bool) or ingest['batch_size'] <= 0:
            return False, "ingest.batch_size must be a positive integer"
    if 'max_retry_attempts' in ingest:
        attempts = ingest['max_retry_attempts']
        if not isinstance(attempts, int) or isinstance(attempts, bool) or attempts < 0:
            return False, "ingest.max_retry_attempts must be a non-negative integer"

    # Validate storage settings
    storage = config.get('storage') or {}
    if 'local_database_path' not in storage:
        return False, "Missing storage.local_database_path"
    if not isinstance(storage['local_database_path'], str):
        return False, "storage.local_database_path must be a string"

    # Validate web settings (optional)
    web = config.get('web') or {}
    if 'port' in web:
        port = web['port']
        if not isinstance(port, int) or isinstance(port, bool) or not (0 < port < 65536):
            return False, "web.port must be an integer between 1 and 65535"

    # Validate log settings
    if config['log_level'] not in VALID_LOG_LEVELS:
        return False, f"log_level must be one of: {', '.join(VALID_LOG_LEVELS)}"

    return True, None


def build_context(config: Dict[str, Any], config_path: Optional[str] = None) -> RuntimeContext:
    """Create the store, parser and sync service from the raw config."""
    cfg = Config.from_dict(config)
    store = DetectionStore(cfg.storage.local_database_path)
    store.initialize()
    parser = SnapshotParser()
    service = SnapshotSyncService(store, parser, watch_cfg=cfg.watch, ingest_cfg=cfg.ingest)
    return RuntimeContext(
        config=config,
        store=store,
        parser=parser,
        sync_service=service,
        config_path=config_path,
    )


def run_once(ctx: RuntimeContext) -> int:
    """Ingest the snapshot a single time. Returns the process exit code."""
    service = ctx.sync_service
    try:
        outcome = service.trigger_sync()
    except Exception as e:
        logging.error(f"Snapshot ingest failed: {e}")
        return 1
    finally:
        service.stop()

    if outcome.status == IngestStatus.MISSING:
        return 2
    logging.info(f"Snapshot ingest finished: {outcome.to_dict()}")
    return 0


def main():
    """Main application function."""
    parser = argparse.ArgumentParser(description='Detection Snapshot Sync')
    parser.add_argument('--config', type=str, default='config/config.yaml',
                        help='Path to configuration file')
    parser.add_argument('--once', action='store_true',
                        help='Ingest the snapshot once and exit')
    parser.add_argument('--no-web', action='store_true',
                        help='Do not start the HTTP interface')
    args = parser.parse_args()

    config = load_config(args.config)

    is_valid, error_msg = validate_config(config)
    if not is_valid:
        logging.error(f"Configuration validation failed: {error_msg}")
        sys.exit(1)

    setup_logging(config['log_path'], config['log_level'])
    logging.info("Starting Detection Snapshot Sync")

    try:
        ctx = build_context(config, args.config)
    except Exception as e:
        logging.error(f"Failed to initialize: {e}")
        sys.exit(1)

    if args.once:
        code = run_once(ctx)
        ctx.store.close()
        sys.exit(code)

    stop_event = threading.Event()

    def _handle_signal(signum, frame):
        logging.info(f"Received signal {signum}, shutting down")
        stop_event.set()

    signal.signal(signal.SIGTERM, _handle_signal)

    try:
        ctx.sync_service.start()

        web_cfg = Config.from_dict(config).web
        if web_cfg.enabled and not args.no_web:
            def run_web_app():
                uvicorn.run(
                    create_app(ctx),
                    host=web_cfg.host,
                    port=web_cfg.port,
                    log_level="info",
                )

            web_thread = threading.Thread(target=run_web_app, daemon=True)
            web_thread.start()
            logging.info(f"Web interface started on port {web_cfg.port}")

        while not stop_event.wait(timeout=1.0):
            pass

    except KeyboardInterrupt:
        logging.info("Interrupted by user")
    finally:
        ctx.sync_service.stop()
        ctx.store.close()
        logging.info("Detection Snapshot Sync stopped")


if __name__ == "__main__":
    main()
