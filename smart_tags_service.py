#!/usr/bin/env python3
"""
SmartTags Service v1.2.0

Adds descriptive tags (origin region, decade, resolution/HDR/audio, studio,
IMDb Top 250) to movies and series of a media library, using TMDB metadata,
and can remove every tag it ever wrote.

Architecture:
    /events/item-changed (POST)
        - Called by the host when an item is added or updated
        - Tags that one item under a 30 second budget
        - Ignored while a cleanup sweep is running

    /tasks/update, /tasks/cleanup (POST)
        - Start a full sweep on a background thread and return immediately
        - Progress and outcome under /tasks/status
        - The update sweep also runs daily at UPDATE_HOUR

    /config (GET, PUT), /cache (GET)
        - Inspect and edit settings, inspect the TMDB metadata cache

Environment Variables:
    PORT: Server port (default: 5200)
    LOG_LEVEL: Logging level (default: INFO)
    STRUCTURED_LOGGING: JSON log lines when "true"
    CONFIG_DIR: Settings and cache directory (default: ./config)
    LIBRARY_FILE: JSON export of the host library (default: CONFIG_DIR/library.json)
    TMDB_API_KEY: TMDB API key used when none is stored in the settings
    UPDATE_HOUR: Local hour of the daily update sweep (default: 4)
"""

import logging
import os
import threading
from pathlib import Path
from typing import Optional

from flask import Flask, request, jsonify

from cache import MetadataCache
from cancellation import CancellationToken
from config import ConfigError, ConfigStore
from constants import (
    CLEANUP_COOLDOWN,
    DEFAULT_UPDATE_HOUR,
    SERVICE_NAME,
    SERVICE_VERSION,
)
from http_client import RateLimiter
from library import JsonFileLibrary, LibraryRepository
from logging_config import configure_logging, setup_flask_request_id
from metrics import metrics
from reconciler import Reconciler
from tagging import TagSynthesizer
from tasks import (
    BackgroundTaskRunner,
    CleanupGate,
    DailyScheduler,
    ItemChangedHandler,
    TagCleanupTask,
    TagUpdateTask,
)
from tmdb_client import TMDBClient
from top_list import TopListSource

# =============================================================================
# Configuration
# =============================================================================

PORT = int(os.environ.get("PORT", 5200))
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()
CONFIG_DIR = os.environ.get("CONFIG_DIR", "./config")
LIBRARY_FILE = os.environ.get("LIBRARY_FILE", str(Path(CONFIG_DIR) / "library.json"))
UPDATE_HOUR = int(os.environ.get("UPDATE_HOUR", DEFAULT_UPDATE_HOUR))
STRUCTURED_LOGGING = os.environ.get("STRUCTURED_LOGGING", "").lower() == "true"

configure_logging(level=LOG_LEVEL, structured=STRUCTURED_LOGGING)
logger = logging.getLogger(__name__)

app = Flask(__name__)
setup_flask_request_id(app)


# =============================================================================
# Service Wiring
# =============================================================================

class SmartTags:
    """
    Wires every component around one library and one config directory.

    A single RateLimiter is shared by everything that talks to TMDB, so the
    scheduled sweep and reactive events together stay within the rate limit.
    """

    def __init__(
        self,
        library: LibraryRepository,
        config_dir: str = None,
        rate_limiter: Optional[RateLimiter] = None,
        tmdb_client: Optional[TMDBClient] = None,
        top_list: Optional[TopListSource] = None,
        cleanup_cooldown: float = CLEANUP_COOLDOWN,
    ):
        self.config_dir = Path(config_dir or CONFIG_DIR)
        self.library = library
        self.config_store = ConfigStore(str(self.config_dir))
        self.rate_limiter = rate_limiter or RateLimiter()
        self.tmdb_client = tmdb_client or TMDBClient(rate_limiter=self.rate_limiter)
        self.cache = MetadataCache(str(self.config_dir), client=self.tmdb_client)
        self.top_list = top_list or TopListSource(str(self.config_dir))
        self.gate = CleanupGate()

        self.reconciler = Reconciler(TagSynthesizer(self.cache, self.top_list))
        self.update_task = TagUpdateTask(
            library, self.config_store, self.reconciler, self.top_list, gate=self.gate,
        )
        self.cleanup_task = TagCleanupTask(
            library, self.config_store, self.reconciler, self.gate, cooldown=cleanup_cooldown,
        )
        self.item_handler = ItemChangedHandler(
            library, self.config_store, self.reconciler, self.gate, top_list=self.top_list,
        )
        self.runner = BackgroundTaskRunner()
        self.shutdown_token = CancellationToken()

    def task(self, name: str):
        return {"update": self.update_task, "cleanup": self.cleanup_task}.get(name)

    def close(self) -> None:
        self.shutdown_token.cancel()
        for name in ("update", "cleanup"):
            self.runner.cancel(name)
        self.tmdb_client.close()
        self.top_list.close()


_service: Optional[SmartTags] = None
_service_lock = threading.Lock()


def get_service() -> SmartTags:
    """Get the process-wide service, building it from the environment on first use."""
    global _service
    if _service is None:
        with _service_lock:
            if _service is None:
                _service = SmartTags(JsonFileLibrary(LIBRARY_FILE), CONFIG_DIR)
    return _service


def set_service(service: Optional[SmartTags]) -> None:
    """Replace the process-wide service (embedding and tests)."""
    global _service
    with _service_lock:
        _service = service


# =============================================================================
# Event Endpoints
# =============================================================================

@app.route('/events/item-changed', methods=['POST'])
def item_changed():
    """
    Tag one item after the host added or updated it.

    Body: {"item_id": "123"} (also accepts the host's "ItemId")
    """
    data = request.get_json(silent=True) or {}
    item_id = data.get("item_id") or data.get("ItemId")
    if not item_id:
        return jsonify({"error": "Missing 'item_id'"}), 400

    service = get_service()
    result = service.item_handler.handle(str(item_id), parent=service.shutdown_token)
    if result is None:
        return jsonify({"item_id": str(item_id), "handled": False})
    return jsonify({
        "item_id": str(item_id),
        "handled": True,
        "changed": result.changed,
        "added": result.added,
    })


# =============================================================================
# Task Endpoints
# =============================================================================

@app.route('/tasks/update', methods=['POST'])
def start_update():
    """Start the tag update sweep in the background."""
    service = get_service()
    if service.gate.active:
        return jsonify({"error": "Cleanup in progress", "status": service.runner.status("cleanup")}), 409
    run_id = service.runner.start(service.update_task)
    if run_id is None:
        return jsonify({"error": "Update already running", "status": service.runner.status("update")}), 409
    return jsonify({"task": "update", "run_id": run_id, "queued": True}), 202


@app.route('/tasks/cleanup', methods=['POST'])
def start_cleanup():
    """
    Start the cleanup sweep in the background.

    Requires enable_cleanup to be switched on first (PUT /config); the switch
    turns itself off when the sweep ends.
    """
    service = get_service()
    if not service.config_store.get().enable_cleanup:
        return jsonify({
            "error": "Cleanup is disabled",
            "usage": "PUT /config {\"enable_cleanup\": true}, then POST /tasks/cleanup",
        }), 409
    run_id = service.runner.start(service.cleanup_task)
    if run_id is None:
        return jsonify({"error": "Cleanup already running", "status": service.runner.status("cleanup")}), 409
    return jsonify({"task": "cleanup", "run_id": run_id, "queued": True}), 202


@app.route('/tasks/<name>/cancel', methods=['POST'])
def cancel_task(name: str):
    """Cancel a running sweep."""
    service = get_service()
    if service.task(name) is None:
        return jsonify({"error": f"Unknown task '{name}'"}), 404
    return jsonify({"task": name, "cancelled": service.runner.cancel(name)})


@app.route('/tasks/status', methods=['GET'])
def task_status():
    """State, progress and last summary of every sweep."""
    service = get_service()
    return jsonify({
        "tasks": {name: service.runner.status(name) for name in ("update", "cleanup")},
        "cleanup_gate_active": service.gate.active,
    })


# =============================================================================
# Configuration Endpoints
# =============================================================================

@app.route('/config', methods=['GET'])
def get_config():
    """Current settings (API key redacted)."""
    return jsonify(get_service().config_store.get().to_dict(redact=True))


@app.route('/config', methods=['PUT'])
def update_config():
    """
    Partially update settings.

    Usage:
        PUT /config {"enable_country_tags": true, "country_style": "name_and_code"}
    """
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return jsonify({"error": "Body must be a JSON object"}), 400
    try:
        config = get_service().config_store.update(data)
    except ConfigError as e:
        return jsonify({"error": str(e)}), 400
    logger.info(f"Configuration updated: {', '.join(sorted(data))}")
    return jsonify(config.to_dict(redact=True))


# =============================================================================
# Cache Endpoints
# =============================================================================

@app.route('/cache', methods=['GET'])
def cache_status():
    """
    View metadata cache statistics and entries.

    Usage:
        /cache          - stats and the first 100 TMDB ids
        /cache?id=603   - one cached record
    """
    cache = get_service().cache
    external_id = request.args.get('id', '')

    if external_id:
        record = cache.peek(external_id)
        if record is not None:
            return jsonify({"id": external_id, "cached": True, "metadata": record.to_dict()})
        return jsonify({"id": external_id, "cached": False}), 404

    return jsonify({
        "stats": cache.stats(),
        "keys": cache.keys()[:100],
    })


# =============================================================================
# Health Check Endpoints
# =============================================================================

@app.route('/health', methods=['GET'])
def health_check():
    """Shallow health check - confirms app is running."""
    return jsonify({
        "status": "healthy",
        "service": SERVICE_NAME,
        "version": SERVICE_VERSION,
    })


@app.route('/health/ready', methods=['GET'])
def readiness_check():
    """
    Deep health check.

    Checks:
    - Config directory writable
    - TMDB API key configured
    - Enabled tag families
    """
    service = get_service()
    config = service.config_store.get()
    checks = {}
    healthy = True

    try:
        service.config_dir.mkdir(parents=True, exist_ok=True)
        test_file = service.config_dir / ".health_check"
        test_file.write_text("ok")
        test_file.unlink()
        checks["config_writable"] = {"status": "ok"}
    except OSError as e:
        checks["config_writable"] = {"status": "error", "message": str(e)}
        healthy = False

    checks["tmdb"] = {
        "status": "ok" if config.has_api_key else "disabled",
        "configured": config.has_api_key,
    }
    checks["features"] = {
        "country": config.enable_country_tags,
        "decade": config.enable_decade_tags,
        "resolution": config.enable_resolution_tags,
        "hdr": config.enable_hdr_tags,
        "audio": config.enable_audio_tags,
        "imdb_top": config.enable_imdb_top_tags,
        "studio": config.enable_studio_tags,
        "realtime_monitor": config.enable_realtime_monitor,
    }

    return jsonify({
        "status": "healthy" if healthy else "unhealthy",
        "version": SERVICE_VERSION,
        "checks": checks,
        "cache_stats": service.cache.stats(),
        "metrics": metrics.get_stats(),
    }), 200 if healthy else 503


@app.route('/health/live', methods=['GET'])
def liveness_check():
    """Liveness probe - checks app isn't deadlocked."""
    return jsonify({"status": "alive"}), 200


@app.route('/metrics', methods=['GET'])
def metrics_endpoint():
    """Return application metrics."""
    return jsonify(metrics.get_stats())


# =============================================================================
# Main
# =============================================================================

def main() -> None:
    service = get_service()
    scheduler = DailyScheduler(lambda: service.runner.start(service.update_task), hour=UPDATE_HOUR)
    scheduler.start()

    logger.info(f"Starting {SERVICE_NAME} v{SERVICE_VERSION} on port {PORT}")
    logger.info(f"TMDB: {'enabled' if service.config_store.get().has_api_key else 'disabled (no API key)'}")
    logger.info(f"Config directory: {CONFIG_DIR}")
    logger.info(f"Library file: {LIBRARY_FILE}")
    try:
        app.run(host="0.0.0.0", port=PORT, debug=False, threaded=True)
    finally:
        scheduler.shutdown()
        service.close()


if __name__ == "__main__":
    main()
