import os
import signal
import logging

from bluos import BluOSClient
from lastfm_client import LastFMClient, PermanentScrobbleError, RetryableScrobbleError
from notifier import Alerter, from_env as webhook_notifier_from_env
from notifier_gotify import from_env as gotify_notifier_from_env
from playback_events import status_events
from scrobble_engine import EngineFatalError, ScrobbleEngine
from scrobble_queue import ScrobbleStore, StoreError
from submission_worker import BackoffPolicy, SubmissionWorker

# -------------------------
# Configuration via ENV VARS
# -------------------------
BLUOS_HOST = os.getenv("BLUOS_HOST", "127.0.0.1")
BLUOS_PORT = int(os.getenv("BLUOS_PORT", "11000"))
POLL_INTERVAL = max(1, int(os.getenv("POLL_INTERVAL", "3")))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

LASTFM_API_KEY = os.getenv("LASTFM_API_KEY")
LASTFM_API_SECRET = os.getenv("LASTFM_API_SECRET")
LASTFM_SESSION_KEY = os.getenv("LASTFM_SESSION_KEY")
LASTFM_USERNAME = os.getenv("LASTFM_USERNAME")
LASTFM_PASSWORD_MD5 = os.getenv("LASTFM_PASSWORD_MD5")

SCROBBLE_CACHE_PATH = os.getenv("SCROBBLE_CACHE_PATH", "/data/scrobble_queue.json")
RETRY_BASE_DELAY = max(1, int(os.getenv("RETRY_BASE_DELAY", "30")))      # seconds
RETRY_MAX_DELAY = max(RETRY_BASE_DELAY, int(os.getenv("RETRY_MAX_DELAY", "3600")))
SHUTDOWN_TIMEOUT = float(os.getenv("SHUTDOWN_TIMEOUT", "30"))

# -------------------------
# Logging setup
# -------------------------
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    force=True,  # ensure our config is used even if libs pre-configure logging
)
log = logging.getLogger("bluos-lastfm")

def install_signal_handlers(engine: ScrobbleEngine):
    """Ctrl-C and SIGTERM both go through the engine's orderly stop."""
    def request_stop(signum, frame):
        log.info("Received %s; stopping after the current event", signal.Signals(signum).name)
        engine.request_stop()

    signal.signal(signal.SIGTERM, request_stop)
    signal.signal(signal.SIGINT, request_stop)

def main():
    # Validate Last.fm configuration up-front for clear errors
    if not LASTFM_API_KEY or not LASTFM_API_SECRET:
        raise SystemExit("LASTFM_API_KEY and LASTFM_API_SECRET are required")

    if not (LASTFM_SESSION_KEY or (LASTFM_USERNAME and LASTFM_PASSWORD_MD5)):
        raise SystemExit("Provide LASTFM_SESSION_KEY or LASTFM_USERNAME + LASTFM_PASSWORD_MD5")

    alert = Alerter(webhook_notifier_from_env(), gotify_notifier_from_env())

    try:
        lfm = LastFMClient(
            api_key=LASTFM_API_KEY,
            api_secret=LASTFM_API_SECRET,
            session_key=LASTFM_SESSION_KEY,
            username=LASTFM_USERNAME,
            password_md5=LASTFM_PASSWORD_MD5,
        )
    except (PermanentScrobbleError, RetryableScrobbleError) as e:
        # Password auth needs a round-trip for the session key; nothing works without it
        alert("ERROR", "Last.fm sign-in failed", str(e))
        raise SystemExit(f"Last.fm sign-in failed: {e}")

    try:
        lfm.check_auth()
    except PermanentScrobbleError as e:
        alert("ERROR", "Last.fm authentication failed", str(e))
        raise SystemExit(f"Last.fm authentication failed: {e}")
    except RetryableScrobbleError as e:
        # Can't reach Last.fm right now; queued scrobbles will wait for it
        log.warning("Could not verify Last.fm credentials yet: %s", e)

    try:
        store = ScrobbleStore(SCROBBLE_CACHE_PATH)
    except StoreError as e:
        alert("CRITICAL", "Scrobble queue unreadable", str(e), {"path": SCROBBLE_CACHE_PATH})
        raise SystemExit(str(e))

    def on_worker_fatal(error: BaseException):
        alert("ERROR", "Scrobbling halted", str(error), {"pending_queue_size": store.size()})

    worker = SubmissionWorker(
        store, lfm,
        BackoffPolicy(base_delay_ms=RETRY_BASE_DELAY * 1000, max_delay_ms=RETRY_MAX_DELAY * 1000),
        on_fatal=on_worker_fatal,
    )
    engine = ScrobbleEngine(lfm, store, worker)
    install_signal_handlers(engine)

    blu = BluOSClient(BLUOS_HOST, BLUOS_PORT)
    log.info("Starting BluOS → Last.fm bridge. Poll interval: %ss", POLL_INTERVAL)
    log.info("BluOS device: %s:%s | Queue: %s (size=%s) | Retry: %ss..%ss",
             BLUOS_HOST, BLUOS_PORT, SCROBBLE_CACHE_PATH, store.size(), RETRY_BASE_DELAY, RETRY_MAX_DELAY)
    alert("INFO", "Bridge started",
          f"Polling {BLUOS_HOST}:{BLUOS_PORT}; queue {SCROBBLE_CACHE_PATH} ({store.size()} pending).")

    try:
        engine.run(status_events(blu, POLL_INTERVAL, engine.stopping), shutdown_timeout=SHUTDOWN_TIMEOUT)
    except EngineFatalError as e:
        log.error("Stopping: %s (%s scrobbles held in %s)", e, store.size(), SCROBBLE_CACHE_PATH)
        raise SystemExit(1)
    except StoreError as e:
        alert("CRITICAL", "Scrobble queue write failed", str(e), {"path": SCROBBLE_CACHE_PATH})
        log.error("Stopping: %s", e)
        raise SystemExit(1)
    log.info("Bridge stopped cleanly")


def run():
    try:
        main()
    except KeyboardInterrupt:
        log.info("Shutting down…")


if __name__ == "__main__":
    run()
