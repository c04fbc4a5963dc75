# main.py
from __future__ import annotations

import json
import os
import threading
import time
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

from observability.metrics import serve_metrics
from vigil.watcher import start_watcher
from will.collaborators import SimulatedLedger
from will.config import WILLCFG
from will.health import snapshot as will_snapshot
from will.history import FileTransferHistory
from will.machine import WillStateMachine
from will.model import ProtocolStatus
from will.pipeline import outcome_lines
from will.utils import format_balance

# ---------- Dry-run fixtures (simulated ledger, canned interpreter) ----------
OWNER_WALLET = "0x" + "a1" * 20
DRY_RUN_BENEFICIARIES = [
    {"name": "Alice", "category": "Family", "percentage": 70, "walletAddress": "0x" + "b2" * 20,
     "reason": "For the house"},
    {"name": "Open Source Fund", "category": "Charity", "percentage": 30, "walletAddress": "0x" + "c3" * 20,
     "reason": "Keep the lights on"},
]


class CannedInterpreter:
    """Returns a fixed beneficiary list whatever the testament says."""
    def interpret(self, text, locale):
        return list(DRY_RUN_BENEFICIARIES)


# ---------- Helper: JSON health feed ----------
def start_health_server(port: int, health_provider):
    """Expose GET /health and /health.json with the will engine snapshot."""
    class Handler(BaseHTTPRequestHandler):
        def _send_json(self, obj, code=200):
            body = json.dumps(obj, default=str).encode("utf-8")
            self.send_response(code)
            self.send_header("Content-Type", "application/json")
            self.send_header("Content-Length", str(len(body)))
            self.end_headers()
            self.wfile.write(body)

        def do_GET(self):
            path = self.path.split("?", 1)[0]
            if path in ("/health", "/health.json"):
                try:
                    self._send_json(health_provider(), 200)
                except Exception as e:
                    self._send_json({"error": str(e)}, 500)
                return
            self._send_json({"error": "not found"}, 404)

        def log_message(self, format, *args):
            return

    httpd = ThreadingHTTPServer(("0.0.0.0", port), Handler)
    t = threading.Thread(target=httpd.serve_forever, name=f"health:{port}", daemon=True)
    t.start()
    url = f"http://127.0.0.1:{port}/health"
    return t, httpd, url


def _print_event(ev: dict) -> None:
    print(f"[{ev['label']}] {ev['message']}")


def run():
    cfg = WILLCFG

    # ---------- Metrics endpoint (Prometheus) ----------
    if cfg.METRICS_ENABLED:
        try:
            serve_metrics(port=cfg.METRICS_PORT)
            print(f"[metrics] Prometheus exporter on http://127.0.0.1:{cfg.METRICS_PORT}/metrics")
        except OSError as e:
            print(f"[metrics] not started: {e}")

    # ---------- Collaborators ----------
    ledger = SimulatedLedger(OWNER_WALLET, balance=10 ** 18)
    if os.getenv("SILEME_DRY_RUN_FAIL"):
        # make the second beneficiary reject its transfer to exercise partial failure
        ledger.fail_for(DRY_RUN_BENEFICIARIES[1]["walletAddress"])

    history = FileTransferHistory(cfg.HISTORY_DIR, limit=cfg.HISTORY_LIMIT)
    machine = WillStateMachine(
        ledger=ledger,
        interpreter=CannedInterpreter(),
        history=history,
        config=cfg,
        sink=_print_event,
        events_path=cfg.EVENTS_PATH,
    )
    print(f"[history] {history.paths()['dir']} ({len(history)} records)")

    health_httpd = None
    if cfg.HEALTH_PORT:
        try:
            _, health_httpd, health_url = start_health_server(cfg.HEALTH_PORT, lambda: will_snapshot(machine))
            print(f"[health] serving at {health_url}")
        except OSError as e:
            print(f"[health] not started: {e}")

    # ---------- Onboarding ----------
    machine.establish_identity("dry_run_owner")
    machine.link_wallet(OWNER_WALLET)
    machine.interpret_will("Leave most of it to Alice, the rest to open source.")
    sealed = machine.seal()
    if not sealed.accepted:
        print(f"[main] will not sealed: {sealed.reason}")
        return

    watcher, stop_evt = start_watcher(
        machine,
        interval_s=cfg.WATCH_INTERVAL_S,
        sentinel_interval_s=cfg.SENTINEL_INTERVAL_S,
    )

    try:
        # wait for the countdown to trip the switch
        while machine.status == ProtocolStatus.MONITORING:
            remaining = machine.countdown_remaining_ms()
            print(f"[main] countdown {remaining / 1000:.1f}s remaining")
            time.sleep(max(0.5, cfg.WATCH_INTERVAL_S))

        if machine.status == ProtocolStatus.ACTIVATED:
            result = machine.confirm_execution()
            if result.accepted:
                outcome = result.data
                for line in outcome_lines(outcome):
                    print(f"[main] {line}")
                print(f"[main] sent {format_balance(outcome.amount_sent)}; "
                      f"left on source {format_balance(ledger.get_balance(OWNER_WALLET))}")
            else:
                print(f"[main] execution refused: {result.reason}")
            machine.acknowledge()

    except KeyboardInterrupt:
        print("\n[main] Ctrl+C received; shutting down…")
    finally:
        stop_evt.set()
        if health_httpd is not None:
            try:
                health_httpd.shutdown()
            except Exception:
                pass
        print(f"[main] steps={watcher.steps} status={machine.status.value}")
        print("[main] shutdown complete.")


if __name__ == "__main__":
    run()
