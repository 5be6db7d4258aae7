"""Background orchestration: the polling timer plus a manual-action worker."""
from __future__ import annotations

import queue
import threading
from dataclasses import dataclass
from threading import Event
from typing import Callable, List, Optional

from .config import DEFAULT_CONFIG, ConnectorConfig
from .drives import WslClient
from .logging_setup import configure_logging
from .reconciler import DriveSnapshot, Reconciler
from .settings import Settings, SettingsStore
from .usbipd import StatusSnapshot, UsbipdClient

STOP = "__stop__"


@dataclass(slots=True)
class ServiceRequest:
    kind: str  # "attach", "detach", "toggle", "refresh", "refresh-drives", "drive"
    letter: Optional[str] = None


class ConnectorService:
    """Runs the reconciliation loop off the UI thread.

    The timer thread ticks the reconciler at a fixed interval. Manual
    requests from the tray or CLI go through a bounded queue to a worker
    thread; both contend for the reconciler's busy guard, never for a lock.
    """

    def __init__(
        self,
        config: ConnectorConfig | None = None,
        *,
        console_log: bool | None = None,
        on_status: Callable[[StatusSnapshot], None] | None = None,
        on_drives: Callable[[DriveSnapshot], None] | None = None,
        notify: Callable[[str], None] | None = None,
        usbipd: UsbipdClient | None = None,
        wsl: WslClient | None = None,
        settings_store: SettingsStore | None = None,
    ) -> None:
        self.config = config or DEFAULT_CONFIG
        self.logger = configure_logging(force_console=console_log, config=self.config)
        self.settings_store = settings_store or SettingsStore(self.config)
        self.settings: Settings = self.settings_store.load()
        self.reconciler = Reconciler(
            usbipd or UsbipdClient(self.config),
            wsl or WslClient(self.config),
            self.settings,
            settings_store=self.settings_store,
            config=self.config,
            on_status=on_status,
            on_drives=on_drives,
            notify=notify,
        )
        self._stop_event = Event()
        self._timer: threading.Thread | None = None
        self._request_queue: "queue.Queue[ServiceRequest]" = queue.Queue(maxsize=64)
        self._workers: List[threading.Thread] = []

    def start(self) -> None:
        self._stop_event.clear()
        if not self._workers:
            self._start_workers()
        self.submit(ServiceRequest("refresh"))
        self.submit(ServiceRequest("refresh-drives"))
        if self._timer is None or not self._timer.is_alive():
            self._timer = threading.Thread(target=self._timer_loop, name="ConnectorTimer", daemon=True)
            self._timer.start()
        self.logger.info(
            "Connector service started (poll %.1fs, auto-attach %s)",
            self.config.poll_seconds,
            "on" if self.settings.auto_attach_usb else "off",
        )

    def run(self, *, duration_seconds: float | None = None) -> None:
        """Start the service and block until stop() is invoked or timeout expires."""
        self.start()
        waited = self._stop_event.wait(timeout=duration_seconds)
        if duration_seconds is not None and not waited:
            self.logger.info(
                "Connector service duration (%.1fs) elapsed; stopping", duration_seconds
            )
            self.stop()

    def stop(self) -> None:
        if self._stop_event.is_set() and not self._workers:
            return
        self.logger.info("Stopping connector service")
        self._stop_event.set()
        if self._timer is not None:
            self._timer.join(timeout=2.0)
            self._timer = None
        self._shutdown_workers()

    # --- manual requests -----------------------------------------------------
    def submit(self, request: ServiceRequest) -> bool:
        try:
            self._request_queue.put_nowait(request)
        except queue.Full:
            self.logger.warning("Request queue full; dropping request: %s", request)
            return False
        return True

    def request_attach(self) -> bool:
        return self.submit(ServiceRequest("attach"))

    def request_detach(self) -> bool:
        return self.submit(ServiceRequest("detach"))

    def request_toggle(self) -> bool:
        return self.submit(ServiceRequest("toggle"))

    def request_refresh(self) -> bool:
        return self.submit(ServiceRequest("refresh"))

    def request_drive_refresh(self) -> bool:
        return self.submit(ServiceRequest("refresh-drives"))

    def request_drive_toggle(self, letter: str) -> bool:
        return self.submit(ServiceRequest("drive", letter=letter))

    # --- threads -------------------------------------------------------------
    def _timer_loop(self) -> None:
        while not self._stop_event.wait(self.config.poll_seconds):
            try:
                self.reconciler.tick()
            except Exception as exc:
                self.logger.exception("Reconciliation tick failed: %s", exc)

    def _start_workers(self) -> None:
        worker = threading.Thread(target=self._worker_loop, name="ConnectorWorker-0", daemon=True)
        worker.start()
        self._workers.append(worker)

    def _shutdown_workers(self) -> None:
        while not self._request_queue.empty():
            try:
                self._request_queue.get_nowait()
                self._request_queue.task_done()
            except queue.Empty:
                break
        for _ in self._workers:
            self._request_queue.put(ServiceRequest(STOP))
        for worker in self._workers:
            worker.join(timeout=2.0)
        self._workers.clear()

    def _worker_loop(self) -> None:
        while True:
            try:
                request = self._request_queue.get(timeout=0.5)
            except queue.Empty:
                if self._stop_event.is_set():
                    break
                continue

            if request.kind == STOP:
                self._request_queue.task_done()
                break

            try:
                self._process_request(request)
            except Exception as exc:
                self.logger.exception("Request %s failed: %s", request.kind, exc)
            finally:
                self._request_queue.task_done()

    def _process_request(self, request: ServiceRequest) -> None:
        reconciler = self.reconciler
        if request.kind == "attach":
            reconciler.attach()
        elif request.kind == "detach":
            reconciler.detach()
        elif request.kind == "toggle":
            reconciler.toggle_attach_detach()
        elif request.kind == "refresh":
            reconciler.refresh()
        elif request.kind == "refresh-drives":
            reconciler.force_drive_refresh()
        elif request.kind == "drive" and request.letter:
            reconciler.toggle_drive(request.letter)
        else:
            self.logger.warning("Unknown request: %s", request)
