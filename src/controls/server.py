"""Remote control channel over ZeroMQ.

A REP socket on 127.0.0.1 accepting JSON commands:

    {"cmd": "set_params", "id": "1", "_token": "...", "params": {"cell_size": 8}}

Every command must carry the auth token printed at startup. The app polls
the socket between render ticks on the render thread, so handlers write
parameters the same way local input does.
"""

import json
import logging
import time
import uuid
from typing import Callable

import sentry_sdk
import zmq

from controls.input import PointerGestureInput
from controls.params import PARAMS, ParameterStore
from security import MAX_CONTROL_MESSAGE_BYTES

logger = logging.getLogger(__name__)

# Most messages handled per poll() so a chatty client cannot starve rendering
MAX_MESSAGES_PER_POLL = 8


class ControlServer:
    def __init__(
        self,
        store: ParameterStore,
        capture: Callable[[], str] | None = None,
        stats: Callable[[], dict] | None = None,
        pointer_bounds: Callable[[], tuple[int, int]] | None = None,
        on_shutdown: Callable[[], None] | None = None,
    ):
        self.store = store
        self._capture = capture
        self._stats = stats
        self._pointer_bounds = pointer_bounds
        self._on_shutdown = on_shutdown
        self._gesture = PointerGestureInput(store)

        self.context = zmq.Context()
        self.socket = self.context.socket(zmq.REP)
        self.socket.setsockopt(zmq.MAXMSGSIZE, MAX_CONTROL_MESSAGE_BYTES)
        self.socket.setsockopt(zmq.LINGER, 0)
        self.port = self.socket.bind_to_random_port("tcp://127.0.0.1")
        self.token = str(uuid.uuid4())
        self.start_time = time.time()
        self.messages_handled = 0
        self._poller = zmq.Poller()
        self._poller.register(self.socket, zmq.POLLIN)

    def _validate_token(self, message: dict) -> str | None:
        """Validate auth token. Returns error message or None if valid."""
        if message.get("_token") != self.token:
            return "invalid or missing auth token"
        return None

    def handle_message(self, message: dict) -> dict:
        cmd = message.get("cmd")
        msg_id = message.get("id")

        token_err = self._validate_token(message)
        if token_err:
            return {"id": msg_id, "ok": False, "error": token_err}

        if cmd == "ping":
            return {
                "id": msg_id,
                "ok": True,
                "status": "alive",
                "uptime_s": round(time.time() - self.start_time, 1),
            }
        elif cmd == "get_params":
            return {"id": msg_id, "ok": True, "params": self.store.snapshot().to_dict()}
        elif cmd == "list_params":
            return {"id": msg_id, "ok": True, "params": PARAMS}
        elif cmd == "set_params":
            return self._handle_set_params(message, msg_id)
        elif cmd == "pointer":
            return self._handle_pointer(message, msg_id)
        elif cmd == "capture":
            return self._handle_capture(msg_id)
        elif cmd == "stats":
            stats = self._stats() if self._stats is not None else {}
            return {"id": msg_id, "ok": True, "stats": stats}
        elif cmd == "shutdown":
            if self._on_shutdown is not None:
                self._on_shutdown()
            return {"id": msg_id, "ok": True}
        else:
            return {"id": msg_id, "ok": False, "error": f"unknown: {cmd}"}

    def _handle_set_params(self, message: dict, msg_id: str | None) -> dict:
        raw = message.get("params")
        if not isinstance(raw, dict):
            return {"id": msg_id, "ok": False, "error": "params must be an object"}
        snapshot = self.store.update(**{k: v for k, v in raw.items() if isinstance(k, str)})
        return {"id": msg_id, "ok": True, "params": snapshot.to_dict()}

    def _handle_pointer(self, message: dict, msg_id: str | None) -> dict:
        try:
            x = float(message["x"])
            y = float(message["y"])
            if "width" in message and "height" in message:
                width, height = float(message["width"]), float(message["height"])
            elif self._pointer_bounds is not None:
                width, height = self._pointer_bounds()
            else:
                return {"id": msg_id, "ok": False, "error": "missing width/height"}
        except (KeyError, TypeError, ValueError):
            return {"id": msg_id, "ok": False, "error": "x and y must be numbers"}

        snapshot = self._gesture.on_pointer_move(x, y, width, height)
        if snapshot is None:
            return {"id": msg_id, "ok": False, "error": "pointer bounds are empty"}
        return {"id": msg_id, "ok": True, "params": snapshot.to_dict()}

    def _handle_capture(self, msg_id: str | None) -> dict:
        if self._capture is None:
            return {"id": msg_id, "ok": False, "error": "capture not available"}
        try:
            path = self._capture()
        except Exception as e:
            sentry_sdk.capture_exception(e)
            logger.error("Remote capture failed: %s", type(e).__name__)
            return {"id": msg_id, "ok": False, "error": f"capture failed: {type(e).__name__}"}
        return {"id": msg_id, "ok": True, "path": path}

    def _serve_one(self) -> bool:
        """Receive one request and send its reply. Returns False on socket failure."""
        try:
            raw = self.socket.recv()
            message = json.loads(raw)
            if not isinstance(message, dict):
                raise ValueError("message must be an object")
        except ValueError:
            # MUST send reply before next recv (REP protocol)
            self.socket.send_json({"ok": False, "error": "Invalid message format"})
            return True
        except zmq.ZMQError:
            logger.error("ZMQ error on control socket")
            return False

        try:
            response = self.handle_message(message)
        except Exception as e:
            sentry_sdk.capture_exception(e)
            logger.error("Unhandled control handler error: %s", type(e).__name__)
            response = {"ok": False, "error": "Internal processing error"}

        self.socket.send_json(response)
        self.messages_handled += 1
        return True

    def poll(self, timeout_ms: int = 0) -> int:
        """Serve pending requests without blocking (beyond timeout_ms). Returns count served."""
        served = 0
        timeout = timeout_ms
        while served < MAX_MESSAGES_PER_POLL:
            events = dict(self._poller.poll(timeout=timeout))
            if self.socket not in events:
                break
            if not self._serve_one():
                break
            served += 1
            timeout = 0
        return served

    def close(self):
        if not self.socket.closed:
            self.socket.close()
        if not self.context.closed:
            self.context.term()
