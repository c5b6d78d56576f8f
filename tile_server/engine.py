"""
Render engine handle.

Owns the loaded style as a bounded pool of rendering contexts. A context is
any object with:

    extent                       # mutable; read by the next render()
    render(width, height)        # -> raster image
    encode(image, fmt)           # -> bytes

Setting the extent and rendering are not atomic, so a context must only ever
serve one render at a time. `render_and_encode` enforces that by checking a
context out of the pool for the whole set-extent/render/encode sequence.
With pool_size=1 every render in the process is serialized behind one context.
"""
from __future__ import annotations

import queue
import threading
import time
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from common.logging_setup import get_logger
from common.types import Extent
from common.utils import RenderCounters
from tile_server.errors import EncodeFailed, EngineNotLoaded, InitializationFailed, RenderFailed
from tile_server.style import Style, StyleContext, load_style


log = get_logger(__name__)

ContextFactory = Callable[[str], Any]


class EngineState(str, Enum):
    UNINITIALIZED = "uninitialized"
    LOADING = "loading"
    READY = "ready"
    LOAD_FAILED = "load_failed"


class DefaultContextFactory:
    """
    Picks the context type from the stylesheet suffix:
      - .xml               -> MapnikContext (each context loads its own Map)
      - .yaml/.yml/.json   -> StyleContext (one parsed Style shared read-only)

    `data_file`, when set, replaces the first layer's datasource file.
    """

    def __init__(self, tile_size: int = 256, data_file: Optional[str] = None):
        self.tile_size = tile_size
        self.data_file = data_file
        self._styles: Dict[Path, Style] = {}

    def __call__(self, stylesheet: str) -> Any:
        path = Path(stylesheet)
        if path.suffix.lower() == ".xml":
            from tile_server.mapnik_backend import MapnikContext

            return MapnikContext(str(path), self.tile_size, self.tile_size, data_file=self.data_file)
        if path not in self._styles:
            self._styles[path] = load_style(path, data_file=self.data_file)
        return StyleContext(self._styles[path])


class RenderEngine:
    def __init__(
        self,
        context_factory: Optional[ContextFactory] = None,
        pool_size: int = 1,
        tile_size: int = 256,
        data_file: Optional[str] = None,
    ):
        if pool_size < 1:
            raise ValueError("pool_size must be >= 1")
        self.pool_size = pool_size
        self._factory = context_factory or DefaultContextFactory(tile_size, data_file=data_file)
        self._init_lock = threading.Lock()
        self._state = EngineState.UNINITIALIZED
        self._error: Optional[str] = None
        self._stylesheet: Optional[str] = None
        self._pool: "queue.Queue[Any]" = queue.Queue(maxsize=pool_size)
        self.counters = RenderCounters()

    # -------- lifecycle --------

    @property
    def state(self) -> EngineState:
        return self._state

    @property
    def load_error(self) -> Optional[str]:
        return self._error

    def is_ready(self) -> bool:
        return self._state is EngineState.READY

    def initialize(self, stylesheet_path: str) -> EngineState:
        """
        Load the stylesheet into `pool_size` contexts. Runs once per engine:
        later or concurrent calls return the current state without reloading.
        A failed load is final (LOAD_FAILED); restart the process to retry.
        """
        with self._init_lock:
            if self._state is not EngineState.UNINITIALIZED:
                return self._state
            self._state = EngineState.LOADING
            self._stylesheet = str(stylesheet_path)

        t0 = time.perf_counter()
        try:
            for _ in range(self.pool_size):
                self._pool.put_nowait(self._factory(str(stylesheet_path)))
        except Exception as e:
            self._error = f"{type(e).__name__}: {e}"
            self._state = EngineState.LOAD_FAILED
            log.exception(
                "engine load failed",
                extra={"extra": {"stylesheet": str(stylesheet_path), "error": self._error}},
            )
            return self._state

        self._state = EngineState.READY
        log.info(
            "engine ready",
            extra={
                "extra": {
                    "stylesheet": str(stylesheet_path),
                    "pool_size": self.pool_size,
                    "load_ms": round((time.perf_counter() - t0) * 1000.0, 1),
                }
            },
        )
        return self._state

    def start(self, stylesheet_path: str) -> threading.Thread:
        """Run initialize() on a background thread; returns the (started) thread."""
        th = threading.Thread(target=self.initialize, args=(stylesheet_path,), name="engine-load", daemon=True)
        th.start()
        return th

    # -------- rendering --------

    def render_and_encode(self, extent: Extent, width: int, height: int, fmt: str = "png") -> bytes:
        """
        Render `extent` at width x height and encode it to `fmt`.

        Blocks until a context is free. Once a context is checked out the
        render runs to completion (or failure) and the context goes back to
        the pool before the next waiting render can take it.
        """
        if self._state is EngineState.LOAD_FAILED:
            raise InitializationFailed(self._error or "engine failed to load")
        if self._state is not EngineState.READY:
            raise EngineNotLoaded(f"engine is {self._state.value}")

        ctx = self._pool.get()
        t0 = time.perf_counter()
        try:
            ctx.extent = extent
            try:
                image = ctx.render(width, height)
            except Exception as e:
                self.counters.failure()
                raise RenderFailed(f"{type(e).__name__}: {e}") from e
            try:
                data = ctx.encode(image, fmt)
            except Exception as e:
                self.counters.failure()
                raise EncodeFailed(f"{type(e).__name__}: {e}") from e
        finally:
            self._pool.put(ctx)

        self.counters.success((time.perf_counter() - t0) * 1000.0)
        return data

    def stats(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "state": self._state.value,
            "stylesheet": self._stylesheet,
            "pool_size": self.pool_size,
            "idle_contexts": self._pool.qsize(),
        }
        out.update(self.counters.snapshot())
        return out
