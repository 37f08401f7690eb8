"""
Shared inference resources

A model session that is expensive to load is owned by an InferenceResource.
Components retain the resource while they need it; the last release unloads
it. Inference runs in the default executor so the event loop stays free.
"""

import asyncio
import functools
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, Callable, Optional, Union

from .errors import BackendNotReadyError, ModelLoadError, ModelNotFoundError

logger = logging.getLogger(__name__)


class InferenceResource:
    """Reference-counted, explicitly loaded model session."""

    def __init__(
        self,
        name: str,
        loader: Callable[[], Any],
        unloader: Optional[Callable[[Any], None]] = None
    ):
        """
        Args:
            name: Resource name used in logs and errors
            loader: Blocking callable returning the loaded model
            unloader: Optional blocking callable releasing the model
        """
        self.name = name
        self._loader = loader
        self._unloader = unloader
        self._model: Any = None
        self._loaded = False
        self._closing = False
        self._refcount = 0
        self._in_flight = 0
        self._lock = asyncio.Lock()
        self._idle = asyncio.Event()
        self._idle.set()

    @property
    def is_loaded(self) -> bool:
        return self._loaded and not self._closing

    @property
    def refcount(self) -> int:
        return self._refcount

    @property
    def in_flight(self) -> int:
        return self._in_flight

    def retain(self) -> "InferenceResource":
        self._refcount += 1
        return self

    async def release(self) -> None:
        """Drop one reference; unloads when no owner remains."""
        if self._refcount == 0:
            return
        self._refcount -= 1
        if self._refcount == 0:
            await self.unload()

    async def load(self) -> Any:
        """Load the model once. Concurrent callers share the same load."""
        async with self._lock:
            if self._loaded:
                return self._model

            logger.info(f"Loading inference resource: {self.name}")
            loop = asyncio.get_running_loop()
            try:
                self._model = await loop.run_in_executor(None, self._loader)
            except (ImportError, FileNotFoundError, OSError) as e:
                logger.error(f"Model for {self.name} not found: {str(e)}")
                raise ModelNotFoundError(f"{self.name} model not found: {str(e)}")
            except Exception as e:
                logger.error(f"Failed to load {self.name}: {str(e)}")
                raise ModelLoadError(f"{self.name} loading failed: {str(e)}")

            self._loaded = True
            logger.info(f"Inference resource loaded: {self.name}")
            return self._model

    async def unload(self) -> None:
        """Stop admitting work, wait for in-flight inference, then unload."""
        async with self._lock:
            if not self._loaded:
                return
            self._closing = True
            try:
                await self._idle.wait()
                if self._unloader is not None:
                    loop = asyncio.get_running_loop()
                    await loop.run_in_executor(None, self._unloader, self._model)
            finally:
                self._model = None
                self._loaded = False
                self._closing = False
            logger.info(f"Inference resource unloaded: {self.name}")

    def _begin(self) -> Any:
        if not self.is_loaded:
            raise BackendNotReadyError(f"{self.name} is not loaded")
        self._in_flight += 1
        self._idle.clear()
        return self._model

    def _finish(self, *_args) -> None:
        self._in_flight -= 1
        if self._in_flight == 0:
            self._idle.set()

    @asynccontextmanager
    async def use(self):
        """Borrow the loaded model for the duration of the block."""
        model = self._begin()
        try:
            yield model
        finally:
            self._finish()

    def submit(self, fn: Callable[..., Any], *args, **kwargs) -> asyncio.Future:
        """
        Start a blocking callable against the model in the default executor.

        The call counts as in flight until the executor finishes it. The
        returned future must not be cancelled; await it through
        wait_executor().
        """
        model = self._begin()
        loop = asyncio.get_running_loop()
        try:
            future = loop.run_in_executor(None, functools.partial(fn, model, *args, **kwargs))
        except BaseException:
            self._finish()
            raise
        future.add_done_callback(self._finish)
        return future

    async def run(
        self,
        fn: Callable[..., Any],
        *args,
        timeout: Optional[float] = None,
        discard: Optional[Union[str, Path]] = None,
        **kwargs
    ) -> Any:
        """
        Run a blocking callable against the model in the default executor.

        The call counts as in flight until the executor finishes it, even if
        the awaiting task is cancelled or times out.

        Args:
            fn: Callable invoked as fn(model, *args, **kwargs)
            timeout: Optional time budget in seconds
            discard: File the callable writes; removed once the call returns
                if the caller stopped waiting for it

        Returns:
            The callable's return value
        """
        return await wait_executor(self.submit(fn, *args, **kwargs), timeout, discard)


def remove_file(path: Union[str, Path]) -> None:
    try:
        Path(path).unlink()
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning(f"Failed to remove abandoned output {path}: {str(e)}")


async def wait_executor(
    future: asyncio.Future,
    timeout: Optional[float] = None,
    discard: Optional[Union[str, Path]] = None
) -> Any:
    """
    Await an executor future without cancelling the underlying call.

    If the caller is cancelled or the timeout expires, the thread keeps
    running. discard, when given, is removed after the thread returns so a
    late write does not leave a file behind.
    """
    try:
        return await asyncio.wait_for(asyncio.shield(future), timeout)
    except (asyncio.CancelledError, asyncio.TimeoutError):
        if discard is not None:
            future.add_done_callback(lambda _: remove_file(discard))
        raise
