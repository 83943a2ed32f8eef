"""
Module to contain base class for feed observers
"""
import inspect
import logging
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Optional, Union

from livefeed.core.entities import EnrichedItem

logger = logging.getLogger(__name__)


class FeedObserver(ABC):
    """
    Receives the pipeline's output.

    on_item fires once per accepted item, in delivery order. on_error and
    on_loading are advisory: they carry human readable status only and
    never affect control flow.
    """

    name: str = "observer"

    @abstractmethod
    async def on_item(self, item: EnrichedItem) -> None:
        raise NotImplementedError

    async def on_error(self, message: str) -> None:
        logger.debug(f"Unhandled observer error message: {message}")

    async def on_loading(self, loading: bool) -> None:
        return None


Callback = Callable[..., Union[Awaitable[Any], Any]]


async def _call(callback: Optional[Callback], *args: Any) -> None:
    if callback is None:
        return
    result = callback(*args)
    if inspect.isawaitable(result):
        await result


class CallbackObserver(FeedObserver):
    """
    Adapts plain sync or async callables to the observer interface.
    """

    name = "callback"

    def __init__(
        self,
        on_item: Optional[Callback] = None,
        on_error: Optional[Callback] = None,
        on_loading: Optional[Callback] = None,
    ):
        self._on_item = on_item
        self._on_error = on_error
        self._on_loading = on_loading

    async def on_item(self, item: EnrichedItem) -> None:
        await _call(self._on_item, item)

    async def on_error(self, message: str) -> None:
        await _call(self._on_error, message)

    async def on_loading(self, loading: bool) -> None:
        await _call(self._on_loading, loading)
