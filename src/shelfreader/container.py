"""
Dependency injection container wiring ShelfReader's services together.
"""

from __future__ import annotations

import asyncio
import inspect
from contextlib import asynccontextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Any, AsyncIterator, Callable, Dict, Generic, Optional, TypeVar
from uuid import uuid4

import structlog
import yaml
from pydantic import ValidationError
from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from shelfreader.config import Config

if TYPE_CHECKING:
    from shelfreader.crawler.fetcher import RetryingFetcher
    from shelfreader.observability.performance import PerformanceMonitor
    from shelfreader.parser import BookParser
    from shelfreader.service import ChapterPreloader, ChapterService
    from shelfreader.storage import BookStore, ChapterCacheStore

T = TypeVar("T")


class LazyInstance(Generic[T]):
    """Lazily created instance with lifecycle management."""

    def __init__(self, factory: Callable[..., Any], *args: Any, **kwargs: Any) -> None:
        self._factory = factory
        self._args = args
        self._kwargs = kwargs
        self._instance: Optional[T] = None
        self._initialized = False

    @property
    def initialized(self) -> bool:
        return self._initialized

    async def get(self) -> T:
        """Get or create the instance; async factories and ``initialize()`` are awaited."""
        if not self._initialized:
            instance = self._factory(*self._args, **self._kwargs)
            if inspect.isawaitable(instance):
                instance = await instance
            initialize = getattr(instance, "initialize", None)
            if callable(initialize):
                result = initialize()
                if inspect.isawaitable(result):
                    await result
            self._instance = instance
            self._initialized = True
        assert self._instance is not None
        return self._instance

    async def cleanup(self) -> None:
        """Close the instance if it has a ``close()`` method."""
        close = getattr(self._instance, "close", None)
        if self._instance is not None and callable(close):
            result = close()
            if inspect.isawaitable(result):
                await result
        self._instance = None
        self._initialized = False


class ConfigWatcher(FileSystemEventHandler):
    """Reloads the container when its YAML configuration file changes."""

    def __init__(self, container: DependencyContainer, loop: asyncio.AbstractEventLoop) -> None:
        self.container = container
        self.loop = loop
        self.logger = structlog.get_logger(self.__class__.__name__)

    def on_modified(self, event: FileSystemEvent) -> None:
        if event.is_directory or self.container.config_path is None:
            return
        if Path(str(event.src_path)).resolve() != self.container.config_path.resolve():
            return
        self.logger.info("Configuration file changed, reloading", path=str(event.src_path))
        # Watchdog calls back on its own thread.
        asyncio.run_coroutine_threadsafe(self.container.reload_config(), self.loop)


class DependencyContainer:
    """
    Owns the configuration and every long-lived service.

    Services are created on first use. Reloading the configuration closes the
    current services; the next accessor call builds them again from the new
    settings.
    """

    def __init__(self, config_path: Optional[Path] = None, config: Optional[Config] = None) -> None:
        self.config_path = config_path
        self.config: Optional[Config] = config
        self.logger = structlog.get_logger(self.__class__.__name__)

        self._instances: Dict[str, LazyInstance[Any]] = {}
        self._instances_lock = asyncio.Lock()
        self._observer: Optional[Any] = None
        self.session_id = str(uuid4())
        self.is_running = False

    async def initialize(self, watch_config: bool = False) -> None:
        """Load configuration and prepare lazy services."""
        if self.config is None:
            self.config = self._read_config()
        self._create_instances()
        if watch_config:
            self._setup_config_watching()
        self.is_running = True
        self.logger.info(
            "Dependency container initialized",
            session_id=self.session_id,
            config_path=str(self.config_path) if self.config_path else "default",
        )

    def _read_config(self) -> Config:
        if self.config_path and self.config_path.exists():
            return Config.from_yaml(self.config_path)
        return Config()

    def _create_instances(self) -> None:
        if self.config is None:
            raise RuntimeError("Configuration must be loaded before creating instances")

        from shelfreader.observability.performance import PerformanceMonitor
        from shelfreader.storage import BookStore, ChapterCacheStore

        config = self.config
        self._instances = {
            "monitor": LazyInstance(PerformanceMonitor),
            "cache": LazyInstance(ChapterCacheStore, config.cache),
            "book_store": LazyInstance(BookStore, config.storage),
            "fetcher": LazyInstance(self._build_fetcher),
            "parser": LazyInstance(self._build_parser),
            "service": LazyInstance(self._build_service),
            "preloader": LazyInstance(self._build_preloader),
        }

    async def _build_fetcher(self) -> RetryingFetcher:
        from shelfreader.crawler.fetcher import RetryingFetcher

        assert self.config is not None
        return RetryingFetcher(self.config.fetcher, monitor=await self._instances["monitor"].get())

    async def _build_parser(self) -> BookParser:
        from shelfreader.parser import BookParser

        return BookParser(await self._instances["fetcher"].get(), self.config)

    async def _build_service(self) -> ChapterService:
        from shelfreader.service import ChapterService

        return ChapterService(await self._instances["parser"].get(), await self._instances["cache"].get())

    async def _build_preloader(self) -> ChapterPreloader:
        from shelfreader.service import ChapterPreloader

        assert self.config is not None
        return ChapterPreloader(
            await self._instances["parser"].get(), await self._instances["cache"].get(), self.config.preload
        )

    async def _get(self, name: str) -> Any:
        if not self._instances:
            raise RuntimeError("Container not initialized. Call initialize() first.")
        async with self._instances_lock:
            return await self._instances[name].get()

    async def reload_config(self) -> None:
        """Hot-reload configuration and rebuild services on next use."""
        old_config = self.config
        try:
            new_config = self._read_config()
        except (ValidationError, yaml.YAMLError, OSError) as e:
            self.logger.error("Configuration reload failed, keeping current settings", error=str(e))
            return
        async with self._instances_lock:
            await self._cleanup_instances()
            self.config = new_config
            self._create_instances()
        self.logger.info(
            "Configuration reloaded",
            session_id=self.session_id,
            changes_detected=old_config != new_config,
        )

    async def get_monitor(self) -> PerformanceMonitor:
        return await self._get("monitor")

    async def get_cache(self) -> ChapterCacheStore:
        return await self._get("cache")

    async def get_book_store(self) -> BookStore:
        return await self._get("book_store")

    async def get_fetcher(self) -> RetryingFetcher:
        return await self._get("fetcher")

    async def get_parser(self) -> BookParser:
        return await self._get("parser")

    async def get_service(self) -> ChapterService:
        return await self._get("service")

    async def get_preloader(self) -> ChapterPreloader:
        return await self._get("preloader")

    @asynccontextmanager
    async def lifecycle(self, watch_config: bool = False) -> AsyncIterator[DependencyContainer]:
        """Initialize on entry and shut everything down on exit."""
        try:
            await self.initialize(watch_config=watch_config)
            yield self
        finally:
            await self.shutdown()

    async def shutdown(self) -> None:
        if not self.is_running:
            return
        self.logger.info("Shutting down dependency container", session_id=self.session_id)
        if self._observer:
            self._observer.stop()
            self._observer.join()
            self._observer = None
        await self._cleanup_instances()
        self.is_running = False
        self.logger.info("Dependency container shutdown complete")

    def _setup_config_watching(self) -> None:
        if not self.config_path:
            return
        self._observer = Observer()
        handler = ConfigWatcher(self, asyncio.get_running_loop())
        self._observer.schedule(handler, str(self.config_path.parent), recursive=False)
        self._observer.start()

    async def _cleanup_instances(self) -> None:
        """Close services in reverse creation order so dependents go first."""
        for name, instance in reversed(list(self._instances.items())):
            if not instance.initialized:
                continue
            try:
                await instance.cleanup()
            except Exception as e:
                self.logger.error(f"Error cleaning up {name}", error=str(e))

    def get_health_status(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "is_running": self.is_running,
            "config_loaded": self.config is not None,
            "instances_count": len(self._instances),
            "initialized": sorted(name for name, instance in self._instances.items() if instance.initialized),
            "config_path": str(self.config_path) if self.config_path else None,
        }
