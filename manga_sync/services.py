"""
Construction of the service components.

Everything is built once from configuration and passed explicitly to the
web app and the scheduler.
"""

from dataclasses import dataclass

from manga_sync.api.image_proxy import ImageProxy, ImageProxyGate
from manga_sync.api.mangadex import MangaDexClient
from manga_sync.config import ConfigManager, ImportConfig
from manga_sync.sync.importer import MangaImporter
from manga_sync.sync.pages import ChapterPageService, PageResolver
from manga_sync.sync.runner import ImportRunner


@dataclass
class Services:
    """The components shared by the web app and the scheduler."""
    config: ImportConfig
    config_manager: ConfigManager
    database: object
    client: MangaDexClient
    pages: ChapterPageService
    proxy: ImageProxy
    runner: ImportRunner

    def close(self) -> None:
        self.runner.shutdown()
        self.client.close()
        self.proxy.close()


def create_client(config: ImportConfig) -> MangaDexClient:
    return MangaDexClient(
        base_url=config.mangadex_api_url,
        timeout=config.request_timeout_seconds,
        translated_language=config.translated_language,
        content_ratings=config.content_ratings,
        page_quality=config.page_quality,
    )


def build_services(config: ImportConfig, database, client: MangaDexClient = None) -> Services:
    """
    Build the service components.

    Args:
        config: Configuration loaded at startup
        database: Database holding the catalog
        client: MangaDex client (created from config if not provided)

    Returns:
        Services
    """
    config_manager = ConfigManager(database, env_config=config)
    client = client or create_client(config)

    def importer_factory() -> MangaImporter:
        # Picks up operator overrides saved since startup
        return MangaImporter(client, database, config_manager.get_config())

    resolver = PageResolver(client, quality=config.page_quality)
    gate = ImageProxyGate(allow_volunteer_nodes=config.allow_volunteer_nodes)

    return Services(
        config=config,
        config_manager=config_manager,
        database=database,
        client=client,
        pages=ChapterPageService(database, resolver),
        proxy=ImageProxy(gate, timeout=config.proxy_timeout_seconds),
        runner=ImportRunner(
            importer_factory,
            run_timeout_seconds=config_manager.get_config().run_timeout_seconds,
        ),
    )
